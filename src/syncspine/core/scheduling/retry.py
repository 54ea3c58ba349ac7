"""Retry policy - next schedule state from an attempt's outcome.

Manifesto:
    Backoff and disablement are pure decisions.  Keeping them in a side
    effect free function makes every row of the retry table testable
    without a store, a lock or a clock.

Policy table (defaults)::

    outcome   retry_count+1      result
    ───────   ─────────────      ──────────────────────────────────────────
    success   -                  retry_count=0, last_error=None,
                                 next_run_at = now + interval
    failure   < max_retries (3)  retry_count+=1, last_error=message,
                                 next_run_at = now + min(5 * 2**n, 60) min
    failure   >= max_retries     retry_count+=1, enabled=False,
                                 last_error="max retries reached: ..."
                                 next_run_at unchanged

Tags:
    sync-spine, scheduling, retry, backoff, pure-function
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Literal

from .models import Schedule, SyncOutcome

MAX_RETRIES_MARKER = "max retries reached"

CounterScope = Literal["shared", "per_kind"]


class RetryPolicy:
    """Exponential backoff with terminal disablement.

    Args:
        max_retries: Consecutive failures that disable a schedule
        base_minutes: Backoff multiplier
        cap_minutes: Backoff ceiling
        counter_scope: ``shared`` counts every failure kind together;
            ``per_kind`` restarts the count when the failure kind changes
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_minutes: float = 5.0,
        cap_minutes: float = 60.0,
        counter_scope: CounterScope = "shared",
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if counter_scope not in ("shared", "per_kind"):
            raise ValueError(f"Unknown counter_scope: {counter_scope!r}")
        self.max_retries = max_retries
        self.base_minutes = base_minutes
        self.cap_minutes = cap_minutes
        self.counter_scope = counter_scope

    def backoff(self, retry_count: int) -> timedelta:
        """Delay before the next attempt after ``retry_count`` failures."""
        minutes = min(self.base_minutes * (2**retry_count), self.cap_minutes)
        return timedelta(minutes=minutes)

    def next_state(self, schedule: Schedule, outcome: SyncOutcome, now: datetime) -> Schedule:
        """Return the schedule as it should be stored after ``outcome``.

        The input schedule is not modified.
        """
        if outcome.success:
            return replace(
                schedule,
                retry_count=0,
                last_error=None,
                last_failure_kind=None,
                next_run_at=now + timedelta(minutes=schedule.interval_minutes),
            )

        previous = schedule.retry_count
        if (
            self.counter_scope == "per_kind"
            and schedule.last_failure_kind is not None
            and outcome.kind != schedule.last_failure_kind
        ):
            previous = 0

        retry_count = previous + 1
        message = outcome.message or "unknown error"

        if retry_count < self.max_retries:
            return replace(
                schedule,
                retry_count=retry_count,
                last_error=message,
                last_failure_kind=outcome.kind,
                next_run_at=now + self.backoff(retry_count),
            )

        return replace(
            schedule,
            retry_count=retry_count,
            enabled=False,
            last_error=f"{MAX_RETRIES_MARKER}: {message}",
            last_failure_kind=outcome.kind,
        )

    def is_terminal(self, schedule: Schedule) -> bool:
        return not schedule.enabled and schedule.retry_count >= self.max_retries
