"""Scheduling models.

Manifesto:
    The scheduler works with typed objects only.  JSON exists solely at the
    store boundary (see ``repository.py``); everything else passes
    ``Schedule`` dataclasses, enums and small DTOs.

Tags:
    sync-spine, models, scheduling, dataclasses

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from syncspine.core.errors import ScheduleValidationError


class Priority(str, Enum):
    """Fixed three-tier dispatch priority."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank: high < normal < low."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: Priority | str) -> Priority:
        if isinstance(value, Priority):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            raise ScheduleValidationError(
                f"Unknown priority {value!r}; expected one of high, normal, low",
                cause=exc,
            ) from exc


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.NORMAL: 1, Priority.LOW: 2}


class FailureKind(str, Enum):
    """Cause of a failed sync attempt."""

    CREDENTIAL = "credential"
    REMOTE = "remote"


class ExecutionStatus(str, Enum):
    """Result of one executor cycle for one subject."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"  # failure recorded, retry scheduled
    DISABLED = "disabled"  # failure recorded, retry ceiling reached
    SKIPPED = "skipped"  # lock held elsewhere, or schedule gone/disabled
    ERROR = "error"  # store unreachable while persisting


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


@dataclass
class Schedule:
    """Per-subject sync schedule (``schedule:{subject_id}``)."""

    subject_id: str
    next_run_at: datetime
    interval_minutes: int = 60
    priority: Priority = Priority.NORMAL
    retry_count: int = 0
    last_error: str | None = None
    enabled: bool = True
    last_failure_kind: FailureKind | None = None

    def is_due(self, now: datetime) -> bool:
        return self.enabled and self.next_run_at <= now

    def sort_key(self) -> tuple[int, datetime]:
        return (self.priority.rank, self.next_run_at)


# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


@dataclass
class ScheduleOptions:
    """Options for ``schedule_sync``; unset fields fall back to the existing record."""

    interval_minutes: int | None = None
    priority: Priority | str | None = None
    next_run_at: datetime | None = None
    retry_count: int | None = None
    last_error: str | None = None
    enabled: bool | None = None


@dataclass
class ScheduleUpdate:
    """Partial update; only fields that are set are applied.

    ``clear_error`` removes ``last_error`` (``None`` means "leave as is").
    """

    interval_minutes: int | None = None
    priority: Priority | str | None = None
    next_run_at: datetime | None = None
    retry_count: int | None = None
    last_error: str | None = None
    clear_error: bool = False
    enabled: bool | None = None


# ---------------------------------------------------------------------------
# Sync outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncOutcome:
    """Outcome of one sync attempt, as fed to the retry policy."""

    success: bool
    message: str | None = None
    kind: FailureKind | None = None

    @classmethod
    def succeeded(cls) -> SyncOutcome:
        return cls(success=True)

    @classmethod
    def failed(cls, message: str, kind: FailureKind = FailureKind.REMOTE) -> SyncOutcome:
        return cls(success=False, message=message, kind=kind)


def validate_interval(interval_minutes: int) -> int:
    """Reject non-positive or non-integer intervals."""
    if isinstance(interval_minutes, bool) or not isinstance(interval_minutes, int):
        raise ScheduleValidationError(
            f"interval_minutes must be an integer, got {interval_minutes!r}"
        )
    if interval_minutes <= 0:
        raise ScheduleValidationError(
            f"interval_minutes must be positive, got {interval_minutes}"
        )
    return interval_minutes


def validate_retry_count(retry_count: int) -> int:
    if isinstance(retry_count, bool) or not isinstance(retry_count, int):
        raise ScheduleValidationError(f"retry_count must be an integer, got {retry_count!r}")
    if retry_count < 0:
        raise ScheduleValidationError(f"retry_count must be non-negative, got {retry_count}")
    return retry_count


__all__ = [
    "Priority",
    "FailureKind",
    "ExecutionStatus",
    "Schedule",
    "ScheduleOptions",
    "ScheduleUpdate",
    "SyncOutcome",
    "validate_interval",
    "validate_retry_count",
]
