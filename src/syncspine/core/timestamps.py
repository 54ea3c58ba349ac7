"""
UTC timestamp utilities and the injectable clock.

Every scheduling decision compares a schedule's ``next_run_at`` with "now".
Routing "now" through a ``Clock`` lets tests freeze and advance time instead
of sleeping, and keeps lease expiry in the in-memory store consistent with
the scheduler's view of time.

Manifesto:
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Safe serialization round-trip
    - **Clock protocol:** SystemClock in production, ManualClock in tests

Tags:
    timestamps, utc, datetime, clock, testing, sync-spine

Doc-Types:
    - API Reference
    - Utility Documentation
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to a UTC-aware datetime.

    Naive values are assumed to be UTC.
    """
    if s is None:
        return None
    return ensure_utc(datetime.fromisoformat(s))


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


@runtime_checkable
class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return utc_now()


class ManualClock:
    """Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(datetime(2025, 1, 1, tzinfo=UTC))
        >>> _ = clock.advance(minutes=5)
        >>> clock.now()
        datetime.datetime(2025, 1, 1, 0, 5, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_utc(start) if start else utc_now()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by ``delta`` or ``timedelta(**kwargs)``."""
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._now = self._now + step
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value


__all__ = [
    "utc_now",
    "to_iso8601",
    "from_iso8601",
    "ensure_utc",
    "Clock",
    "SystemClock",
    "ManualClock",
]
