"""Scheduler protocols: timing backends and external collaborators.

┌──────────────────────────────────────────────────────────────────────────────┐
│  BOUNDARIES OF THE SCHEDULER                                                  │
│                                                                               │
│   ┌─────────────────┐     tick()      ┌──────────────────────────────┐       │
│   │ SchedulerBackend│ ──────────────► │  SchedulerService            │       │
│   │ (timing)        │                 │                              │       │
│   └─────────────────┘                 │   SyncExecutor ─► SyncFunction│       │
│                                       │        │                     │       │
│   ┌─────────────────┐                 │        └──► CredentialProvider│      │
│   │ SubjectDirectory│ ◄── cleanup() ──│                              │       │
│   └─────────────────┘                 └──────────────────────────────┘       │
│                                                                               │
│  Responsibility Split:                                                        │
│  - Backend: Controls WHEN ticks happen                                       │
│  - Service: Controls WHAT happens on each tick                               │
│  - Collaborators: subject existence, credentials, the remote call itself     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .models import SyncOutcome

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing — calling the tick callback
    at the specified interval. All schedule evaluation logic lives in
    SchedulerService.

    Example (custom backend):
        >>> class ManualBackend:
        ...     name = "manual"
        ...
        ...     def start(self, tick_callback, interval_seconds=60.0, run_immediately=True):
        ...         self.callback = tick_callback
        ...
        ...     def stop(self):
        ...         self.callback = None
        ...
        ...     def health(self) -> dict:
        ...         return {"healthy": True, "backend": "manual"}
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
        run_immediately: bool = True,
    ) -> None:
        """Start the timing loop.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: How often to tick.
            run_immediately: Tick once before the first interval elapses.
        """
        ...

    def stop(self) -> None:
        """Stop the loop. No new tick begins after this returns."""
        ...

    def health(self) -> dict[str, Any]:
        """Return backend health status.

        Returns:
            dict with at least:
                - healthy: bool — whether backend is running
                - backend: str — backend name
                - tick_count: int — number of ticks executed
                - last_tick: str | None — ISO timestamp of last tick
        """
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


@runtime_checkable
class SubjectDirectory(Protocol):
    """Authoritative answer to "does this subject still exist?"."""

    def exists(self, subject_id: str) -> bool: ...


@runtime_checkable
class CredentialProvider(Protocol):
    """Resolves a usable token for a subject, or ``None`` if there is none."""

    def get_token(self, subject_id: str) -> str | None: ...


class SyncFunction(Protocol):
    """The remote synchronization operation.

    Returns ``None`` or a ``SyncOutcome``; raising counts as a failure whose
    message is the exception text.  Must be safe to run more than once for
    the same subject.
    """

    def __call__(self, subject_id: str, token: str) -> SyncOutcome | None: ...


class StaticSubjectDirectory:
    """SubjectDirectory over a fixed set of ids."""

    def __init__(self, subject_ids: Any) -> None:
        self._ids = {str(s) for s in subject_ids}

    def exists(self, subject_id: str) -> bool:
        return str(subject_id) in self._ids


class StaticCredentialProvider:
    """CredentialProvider over a mapping of subject id to token."""

    def __init__(self, tokens: dict[Any, str]) -> None:
        self._tokens = {str(k): v for k, v in tokens.items()}

    def get_token(self, subject_id: str) -> str | None:
        return self._tokens.get(str(subject_id))
