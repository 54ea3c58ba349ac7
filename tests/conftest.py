"""
Shared pytest fixtures for sync-spine tests.

Everything runs against ``InMemoryKeyValueStore`` driven by a ``ManualClock``
so lease expiry and due-ness are controlled by ``clock.advance(...)``
instead of sleeping.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

import pytest

from syncspine.core.errors import RemoteSyncError
from syncspine.core.kv import InMemoryKeyValueStore
from syncspine.core.scheduling import (
    LockManager,
    RetryPolicy,
    ScheduleRepository,
    SchedulerService,
    SyncExecutor,
    SyncOutcome,
)
from syncspine.core.timestamps import ManualClock

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class RecordingSync:
    """Sync function double.

    Succeeds by default; ``fail_with`` maps subject ids to an exception
    message (raised) and ``outcomes`` maps subject ids to a SyncOutcome.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_with: dict[str, str] = {}
        self.outcomes: dict[str, SyncOutcome] = {}
        self._lock = threading.Lock()

    def __call__(self, subject_id: str, token: str) -> SyncOutcome | None:
        with self._lock:
            self.calls.append((subject_id, token))
        if subject_id in self.fail_with:
            raise RemoteSyncError(self.fail_with[subject_id])
        return self.outcomes.get(subject_id)

    @property
    def subjects(self) -> list[str]:
        return [subject_id for subject_id, _ in self.calls]


class FakeCredentials:
    """Returns ``token-{id}`` unless the subject is listed in ``missing``."""

    def __init__(self) -> None:
        self.missing: set[str] = set()

    def get_token(self, subject_id: str) -> str | None:
        if subject_id in self.missing:
            return None
        return f"token-{subject_id}"


class ManualBackend:
    """Backend that never ticks on its own; tests call the service directly."""

    name = "manual"

    def __init__(self) -> None:
        self.callback: Any = None
        self.interval: float | None = None
        self.run_immediately: bool | None = None
        self.stopped = False

    def start(self, tick_callback, interval_seconds=60.0, run_immediately=True):
        self.callback = tick_callback
        self.interval = interval_seconds
        self.run_immediately = run_immediately
        self.stopped = False

    def stop(self):
        self.stopped = True

    def health(self) -> dict:
        return {"healthy": self.callback is not None and not self.stopped, "backend": self.name}


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def repository(store):
    return ScheduleRepository(store)


@pytest.fixture
def lock_manager(store):
    return LockManager(store, instance_id="scheduler-a")


@pytest.fixture
def sync_fn():
    return RecordingSync()


@pytest.fixture
def credentials():
    return FakeCredentials()


@pytest.fixture
def executor(repository, lock_manager, credentials, sync_fn, clock):
    return SyncExecutor(
        repository,
        lock_manager,
        credentials,
        sync_fn,
        retry_policy=RetryPolicy(),
        clock=clock,
    )


@pytest.fixture
def backend():
    return ManualBackend()


@pytest.fixture
def service(repository, lock_manager, executor, backend, clock):
    return SchedulerService(
        repository,
        lock_manager,
        executor,
        backend=backend,
        clock=clock,
        tick_interval_seconds=60.0,
    )
