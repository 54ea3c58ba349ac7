"""Scheduler service - leader-elected orchestrator and public API.

Manifesto:
    The SchedulerService is the central coordinator that combines backend
    (timing), repository (data), lock manager (safety), and executor
    (the sync itself) into one scheduling system.  The beat-as-poller
    pattern decouples timing from schedule evaluation for testability.

Tags:
    sync-spine, scheduling, orchestrator, beat-as-poller, leader-election

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE ARCHITECTURE                                               │
│                                                                               │
│   Lifecycle:  STOPPED ─► STARTING ─► RUNNING ─► STOPPING ─► STOPPED          │
│                              │                                                │
│                              └─ leader lock busy ─► STOPPED + error          │
│                                                                               │
│   tick()                                                                      │
│      ├── renew_leader_lock()                                                  │
│      ├── repository.list_all()                                                │
│      ├── filter enabled & next_run_at <= now                                  │
│      ├── sort (priority rank, next_run_at)                                    │
│      └── executor.execute(schedule)   sequential or bounded thread pool      │
│                                                                               │
│   Public API:                                                                 │
│   ├── start(interval) / stop()                                                │
│   ├── schedule_sync / get_schedule / update_schedule / set_enabled           │
│   ├── list_schedules / bulk_update / cleanup / sync_now                      │
│   └── get_statistics / health / get_stats                                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from syncspine.core.errors import (
    ConfigError,
    LeaderAcquisitionError,
    SchedulerStateError,
    StoreUnavailableError,
    categorize_error,
)
from syncspine.core.logging import get_logger
from syncspine.core.timestamps import Clock, SystemClock, ensure_utc

from .executor import SyncExecutor
from .lock_manager import LockManager
from .models import (
    ExecutionStatus,
    Priority,
    Schedule,
    ScheduleOptions,
    ScheduleUpdate,
    validate_interval,
    validate_retry_count,
)
from .protocol import SchedulerBackend, SubjectDirectory
from .repository import ScheduleRepository
from .stats import ScheduleStatistics, compute_statistics
from .thread_backend import ThreadSchedulerBackend

logger = get_logger(__name__)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SchedulerStats:
    """Runtime counters for this scheduler instance."""

    tick_count: int = 0
    ticks_abandoned: int = 0
    schedules_processed: int = 0
    schedules_skipped: int = 0
    schedules_failed: int = 0
    schedules_disabled: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None
    last_error_category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "ticks_abandoned": self.ticks_abandoned,
            "schedules_processed": self.schedules_processed,
            "schedules_skipped": self.schedules_skipped,
            "schedules_failed": self.schedules_failed,
            "schedules_disabled": self.schedules_disabled,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
            "last_error_category": self.last_error_category,
        }


@dataclass
class SchedulerHealth:
    """Health status for scheduler service."""

    healthy: bool
    state: SchedulerState
    is_leader: bool
    store_reachable: bool
    backend: dict[str, Any]
    instance_id: str
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "state": self.state.value,
            "is_leader": self.is_leader,
            "store_reachable": self.store_reachable,
            "backend": self.backend,
            "instance_id": self.instance_id,
            "stats": self.stats.to_dict(),
        }


class SchedulerService:
    """Leader-elected sync scheduler.

    Every dependency is injected, so several independent instances can run
    side by side against one store (as a fleet would) or in one test.

    Example:
        >>> store = RedisKeyValueStore("redis://localhost:6379/0")
        >>> repo = ScheduleRepository(store)
        >>> locks = LockManager(store)
        >>> executor = SyncExecutor(repo, locks, credentials, sync_account)
        >>> service = SchedulerService(repo, locks, executor)
        >>>
        >>> service.schedule_sync("42", ScheduleOptions(interval_minutes=30))
        >>> service.start(tick_interval_seconds=60)
        >>>
        >>> # Later...
        >>> service.stop()
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        lock_manager: LockManager,
        executor: SyncExecutor,
        *,
        backend: SchedulerBackend | None = None,
        subject_directory: SubjectDirectory | None = None,
        clock: Clock | None = None,
        tick_interval_seconds: float = 60.0,
        max_workers: int = 1,
        default_interval_minutes: int = 60,
    ) -> None:
        """Initialize scheduler service.

        Args:
            repository: Schedule repository
            lock_manager: Leader and subject locks
            executor: Runs one sync attempt per schedule
            backend: Timing backend (default: ThreadSchedulerBackend)
            subject_directory: Source of truth for ``cleanup()``
            clock: Time source (default: system clock)
            tick_interval_seconds: Default tick period for ``start()``
            max_workers: 1 dispatches sequentially, more uses a thread pool
            default_interval_minutes: Interval for new schedules without one
        """
        if max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {max_workers}")
        self.repository = repository
        self.lock_manager = lock_manager
        self.executor = executor
        self.backend = backend or ThreadSchedulerBackend()
        self.subject_directory = subject_directory
        self.clock = clock or SystemClock()
        self.tick_interval_seconds = tick_interval_seconds
        self.max_workers = max_workers
        self.default_interval_minutes = validate_interval(default_interval_minutes)

        self._state = SchedulerState.STOPPED
        self._state_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._leader_ttl = tick_interval_seconds * 2
        self._stats = SchedulerStats()

    # === Lifecycle ===

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    def start(self, tick_interval_seconds: float | None = None) -> None:
        """Become leader and start ticking.

        Performs one tick immediately, then one per interval.

        Raises:
            SchedulerStateError: If this instance is already started
            LeaderAcquisitionError: If another instance holds the leader lock
        """
        interval = tick_interval_seconds or self.tick_interval_seconds
        if interval <= 0:
            raise ConfigError(f"tick_interval_seconds must be positive, got {interval}")

        with self._state_lock:
            if self._state is not SchedulerState.STOPPED:
                raise SchedulerStateError(
                    f"Scheduler is already running (state={self._state.value})"
                )
            self._state = SchedulerState.STARTING

            leader_ttl = interval * 2
            try:
                acquired = self.lock_manager.acquire_leader_lock(leader_ttl)
            except Exception:
                self._state = SchedulerState.STOPPED
                raise

            if not acquired:
                self._state = SchedulerState.STOPPED
                holder = self.lock_manager.get_lock_holder(self.lock_manager.leader_lock_key)
                raise LeaderAcquisitionError(
                    "Another scheduler instance is already running"
                ).with_context(
                    lock_key=self.lock_manager.leader_lock_key,
                    instance_id=self.lock_manager.instance_id,
                    holder=holder,
                )

            self.tick_interval_seconds = interval
            self._leader_ttl = leader_ttl
            self._state = SchedulerState.RUNNING

        logger.info(
            "scheduler_started",
            backend=self.backend.name,
            interval_seconds=interval,
            instance_id=self.lock_manager.instance_id,
        )
        self.backend.start(self.tick, interval, run_immediately=True)

    def stop(self) -> None:
        """Stop ticking and give up leadership.

        In-flight executions of the current tick are allowed to finish.
        """
        with self._state_lock:
            if self._state is not SchedulerState.RUNNING:
                return
            self._state = SchedulerState.STOPPING

        logger.info("scheduler_stopping")
        try:
            self.backend.stop()
            if self.lock_manager.is_leader():
                self.lock_manager.release_leader_lock()
        except StoreUnavailableError as e:
            logger.error("leader_release_failed", **e.to_dict())
        finally:
            with self._state_lock:
                self._state = SchedulerState.STOPPED
        logger.info("scheduler_stopped")

    # === Tick Processing ===

    async def tick(self) -> None:
        """Single scheduler tick — select and dispatch due schedules.

        Called by the backend at each interval.  Store outages abandon the
        tick; the next tick tries again.
        """
        await asyncio.to_thread(self.run_tick)

    def run_tick(self) -> list[tuple[str, ExecutionStatus]]:
        """Synchronous tick body.

        Returns:
            (subject_id, status) for every dispatched schedule, in order
        """
        now = self.clock.now()
        with self._stats_lock:
            self._stats.tick_count += 1
            self._stats.last_tick = now

        try:
            if self._state is SchedulerState.RUNNING and not self.lock_manager.renew_leader_lock(
                self._leader_ttl
            ):
                logger.warning("tick_skipped_not_leader")
                with self._stats_lock:
                    self._stats.ticks_abandoned += 1
                return []

            due = self.select_due(self.repository.list_all(), now)
            if not due:
                logger.debug("no_schedules_due")
                return []

            logger.info("schedules_due", count=len(due))
            return self._dispatch(due)

        except StoreUnavailableError as e:
            self._abandon_tick(e)
            logger.error("tick_abandoned_store_unavailable", **e.to_dict())
            return []
        except Exception as e:
            category = self._abandon_tick(e)
            logger.exception("tick_failed", error=str(e), category=category)
            return []

    def _abandon_tick(self, error: Exception) -> str:
        category = categorize_error(error).value
        with self._stats_lock:
            self._stats.ticks_abandoned += 1
            self._stats.last_error = str(error)
            self._stats.last_error_category = category
        return category

    @staticmethod
    def select_due(schedules: Iterable[Schedule], now: datetime) -> list[Schedule]:
        """Enabled schedules with ``next_run_at <= now``, by priority then time."""
        due = [s for s in schedules if s.is_due(now)]
        due.sort(key=Schedule.sort_key)
        return due

    def _dispatch(self, due: list[Schedule]) -> list[tuple[str, ExecutionStatus]]:
        if self.max_workers == 1 or len(due) == 1:
            statuses = [self.executor.execute(schedule) for schedule in due]
        else:
            workers = min(self.max_workers, len(due))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="syncspine-sync") as pool:
                statuses = list(pool.map(self.executor.execute, due))

        for status in statuses:
            self._record(status)
        return [(s.subject_id, status) for s, status in zip(due, statuses, strict=True)]

    def _record(self, status: ExecutionStatus) -> None:
        with self._stats_lock:
            if status is ExecutionStatus.SUCCEEDED:
                self._stats.schedules_processed += 1
            elif status is ExecutionStatus.SKIPPED:
                self._stats.schedules_skipped += 1
            elif status is ExecutionStatus.DISABLED:
                self._stats.schedules_failed += 1
                self._stats.schedules_disabled += 1
            else:
                self._stats.schedules_failed += 1

    # === Schedule Operations ===

    def schedule_sync(
        self, subject_id: str | int, options: ScheduleOptions | None = None
    ) -> Schedule:
        """Create or re-schedule a subject's sync.

        Unset options fall back to the existing record, then to defaults.
        ``next_run_at`` defaults to now + interval.
        """
        sid = str(subject_id)
        opts = options or ScheduleOptions()
        existing = self.repository.get(sid)

        if opts.interval_minutes is not None:
            interval = validate_interval(opts.interval_minutes)
        elif existing is not None:
            interval = existing.interval_minutes
        else:
            interval = self.default_interval_minutes

        if opts.priority is not None:
            priority = Priority.parse(opts.priority)
        elif existing is not None:
            priority = existing.priority
        else:
            priority = Priority.NORMAL

        if opts.retry_count is not None:
            retry_count = validate_retry_count(opts.retry_count)
        else:
            retry_count = existing.retry_count if existing else 0

        if opts.enabled is not None:
            enabled = opts.enabled
        else:
            enabled = existing.enabled if existing else True

        last_error = opts.last_error or (existing.last_error if existing else None)

        if opts.next_run_at is not None:
            next_run_at = ensure_utc(opts.next_run_at)
        else:
            next_run_at = self.clock.now() + timedelta(minutes=interval)

        schedule = Schedule(
            subject_id=sid,
            next_run_at=next_run_at,
            interval_minutes=interval,
            priority=priority,
            retry_count=retry_count,
            last_error=last_error,
            enabled=enabled,
            last_failure_kind=existing.last_failure_kind if existing else None,
        )
        self.repository.put(schedule)
        logger.info(
            "sync_scheduled",
            subject_id=sid,
            created=existing is None,
            next_run_at=next_run_at.isoformat(),
        )
        return schedule

    def get_schedule(self, subject_id: str | int) -> Schedule | None:
        return self.repository.get(str(subject_id))

    def update_schedule(
        self, subject_id: str | int, update: ScheduleUpdate
    ) -> Schedule | None:
        """Merge the set fields of ``update`` into an existing schedule.

        Does not take the subject lock; may race with an in-flight tick for
        the same subject (last write wins).

        Returns:
            Updated schedule, or None if the subject has no schedule
        """
        existing = self.repository.get(str(subject_id))
        if existing is None:
            return None

        changes: dict[str, Any] = {}
        if update.interval_minutes is not None:
            changes["interval_minutes"] = validate_interval(update.interval_minutes)
        if update.priority is not None:
            changes["priority"] = Priority.parse(update.priority)
        if update.next_run_at is not None:
            changes["next_run_at"] = ensure_utc(update.next_run_at)
        if update.retry_count is not None:
            changes["retry_count"] = validate_retry_count(update.retry_count)
        if update.clear_error:
            changes["last_error"] = None
            changes["last_failure_kind"] = None
        elif update.last_error is not None:
            changes["last_error"] = update.last_error
        if update.enabled is not None:
            changes["enabled"] = update.enabled

        updated = replace(existing, **changes)
        self.repository.put(updated)
        logger.info("schedule_updated", subject_id=existing.subject_id, fields=sorted(changes))
        return updated

    def set_enabled(self, subject_id: str | int, enabled: bool) -> Schedule | None:
        """Enable or disable a schedule. Re-enabling leaves the retry count as is."""
        return self.update_schedule(subject_id, ScheduleUpdate(enabled=enabled))

    def list_schedules(self) -> list[Schedule]:
        return self.repository.list_all()

    def bulk_update(self, subject_ids: Iterable[str | int], update: ScheduleUpdate) -> int:
        """Apply ``update`` to each subject; unknown subjects are skipped.

        Returns:
            Number of schedules updated
        """
        updated = 0
        for subject_id in subject_ids:
            if self.update_schedule(subject_id, update) is not None:
                updated += 1
        return updated

    def cleanup(self) -> int:
        """Delete schedules whose subject no longer exists.

        Returns:
            Number of schedules removed

        Raises:
            ConfigError: If no subject directory was configured
        """
        if self.subject_directory is None:
            raise ConfigError("cleanup() requires a subject_directory")

        removed = 0
        for subject_id in self.repository.list_subject_ids():
            if not self.subject_directory.exists(subject_id):
                if self.repository.delete(subject_id):
                    removed += 1
                    logger.info("schedule_removed", subject_id=subject_id)
        logger.info("cleanup_completed", removed=removed)
        return removed

    def sync_now(self, subject_id: str | int) -> ExecutionStatus:
        """Run one sync for a subject outside the tick loop.

        Goes through the same per-subject lock as scheduled execution.
        """
        schedule = self.repository.get(str(subject_id))
        if schedule is None:
            logger.info("sync_now_unknown_subject", subject_id=str(subject_id))
            return ExecutionStatus.SKIPPED
        status = self.executor.execute(schedule)
        self._record(status)
        return status

    # === Health & Stats ===

    def get_statistics(self) -> ScheduleStatistics:
        """Roll up the current schedule snapshot (always recomputed)."""
        return compute_statistics(self.repository.list_all(), self.clock.now())

    def health(self) -> SchedulerHealth:
        store_reachable = self.lock_manager.store.ping()
        is_leader = False
        if store_reachable:
            try:
                is_leader = self.lock_manager.is_leader()
            except StoreUnavailableError:
                store_reachable = False

        return SchedulerHealth(
            healthy=self.is_running and store_reachable and is_leader,
            state=self._state,
            is_leader=is_leader,
            store_reachable=store_reachable,
            backend=self.backend.health(),
            instance_id=self.lock_manager.instance_id,
            stats=self.get_stats(),
        )

    def get_stats(self) -> SchedulerStats:
        with self._stats_lock:
            return replace(self._stats)

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = SchedulerStats()
