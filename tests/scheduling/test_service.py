"""Tests for SchedulerService."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from syncspine.core.errors import (
    ConfigError,
    LeaderAcquisitionError,
    SchedulerStateError,
    ScheduleValidationError,
    StoreUnavailableError,
)
from syncspine.core.kv import InMemoryKeyValueStore
from syncspine.core.scheduling import (
    ExecutionStatus,
    LockManager,
    Priority,
    ScheduleOptions,
    ScheduleRepository,
    SchedulerService,
    SchedulerState,
    ScheduleUpdate,
    StaticCredentialProvider,
    StaticSubjectDirectory,
    SyncExecutor,
    create_scheduler,
)
from syncspine.core.settings import SyncSpineSettings

from conftest import T0, FakeCredentials, ManualBackend, RecordingSync


def _due(service, subject_id, minutes_ago=1, **kwargs):
    return service.schedule_sync(
        subject_id,
        ScheduleOptions(next_run_at=T0 - timedelta(minutes=minutes_ago), **kwargs),
    )


def _second_instance(store, clock, instance_id="scheduler-b"):
    repository = ScheduleRepository(store)
    lock_manager = LockManager(store, instance_id=instance_id)
    executor = SyncExecutor(repository, lock_manager, FakeCredentials(), RecordingSync(), clock=clock)
    return SchedulerService(
        repository, lock_manager, executor, backend=ManualBackend(), clock=clock
    )


class TestLifecycle:
    """Start/stop and leader election."""

    def test_start_becomes_leader(self, service, backend, lock_manager):
        service.start()

        assert service.state is SchedulerState.RUNNING
        assert lock_manager.is_leader()
        assert backend.interval == 60.0
        assert backend.run_immediately is True
        assert backend.callback == service.tick

    def test_leader_lease_is_twice_interval(self, service, store):
        service.start(tick_interval_seconds=30)
        assert store.ttl("lock:scheduler:main") == pytest.approx(60.0)

    def test_start_twice_raises(self, service):
        service.start()
        with pytest.raises(SchedulerStateError):
            service.start()

    def test_second_instance_rejected(self, service, store, clock):
        service.start()
        other = _second_instance(store, clock)

        with pytest.raises(LeaderAcquisitionError) as exc_info:
            other.start()

        assert other.state is SchedulerState.STOPPED
        assert "already running" in exc_info.value.message
        assert exc_info.value.context.metadata["holder"] == "scheduler-a"

    def test_takeover_after_lease_lapses(self, service, store, clock):
        """A crashed leader (no stop, no renew) is replaced after 2x interval."""
        service.start()
        other = _second_instance(store, clock)

        clock.advance(seconds=119)
        with pytest.raises(LeaderAcquisitionError):
            other.start()

        clock.advance(seconds=1)
        other.start()
        assert other.lock_manager.is_leader()

    def test_stop_releases_leadership(self, service, backend, store, clock):
        service.start()
        service.stop()

        assert service.state is SchedulerState.STOPPED
        assert backend.stopped is True
        assert store.get("lock:scheduler:main") is None
        _second_instance(store, clock).start()

    def test_stop_keeps_foreign_lease(self, service, store, clock):
        service.start()
        clock.advance(seconds=121)
        other = _second_instance(store, clock)
        other.start()

        service.stop()
        assert other.lock_manager.is_leader()

    def test_stop_when_stopped_is_noop(self, service, backend):
        service.stop()
        assert backend.stopped is False

    def test_restart_after_stop(self, service):
        service.start()
        service.stop()
        service.start()
        assert service.is_running

    def test_invalid_workers(self, repository, lock_manager, executor):
        with pytest.raises(ConfigError):
            SchedulerService(repository, lock_manager, executor, max_workers=0)


class TestTick:
    def test_priority_order(self, service, sync_fn):
        _due(service, "low", priority="low")
        _due(service, "high", priority="high")
        _due(service, "normal", priority="normal")

        service.run_tick()

        assert sync_fn.subjects == ["high", "normal", "low"]

    def test_ties_broken_by_next_run_at(self, service, sync_fn):
        _due(service, "later", minutes_ago=1)
        _due(service, "earlier", minutes_ago=5)

        service.run_tick()

        assert sync_fn.subjects == ["earlier", "later"]

    def test_only_enabled_and_due(self, service, sync_fn):
        _due(service, "due")
        _due(service, "boundary", minutes_ago=0)
        _due(service, "disabled", enabled=False)
        service.schedule_sync("future", ScheduleOptions(next_run_at=T0 + timedelta(seconds=1)))

        results = service.run_tick()

        assert sorted(sync_fn.subjects) == ["boundary", "due"]
        assert dict(results) == {
            "boundary": ExecutionStatus.SUCCEEDED,
            "due": ExecutionStatus.SUCCEEDED,
        }

    def test_failure_does_not_stop_tick(self, service, sync_fn, repository):
        _due(service, "a", priority="high")
        _due(service, "b")
        sync_fn.fail_with["a"] = "boom"

        results = service.run_tick()

        assert results == [("a", ExecutionStatus.FAILED), ("b", ExecutionStatus.SUCCEEDED)]
        assert repository.get("a").retry_count == 1
        stats = service.get_stats()
        assert stats.schedules_failed == 1
        assert stats.schedules_processed == 1

    def test_retry_until_disabled(self, service, sync_fn, repository, clock):
        """Three consecutive failures across ticks disable the schedule."""
        _due(service, "42")
        sync_fn.fail_with["42"] = "upstream 502"

        statuses = []
        for _ in range(4):
            statuses.extend(status for _, status in service.run_tick())
            clock.advance(hours=2)

        assert statuses == [
            ExecutionStatus.FAILED,
            ExecutionStatus.FAILED,
            ExecutionStatus.DISABLED,
        ]
        stored = repository.get("42")
        assert stored.enabled is False
        assert stored.last_error == "max retries reached: upstream 502"
        assert service.get_stats().schedules_disabled == 1

    def test_thread_pool_dispatch(self, repository, lock_manager, executor, backend, clock, sync_fn):
        service = SchedulerService(
            repository, lock_manager, executor, backend=backend, clock=clock, max_workers=4
        )
        for i in range(10):
            _due(service, str(i))

        results = service.run_tick()

        assert len(results) == 10
        assert all(status is ExecutionStatus.SUCCEEDED for _, status in results)
        assert sorted(sync_fn.subjects) == sorted(str(i) for i in range(10))

    def test_store_unavailable_abandons_tick(self, service):
        service.repository.list_all = MagicMock(side_effect=StoreUnavailableError("redis down"))

        assert service.run_tick() == []

        stats = service.get_stats()
        assert stats.ticks_abandoned == 1
        assert stats.last_error == "redis down"
        assert stats.last_error_category == "STORAGE"

    def test_unexpected_error_abandons_tick_with_category(self, service):
        service.repository.list_all = MagicMock(side_effect=ValueError("bad snapshot"))

        assert service.run_tick() == []

        stats = service.get_stats()
        assert stats.ticks_abandoned == 1
        assert stats.last_error == "bad snapshot"
        assert stats.last_error_category == "VALIDATION"
        assert stats.to_dict()["last_error_category"] == "VALIDATION"

    def test_lost_leadership_skips_tick(self, service, store, clock, sync_fn):
        service.start()
        _due(service, "42")
        clock.advance(seconds=121)
        _second_instance(store, clock).start()

        assert service.run_tick() == []
        assert sync_fn.calls == []
        assert service.get_stats().ticks_abandoned == 1

    def test_tick_renews_leader_lease(self, service, store, clock):
        service.start()
        clock.advance(seconds=100)
        service.run_tick()
        assert store.ttl("lock:scheduler:main") == pytest.approx(120.0)

    @pytest.mark.asyncio
    async def test_async_tick(self, service, sync_fn):
        _due(service, "42")
        await service.tick()
        assert sync_fn.subjects == ["42"]
        assert service.get_stats().tick_count == 1


class TestScheduleSync:
    def test_new_schedule_defaults(self, service, clock):
        schedule = service.schedule_sync("42", ScheduleOptions(interval_minutes=30))

        assert schedule.subject_id == "42"
        assert schedule.next_run_at == clock.now() + timedelta(minutes=30)
        assert schedule.priority is Priority.NORMAL
        assert schedule.retry_count == 0
        assert schedule.enabled is True
        assert service.get_schedule("42") == schedule

    def test_default_interval(self, service):
        schedule = service.schedule_sync(7)
        assert schedule.subject_id == "7"
        assert schedule.interval_minutes == 60
        assert service.get_schedule(7) == schedule

    def test_reschedule_keeps_existing_fields(self, service, clock):
        service.schedule_sync(
            "42",
            ScheduleOptions(interval_minutes=15, priority="high", retry_count=2, last_error="x"),
        )
        clock.advance(minutes=1)

        schedule = service.schedule_sync("42")

        assert schedule.interval_minutes == 15
        assert schedule.priority is Priority.HIGH
        assert schedule.retry_count == 2
        assert schedule.last_error == "x"
        assert schedule.next_run_at == clock.now() + timedelta(minutes=15)

    def test_explicit_retry_count_zero_overrides(self, service):
        service.schedule_sync("42", ScheduleOptions(retry_count=2))
        assert service.schedule_sync("42", ScheduleOptions(retry_count=0)).retry_count == 0

    def test_explicit_disable(self, service):
        service.schedule_sync("42")
        assert service.schedule_sync("42", ScheduleOptions(enabled=False)).enabled is False
        assert service.schedule_sync("42").enabled is False

    @pytest.mark.parametrize(
        "options",
        [
            ScheduleOptions(interval_minutes=0),
            ScheduleOptions(interval_minutes=-5),
            ScheduleOptions(priority="urgent"),
            ScheduleOptions(retry_count=-1),
            ScheduleOptions(retry_count="2"),
            ScheduleOptions(retry_count=1.5),
        ],
    )
    def test_invalid_options(self, service, options):
        with pytest.raises(ScheduleValidationError):
            service.schedule_sync("42", options)
        assert service.get_schedule("42") is None


class TestScheduleOperations:
    def test_update_unknown(self, service):
        assert service.update_schedule("nope", ScheduleUpdate(priority="high")) is None

    def test_update_merges(self, service):
        service.schedule_sync("42", ScheduleOptions(interval_minutes=30, last_error="boom"))

        updated = service.update_schedule(
            "42", ScheduleUpdate(priority="low", clear_error=True)
        )

        assert updated.priority is Priority.LOW
        assert updated.interval_minutes == 30
        assert updated.last_error is None

    def test_set_enabled_keeps_retry_count(self, service):
        service.schedule_sync("42", ScheduleOptions(retry_count=3, enabled=False))
        schedule = service.set_enabled("42", True)
        assert schedule.enabled is True
        assert schedule.retry_count == 3

    def test_bulk_update(self, service):
        service.schedule_sync("1")
        service.schedule_sync("2")

        count = service.bulk_update(["1", "2", "missing"], ScheduleUpdate(priority="high"))

        assert count == 2
        assert all(s.priority is Priority.HIGH for s in service.list_schedules())

    def test_cleanup(self, service):
        service.subject_directory = StaticSubjectDirectory(["1", "2"])
        for sid in ["1", "2", "3"]:
            service.schedule_sync(sid)

        assert service.cleanup() == 1
        assert sorted(s.subject_id for s in service.list_schedules()) == ["1", "2"]

    def test_cleanup_requires_directory(self, service):
        with pytest.raises(ConfigError):
            service.cleanup()

    def test_sync_now(self, service, sync_fn):
        service.schedule_sync("42")
        assert service.sync_now("42") is ExecutionStatus.SUCCEEDED
        assert sync_fn.subjects == ["42"]

    def test_sync_now_unknown(self, service, sync_fn):
        assert service.sync_now("nope") is ExecutionStatus.SKIPPED
        assert sync_fn.calls == []


class TestStatisticsAndHealth:
    def test_statistics(self, service, clock):
        service.schedule_sync("1", ScheduleOptions(interval_minutes=30, priority="high"))
        service.schedule_sync("2", ScheduleOptions(interval_minutes=60, last_error="boom"))
        service.schedule_sync("3", ScheduleOptions(interval_minutes=90, enabled=False))
        clock.advance(minutes=45)

        stats = service.get_statistics()

        assert stats.total == 3
        assert stats.enabled == 2
        assert stats.disabled == 1
        assert stats.overdue == 1
        assert stats.by_priority == {"high": 1, "normal": 2, "low": 0}
        assert stats.average_interval == 60
        assert stats.error_rate == pytest.approx(1 / 3)

    def test_health_running(self, service):
        service.start()
        health = service.health()
        assert health.healthy is True
        assert health.is_leader is True
        assert health.to_dict()["state"] == "running"

    def test_health_store_down(self, service):
        service.lock_manager.store = MagicMock()
        service.lock_manager.store.ping.return_value = False
        health = service.health()
        assert health.healthy is False
        assert health.store_reachable is False

    def test_reset_stats(self, service):
        service.run_tick()
        service.reset_stats()
        assert service.get_stats().tick_count == 0


class TestCreateScheduler:
    def test_wires_settings(self):
        store = InMemoryKeyValueStore()
        settings = SyncSpineSettings(
            key_prefix="t:", instance_id="inst-1", max_retries=5, max_workers=2
        )
        service = create_scheduler(
            store,
            credentials=StaticCredentialProvider({"1": "tok"}),
            sync_function=RecordingSync(),
            settings=settings,
            backend=ManualBackend(),
        )

        assert service.lock_manager.instance_id == "inst-1"
        assert service.lock_manager.leader_lock_key == "t:lock:scheduler:main"
        assert service.executor.retry_policy.max_retries == 5
        assert service.max_workers == 2
        service.schedule_sync("1")
        assert store.keys("t:schedule:") == ["t:schedule:1"]
