"""Tests for LockManager."""

from __future__ import annotations

import pytest

from syncspine.core.errors import LockContentionError
from syncspine.core.scheduling import LockManager


class TestLockManager:
    """Test LockManager lock operations."""

    def test_acquire_lock(self, lock_manager):
        """Acquire subject lock."""
        assert lock_manager.acquire_subject_lock("42") is True
        assert lock_manager.get_lock_holder("lock:scheduler:entity:42") == "scheduler-a"

    def test_acquire_lock_twice_same_instance(self, lock_manager):
        """No re-entrancy: a held lock is busy even for its holder."""
        assert lock_manager.acquire_subject_lock("42") is True
        assert lock_manager.acquire_subject_lock("42") is False

    def test_acquire_lock_different_instance(self, store):
        """Different instance cannot acquire held lock."""
        manager1 = LockManager(store, instance_id="instance-1")
        manager2 = LockManager(store, instance_id="instance-2")

        assert manager1.acquire_subject_lock("7") is True
        assert manager2.acquire_subject_lock("7") is False

    def test_release_lock(self, lock_manager):
        """Release subject lock, then re-acquire."""
        lock_manager.acquire_subject_lock("42")
        lock_manager.release_subject_lock("42")
        assert lock_manager.acquire_subject_lock("42") is True

    def test_release_lock_not_held(self, lock_manager):
        """Releasing a free lock is a no-op."""
        lock_manager.release_subject_lock("not-held")
        assert lock_manager.is_locked(lock_manager.subject_lock_key("not-held")) is False

    def test_lease_expires(self, store, clock):
        """A crashed holder's lease lapses after its TTL."""
        manager1 = LockManager(store, instance_id="instance-1")
        manager2 = LockManager(store, instance_id="instance-2")

        manager1.acquire_subject_lock("42", ttl_seconds=300)
        clock.advance(seconds=299)
        assert manager2.acquire_subject_lock("42") is False
        clock.advance(seconds=1)
        assert manager2.acquire_subject_lock("42") is True

    def test_auto_generated_instance_id(self, store):
        assert LockManager(store).instance_id != LockManager(store).instance_id

    def test_key_prefix(self, store):
        manager = LockManager(store, instance_id="a", key_prefix="prod:")
        assert manager.leader_lock_key == "prod:lock:scheduler:main"
        assert manager.subject_lock_key("42") == "prod:lock:scheduler:entity:42"


class TestHold:
    def test_hold_releases_on_exit(self, lock_manager):
        key = lock_manager.subject_lock_key("42")
        with lock_manager.hold(key, 300):
            assert lock_manager.is_locked(key)
        assert not lock_manager.is_locked(key)

    def test_hold_releases_on_error(self, lock_manager):
        key = lock_manager.subject_lock_key("42")
        with pytest.raises(RuntimeError):
            with lock_manager.hold(key, 300):
                raise RuntimeError("boom")
        assert not lock_manager.is_locked(key)

    def test_hold_contention(self, store, lock_manager):
        other = LockManager(store, instance_id="scheduler-b")
        key = lock_manager.subject_lock_key("42")
        other.acquire(key, 300)

        with pytest.raises(LockContentionError) as exc_info:
            with lock_manager.hold(key, 300):
                pass
        assert exc_info.value.context.lock_key == key
        assert other.is_locked(key)


class TestLeaderLock:
    """Leader election over lock:scheduler:main."""

    def test_single_leader(self, store):
        a = LockManager(store, instance_id="a")
        b = LockManager(store, instance_id="b")

        assert a.acquire_leader_lock(120) is True
        assert b.acquire_leader_lock(120) is False
        assert a.is_leader() is True
        assert b.is_leader() is False

    def test_renew_keeps_lease_alive(self, store, clock):
        a = LockManager(store, instance_id="a")
        b = LockManager(store, instance_id="b")
        a.acquire_leader_lock(120)

        for _ in range(5):
            clock.advance(seconds=60)
            assert a.renew_leader_lock(120) is True
        assert b.acquire_leader_lock(120) is False

    def test_renew_reacquires_lapsed_lease(self, store, clock):
        a = LockManager(store, instance_id="a")
        a.acquire_leader_lock(120)
        clock.advance(seconds=121)

        assert a.renew_leader_lock(120) is True
        assert a.is_leader()

    def test_renew_fails_when_taken_over(self, store, clock):
        a = LockManager(store, instance_id="a")
        b = LockManager(store, instance_id="b")
        a.acquire_leader_lock(120)
        clock.advance(seconds=121)
        b.acquire_leader_lock(120)

        assert a.renew_leader_lock(120) is False
        assert b.is_leader()

    def test_list_active_locks(self, lock_manager):
        lock_manager.acquire_leader_lock(120)
        lock_manager.acquire_subject_lock("42")
        assert lock_manager.list_active_locks() == [
            {"key": "lock:scheduler:entity:42", "holder": "scheduler-a"},
            {"key": "lock:scheduler:main", "holder": "scheduler-a"},
        ]
