"""Leased lock manager for the scheduler.

Manifesto:
    Only one scheduler instance may drive ticks, and only one worker may
    sync a given subject at a time.  Both guarantees come from the same
    primitive: an atomic set-if-absent with a TTL in the shared key-value
    store.  Leases auto-expire so a crashed holder never deadlocks the
    fleet.

Tags:
    sync-spine, scheduling, distributed-locks, TTL, leader-election

Doc-Types:
    api-reference, architecture-diagram


    Lock Manager Architecture::

        Instance A: SET lock:scheduler:main A NX EX 120  → OK      (leader)
        Instance B: SET lock:scheduler:main B NX EX 120  → nil     (standby)
        ... A stops renewing, lease lapses ...
        Instance B: SET lock:scheduler:main B NX EX 120  → OK      (leader)

        Lock Scopes:
            1. Leader lock  - lock:scheduler:main
            2. Subject lock - lock:scheduler:entity:{subject_id}
        TTL: leader = 2 x tick interval, subject = 5 minutes.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

from syncspine.core.errors import LockContentionError
from syncspine.core.kv import KeyValueStore
from syncspine.core.logging import get_logger

logger = get_logger(__name__)

LEADER_LOCK_KEY = "lock:scheduler:main"
SUBJECT_LOCK_PREFIX = "lock:scheduler:entity:"
DEFAULT_SUBJECT_LOCK_TTL = 300.0


class LockManager:
    """Leased mutual exclusion over named keys.

    The value stored under a lock key is the holder's instance id, which is
    only used for observability; ``release`` deletes unconditionally.

    Example:
        >>> manager = LockManager(store, instance_id="scheduler-1")
        >>>
        >>> if manager.acquire(manager.subject_lock_key("42"), ttl_seconds=300):
        ...     try:
        ...         ...  # sync subject 42
        ...     finally:
        ...         manager.release(manager.subject_lock_key("42"))
        ... else:
        ...     print("Another worker has the lock")
    """

    def __init__(
        self,
        store: KeyValueStore,
        instance_id: str | None = None,
        *,
        key_prefix: str = "",
    ) -> None:
        """Initialize lock manager.

        Args:
            store: Shared key-value store
            instance_id: Unique identifier for this scheduler instance.
                        Auto-generated if not provided.
            key_prefix: Namespace prepended to every lock key
        """
        self.store = store
        self.instance_id = instance_id or str(uuid4())
        self.key_prefix = key_prefix

    # === Key layout ===

    @property
    def leader_lock_key(self) -> str:
        return f"{self.key_prefix}{LEADER_LOCK_KEY}"

    def subject_lock_key(self, subject_id: str) -> str:
        return f"{self.key_prefix}{SUBJECT_LOCK_PREFIX}{subject_id}"

    # === Primitive operations ===

    def acquire(self, key: str, ttl_seconds: float) -> bool:
        """Atomically take ``key`` if nobody holds it.

        No queuing and no internal retry: a held key returns ``False``
        immediately.

        Args:
            key: Lock key
            ttl_seconds: Lease length

        Returns:
            True if this instance now holds the lock
        """
        acquired = self.store.set(
            key, self.instance_id, ttl_seconds=ttl_seconds, only_if_absent=True
        )
        if acquired:
            logger.debug("lock_acquired", key=key, ttl_seconds=ttl_seconds)
        else:
            logger.debug("lock_busy", key=key)
        return acquired

    def renew(self, key: str, ttl_seconds: float) -> bool:
        """Extend the lease on ``key``.

        Returns:
            False if the key no longer exists (the lease already lapsed)
        """
        renewed = self.store.expire(key, ttl_seconds)
        if not renewed:
            logger.warning("lock_renew_failed", key=key)
        return renewed

    def release(self, key: str) -> None:
        """Delete ``key`` unconditionally."""
        if self.store.delete(key):
            logger.debug("lock_released", key=key)

    @contextmanager
    def hold(self, key: str, ttl_seconds: float) -> Iterator[None]:
        """Hold ``key`` for the duration of the block.

        Raises:
            LockContentionError: If another holder has the lock
        """
        if not self.acquire(key, ttl_seconds):
            raise LockContentionError(f"Lock {key} is held by another worker").with_context(
                lock_key=key, instance_id=self.instance_id
            )
        try:
            yield
        finally:
            self.release(key)

    def get_lock_holder(self, key: str) -> str | None:
        """Instance id holding ``key``, or None if free."""
        return self.store.get(key)

    def is_locked(self, key: str) -> bool:
        return self.store.get(key) is not None

    # === Leader lock ===

    def acquire_leader_lock(self, ttl_seconds: float) -> bool:
        return self.acquire(self.leader_lock_key, ttl_seconds)

    def renew_leader_lock(self, ttl_seconds: float) -> bool:
        """Keep leadership alive.

        A lapsed lease is re-taken if still free; a lease now held by a
        different instance is not touched.
        """
        key = self.leader_lock_key
        holder = self.store.get(key)
        if holder == self.instance_id:
            return self.renew(key, ttl_seconds)
        if holder is None:
            logger.warning("leader_lease_lapsed", instance_id=self.instance_id)
            return self.acquire(key, ttl_seconds)
        logger.warning("leadership_lost", instance_id=self.instance_id, holder=holder)
        return False

    def release_leader_lock(self) -> None:
        self.release(self.leader_lock_key)

    def is_leader(self) -> bool:
        return self.get_lock_holder(self.leader_lock_key) == self.instance_id

    # === Subject locks ===

    def acquire_subject_lock(
        self, subject_id: str, ttl_seconds: float = DEFAULT_SUBJECT_LOCK_TTL
    ) -> bool:
        return self.acquire(self.subject_lock_key(subject_id), ttl_seconds)

    def release_subject_lock(self, subject_id: str) -> None:
        self.release(self.subject_lock_key(subject_id))

    def list_active_locks(self) -> list[dict[str, str | None]]:
        """List live leader and subject locks."""
        prefix = f"{self.key_prefix}lock:scheduler:"
        return [
            {"key": key, "holder": self.store.get(key)}
            for key in self.store.keys(prefix)
        ]
