"""
Key-value store abstraction with in-memory and Redis implementations.

The scheduler persists schedules and leases in a generic key-value store.
It needs only a narrow set of atomic operations, captured by the
``KeyValueStore`` protocol.

Manifesto:
    Locks and schedules must live somewhere every scheduler instance can see.
    Redis is the production answer; an in-memory store with the same
    semantics makes the scheduler testable without a server.

    - **Protocol-based:** KeyValueStore defines the contract
    - **Atomic set-if-absent:** The lock primitive the whole design rests on
    - **TTL support:** Leases expire on their own when a holder crashes
    - **Clock-driven expiry:** InMemoryKeyValueStore expires keys by an
      injected Clock, so tests can make a lease lapse without sleeping

Architecture:
    ::

        KeyValueStore (Protocol)
        ├── InMemoryKeyValueStore  — single process, tests and local runs
        └── RedisKeyValueStore     — distributed, shared by the fleet

        API: get(key) → str | None
             set(key, value, ttl_seconds=None, only_if_absent=False) → bool
             expire(key, ttl_seconds) → bool
             delete(key) → bool
             keys(prefix) → list[str]
             ping() → bool

Guardrails:
    ❌ DON'T: Use InMemoryKeyValueStore across processes (no sharing)
    ✅ DO: Use RedisKeyValueStore whenever more than one scheduler runs

    ❌ DON'T: Let redis exceptions leak into scheduling code
    ✅ DO: Catch StoreUnavailableError at the tick boundary

Tags:
    key-value, redis, in-memory, ttl, locks, sync-spine, protocol

Doc-Types:
    - API Reference
    - Infrastructure Guide
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

import redis

from syncspine.core.errors import StoreUnavailableError
from syncspine.core.timestamps import Clock, SystemClock


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for key-value store implementations.

    Keys and values are strings; serialization belongs to the caller.

    Implementations:
        - :class:`InMemoryKeyValueStore`
        - :class:`RedisKeyValueStore`
    """

    def get(self, key: str) -> str | None:
        """Return the value for ``key`` or ``None`` if absent or expired."""
        ...

    def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        """Store a value.

        Args:
            key: Key to write.
            value: String value.
            ttl_seconds: Expiry in seconds. ``None`` → no expiry.
            only_if_absent: Only write when the key does not exist.

        Returns:
            ``True`` if the value was written.
        """
        ...

    def expire(self, key: str, ttl_seconds: float) -> bool:
        """Reset the expiry of an existing key. ``False`` if absent."""
        ...

    def delete(self, key: str) -> bool:
        """Remove ``key``. ``True`` if it existed."""
        ...

    def keys(self, prefix: str) -> list[str]:
        """List live keys starting with ``prefix``."""
        ...

    def ping(self) -> bool:
        """Return ``True`` if the store is reachable."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Store
# ------------------------------------------------------------------ #


class InMemoryKeyValueStore:
    """Thread-safe in-memory key-value store with TTL support.

    Expiry is evaluated lazily against the injected clock, so sharing a
    ``ManualClock`` between the store and the scheduler gives fully
    deterministic lease behaviour.

    Example:
        store = InMemoryKeyValueStore()
        store.set("lock:a", "instance-1", ttl_seconds=30, only_if_absent=True)
        store.get("lock:a")
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._data: dict[str, tuple[str, datetime | None]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> tuple[str, datetime | None] | None:
        """Return the entry for ``key``, dropping it if expired. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock.now() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: float | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        return self._clock.now() + timedelta(seconds=ttl_seconds)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        with self._lock:
            if only_if_absent and self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True

    def expire(self, key: str, ttl_seconds: float) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._data[key] = (entry[0], self._expiry(ttl_seconds))
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    def keys(self, prefix: str) -> list[str]:
        with self._lock:
            candidates = [k for k in self._data if k.startswith(prefix)]
            return sorted(k for k in candidates if self._live(k) is not None)

    def ping(self) -> bool:
        return True

    def ttl(self, key: str) -> float | None:
        """Seconds until ``key`` expires, ``None`` if absent or persistent."""
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[1] is None:
                return None
            return (entry[1] - self._clock.now()).total_seconds()

    def clear(self) -> None:
        """Remove all keys. Testing only."""
        with self._lock:
            self._data.clear()


# ------------------------------------------------------------------ #
# Redis Store
# ------------------------------------------------------------------ #


_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _escape_glob(prefix: str) -> str:
    """Escape Redis MATCH metacharacters in a literal prefix."""
    return _GLOB_SPECIAL.sub(r"\\\1", prefix)


@contextmanager
def _store_errors(operation: str, key: str | None = None) -> Iterator[None]:
    """Translate redis client errors into StoreUnavailableError."""
    try:
        yield
    except redis.RedisError as exc:
        error = StoreUnavailableError(f"Redis {operation} failed: {exc}", cause=exc)
        if key is not None:
            error.with_context(key=key)
        raise error from exc


class RedisKeyValueStore:
    """Redis-backed key-value store.

    Thread-safe and process-safe via Redis atomic operations: lock
    acquisition is a single ``SET key value NX EX ttl``.

    Example:
        store = RedisKeyValueStore("redis://localhost:6379/0")
        store.set("lock:scheduler:main", "host-1", ttl_seconds=120, only_if_absent=True)

    Raises:
        StoreUnavailableError: On any Redis client error.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        client: Any | None = None,
        scan_count: int = 500,
    ) -> None:
        """Initialize Redis store.

        Args:
            url: Redis connection URL.
            client: Pre-built client (skips ``redis.from_url``).
            scan_count: ``COUNT`` hint for ``SCAN`` during key enumeration.
        """
        self.url = url
        self._client = client if client is not None else redis.from_url(url, decode_responses=True)
        self._scan_count = scan_count

    @staticmethod
    def _ttl_ms(ttl_seconds: float) -> int:
        return max(1, int(round(ttl_seconds * 1000)))

    def get(self, key: str) -> str | None:
        with _store_errors("GET", key):
            value = self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: float | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        px = self._ttl_ms(ttl_seconds) if ttl_seconds is not None else None
        with _store_errors("SET", key):
            result = self._client.set(key, value, px=px, nx=only_if_absent)
        return bool(result)

    def expire(self, key: str, ttl_seconds: float) -> bool:
        with _store_errors("PEXPIRE", key):
            return bool(self._client.pexpire(key, self._ttl_ms(ttl_seconds)))

    def delete(self, key: str) -> bool:
        with _store_errors("DEL", key):
            return bool(self._client.delete(key))

    def keys(self, prefix: str) -> list[str]:
        with _store_errors("SCAN"):
            found = self._client.scan_iter(match=f"{_escape_glob(prefix)}*", count=self._scan_count)
            return sorted(k.decode("utf-8") if isinstance(k, bytes) else k for k in found)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
]
