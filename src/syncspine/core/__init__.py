"""Sync Spine Core -- shared primitives for the sync scheduler.

Manifesto:
    The scheduler needs a handful of foundational capabilities: a key-value
    store with atomic set-if-absent, a controllable clock, typed errors,
    structured logging and environment-driven settings.  Keeping them here
    lets ``syncspine.core.scheduling`` stay focused on scheduling decisions.

Architecture::

    errors.py          Structured error hierarchy (SyncSpineError, ...)
    timestamps.py      UTC helpers + Clock protocol (SystemClock, ManualClock)
    kv.py              KeyValueStore protocol (in-memory, Redis)
    logging.py         structlog configuration
    settings.py        pydantic-settings configuration
    scheduling/        Leader-elected sync scheduler
"""

from __future__ import annotations

from syncspine.core.errors import (
    ErrorCategory,
    SyncSpineError,
    is_retryable,
)
from syncspine.core.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from syncspine.core.timestamps import Clock, ManualClock, SystemClock, utc_now

__all__ = [
    "ErrorCategory",
    "SyncSpineError",
    "is_retryable",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "Clock",
    "SystemClock",
    "ManualClock",
    "utc_now",
]
