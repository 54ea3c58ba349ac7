"""Scheduler package for sync-spine.

Manifesto:
    Refreshing thousands of subjects from a flaky remote API needs more
    than ``time.sleep()`` in a loop.  It needs a single leader per fleet
    (so decisions are made once), a lock per subject (so no subject is
    synced twice at the same time), and a retry policy that backs off and
    finally gives up (so a broken subject stops burning quota).

┌──────────────────────────────────────────────────────────────────────────────┐
│  SYNC SCHEDULER                                                               │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from syncspine.core.scheduling import create_scheduler,            │   │
│  │       ScheduleOptions                                                │   │
│  │                                                                      │   │
│  │   scheduler = create_scheduler(                                      │   │
│  │       store,                                                         │   │
│  │       credentials=token_vault,                                       │   │
│  │       sync_function=sync_account,                                    │   │
│  │       subject_directory=accounts,                                    │   │
│  │   )                                                                  │   │
│  │   scheduler.schedule_sync("42", ScheduleOptions(interval_minutes=30))│   │
│  │   scheduler.start()                                                  │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Architecture:                                                                │
│   ┌──────────────┐    tick()    ┌──────────────────────────────┐            │
│   │  Backend     │ ───────────► │   SchedulerService (leader)  │            │
│   │ (timing)     │              │  ┌──────────┐ ┌───────────┐  │            │
│   └──────────────┘              │  │ Repo     │ │ LockMgr   │  │            │
│                                 │  └──────────┘ └───────────┘  │            │
│                                 │        ┌──────────────┐      │            │
│                                 │        │ SyncExecutor │──► RetryPolicy    │
│                                 │        └──────────────┘      │            │
│                                 └──────────────────────────────┘            │
│                                                                               │
│  Keys:                                                                        │
│  - schedule:{subject_id}              Schedule documents                     │
│  - lock:scheduler:main                Leader lease                           │
│  - lock:scheduler:entity:{subject_id} Per-subject lease                      │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Running a subject's sync without its subject lock
    ✅ Every execution path goes through ``SyncExecutor.execute``
    ❌ Letting one subject's failure escape the tick
    ✅ Failures are folded into the schedule by ``RetryPolicy``
    ❌ Constructing scheduler components individually
    ✅ ``create_scheduler(store, ...)`` factory function
"""

from __future__ import annotations

from syncspine.core.kv import KeyValueStore
from syncspine.core.settings import SyncSpineSettings, get_settings
from syncspine.core.timestamps import Clock

from .executor import SyncExecutor
from .lock_manager import LockManager
from .models import (
    ExecutionStatus,
    FailureKind,
    Priority,
    Schedule,
    ScheduleOptions,
    ScheduleUpdate,
    SyncOutcome,
)
from .protocol import (
    BackendHealth,
    CredentialProvider,
    SchedulerBackend,
    StaticCredentialProvider,
    StaticSubjectDirectory,
    SubjectDirectory,
    SyncFunction,
)
from .repository import ScheduleRepository
from .retry import RetryPolicy
from .service import SchedulerHealth, SchedulerService, SchedulerState, SchedulerStats
from .stats import ScheduleStatistics, compute_statistics
from .thread_backend import ThreadSchedulerBackend

__all__ = [
    # Models
    "Schedule",
    "ScheduleOptions",
    "ScheduleUpdate",
    "Priority",
    "FailureKind",
    "SyncOutcome",
    "ExecutionStatus",
    # Protocols
    "SchedulerBackend",
    "BackendHealth",
    "SubjectDirectory",
    "CredentialProvider",
    "SyncFunction",
    "StaticSubjectDirectory",
    "StaticCredentialProvider",
    # Components
    "LockManager",
    "ScheduleRepository",
    "RetryPolicy",
    "SyncExecutor",
    "ThreadSchedulerBackend",
    # Service
    "SchedulerService",
    "SchedulerState",
    "SchedulerStats",
    "SchedulerHealth",
    # Statistics
    "ScheduleStatistics",
    "compute_statistics",
    # Factory
    "create_scheduler",
]


def create_scheduler(
    store: KeyValueStore,
    *,
    credentials: CredentialProvider,
    sync_function: SyncFunction,
    subject_directory: SubjectDirectory | None = None,
    settings: SyncSpineSettings | None = None,
    backend: SchedulerBackend | None = None,
    clock: Clock | None = None,
) -> SchedulerService:
    """Factory function to create a complete scheduler service.

    This is the recommended way to create a scheduler with all components
    wired together from one settings object.

    Args:
        store: Shared key-value store
        credentials: Token source for subjects
        sync_function: Remote synchronization operation
        subject_directory: Source of truth for cleanup (optional)
        settings: Settings (default: read from environment)
        backend: Timing backend (default: ThreadSchedulerBackend)
        clock: Time source (default: system clock)

    Returns:
        Configured SchedulerService
    """
    settings = settings or get_settings()
    repository = ScheduleRepository(store, key_prefix=settings.key_prefix)
    lock_manager = LockManager(
        store, instance_id=settings.instance_id, key_prefix=settings.key_prefix
    )
    retry_policy = RetryPolicy(
        max_retries=settings.max_retries,
        base_minutes=settings.backoff_base_minutes,
        cap_minutes=settings.backoff_cap_minutes,
        counter_scope=settings.retry_counter_scope,
    )
    executor = SyncExecutor(
        repository,
        lock_manager,
        credentials,
        sync_function,
        retry_policy=retry_policy,
        clock=clock,
        lock_ttl_seconds=settings.subject_lock_ttl_seconds,
    )
    return SchedulerService(
        repository,
        lock_manager,
        executor,
        backend=backend,
        subject_directory=subject_directory,
        clock=clock,
        tick_interval_seconds=settings.tick_interval_seconds,
        max_workers=settings.max_workers,
        default_interval_minutes=settings.default_interval_minutes,
    )
