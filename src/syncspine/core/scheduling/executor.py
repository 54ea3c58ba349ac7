"""Sync executor - one synchronization attempt for one subject.

Manifesto:
    A single subject's failure must never stop the loop.  The executor owns
    the whole attempt: lock, credential, remote call, retry policy, write
    back, unlock.  Every failure ends up in the schedule, not in an
    exception.

Tags:
    sync-spine, scheduling, executor, locks, retry

Doc-Types:
    api-reference


    Execution Flow::

        acquire lock:scheduler:entity:{id} ──busy──► SKIPPED
              │
        re-read schedule ──gone / disabled──► SKIPPED
              │
        get_token(id) ──None──► failure "no valid credential"
              │
        sync_function(id, token) ──raise / failed──► failure
              │
        RetryPolicy.next_state ──► repository.put
              │
        release lock (always)
"""

from __future__ import annotations

from syncspine.core.errors import (
    CredentialUnavailableError,
    LockContentionError,
    MaxRetriesExceededError,
    RemoteSyncError,
    StoreUnavailableError,
    categorize_error,
    is_retryable,
)
from syncspine.core.logging import LogContext, get_logger
from syncspine.core.timestamps import Clock, SystemClock

from .lock_manager import DEFAULT_SUBJECT_LOCK_TTL, LockManager
from .models import ExecutionStatus, FailureKind, Schedule, SyncOutcome
from .protocol import CredentialProvider, SyncFunction
from .repository import ScheduleRepository
from .retry import RetryPolicy

logger = get_logger(__name__)

NO_CREDENTIAL_MESSAGE = "no valid credential"


class SyncExecutor:
    """Runs one sync cycle per call.

    Example:
        >>> executor = SyncExecutor(repo, locks, credentials, sync_fn)
        >>> executor.execute(repo.get("42"))
        <ExecutionStatus.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        lock_manager: LockManager,
        credentials: CredentialProvider,
        sync_function: SyncFunction,
        *,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
        lock_ttl_seconds: float = DEFAULT_SUBJECT_LOCK_TTL,
    ) -> None:
        self.repository = repository
        self.lock_manager = lock_manager
        self.credentials = credentials
        self.sync_function = sync_function
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock or SystemClock()
        self.lock_ttl_seconds = lock_ttl_seconds

    def execute(self, schedule: Schedule) -> ExecutionStatus:
        """Attempt exactly one synchronization cycle for ``schedule``'s subject.

        Never raises.
        """
        subject_id = schedule.subject_id
        lock_key = self.lock_manager.subject_lock_key(subject_id)

        with LogContext(subject_id=subject_id):
            try:
                with self.lock_manager.hold(lock_key, self.lock_ttl_seconds):
                    return self._execute_locked(subject_id)
            except LockContentionError:
                logger.debug("sync_skipped_locked")
                return ExecutionStatus.SKIPPED
            except StoreUnavailableError as e:
                logger.error("sync_store_unavailable", **e.to_dict())
                return ExecutionStatus.ERROR
            except Exception as e:
                logger.exception(
                    "sync_executor_failed",
                    error=str(e),
                    category=categorize_error(e).value,
                    retryable=is_retryable(e),
                )
                return ExecutionStatus.ERROR

    def _execute_locked(self, subject_id: str) -> ExecutionStatus:
        current = self.repository.get(subject_id)
        if current is None:
            logger.info("sync_skipped_schedule_removed")
            return ExecutionStatus.SKIPPED
        if not current.enabled:
            logger.info("sync_skipped_disabled")
            return ExecutionStatus.SKIPPED

        outcome = self._attempt(subject_id)
        updated = self.retry_policy.next_state(current, outcome, self.clock.now())
        self.repository.put(updated)

        if outcome.success:
            logger.info("sync_succeeded", next_run_at=updated.next_run_at.isoformat())
            return ExecutionStatus.SUCCEEDED

        if not updated.enabled:
            error = MaxRetriesExceededError(updated.last_error or "max retries reached")
            error.with_context(subject_id=subject_id, retry_count=updated.retry_count)
            logger.error("sync_disabled", **error.to_dict())
            return ExecutionStatus.DISABLED

        logger.warning(
            "sync_failed",
            error=outcome.message,
            failure_kind=outcome.kind.value if outcome.kind else None,
            retry_count=updated.retry_count,
            next_run_at=updated.next_run_at.isoformat(),
        )
        return ExecutionStatus.FAILED

    def _attempt(self, subject_id: str) -> SyncOutcome:
        """Credential lookup plus remote call, folded into an outcome."""
        try:
            token = self.credentials.get_token(subject_id)
        except CredentialUnavailableError as e:
            return SyncOutcome.failed(e.message, FailureKind.CREDENTIAL)
        except Exception as e:
            logger.warning("credential_lookup_failed", error=str(e))
            return SyncOutcome.failed(NO_CREDENTIAL_MESSAGE, FailureKind.CREDENTIAL)
        if not token:
            return SyncOutcome.failed(NO_CREDENTIAL_MESSAGE, FailureKind.CREDENTIAL)

        try:
            result = self.sync_function(subject_id, token)
        except RemoteSyncError as e:
            return SyncOutcome.failed(e.message, FailureKind.REMOTE)
        except Exception as e:
            return SyncOutcome.failed(str(e) or e.__class__.__name__, FailureKind.REMOTE)

        if result is None or result.success:
            return SyncOutcome.succeeded()
        return SyncOutcome.failed(result.message or "remote sync failed", FailureKind.REMOTE)
