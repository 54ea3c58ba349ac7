"""
Structured error types for sync-spine.

Provides a typed hierarchy of errors with metadata for retry decisions,
categorization and structured logging.  Instead of generic exceptions that
lose context, every SyncSpineError carries:
- **Category:** What kind of error (storage, auth, source, orchestration, ...)
- **Retryable:** Whether a later attempt may succeed
- **Context:** Structured metadata (subject_id, lock key, ...)
- **Cause:** Chained underlying exception

Manifesto:
    - **Typed Error Hierarchy:** One class per failure mode of the scheduler
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry metadata for logging and alerting
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       SyncSpineError                             │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  Per-subject outcomes         Loop / lifecycle                   │
        │  ────────────────────         ────────────────                   │
        │  LockContentionError          LeaderAcquisitionError             │
        │  CredentialUnavailableError   SchedulerStateError                │
        │  RemoteSyncError              StoreUnavailableError              │
        │  MaxRetriesExceededError                                         │
        │                                                                  │
        │  Input                                                           │
        │  ─────                                                           │
        │  ScheduleValidationError      ConfigError                        │
        └─────────────────────────────────────────────────────────────────┘

    Only LeaderAcquisitionError and SchedulerStateError are meant to reach
    callers of the scheduler loop.  Per-subject errors are absorbed into the
    schedule's state by the executor.

Examples:
    >>> error = RemoteSyncError("upstream returned 502").with_context(subject_id="42")
    >>> error.retryable
    True
    >>> error.to_dict()["context"]
    {'subject_id': '42'}

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    sync-spine, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        STORAGE: Key-value store unreachable or misbehaving
        AUTH: Missing or invalid credentials
        SOURCE: Remote synchronization failures
        VALIDATION: Invalid schedule input
        CONFIG: Missing or invalid settings
        ORCHESTRATION: Scheduler, lock and lifecycle errors
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    STORAGE = "STORAGE"
    AUTH = "AUTH"
    SOURCE = "SOURCE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover what the scheduler knows about a failure; anything
    else goes into ``metadata``.  ``to_dict()`` drops unset fields.

    Attributes:
        subject_id: Subject whose sync failed
        lock_key: Lock involved in the failure
        instance_id: Scheduler instance that observed the failure
        metadata: Additional key-value pairs
    """

    subject_id: str | None = None
    lock_key: str | None = None
    instance_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["subject_id", "lock_key", "instance_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SyncSpineError(Exception):
    """
    Base exception for all sync-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Example:
        >>> try:
        ...     raise ConnectionError("DNS lookup failed")
        ... except ConnectionError as e:
        ...     error = StoreUnavailableError("redis unreachable", cause=e)
        >>> error.cause
        ConnectionError('DNS lookup failed')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SyncSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise RemoteSyncError("timeout").with_context(subject_id="42")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PER-SUBJECT OUTCOMES
# =============================================================================


class LockContentionError(SyncSpineError):
    """Another worker holds the lock. Expected; the caller yields."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = True


class CredentialUnavailableError(SyncSpineError):
    """No valid credential could be resolved for the subject."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class RemoteSyncError(SyncSpineError):
    """The remote synchronization operation failed."""

    default_category = ErrorCategory.SOURCE
    default_retryable = True


class MaxRetriesExceededError(SyncSpineError):
    """A schedule hit the retry ceiling and was disabled.

    Terminal: the schedule stays disabled until re-enabled explicitly.
    """

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


# =============================================================================
# LOOP / LIFECYCLE
# =============================================================================


class LeaderAcquisitionError(SyncSpineError):
    """The leader lease is held by another scheduler instance."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = True


class SchedulerStateError(SyncSpineError):
    """Lifecycle call made in the wrong state (e.g. start while running)."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class StoreUnavailableError(SyncSpineError):
    """The key-value store could not be reached."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


# =============================================================================
# INPUT
# =============================================================================


class ScheduleValidationError(SyncSpineError):
    """Invalid schedule field (non-positive interval, unknown priority, ...)."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ConfigError(SyncSpineError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SyncSpineError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SyncSpineError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.SOURCE
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SyncSpineError",
    "LockContentionError",
    "CredentialUnavailableError",
    "RemoteSyncError",
    "MaxRetriesExceededError",
    "LeaderAcquisitionError",
    "SchedulerStateError",
    "StoreUnavailableError",
    "ScheduleValidationError",
    "ConfigError",
    "is_retryable",
    "categorize_error",
]
