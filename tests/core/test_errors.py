"""Tests for the sync-spine error hierarchy."""

from __future__ import annotations

from syncspine.core.errors import (
    ConfigError,
    CredentialUnavailableError,
    ErrorCategory,
    LeaderAcquisitionError,
    LockContentionError,
    MaxRetriesExceededError,
    RemoteSyncError,
    ScheduleValidationError,
    StoreUnavailableError,
    SyncSpineError,
    categorize_error,
    is_retryable,
)


class TestErrorDefaults:
    def test_categories(self):
        assert StoreUnavailableError("x").category is ErrorCategory.STORAGE
        assert CredentialUnavailableError("x").category is ErrorCategory.AUTH
        assert RemoteSyncError("x").category is ErrorCategory.SOURCE
        assert ScheduleValidationError("x").category is ErrorCategory.VALIDATION
        assert ConfigError("x").category is ErrorCategory.CONFIG
        assert LeaderAcquisitionError("x").category is ErrorCategory.ORCHESTRATION

    def test_retryable_defaults(self):
        assert LockContentionError("x").retryable is True
        assert StoreUnavailableError("x").retryable is True
        assert MaxRetriesExceededError("x").retryable is False
        assert ConfigError("x").retryable is False

    def test_override_per_instance(self):
        error = RemoteSyncError("401", retryable=False)
        assert error.retryable is False


class TestErrorContext:
    def test_with_context_typed_and_metadata(self):
        error = LeaderAcquisitionError("busy").with_context(
            lock_key="lock:scheduler:main", holder="scheduler-b"
        )
        assert error.context.lock_key == "lock:scheduler:main"
        assert error.context.metadata == {"holder": "scheduler-b"}

    def test_to_dict(self):
        cause = ConnectionError("refused")
        error = StoreUnavailableError("redis down", cause=cause).with_context(subject_id="42")
        data = error.to_dict()
        assert data == {
            "error_type": "StoreUnavailableError",
            "message": "redis down",
            "category": "STORAGE",
            "retryable": True,
            "context": {"subject_id": "42"},
            "cause": "refused",
        }
        assert error.__cause__ is cause

    def test_to_dict_omits_empty_context(self):
        assert "context" not in SyncSpineError("boom").to_dict()


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(RemoteSyncError("x")) is True
        assert is_retryable(ConnectionError()) is True
        assert is_retryable(ValueError()) is False

    def test_categorize_error(self):
        assert categorize_error(ConfigError("x")) is ErrorCategory.CONFIG
        assert categorize_error(ValueError()) is ErrorCategory.VALIDATION
        assert categorize_error(KeyError()) is ErrorCategory.UNKNOWN
