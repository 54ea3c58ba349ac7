"""Schedule repository - persistence over the key-value store.

Manifesto:
    Schedule persistence is a pure data concern that belongs in a
    repository, not in the service layer.  The JSON wire format stops here:
    callers only ever see ``Schedule`` dataclasses.

Tags:
    sync-spine, scheduling, repository, key-value, serialization

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE REPOSITORY                                                          │
│                                                                               │
│   Key layout:  schedule:{subject_id}  →  JSON document                       │
│                                                                               │
│   ├── get(subject_id) → Schedule | None                                      │
│   ├── put(schedule)                 full overwrite, last writer wins         │
│   ├── list_all() → list[Schedule]   enumeration by key prefix                │
│   └── delete(subject_id) → bool                                              │
│                                                                               │
│   No optimistic concurrency: scheduled writes are serialized by the          │
│   per-subject lock; direct updates may race and the last write wins.         │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from typing import Any

from syncspine.core.errors import ScheduleValidationError
from syncspine.core.kv import KeyValueStore
from syncspine.core.logging import get_logger
from syncspine.core.timestamps import from_iso8601, to_iso8601

from .models import FailureKind, Priority, Schedule

logger = get_logger(__name__)

SCHEDULE_PREFIX = "schedule:"


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


def schedule_to_dict(schedule: Schedule) -> dict[str, Any]:
    return {
        "subject_id": schedule.subject_id,
        "next_run_at": to_iso8601(schedule.next_run_at),
        "interval_minutes": schedule.interval_minutes,
        "priority": schedule.priority.value,
        "retry_count": schedule.retry_count,
        "last_error": schedule.last_error,
        "enabled": schedule.enabled,
        "last_failure_kind": (
            schedule.last_failure_kind.value if schedule.last_failure_kind else None
        ),
    }


def schedule_from_dict(data: dict[str, Any]) -> Schedule:
    """Build a Schedule from its stored form.

    Raises:
        ScheduleValidationError: If required fields are missing or malformed
    """
    try:
        next_run_at = from_iso8601(data["next_run_at"])
        if next_run_at is None:
            raise ValueError("next_run_at is null")
        kind = data.get("last_failure_kind")
        return Schedule(
            subject_id=str(data["subject_id"]),
            next_run_at=next_run_at,
            interval_minutes=int(data["interval_minutes"]),
            priority=Priority.parse(data.get("priority", Priority.NORMAL.value)),
            retry_count=int(data.get("retry_count", 0)),
            last_error=data.get("last_error"),
            enabled=bool(data.get("enabled", True)),
            last_failure_kind=FailureKind(kind) if kind else None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ScheduleValidationError(f"Malformed schedule record: {exc}", cause=exc) from exc


# ---------------------------------------------------------------------------
# Repository Implementation
# ---------------------------------------------------------------------------


class ScheduleRepository:
    """Repository for per-subject schedules.

    Example:
        >>> repo = ScheduleRepository(store)
        >>> repo.put(Schedule(subject_id="42", next_run_at=utc_now()))
        >>> repo.get("42").priority
        <Priority.NORMAL: 'normal'>
    """

    def __init__(self, store: KeyValueStore, *, key_prefix: str = "") -> None:
        """Initialize repository.

        Args:
            store: Key-value store holding the schedules
            key_prefix: Namespace prepended to every key
        """
        self.store = store
        self.key_prefix = key_prefix

    def _key(self, subject_id: str) -> str:
        return f"{self.key_prefix}{SCHEDULE_PREFIX}{subject_id}"

    def get(self, subject_id: str) -> Schedule | None:
        """Get schedule by subject id.

        Raises:
            ScheduleValidationError: If the stored record cannot be decoded
        """
        raw = self.store.get(self._key(subject_id))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ScheduleValidationError(
                f"Schedule record for {subject_id} is not valid JSON", cause=e
            ) from e
        return schedule_from_dict(data)

    def put(self, schedule: Schedule) -> None:
        """Overwrite the stored schedule."""
        self.store.set(self._key(schedule.subject_id), json.dumps(schedule_to_dict(schedule)))

    def delete(self, subject_id: str) -> bool:
        return self.store.delete(self._key(subject_id))

    def list_all(self) -> list[Schedule]:
        """Load every schedule.

        Records that vanish between listing and reading are ignored; records
        that cannot be decoded are logged and skipped.
        """
        prefix = f"{self.key_prefix}{SCHEDULE_PREFIX}"
        schedules: list[Schedule] = []
        for key in self.store.keys(prefix):
            raw = self.store.get(key)
            if raw is None:
                continue
            try:
                schedules.append(schedule_from_dict(json.loads(raw)))
            except (ScheduleValidationError, json.JSONDecodeError) as e:
                logger.warning("schedule_record_skipped", key=key, error=str(e))
        return schedules

    def list_subject_ids(self) -> list[str]:
        prefix = f"{self.key_prefix}{SCHEDULE_PREFIX}"
        return [key[len(prefix):] for key in self.store.keys(prefix)]
