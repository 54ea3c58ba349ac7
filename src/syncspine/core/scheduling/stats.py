"""Schedule statistics - read-only rollup over a schedule snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .models import Priority, Schedule


@dataclass
class ScheduleStatistics:
    """Aggregate view of all schedules at one instant."""

    total: int = 0
    enabled: int = 0
    disabled: int = 0
    overdue: int = 0
    by_priority: dict[str, int] = field(
        default_factory=lambda: {p.value: 0 for p in Priority}
    )
    average_interval: float = 0.0
    error_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "enabled": self.enabled,
            "disabled": self.disabled,
            "overdue": self.overdue,
            "by_priority": dict(self.by_priority),
            "average_interval": self.average_interval,
            "error_rate": self.error_rate,
        }


def compute_statistics(schedules: Iterable[Schedule], now: datetime) -> ScheduleStatistics:
    """Roll up ``schedules``.

    Overdue means enabled with ``next_run_at`` strictly before ``now``; the
    error rate is the share of schedules with a non-empty ``last_error``.
    """
    snapshot = list(schedules)
    stats = ScheduleStatistics(total=len(snapshot))
    if not snapshot:
        return stats

    errored = 0
    interval_sum = 0
    for schedule in snapshot:
        if schedule.enabled:
            stats.enabled += 1
            if schedule.next_run_at < now:
                stats.overdue += 1
        else:
            stats.disabled += 1
        stats.by_priority[schedule.priority.value] += 1
        interval_sum += schedule.interval_minutes
        if schedule.last_error:
            errored += 1

    stats.average_interval = interval_sum / stats.total
    stats.error_rate = errored / stats.total
    return stats
