"""Settings for sync-spine scheduler processes.

Every scheduler instance in a fleet must agree on key layout, lease TTLs and
retry limits, so these live in one validated settings object read from the
environment (``SYNCSPINE_*``) and an optional ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** The defaults match the documented behaviour
      (60 s tick, 3 retries, 5 → 60 minute backoff, 5 minute subject lease)

Examples:
    >>> from syncspine.core.settings import get_settings
    >>> settings = get_settings(max_workers=4)
    >>> settings.tick_interval_seconds
    60.0

Tags:
    settings, configuration, pydantic, environment, sync-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSpineSettings(BaseSettings):
    """Settings shared by every scheduler instance.

    Fields
    ──────
    redis_url                 : Key-value store URL
    key_prefix                : Namespace prepended to every key
    instance_id               : Lock holder identity (auto-generated if unset)
    tick_interval_seconds     : Scheduler loop period
    default_interval_minutes  : Interval for new schedules without one
    max_retries               : Consecutive failures before disabling
    backoff_base_minutes      : Backoff multiplier (base * 2**n)
    backoff_cap_minutes       : Upper bound for backoff
    subject_lock_ttl_seconds  : Per-subject lease
    max_workers               : 1 → sequential dispatch, >1 → thread pool
    retry_counter_scope       : shared | per_kind
    log_level / json_logs     : structlog configuration
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNCSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = ""
    instance_id: str | None = None

    # ── Loop ─────────────────────────────────────────────────────
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    max_workers: int = Field(default=1, ge=1, le=64)

    # ── Schedules & retries ──────────────────────────────────────
    default_interval_minutes: int = Field(default=60, gt=0)
    max_retries: int = Field(default=3, ge=1)
    backoff_base_minutes: float = Field(default=5.0, gt=0)
    backoff_cap_minutes: float = Field(default=60.0, gt=0)
    subject_lock_ttl_seconds: float = Field(default=300.0, gt=0)
    retry_counter_scope: Literal["shared", "per_kind"] = "shared"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None


def get_settings(**overrides: object) -> SyncSpineSettings:
    """Load settings from the environment, applying explicit overrides."""
    return SyncSpineSettings(**overrides)  # type: ignore[arg-type]


__all__ = ["SyncSpineSettings", "get_settings"]
