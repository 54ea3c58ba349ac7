"""
CLI utility helpers — output formatting and scheduler wiring.
"""

from __future__ import annotations

import importlib
import json
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from syncspine.core.errors import ConfigError
from syncspine.core.kv import KeyValueStore, RedisKeyValueStore
from syncspine.core.scheduling import SchedulerService, create_scheduler
from syncspine.core.settings import SyncSpineSettings, get_settings

console = Console()
err_console = Console(stderr=True)


# ── Wiring helpers ───────────────────────────────────────────────────────


def get_store(settings: SyncSpineSettings) -> KeyValueStore:
    """Open the shared key-value store named by the settings."""
    return RedisKeyValueStore(settings.redis_url)


def load_object(path: str) -> Any:
    """Import ``package.module:attribute``.

    Raises:
        ConfigError: If the path is malformed or cannot be imported
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Expected 'module:attribute', got {path!r}")
    try:
        target: Any = importlib.import_module(module_name)
        for part in attr.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError) as exc:
        raise ConfigError(f"Cannot load {path!r}: {exc}", cause=exc) from exc
    return target


class _Unconfigured:
    """Placeholder collaborator for commands that never execute a sync."""

    def __init__(self, option: str) -> None:
        self._option = option

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        raise ConfigError(f"{self._option} is required for this command")

    def get_token(self, subject_id: str) -> str | None:
        raise ConfigError(f"{self._option} is required for this command")

    def exists(self, subject_id: str) -> bool:
        raise ConfigError(f"{self._option} is required for this command")


def make_scheduler(
    settings: SyncSpineSettings | None = None,
    *,
    sync_function: str | None = None,
    credentials: str | None = None,
    directory: str | None = None,
) -> SchedulerService:
    """Build a SchedulerService for a CLI command.

    Collaborators are given as ``module:attribute`` import paths.
    """
    settings = settings or get_settings()
    return create_scheduler(
        get_store(settings),
        credentials=load_object(credentials) if credentials else _Unconfigured("--credentials"),
        sync_function=(
            load_object(sync_function) if sync_function else _Unconfigured("--sync-function")
        ),
        subject_directory=load_object(directory) if directory else None,
        settings=settings,
    )


def fail(message: str, code: int = 1) -> typer.Exit:
    """Print an error and return the Exit to raise."""
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    return typer.Exit(code=code)


# ── Output helpers ───────────────────────────────────────────────────────


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / object with to_dict / dict to a plain dict."""
    if hasattr(obj, "to_dict"):
        return _plain(obj.to_dict())
    if hasattr(obj, "__dataclass_fields__"):
        return _plain(asdict(obj))
    if isinstance(obj, dict):
        return _plain(obj)
    return {"value": str(obj)}


def output_result(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render one object or a list of objects to the terminal."""
    if as_json:
        payload = [to_dict(d) for d in data] if isinstance(data, list) else to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
