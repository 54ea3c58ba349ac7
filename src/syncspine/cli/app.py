"""
Root Typer application for the ``sync-spine`` CLI.

Collaborators that only the host application can provide (the remote sync
function, the credential provider, the subject directory) are passed as
``module:attribute`` import paths.
"""

from __future__ import annotations

import signal
import threading
from datetime import datetime

import typer

from syncspine.cli.utils import console, fail, make_scheduler, output_result
from syncspine.core.errors import (
    ConfigError,
    LeaderAcquisitionError,
    ScheduleValidationError,
    StoreUnavailableError,
)
from syncspine.core.logging import configure_logging
from syncspine.core.scheduling import ScheduleOptions, ScheduleUpdate
from syncspine.core.settings import SyncSpineSettings, get_settings

app = typer.Typer(
    name="sync-spine",
    help="sync-spine — leader-elected sync scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_settings: SyncSpineSettings | None = None


def _get_settings() -> SyncSpineSettings:
    global _settings
    if _settings is None:
        _settings = get_settings()
    return _settings


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from syncspine import __version__

        typer.echo(f"sync-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override SYNCSPINE_LOG_LEVEL."),
) -> None:
    """sync-spine CLI — manage sync schedules and run the scheduler."""
    settings = _get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.json_logs,
        service="sync-spine",
    )


# ── Schedule commands ────────────────────────────────────────────────────


@app.command("schedule")
def schedule(
    subject_id: str = typer.Argument(..., help="Subject to schedule"),
    interval: int | None = typer.Option(None, "--interval", "-i", help="Minutes between syncs"),
    priority: str | None = typer.Option(None, "--priority", "-p", help="high | normal | low"),
    run_at: datetime | None = typer.Option(None, "--run-at", help="First run (UTC if naive)"),
    enabled: bool | None = typer.Option(None, "--enabled/--disabled"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create or re-schedule a subject's sync."""
    try:
        scheduler = make_scheduler(_get_settings())
        result = scheduler.schedule_sync(
            subject_id,
            ScheduleOptions(
                interval_minutes=interval,
                priority=priority,
                next_run_at=run_at,
                enabled=enabled,
            ),
        )
    except (ScheduleValidationError, StoreUnavailableError) as e:
        raise fail(e.message) from e
    output_result(result, as_json=json_out, title=f"Schedule: {subject_id}")


@app.command("show")
def show(
    subject_id: str = typer.Argument(..., help="Subject id"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one schedule."""
    try:
        result = make_scheduler(_get_settings()).get_schedule(subject_id)
    except (ScheduleValidationError, StoreUnavailableError) as e:
        raise fail(e.message) from e
    if result is None:
        raise fail(f"No schedule for subject {subject_id}")
    output_result(result, as_json=json_out, title=f"Schedule: {subject_id}")


@app.command("list")
def list_schedules(json_out: bool = typer.Option(False, "--json")) -> None:
    """List all schedules."""
    try:
        schedules = make_scheduler(_get_settings()).list_schedules()
    except StoreUnavailableError as e:
        raise fail(e.message) from e
    output_result(schedules, as_json=json_out, title="Schedules")


def _set_enabled(subject_ids: list[str], enabled: bool, json_out: bool) -> None:
    scheduler = make_scheduler(_get_settings())
    try:
        updated = scheduler.bulk_update(subject_ids, ScheduleUpdate(enabled=enabled))
    except (ScheduleValidationError, StoreUnavailableError) as e:
        raise fail(e.message) from e
    if updated == 0:
        raise fail("No matching schedules")
    output_result({"updated": updated, "enabled": enabled}, as_json=json_out)


@app.command("enable")
def enable(
    subject_ids: list[str] = typer.Argument(..., help="Subjects to enable"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Re-enable schedules (e.g. after max retries)."""
    _set_enabled(subject_ids, True, json_out)


@app.command("disable")
def disable(
    subject_ids: list[str] = typer.Argument(..., help="Subjects to disable"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Disable schedules."""
    _set_enabled(subject_ids, False, json_out)


@app.command("stats")
def stats(json_out: bool = typer.Option(False, "--json")) -> None:
    """Show schedule statistics."""
    try:
        statistics = make_scheduler(_get_settings()).get_statistics()
    except StoreUnavailableError as e:
        raise fail(e.message) from e
    output_result(statistics, as_json=json_out, title="Statistics")


@app.command("health")
def health(json_out: bool = typer.Option(False, "--json")) -> None:
    """Show store reachability and leadership for this instance."""
    try:
        report = make_scheduler(_get_settings()).health()
    except StoreUnavailableError as e:
        raise fail(e.message) from e
    output_result(report, as_json=json_out, title="Health")


@app.command("cleanup")
def cleanup(
    directory: str = typer.Option(..., "--directory", help="SubjectDirectory as module:attribute"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete schedules whose subject no longer exists."""
    try:
        removed = make_scheduler(_get_settings(), directory=directory).cleanup()
    except ConfigError as e:
        raise fail(e.message) from e
    output_result({"removed": removed}, as_json=json_out, title="Cleanup")


@app.command("sync-now")
def sync_now(
    subject_id: str = typer.Argument(..., help="Subject to sync"),
    sync_function: str = typer.Option(..., "--sync-function", help="module:attribute"),
    credentials: str = typer.Option(..., "--credentials", help="module:attribute"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one sync for a subject outside the scheduler loop."""
    try:
        scheduler = make_scheduler(
            _get_settings(), sync_function=sync_function, credentials=credentials
        )
    except ConfigError as e:
        raise fail(e.message) from e
    status = scheduler.sync_now(subject_id)
    output_result({"subject_id": subject_id, "status": status.value}, as_json=json_out)


# ── Scheduler loop ───────────────────────────────────────────────────────


@app.command("run")
def run(
    sync_function: str = typer.Option(..., "--sync-function", help="module:attribute"),
    credentials: str = typer.Option(..., "--credentials", help="module:attribute"),
    interval: float | None = typer.Option(None, "--interval", help="Tick interval in seconds"),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Concurrent syncs per tick"),
) -> None:
    """Run the leader-elected scheduler loop until interrupted.

    Example::

        sync-spine run --sync-function myapp.sync:sync_account \\
                       --credentials myapp.auth:token_vault --interval 60
    """
    settings = _get_settings()
    if workers is not None:
        settings = settings.model_copy(update={"max_workers": workers})

    try:
        scheduler = make_scheduler(settings, sync_function=sync_function, credentials=credentials)
    except ConfigError as e:
        raise fail(e.message) from e

    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    try:
        scheduler.start(interval or settings.tick_interval_seconds)
    except LeaderAcquisitionError as e:
        raise fail(f"{e.message} (holder={e.context.metadata.get('holder')})") from e
    except StoreUnavailableError as e:
        raise fail(e.message) from e

    console.print(
        f"[bold green]Scheduler running[/bold green] "
        f"(instance={scheduler.lock_manager.instance_id}, "
        f"interval={scheduler.tick_interval_seconds}s, workers={scheduler.max_workers})"
    )
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped by user[/yellow]")
    finally:
        scheduler.stop()
