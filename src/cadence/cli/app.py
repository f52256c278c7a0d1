"""
Root Typer application for the cadence CLI.

``cadence run`` is the trigger surface for deployments that drive the
scheduler from cron, a systemd timer or a container job; the other commands
inspect and repair the timetable.
"""

from __future__ import annotations

from pathlib import Path

import typer

from cadence.errors import CadenceError
from cadence.logging import configure_logging
from cadence.scheduling.lock_manager import SqlLockBackend, TaskLock
from cadence.scheduling.service import Scheduler
from cadence.scheduling.store import SqliteKeyValueStore
from cadence.scheduling.timetable import Timetable
from cadence.settings import CadenceSettings
from cadence.sqlite_conn import SqliteConnection

from .utils import fail, format_ts, make_settings, output_dict, output_entries, resolve_task_loader

app = typer.Typer(
    name="cadence",
    help="cadence: periodic task scheduler with a persisted timetable.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from cadence import __version__

        typer.echo(f"cadence {__version__}")
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
) -> None:
    """cadence CLI: run scheduler passes and manage the timetable."""


def _open_timetable(settings: CadenceSettings) -> tuple[Timetable, TaskLock]:
    conn = SqliteConnection(settings.database)
    lock = TaskLock(
        SqlLockBackend(conn, instance_id=settings.instance_id),
        ttl_seconds=settings.lock_ttl_seconds,
        scope=settings.lock_scope,
    )
    timetable = Timetable(SqliteKeyValueStore(conn), settings.timetable_key)
    timetable.load()
    return timetable, lock


@app.command("run")
def run_pass(
    tasks: str = typer.Option(..., "--tasks", "-t", help="Task source as 'package.module:attr'"),
    database: Path | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one scheduler pass."""
    settings = make_settings(database)
    try:
        configure_logging(level=settings.log_level, json_format=settings.json_logs)
        scheduler = Scheduler.from_settings(resolve_task_loader(tasks), settings)
        report = scheduler.run()
    except CadenceError as e:
        fail(e.message)
        return

    if json_out:
        output_dict(report.to_dict(), as_json=True)
    else:
        output_dict(
            {
                "pass": report.pass_id,
                "executed": ", ".join(report.executed) or "-",
                "skipped": ", ".join(report.skipped) or "-",
            },
            title="Scheduler pass",
        )
    if report.aborted:
        fail(f"Pass aborted: {report.abort_reason}")


@app.command("timetable")
def show_timetable(
    database: Path | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show every task's next run and retry count."""
    try:
        timetable, _ = _open_timetable(make_settings(database))
    except CadenceError as e:
        fail(e.message)
        return
    output_entries(timetable.entries(), as_json=json_out)


@app.command("unschedule")
def unschedule_task(
    identity: str = typer.Argument(..., help="Task identity"),
    database: Path | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Drop a task's entry; the next pass schedules it afresh."""
    try:
        timetable, lock = _open_timetable(make_settings(database))
        if not timetable.unschedule(identity):
            fail(f"No timetable entry for {identity}")
            return
        with lock.timetable_guard():
            timetable.commit([identity])
    except CadenceError as e:
        fail(e.message)
        return
    typer.echo(f"Unscheduled {identity}")


@app.command("clear-retries")
def clear_retries(
    identity: str = typer.Argument(..., help="Task identity"),
    database: Path | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Reset a task's retry counter to zero."""
    try:
        timetable, lock = _open_timetable(make_settings(database))
        if identity not in timetable:
            fail(f"No timetable entry for {identity}")
            return
        timetable.clear_retry_count(identity)
        with lock.timetable_guard():
            timetable.commit([identity])
    except CadenceError as e:
        fail(e.message)
        return
    typer.echo(f"Cleared retries for {identity} (next run {format_ts(timetable.scheduled_time(identity))})")
