"""
CLI utility helpers: settings, task loading and output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from cadence.errors import ConfigError, TaskDiscoveryError
from cadence.protocols import TaskLoader
from cadence.scheduling.task import StaticTaskLoader, Task
from cadence.scheduling.timetable import TimetableEntry
from cadence.settings import CadenceSettings

console = Console()
err_console = Console(stderr=True)


# ── Settings / loading ───────────────────────────────────────────────────


def make_settings(database: Path | None = None) -> CadenceSettings:
    """Environment settings, with ``--database`` taking precedence."""
    if database is not None:
        return CadenceSettings(database=database)
    return CadenceSettings()


def resolve_task_loader(spec: str) -> TaskLoader:
    """Import ``module:attr`` and turn it into a TaskLoader.

    ``attr`` may be a TaskLoader, a zero-argument callable returning tasks
    or a sequence of tasks.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Task source must look like 'package.module:attr', got {spec!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise TaskDiscoveryError(f"Cannot import {module_name!r}: {e}", cause=e) from e
    try:
        target = getattr(module, attr)
    except AttributeError as e:
        raise TaskDiscoveryError(f"{module_name!r} has no attribute {attr!r}", cause=e) from e

    try:
        if isinstance(target, type) or (callable(target) and not isinstance(target, TaskLoader)):
            target = target()
    except Exception as e:
        raise TaskDiscoveryError(f"Calling {spec!r} failed: {e}", cause=e) from e

    if isinstance(target, TaskLoader):
        return target
    if isinstance(target, Sequence) and all(isinstance(task, Task) for task in target):
        return StaticTaskLoader(target)
    raise TaskDiscoveryError(f"{spec!r} does not provide tasks")


# ── Output helpers ───────────────────────────────────────────────────────


def format_ts(timestamp: int | None) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp, UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def output_entries(entries: dict[str, TimetableEntry], *, as_json: bool = False) -> None:
    """Render timetable entries as a table or JSON."""
    if as_json:
        payload = {identity: entry.to_dict() for identity, entry in entries.items()}
        console.print_json(json.dumps(payload))
        return

    if not entries:
        console.print("[dim]Timetable is empty.[/dim]")
        return

    table = Table(title="Timetable", show_lines=False, pad_edge=False)
    table.add_column("task", overflow="fold")
    table.add_column("next run")
    table.add_column("retries", justify="right")
    for identity, entry in sorted(entries.items()):
        table.add_row(identity, format_ts(entry.next_run), str(entry.retry_count))
    console.print(table)


def output_dict(data: dict[str, Any], *, title: str = "", as_json: bool = False) -> None:
    """Render a single dict as key-value pairs."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def fail(message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)
