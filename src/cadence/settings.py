"""Settings for cadence scheduler deployments.

Configuration is environment-driven (``CADENCE_`` prefix, optional ``.env``)
and validated by pydantic at startup.

Examples:
    >>> from cadence.settings import CadenceSettings
    >>> settings = CadenceSettings(lock_scope="pass")
    >>> settings.retry_backoff_seconds
    3660

Tags:
    settings, configuration, pydantic, environment, cadence
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CadenceSettings(BaseSettings):
    """Scheduler settings.

    Fields
    ──────
    database              : SQLite file backing the timetable and locks
    timetable_key         : Key under which the serialized timetable lives
    lock_ttl_seconds      : Expiry of task locks, bounds starvation by hung tasks
    lock_scope            : "task" (lock per task) or "pass" (one lock per pass)
    retry_backoff_seconds : Delay before re-running a task after a retryable failure
    instance_id           : Lock owner id; generated when empty
    log_level             : Structlog log level
    json_logs             : Force JSON (True) or console (False) rendering
    """

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database: Path = Field(
        default_factory=lambda: Path.home() / ".cadence" / "cadence.db",
        description="SQLite database holding the timetable and locks",
    )
    timetable_key: str = "cadence_timetable"

    # ── Locking ──────────────────────────────────────────────────
    lock_ttl_seconds: int = Field(default=3600, gt=0)
    lock_scope: Literal["task", "pass"] = "task"
    instance_id: str | None = None

    # ── Retry ────────────────────────────────────────────────────
    retry_backoff_seconds: int = Field(default=3660, ge=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
