"""SQLite backing for the timetable store and lock backend.

Several scheduler processes on one host can share a database file: the
file is opened in WAL mode so readers never block the single writer, and
``timeout`` bounds how long a writer waits for a competing process.

Usage::

    from cadence.sqlite_conn import SqliteConnection

    with SqliteConnection("/var/lib/app/cadence.db") as conn:
        conn.execute("SELECT option_value FROM cadence_options")
        rows = conn.fetchall()
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

MEMORY = ":memory:"


class SqliteConnection:
    """``Connection`` protocol over one ``sqlite3`` connection and cursor.

    ``execute`` returns the cursor so callers can read ``rowcount``; the
    fetch methods read from that same cursor.
    """

    def __init__(
        self,
        path: str | Path = MEMORY,
        *,
        timeout: float = 5.0,
        wal: bool = True,
    ) -> None:
        self.path = str(path)
        if self.path != MEMORY:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(self.path, timeout=timeout, check_same_thread=False)
        if wal and self.path != MEMORY:
            self._db.execute("PRAGMA journal_mode=WAL")
        self._cursor = self._db.cursor()

    def execute(self, sql: str, params: tuple = ()) -> Any:
        return self._cursor.execute(sql, params)

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._db.commit()

    def rollback(self) -> None:
        self._db.rollback()

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> SqliteConnection:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"
