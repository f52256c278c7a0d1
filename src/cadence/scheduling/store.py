"""Key-value stores backing the serialized timetable.

The timetable lives as one string value under one well-known key, so the
store contract is deliberately tiny: ``get(key)`` and ``set(key, value)``.

Tags:
    cadence, scheduling, storage, key-value, sqlite

Doc-Types:
    api-reference


    Implementations::

        InMemoryKeyValueStore   dict-backed, per process (tests, single node)
        SqliteKeyValueStore     cadence_options table via the Connection protocol
"""

from __future__ import annotations

import threading

from cadence.errors import TimetableStoreError
from cadence.logging import get_logger
from cadence.protocols import Connection

logger = get_logger(__name__)


class InMemoryKeyValueStore:
    """Process-local key-value store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


class SqliteKeyValueStore:
    """Key-value store on a ``cadence_options`` table.

    Each ``set`` is a single ``INSERT OR REPLACE`` committed on its own, so a
    reader sees either the previous value or the new one, never a mix.

    Example:
        >>> from cadence.sqlite_conn import SqliteConnection
        >>> store = SqliteKeyValueStore(SqliteConnection(":memory:"))
        >>> store.set("cadence_timetable", "{}")
        >>> store.get("cadence_timetable")
        '{}'
    """

    def __init__(self, conn: Connection, *, create_schema: bool = True) -> None:
        self.conn = conn
        if create_schema:
            self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the options table if missing."""
        try:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cadence_options (
                    option_name TEXT PRIMARY KEY,
                    option_value TEXT NOT NULL
                )
                """
            )
            self.conn.commit()
        except Exception as e:
            raise TimetableStoreError(f"Could not create options table: {e}", cause=e) from e

    def get(self, key: str) -> str | None:
        try:
            self.conn.execute(
                "SELECT option_value FROM cadence_options WHERE option_name = ?",
                (key,),
            )
            row = self.conn.fetchone()
        except Exception as e:
            raise TimetableStoreError(f"Could not read option {key!r}: {e}", cause=e) from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO cadence_options (option_name, option_value) VALUES (?, ?)",
                (key, value),
            )
            self.conn.commit()
        except Exception as e:
            self._safe_rollback()
            raise TimetableStoreError(f"Could not write option {key!r}: {e}", cause=e) from e
        logger.debug("option_written", key=key, size=len(value))

    def _safe_rollback(self) -> None:
        try:
            self.conn.rollback()
        except Exception as e:
            logger.warning("option_rollback_failed", error=str(e))


__all__ = ["InMemoryKeyValueStore", "SqliteKeyValueStore"]
