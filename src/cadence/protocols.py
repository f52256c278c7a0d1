"""
Protocol definitions for the scheduler's external collaborators.

The scheduler never talks to a concrete database, lock server or task
registry. It depends on these structural protocols, and anything with the
right shape plugs in.

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────┐
        │ Connection     execute / fetchone / fetchall / commit ... │
        │ KeyValueStore  get(key) -> str | None, set(key, value)    │
        │ LockBackend    acquire(name, ttl) -> bool, release(name)  │
        │ TaskLoader     load_tasks() -> Sequence[Task]             │
        └───────────────────────────────────────────────────────────┘

Tags:
    protocol, typing, decoupling, cadence
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cadence.scheduling.task import Task


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous database connection.

    Satisfied by :class:`cadence.sqlite_conn.SqliteConnection` and by any
    DB-API adapter that exposes fetch methods at the connection level.
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """String key/value storage backing the serialized timetable."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None when the key is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...


@runtime_checkable
class LockBackend(Protocol):
    """
    Named, advisory mutual exclusion.

    ``acquire`` must not block for long: it returns False immediately when
    the name is held by someone else. ``release`` is idempotent.
    """

    def acquire(self, name: str, ttl_seconds: int) -> bool:
        """Try to take the lock; False if already held."""
        ...

    def release(self, name: str) -> None:
        """Release the lock if held; no-op otherwise."""
        ...


@runtime_checkable
class TaskLoader(Protocol):
    """Supplies the ordered set of tasks for one scheduler pass."""

    def load_tasks(self) -> Sequence[Task]:
        """Return the registered tasks in evaluation order."""
        ...


__all__ = [
    "Connection",
    "KeyValueStore",
    "LockBackend",
    "TaskLoader",
]
