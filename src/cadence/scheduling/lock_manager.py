"""Lock backends and the task lock used by the scheduler.

Manifesto:
    Multiple scheduler instances may share one timetable, and any of them
    may have loaded a stale snapshot. The lock, not the snapshot, decides
    who executes a task. Locks are advisory, non-blocking and carry a TTL
    so a crashed or hung holder cannot block a task forever.

Tags:
    cadence, scheduling, distributed-locks, TTL, concurrency

Doc-Types:
    api-reference, architecture-diagram


    Lock Flow::

        Instance A                         Instance B
        ──────────                         ──────────
        acquire("cadence:task:X") → True   acquire("cadence:task:X") → False
        run X                              skip X this pass
        release("cadence:task:X")

    Backends:
        InMemoryLockBackend  process-local, thread-safe (tests, single process)
        SqlLockBackend       shared table, INSERT-or-ignore, TTL expiry

    Backend failures raise LockBackendError; callers must treat that as
    "not protected" and never run the task.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Literal
from uuid import uuid4

from cadence.errors import LockBackendError
from cadence.logging import get_logger
from cadence.protocols import Connection, LockBackend

logger = get_logger(__name__)

Clock = Callable[[], float]

PASS_LOCK_NAME = "cadence:pass"
TASK_LOCK_PREFIX = "cadence:task:"
TIMETABLE_LOCK_NAME = "cadence:timetable"
TIMETABLE_LOCK_TTL = 30


class InMemoryLockBackend:
    """Process-local lock backend.

    Only suitable when every scheduler instance lives in the same process
    and shares this object.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._expiry: dict[str, float] = {}
        self._mutex = threading.Lock()

    def acquire(self, name: str, ttl_seconds: int) -> bool:
        with self._mutex:
            now = self._clock()
            expires_at = self._expiry.get(name)
            if expires_at is not None and expires_at > now:
                return False
            self._expiry[name] = now + ttl_seconds
            return True

    def release(self, name: str) -> None:
        with self._mutex:
            self._expiry.pop(name, None)

    def is_locked(self, name: str) -> bool:
        with self._mutex:
            expires_at = self._expiry.get(name)
            return expires_at is not None and expires_at > self._clock()


class SqlLockBackend:
    """Database-backed lock backend shared by all scheduler instances.

    Uses INSERT OR IGNORE on a primary key for atomic acquisition; expired
    rows are deleted in the same transaction so a crashed holder's lock
    frees up after its TTL.

    Example:
        >>> backend = SqlLockBackend(conn, instance_id="scheduler-1")
        >>> if backend.acquire("cadence:task:app.Reports.purge", ttl_seconds=600):
        ...     try:
        ...         pass  # run the task
        ...     finally:
        ...         backend.release("cadence:task:app.Reports.purge")
    """

    def __init__(
        self,
        conn: Connection,
        instance_id: str | None = None,
        clock: Clock = time.time,
        *,
        create_schema: bool = True,
    ) -> None:
        """Initialize the backend.

        Args:
            conn: Database connection
            instance_id: Lock owner id for this scheduler instance.
                        Auto-generated if not provided.
            clock: Time source, seconds since epoch
            create_schema: Create the locks table if missing
        """
        self.conn = conn
        self.instance_id = instance_id or str(uuid4())
        self._clock = clock
        if create_schema:
            self.ensure_schema()

    def ensure_schema(self) -> None:
        self._run(
            """
            CREATE TABLE IF NOT EXISTS cadence_locks (
                lock_name TEXT PRIMARY KEY,
                locked_by TEXT NOT NULL,
                locked_at REAL NOT NULL,
                expires_at REAL NOT NULL
            )
            """,
            (),
            "create lock table",
        )

    def acquire(self, name: str, ttl_seconds: int) -> bool:
        now = self._clock()
        try:
            self.conn.execute(
                "DELETE FROM cadence_locks WHERE lock_name = ? AND expires_at <= ?",
                (name, now),
            )
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO cadence_locks (lock_name, locked_by, locked_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (name, self.instance_id, now, now + ttl_seconds),
            )
            acquired = cursor.rowcount > 0
            self.conn.commit()
        except Exception as e:
            self._safe_rollback()
            raise LockBackendError(f"Lock acquire failed for {name!r}: {e}", cause=e) from e

        if acquired:
            logger.debug("lock_acquired", lock=name, holder=self.instance_id)
        else:
            logger.debug("lock_already_held", lock=name)
        return acquired

    def release(self, name: str) -> None:
        """Release the lock if this instance holds it."""
        self._run(
            "DELETE FROM cadence_locks WHERE lock_name = ? AND locked_by = ?",
            (name, self.instance_id),
            f"release {name!r}",
        )

    def lock_holder(self, name: str) -> str | None:
        """Instance id holding an unexpired lock, or None."""
        try:
            self.conn.execute(
                "SELECT locked_by FROM cadence_locks WHERE lock_name = ? AND expires_at > ?",
                (name, self._clock()),
            )
            row = self.conn.fetchone()
        except Exception as e:
            raise LockBackendError(f"Lock lookup failed for {name!r}: {e}", cause=e) from e
        return row[0] if row else None

    def cleanup_expired(self) -> int:
        """Remove expired locks left behind by crashed instances.

        Returns:
            Number of locks removed
        """
        cursor = self._run(
            "DELETE FROM cadence_locks WHERE expires_at <= ?",
            (self._clock(),),
            "cleanup expired locks",
        )
        count = cursor.rowcount
        if count > 0:
            logger.info("expired_locks_removed", count=count)
        return count

    def list_active(self) -> list[dict]:
        """List unexpired locks, oldest first."""
        try:
            self.conn.execute(
                """
                SELECT lock_name, locked_by, locked_at, expires_at
                FROM cadence_locks
                WHERE expires_at > ?
                ORDER BY locked_at
                """,
                (self._clock(),),
            )
            rows = self.conn.fetchall()
        except Exception as e:
            raise LockBackendError(f"Listing locks failed: {e}", cause=e) from e
        return [
            {"lock_name": row[0], "locked_by": row[1], "locked_at": row[2], "expires_at": row[3]}
            for row in rows
        ]

    def _run(self, sql: str, params: tuple, action: str):
        try:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
        except Exception as e:
            self._safe_rollback()
            raise LockBackendError(f"Lock backend failed to {action}: {e}", cause=e) from e
        return cursor

    def _safe_rollback(self) -> None:
        try:
            self.conn.rollback()
        except Exception as e:
            logger.warning("lock_rollback_failed", error=str(e))


class TaskLock:
    """Scheduler-facing lock keyed by task identity.

    With ``scope="task"`` every task gets its own lock, so several instances
    can work through different tasks in the same pass. With ``scope="pass"``
    one lock guards the whole pass (single-writer deployments).
    """

    def __init__(
        self,
        backend: LockBackend,
        ttl_seconds: int = 3600,
        scope: Literal["task", "pass"] = "task",
    ) -> None:
        if scope not in ("task", "pass"):
            raise ValueError(f"Unknown lock scope: {scope!r}")
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.scope = scope

    @staticmethod
    def name_for(identity: str) -> str:
        return f"{TASK_LOCK_PREFIX}{identity}"

    def acquire_for(self, identity: str) -> bool:
        return self._acquire(self.name_for(identity))

    def release_for(self, identity: str) -> None:
        self._release(self.name_for(identity))

    def acquire_pass(self) -> bool:
        return self._acquire(PASS_LOCK_NAME)

    def release_pass(self) -> None:
        self._release(PASS_LOCK_NAME)

    @contextmanager
    def held(self, identity: str) -> Iterator[bool]:
        """Hold the task's lock for the duration of the block.

        Yields whether the lock was acquired; it is released on exit only
        if it was.
        """
        acquired = self.acquire_for(identity)
        try:
            yield acquired
        finally:
            if acquired:
                self.release_for(identity)

    @contextmanager
    def timetable_guard(
        self,
        timeout_seconds: float = 5.0,
        poll_interval: float = 0.05,
    ) -> Iterator[None]:
        """Serialize timetable writes across instances.

        Polls the backend until the guard is won or ``timeout_seconds``
        elapse; a pass never waits longer than that.

        Raises:
            LockBackendError: Backend failed or the guard stayed busy
        """
        deadline = time.monotonic() + timeout_seconds
        while not self._acquire(TIMETABLE_LOCK_NAME, ttl_seconds=TIMETABLE_LOCK_TTL):
            if time.monotonic() >= deadline:
                raise LockBackendError(
                    f"Timed out after {timeout_seconds}s waiting for the timetable lock"
                )
            time.sleep(poll_interval)
        try:
            yield
        finally:
            self._release(TIMETABLE_LOCK_NAME)

    def _acquire(self, name: str, ttl_seconds: int | None = None) -> bool:
        try:
            return bool(self.backend.acquire(name, ttl_seconds or self.ttl_seconds))
        except LockBackendError:
            raise
        except Exception as e:
            raise LockBackendError(f"Lock acquire failed for {name!r}: {e}", cause=e) from e

    def _release(self, name: str) -> None:
        try:
            self.backend.release(name)
        except LockBackendError:
            raise
        except Exception as e:
            raise LockBackendError(f"Lock release failed for {name!r}: {e}", cause=e) from e


__all__ = [
    "PASS_LOCK_NAME",
    "TASK_LOCK_PREFIX",
    "TIMETABLE_LOCK_NAME",
    "InMemoryLockBackend",
    "SqlLockBackend",
    "TaskLock",
]
