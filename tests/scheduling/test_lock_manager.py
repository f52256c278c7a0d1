"""Tests for lock backends and TaskLock."""

import threading

import pytest

from cadence.errors import LockBackendError
from cadence.protocols import LockBackend
from cadence.scheduling import (
    PASS_LOCK_NAME,
    TIMETABLE_LOCK_NAME,
    InMemoryLockBackend,
    SqlLockBackend,
    TaskLock,
)
from cadence.sqlite_conn import SqliteConnection


class ExplodingBackend:
    """Lock backend that is unreachable."""

    def acquire(self, name, ttl_seconds):
        raise ConnectionError("lock server down")

    def release(self, name):
        raise ConnectionError("lock server down")


@pytest.fixture
def shared_db(tmp_path):
    """Two connections to one database file, as two processes would have."""
    path = tmp_path / "locks.db"
    first = SqliteConnection(path)
    second = SqliteConnection(path)
    yield first, second
    first.close()
    second.close()


class TestInMemoryLockBackend:
    """Test InMemoryLockBackend."""

    def test_acquire_once(self, lock_backend):
        assert lock_backend.acquire("job", 60) is True
        assert lock_backend.acquire("job", 60) is False
        assert lock_backend.is_locked("job")

    def test_release_allows_reacquire(self, lock_backend):
        lock_backend.acquire("job", 60)
        lock_backend.release("job")
        assert lock_backend.acquire("job", 60) is True

    def test_release_idempotent(self, lock_backend):
        lock_backend.release("never-acquired")
        lock_backend.release("never-acquired")
        assert lock_backend.is_locked("never-acquired") is False

    def test_ttl_expiry(self, lock_backend, clock):
        lock_backend.acquire("job", 60)
        clock.advance(61)
        assert lock_backend.is_locked("job") is False
        assert lock_backend.acquire("job", 60) is True

    def test_concurrent_acquire_single_winner(self):
        backend = InMemoryLockBackend()
        barrier = threading.Barrier(8)
        results = []

        def contend():
            barrier.wait()
            results.append(backend.acquire("job", 60))

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert results.count(False) == 7

    def test_satisfies_protocol(self, lock_backend):
        assert isinstance(lock_backend, LockBackend)


class TestSqlLockBackend:
    """Test SqlLockBackend against a shared database file."""

    def test_one_instance_wins(self, shared_db, clock):
        conn_a, conn_b = shared_db
        backend_a = SqlLockBackend(conn_a, instance_id="a", clock=clock)
        backend_b = SqlLockBackend(conn_b, instance_id="b", clock=clock)

        assert backend_a.acquire("cadence:task:job", 60) is True
        assert backend_b.acquire("cadence:task:job", 60) is False
        assert backend_b.lock_holder("cadence:task:job") == "a"

    def test_same_instance_does_not_reenter(self, db_conn, clock):
        backend = SqlLockBackend(db_conn, instance_id="a", clock=clock)
        assert backend.acquire("job", 60) is True
        assert backend.acquire("job", 60) is False

    def test_release_only_own_lock(self, shared_db, clock):
        conn_a, conn_b = shared_db
        backend_a = SqlLockBackend(conn_a, instance_id="a", clock=clock)
        backend_b = SqlLockBackend(conn_b, instance_id="b", clock=clock)

        backend_a.acquire("job", 60)
        backend_b.release("job")
        assert backend_a.lock_holder("job") == "a"

        backend_a.release("job")
        assert backend_b.acquire("job", 60) is True

    def test_release_idempotent(self, db_conn, clock):
        backend = SqlLockBackend(db_conn, clock=clock)
        backend.release("never-acquired")
        backend.release("never-acquired")
        assert backend.lock_holder("never-acquired") is None

    def test_expired_lock_taken_over(self, shared_db, clock):
        conn_a, conn_b = shared_db
        backend_a = SqlLockBackend(conn_a, instance_id="a", clock=clock)
        backend_b = SqlLockBackend(conn_b, instance_id="b", clock=clock)

        backend_a.acquire("job", 60)
        clock.advance(60)

        assert backend_a.lock_holder("job") is None
        assert backend_b.acquire("job", 60) is True
        assert backend_b.lock_holder("job") == "b"

    def test_cleanup_and_list(self, db_conn, clock):
        backend = SqlLockBackend(db_conn, instance_id="a", clock=clock)
        backend.acquire("short", 10)
        backend.acquire("long", 600)
        clock.advance(30)

        assert [lock["lock_name"] for lock in backend.list_active()] == ["long"]
        assert backend.cleanup_expired() == 1
        assert backend.cleanup_expired() == 0

    def test_generated_instance_id(self, db_conn):
        assert SqlLockBackend(db_conn).instance_id != SqlLockBackend(db_conn).instance_id

    def test_backend_failure(self, clock):
        conn = SqliteConnection(":memory:")
        backend = SqlLockBackend(conn, clock=clock)
        conn.close()

        with pytest.raises(LockBackendError):
            backend.acquire("job", 60)
        with pytest.raises(LockBackendError):
            backend.release("job")


class TestTaskLock:
    """Test TaskLock naming, scopes and guards."""

    def test_name_for(self):
        assert TaskLock.name_for("app.Reports.purge") == "cadence:task:app.Reports.purge"

    def test_acquire_and_release_for(self, task_lock, lock_backend):
        assert task_lock.acquire_for("app.job") is True
        assert task_lock.acquire_for("app.job") is False
        task_lock.release_for("app.job")
        assert lock_backend.is_locked(TaskLock.name_for("app.job")) is False

    def test_ttl_passed_to_backend(self, lock_backend, clock):
        lock = TaskLock(lock_backend, ttl_seconds=10)
        lock.acquire_for("app.job")
        clock.advance(11)
        assert lock.acquire_for("app.job") is True

    def test_pass_lock(self, task_lock, lock_backend):
        assert task_lock.acquire_pass() is True
        assert lock_backend.is_locked(PASS_LOCK_NAME)
        task_lock.release_pass()
        assert lock_backend.is_locked(PASS_LOCK_NAME) is False

    def test_held_releases_on_error(self, task_lock, lock_backend):
        with pytest.raises(RuntimeError):
            with task_lock.held("app.job") as acquired:
                assert acquired is True
                raise RuntimeError("task blew up")
        assert lock_backend.is_locked(TaskLock.name_for("app.job")) is False

    def test_held_does_not_release_foreign_lock(self, task_lock, lock_backend):
        task_lock.acquire_for("app.job")
        with task_lock.held("app.job") as acquired:
            assert acquired is False
        assert lock_backend.is_locked(TaskLock.name_for("app.job"))

    def test_invalid_scope(self, lock_backend):
        with pytest.raises(ValueError):
            TaskLock(lock_backend, scope="node")

    def test_timetable_guard(self, task_lock, lock_backend):
        with task_lock.timetable_guard():
            assert lock_backend.is_locked(TIMETABLE_LOCK_NAME)
        assert lock_backend.is_locked(TIMETABLE_LOCK_NAME) is False

    def test_timetable_guard_times_out(self, task_lock, lock_backend):
        lock_backend.acquire(TIMETABLE_LOCK_NAME, 30)
        with pytest.raises(LockBackendError, match="Timed out"):
            with task_lock.timetable_guard(timeout_seconds=0.05, poll_interval=0.01):
                pass

    def test_backend_errors_wrapped(self):
        lock = TaskLock(ExplodingBackend())
        with pytest.raises(LockBackendError) as exc_info:
            lock.acquire_for("app.job")
        assert isinstance(exc_info.value.cause, ConnectionError)
        with pytest.raises(LockBackendError):
            lock.release_pass()
