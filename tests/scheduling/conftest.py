"""Pytest fixtures for scheduling tests."""

import pytest

from cadence.scheduling import (
    InMemoryKeyValueStore,
    InMemoryLockBackend,
    Scheduler,
    StaticTaskLoader,
    TaskLock,
)
from cadence.sqlite_conn import SqliteConnection

# 2023-11-14 00:00:00 UTC, a Tuesday
MIDNIGHT = 1_699_920_000
# Slot of Daily(hour=3) on that day
T0 = MIDNIGHT + 3 * 3600


@pytest.fixture
def clock(make_clock):
    """Clock one minute before the 03:00 slot."""
    return make_clock(T0 - 60)


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def lock_backend(clock):
    return InMemoryLockBackend(clock=clock)


@pytest.fixture
def task_lock(lock_backend):
    return TaskLock(lock_backend)


@pytest.fixture
def db_conn():
    """In-memory SQLite connection."""
    conn = SqliteConnection(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def make_scheduler(store, task_lock, clock):
    """Build a Scheduler over the shared in-memory store, lock and clock."""

    def _make(tasks, **kwargs):
        kwargs.setdefault("store", store)
        kwargs.setdefault("lock", task_lock)
        kwargs.setdefault("clock", clock)
        return Scheduler(task_loader=StaticTaskLoader(tasks), **kwargs)

    return _make
