"""Tests for Timetable."""

import json

import pytest

from cadence.errors import CadenceError, TimetableStoreError
from cadence.scheduling import (
    DEFAULT_TIMETABLE_KEY,
    Daily,
    InMemoryKeyValueStore,
    SpecificTime,
    SqliteKeyValueStore,
    Task,
    Timetable,
    TimetableEntry,
)

MIDNIGHT = 1_699_920_000

A = "app.Reports.purge"
B = "app.Reports.archive_7"


class BrokenStore:
    """Store whose every operation fails."""

    def get(self, key):
        raise OSError("disk gone")

    def set(self, key, value):
        raise OSError("disk gone")


def noop():
    pass


@pytest.fixture
def timetable(store):
    timetable = Timetable(store)
    timetable.load()
    return timetable


class TestRetryCounters:
    """Retry counters are strictly per identity."""

    def test_unknown_identity_defaults(self, timetable):
        assert timetable.retry_count(A) == 0
        assert timetable.is_scheduled(A) is False
        assert timetable.scheduled_time(A) is None

    def test_increment_isolated(self, timetable):
        timetable.set_scheduled_time(B, MIDNIGHT)
        timetable.increment_retry_count(B)

        assert timetable.increment_retry_count(A) == 1
        assert timetable.increment_retry_count(A) == 2
        assert timetable.retry_count(B) == 1
        assert timetable.scheduled_time(B) == MIDNIGHT

    def test_clear_isolated(self, timetable):
        for _ in range(3):
            timetable.increment_retry_count(A)
        timetable.increment_retry_count(B)

        timetable.clear_retry_count(A)

        assert timetable.retry_count(A) == 0
        assert timetable.retry_count(B) == 1

    def test_clear_unknown_identity_is_noop(self, timetable):
        timetable.clear_retry_count(A)
        assert A not in timetable

    def test_counter_only_entry_still_gets_first_slot(self, timetable):
        """A retry counter recorded before the first slot does not block scheduling."""
        timetable.increment_retry_count(A)
        assert timetable.is_scheduled(A) is False

        assert timetable.schedule_if_absent(Task(A, noop, Daily(hour=3)), MIDNIGHT) is True
        assert timetable.scheduled_time(A) == MIDNIGHT + 3 * 3600
        assert timetable.retry_count(A) == 1

    def test_empty_identity_rejected(self, timetable):
        with pytest.raises(CadenceError):
            timetable.increment_retry_count("")


class TestScheduling:
    """Test scheduling operations."""

    def test_schedule_if_absent_uses_now(self, timetable):
        task = Task(A, noop, Daily(hour=3))

        assert timetable.schedule_if_absent(task, MIDNIGHT) is True
        assert timetable.scheduled_time(A) == MIDNIGHT + 3 * 3600
        assert timetable.is_scheduled(A)

    def test_schedule_if_absent_idempotent(self, timetable):
        timetable.set_scheduled_time(A, 42)

        assert timetable.schedule_if_absent(Task(A, noop, Daily()), MIDNIGHT) is False
        assert timetable.scheduled_time(A) == 42

    def test_schedule_if_absent_keeps_consumed_entry(self, timetable):
        """A one-off task whose slot already ran is not rescheduled."""
        timetable.mark_consumed(A)
        assert timetable.schedule_if_absent(Task(A, noop, SpecificTime(MIDNIGHT)), 0) is False
        assert timetable.is_scheduled(A) is False
        assert timetable.is_consumed(A)

    def test_consumed_flag_survives_persist(self, store, timetable):
        timetable.increment_retry_count(A)
        timetable.mark_consumed(A)
        timetable.persist()

        assert json.loads(store.get(DEFAULT_TIMETABLE_KEY)) == {
            A: {"next_run": None, "retry_count": 1, "consumed": True}
        }
        reloaded = Timetable(store)
        reloaded.load()
        assert reloaded.is_consumed(A)
        assert reloaded.entries()[A] == TimetableEntry(None, 1, True)

    def test_set_scheduled_time_clears_consumed(self, timetable):
        timetable.mark_consumed(A)
        timetable.set_scheduled_time(A, MIDNIGHT)
        assert timetable.is_consumed(A) is False
        assert timetable.is_scheduled(A)

    def test_invalid_consumed_flag_rejected(self):
        with pytest.raises(ValueError):
            TimetableEntry.from_raw({"next_run": None, "consumed": "yes"})

    def test_set_scheduled_time_keeps_retry_count(self, timetable):
        timetable.increment_retry_count(A)
        timetable.set_scheduled_time(A, MIDNIGHT)
        assert timetable.retry_count(A) == 1

    def test_unschedule(self, timetable):
        timetable.set_scheduled_time(A, MIDNIGHT)
        assert timetable.unschedule(A) is True
        assert timetable.unschedule(A) is False
        assert A not in timetable

    def test_remove_inactive(self, timetable):
        timetable.set_scheduled_time(A, 1)
        timetable.set_scheduled_time(B, 2)

        removed = timetable.remove_inactive([A])

        assert removed == [B]
        assert list(timetable.entries()) == [A]

    def test_entries_are_copies(self, timetable):
        timetable.set_scheduled_time(A, 1)
        timetable.entries()[A].next_run = 99
        assert timetable.scheduled_time(A) == 1


class TestPersistence:
    """Test load/persist/commit."""

    def test_round_trip(self, store):
        timetable = Timetable(store)
        timetable.set_scheduled_time(A, MIDNIGHT)
        timetable.increment_retry_count(A)
        timetable.increment_retry_count(B)
        timetable.persist()

        reloaded = Timetable(store)
        reloaded.load()

        assert reloaded.entries() == timetable.entries()
        assert reloaded.entries()[B] == TimetableEntry(next_run=None, retry_count=1)

    def test_round_trip_sqlite(self, db_conn):
        timetable = Timetable(SqliteKeyValueStore(db_conn), "custom_key")
        timetable.set_scheduled_time(A, MIDNIGHT)
        timetable.persist()

        reloaded = Timetable(SqliteKeyValueStore(db_conn), "custom_key")
        reloaded.load()
        assert reloaded.scheduled_time(A) == MIDNIGHT

    def test_single_key_json(self, store):
        timetable = Timetable(store)
        timetable.set_scheduled_time(A, MIDNIGHT)
        timetable.persist()

        assert json.loads(store.get(DEFAULT_TIMETABLE_KEY)) == {
            A: {"next_run": MIDNIGHT, "retry_count": 0}
        }

    def test_missing_is_empty(self, timetable):
        assert len(timetable) == 0

    @pytest.mark.parametrize(
        "raw",
        ["not json", "[1, 2]", '{"a": "soon"}', '{"a": {"retry_count": -1}}', '{"a": true}'],
    )
    def test_corrupt_is_empty(self, raw):
        timetable = Timetable(InMemoryKeyValueStore({DEFAULT_TIMETABLE_KEY: raw}))
        timetable.load()
        assert len(timetable) == 0

    def test_corrupt_heals_on_write(self):
        store = InMemoryKeyValueStore({DEFAULT_TIMETABLE_KEY: "{{{"})
        timetable = Timetable(store)
        timetable.load()
        timetable.set_scheduled_time(A, MIDNIGHT)
        timetable.persist()

        reloaded = Timetable(store)
        reloaded.load()
        assert reloaded.scheduled_time(A) == MIDNIGHT

    def test_legacy_bare_timestamps(self):
        store = InMemoryKeyValueStore({DEFAULT_TIMETABLE_KEY: json.dumps({A: MIDNIGHT})})
        timetable = Timetable(store)
        timetable.load()

        assert timetable.scheduled_time(A) == MIDNIGHT
        assert timetable.retry_count(A) == 0

    def test_load_failure_raises(self):
        with pytest.raises(TimetableStoreError, match="read"):
            Timetable(BrokenStore()).load()

    def test_persist_failure_raises(self):
        timetable = Timetable(BrokenStore())
        timetable.set_scheduled_time(A, 1)
        with pytest.raises(TimetableStoreError, match="write"):
            timetable.persist()
        assert timetable.scheduled_time(A) == 1

    def test_commit_merges_other_writers(self, store):
        first = Timetable(store)
        second = Timetable(store)
        first.load()
        second.load()

        first.set_scheduled_time(A, 100)
        second.set_scheduled_time(B, 200)
        first.commit([A])
        second.commit([B])

        fresh = Timetable(store)
        fresh.load()
        assert fresh.scheduled_time(A) == 100
        assert fresh.scheduled_time(B) == 200

    def test_commit_applies_deletion(self, store):
        timetable = Timetable(store)
        timetable.set_scheduled_time(A, 100)
        timetable.set_scheduled_time(B, 200)
        timetable.persist()

        timetable.unschedule(A)
        timetable.commit([A])

        fresh = Timetable(store)
        fresh.load()
        assert A not in fresh
        assert fresh.scheduled_time(B) == 200

    def test_from_json_rejects_non_object(self):
        with pytest.raises(ValueError):
            Timetable.from_json("[]")
