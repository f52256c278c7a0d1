"""Timetable - persisted due-time and retry bookkeeping.

Manifesto:
    The timetable is the single source of truth for when each task runs
    next and how many retryable failures it has accumulated. It is loaded
    as a whole, mutated in memory and written back as a whole under one
    well-known key, so storage never holds a half-updated timetable. A
    corrupt blob is treated as empty: tasks get rescheduled and the next
    successful write heals the store.

Tags:
    cadence, scheduling, timetable, persistence, retry-count

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  TIMETABLE                                                                    │
│                                                                               │
│   store[key] = '{"app.Reports.purge": {"next_run": 1700003600,                │
│                                        "retry_count": 0}, ...}'               │
│                                                                               │
│   load()  ──► parse JSON ──► dict[identity, TimetableEntry]                   │
│                 │                                                             │
│                 └─ missing / corrupt ──► empty timetable (warning)            │
│                                                                               │
│   mutate in memory:                                                           │
│   ├── schedule_if_absent(task, now)                                           │
│   ├── set_scheduled_time(identity, ts)                                        │
│   ├── mark_consumed(identity)                                                 │
│   ├── increment_retry_count(identity) / clear_retry_count(identity)           │
│   ├── unschedule(identity) / remove_inactive(active)                          │
│                                                                               │
│   persist() ──► store.set(key, full JSON)   (one write, whole state)          │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cadence.errors import CadenceError, TimetableStoreError
from cadence.logging import get_logger
from cadence.protocols import KeyValueStore

if TYPE_CHECKING:
    from cadence.scheduling.task import Task

logger = get_logger(__name__)

DEFAULT_TIMETABLE_KEY = "cadence_timetable"


class CorruptTimetableError(ValueError):
    """Serialized timetable does not have the expected shape."""


@dataclass
class TimetableEntry:
    """Bookkeeping for one task identity.

    ``consumed`` marks an entry whose schedule has no further slot (a one-off
    time that already ran). An entry without ``next_run`` that is not
    consumed only carries a retry counter and is still awaiting its first
    slot.
    """

    next_run: int | None = None
    retry_count: int = 0
    consumed: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"next_run": self.next_run, "retry_count": self.retry_count}
        if self.consumed:
            data["consumed"] = True
        return data

    @classmethod
    def from_raw(cls, raw: Any) -> TimetableEntry:
        """Parse one serialized entry.

        Accepts the dict form and the bare-timestamp form written by older
        deployments (``{"identity": 1700000000}``).
        """
        if isinstance(raw, bool):
            raise CorruptTimetableError(f"Invalid entry: {raw!r}")
        if isinstance(raw, int):
            return cls(next_run=raw)
        if not isinstance(raw, dict):
            raise CorruptTimetableError(f"Invalid entry: {raw!r}")

        next_run = raw.get("next_run")
        retry_count = raw.get("retry_count", 0)
        if next_run is not None and (not isinstance(next_run, int) or isinstance(next_run, bool)):
            raise CorruptTimetableError(f"Invalid next_run: {next_run!r}")
        if not isinstance(retry_count, int) or isinstance(retry_count, bool) or retry_count < 0:
            raise CorruptTimetableError(f"Invalid retry_count: {retry_count!r}")
        consumed = raw.get("consumed", False)
        if not isinstance(consumed, bool):
            raise CorruptTimetableError(f"Invalid consumed flag: {consumed!r}")
        return cls(next_run=next_run, retry_count=retry_count, consumed=consumed)


class Timetable:
    """In-memory view of the persisted timetable.

    Example:
        >>> from cadence.scheduling.store import InMemoryKeyValueStore
        >>> timetable = Timetable(InMemoryKeyValueStore())
        >>> timetable.load()
        >>> timetable.increment_retry_count("app.Reports.purge")
        >>> timetable.retry_count("app.Reports.purge")
        1
        >>> timetable.persist()
    """

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_TIMETABLE_KEY) -> None:
        self.store = store
        self.key = key
        self._entries: dict[str, TimetableEntry] = {}

    # === Persistence ===

    def load(self) -> None:
        """Replace in-memory state with the persisted timetable.

        Raises:
            TimetableStoreError: The store itself could not be read
        """
        try:
            raw = self.store.get(self.key)
        except TimetableStoreError:
            raise
        except Exception as e:
            raise TimetableStoreError(f"Could not read timetable: {e}", cause=e) from e

        if raw is None:
            self._entries = {}
            return

        try:
            self._entries = self.from_json(raw)
        except (ValueError, TypeError) as e:
            logger.warning("timetable_corrupt", key=self.key, error=str(e))
            self._entries = {}
            return

        logger.debug("timetable_loaded", key=self.key, entries=len(self._entries))

    def persist(self) -> None:
        """Write the whole timetable back to the store.

        Raises:
            TimetableStoreError: The store rejected the write; in-memory
                state is left as it was
        """
        payload = self.to_json()
        try:
            self.store.set(self.key, payload)
        except TimetableStoreError:
            raise
        except Exception as e:
            raise TimetableStoreError(f"Could not write timetable: {e}", cause=e) from e

    def commit(self, identities: Iterable[str]) -> None:
        """Merge this snapshot's entries for ``identities`` into the store.

        Re-reads the persisted timetable, applies the local entries of the
        given identities (dropping those deleted locally) and writes the
        result back. Entries of other identities keep whatever another
        instance persisted meanwhile. Callers serialize commits with the
        timetable write guard.
        """
        pending = {identity: self._entries.get(identity) for identity in identities}
        self.load()
        for identity, entry in pending.items():
            if entry is None:
                self._entries.pop(identity, None)
            else:
                self._entries[identity] = entry
        self.persist()

    def to_json(self) -> str:
        return json.dumps(
            {identity: entry.to_dict() for identity, entry in self._entries.items()},
            sort_keys=True,
        )

    @staticmethod
    def from_json(raw: str) -> dict[str, TimetableEntry]:
        """Parse a serialized timetable.

        Raises:
            ValueError: Malformed JSON or unexpected structure
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise CorruptTimetableError(f"Timetable must be an object, got {type(data).__name__}")
        return {str(identity): TimetableEntry.from_raw(value) for identity, value in data.items()}

    # === Scheduling ===

    def is_scheduled(self, identity: str) -> bool:
        """True when the identity has an outstanding next-run time."""
        entry = self._entries.get(identity)
        return entry is not None and entry.next_run is not None

    def has_entry(self, identity: str) -> bool:
        return identity in self._entries

    def scheduled_time(self, identity: str) -> int | None:
        entry = self._entries.get(identity)
        return entry.next_run if entry else None

    def schedule_if_absent(self, task: Task, now: int) -> bool:
        """Give a first-seen task its first slot.

        An existing entry that only holds a retry counter counts as
        first-seen; its counter is kept. Scheduled and consumed entries are
        left alone.

        Returns:
            True if a slot was assigned, False otherwise
        """
        entry = self._entries.get(task.identity)
        if entry is not None and (entry.next_run is not None or entry.consumed):
            return False
        next_run = task.schedule.next_run(now)
        if entry is None:
            self._entries[task.identity] = TimetableEntry(next_run=next_run)
        else:
            entry.next_run = next_run
        logger.debug("task_first_scheduled", task=task.identity, next_run=next_run)
        return True

    def set_scheduled_time(self, identity: str, timestamp: int | None) -> None:
        entry = self._entry(identity)
        entry.next_run = timestamp
        if timestamp is not None:
            entry.consumed = False

    def mark_consumed(self, identity: str) -> None:
        """Record that the identity's schedule has no slot left."""
        entry = self._entry(identity)
        entry.next_run = None
        entry.consumed = True

    def is_consumed(self, identity: str) -> bool:
        entry = self._entries.get(identity)
        return entry is not None and entry.consumed

    def unschedule(self, identity: str) -> bool:
        """Drop an identity's entry. Returns False if it had none."""
        return self._entries.pop(identity, None) is not None

    def remove_inactive(self, active_identities: Iterable[str]) -> list[str]:
        """Drop entries of tasks that are no longer registered."""
        active = set(active_identities)
        removed = [identity for identity in self._entries if identity not in active]
        for identity in removed:
            del self._entries[identity]
        if removed:
            logger.info("timetable_inactive_removed", tasks=removed)
        return removed

    # === Retry Counters ===

    def retry_count(self, identity: str) -> int:
        entry = self._entries.get(identity)
        return entry.retry_count if entry else 0

    def increment_retry_count(self, identity: str) -> int:
        entry = self._entry(identity)
        entry.retry_count += 1
        return entry.retry_count

    def clear_retry_count(self, identity: str) -> None:
        entry = self._entries.get(identity)
        if entry is not None:
            entry.retry_count = 0

    # === Inspection ===

    def entries(self) -> dict[str, TimetableEntry]:
        """Copy of all entries, keyed by identity."""
        return {
            identity: TimetableEntry(entry.next_run, entry.retry_count, entry.consumed)
            for identity, entry in self._entries.items()
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    def _entry(self, identity: str) -> TimetableEntry:
        if not identity:
            raise CadenceError("Timetable identity must not be empty")
        return self._entries.setdefault(identity, TimetableEntry())


__all__ = [
    "DEFAULT_TIMETABLE_KEY",
    "CorruptTimetableError",
    "Timetable",
    "TimetableEntry",
]
