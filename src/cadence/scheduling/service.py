"""Scheduler - main orchestrator.

Manifesto:
    One ``run()`` call is one scheduling pass: load the tasks, load the
    timetable, find what is due, and for each due task win its lock, run
    it, classify the outcome and reschedule it. The lock decides who runs
    a task; the timetable only decides when. A failing task never stops
    the rest of the pass, while a lock or storage failure stops the pass
    before anything runs unprotected.

Tags:
    cadence, scheduling, orchestrator, state-machine, retry

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER PASS                                                               │
│                                                                               │
│   run()                                                                       │
│    1. task_loader.load_tasks()            (TaskDiscoveryError → raise)        │
│    2. timetable.load()                    (TimetableStoreError → raise)       │
│    3. schedule_if_absent() for new tasks, drop inactive entries, commit       │
│    4. for each task, in loader order:                                         │
│                                                                               │
│       IDLE ──due?──► DUE ──lock?──► LOCKED ──► RUNNING                        │
│                       │                          │                            │
│                       └─ not won ─► SKIPPED      ├─► SUCCEEDED                │
│                                                  ├─► RETRYABLE_FAILED         │
│                                                  └─► FATAL_FAILED             │
│                                                          │                    │
│                                          commit entry ───┴─► RESCHEDULED      │
│                                                                               │
│       Lock/storage failure anywhere ─► ABORTED, rest of pass skipped          │
│                                                                               │
│   Rescheduling:                                                               │
│   ├── SUCCEEDED         retry_count = 0, next = schedule.next_run(slot)       │
│   ├── RETRYABLE_FAILED  retry_count += 1, next = slot + retry_backoff         │
│   └── FATAL_FAILED      retry_count kept, next = schedule.next_run(slot)      │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from cadence.errors import (
    InfrastructureError,
    TaskDiscoveryError,
    TaskLockedError,
    TaskNotFoundError,
)
from cadence.logging import LogContext, get_logger
from cadence.protocols import KeyValueStore, TaskLoader
from cadence.result import FatalFailure, RetryableFailure, Succeeded, TaskOutcome, capture_outcome
from cadence.scheduling.lock_manager import TaskLock
from cadence.scheduling.task import Task, task_identity
from cadence.scheduling.timetable import DEFAULT_TIMETABLE_KEY, Timetable

if TYPE_CHECKING:
    from cadence.settings import CadenceSettings

logger = get_logger(__name__)

DEFAULT_RETRY_BACKOFF_SECONDS = 3660


class TaskState(str, Enum):
    """States a task moves through within one pass."""

    IDLE = "IDLE"
    DUE = "DUE"
    LOCKED = "LOCKED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    RETRYABLE_FAILED = "RETRYABLE_FAILED"
    FATAL_FAILED = "FATAL_FAILED"
    RESCHEDULED = "RESCHEDULED"
    SKIPPED = "SKIPPED"
    ABORTED = "ABORTED"


@dataclass
class TaskRunRecord:
    """What happened to one task during a pass."""

    identity: str
    history: list[TaskState] = field(default_factory=lambda: [TaskState.IDLE])
    scheduled_time: int | None = None
    next_run: int | None = None
    outcome: TaskOutcome | None = None
    error: str | None = None

    @property
    def state(self) -> TaskState:
        return self.history[-1]

    def move(self, state: TaskState) -> None:
        self.history.append(state)

    @property
    def executed(self) -> bool:
        return TaskState.RUNNING in self.history


@dataclass
class PassReport:
    """Result of one ``Scheduler.run()`` pass."""

    pass_id: str
    started_at: int
    tasks: dict[str, TaskRunRecord] = field(default_factory=dict)
    aborted: bool = False
    abort_reason: str | None = None

    @property
    def executed(self) -> list[str]:
        return [identity for identity, record in self.tasks.items() if record.executed]

    @property
    def skipped(self) -> list[str]:
        return [
            identity for identity, record in self.tasks.items() if record.state == TaskState.SKIPPED
        ]

    def abort(self, reason: str) -> None:
        self.aborted = True
        self.abort_reason = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass_id": self.pass_id,
            "started_at": self.started_at,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "tasks": {
                identity: {
                    "state": record.state.value,
                    "scheduled_time": record.scheduled_time,
                    "next_run": record.next_run,
                    "outcome": record.outcome.to_dict() if record.outcome else None,
                    "error": record.error,
                }
                for identity, record in self.tasks.items()
            },
        }


@dataclass
class SchedulerStats:
    """Statistics for a scheduler instance."""

    passes: int = 0
    tasks_executed: int = 0
    tasks_succeeded: int = 0
    tasks_retried: int = 0
    tasks_failed: int = 0
    tasks_skipped: int = 0
    last_pass_at: int | None = None
    last_error: str | None = None


class Scheduler:
    """Runs due tasks under locks and keeps the timetable up to date.

    Example:
        >>> from cadence.scheduling import (
        ...     Daily, InMemoryKeyValueStore, InMemoryLockBackend,
        ...     Scheduler, StaticTaskLoader, Task, TaskLock,
        ... )
        >>> loader = StaticTaskLoader([Task("reports.purge", purge, Daily(hour=3))])
        >>> scheduler = Scheduler(
        ...     task_loader=loader,
        ...     store=InMemoryKeyValueStore(),
        ...     lock=TaskLock(InMemoryLockBackend()),
        ... )
        >>> report = scheduler.run()
    """

    def __init__(
        self,
        task_loader: TaskLoader,
        store: KeyValueStore,
        lock: TaskLock,
        *,
        timetable_key: str = DEFAULT_TIMETABLE_KEY,
        retry_backoff_seconds: int = DEFAULT_RETRY_BACKOFF_SECONDS,
        remove_inactive_tasks: bool = True,
        clock: Callable[[], float] = time.time,
        log: Any = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            task_loader: Supplies the tasks for each pass
            store: Key-value store holding the serialized timetable
            lock: Task lock over a lock backend
            timetable_key: Store key of the timetable
            retry_backoff_seconds: Delay before re-running after a retryable failure
            remove_inactive_tasks: Drop timetable entries of unregistered tasks
            clock: Time source, seconds since epoch
            log: Logger to use instead of the module logger
        """
        self.task_loader = task_loader
        self.store = store
        self.lock = lock
        self.timetable_key = timetable_key
        self.retry_backoff_seconds = retry_backoff_seconds
        self.remove_inactive_tasks = remove_inactive_tasks
        self._clock = clock
        self._log = log or logger

        self._stats = SchedulerStats()
        self._running = False
        self._current_task: str | None = None

    @classmethod
    def from_settings(
        cls,
        task_loader: TaskLoader,
        settings: CadenceSettings | None = None,
        **kwargs: Any,
    ) -> Scheduler:
        """Build a scheduler on the SQLite store and lock backend from settings."""
        from cadence.scheduling.lock_manager import SqlLockBackend
        from cadence.scheduling.store import SqliteKeyValueStore
        from cadence.settings import CadenceSettings
        from cadence.sqlite_conn import SqliteConnection

        settings = settings or CadenceSettings()
        conn = SqliteConnection(settings.database)
        lock = TaskLock(
            SqlLockBackend(conn, instance_id=settings.instance_id),
            ttl_seconds=settings.lock_ttl_seconds,
            scope=settings.lock_scope,
        )
        return cls(
            task_loader=task_loader,
            store=SqliteKeyValueStore(conn),
            lock=lock,
            timetable_key=settings.timetable_key,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            **kwargs,
        )

    # === State ===

    @property
    def is_running(self) -> bool:
        """True while a pass is in progress."""
        return self._running

    @property
    def current_task(self) -> str | None:
        """Identity of the task being executed, if any."""
        return self._current_task

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    def _now(self) -> int:
        return int(self._clock())

    # === Pass ===

    def run(self) -> PassReport:
        """Run one scheduling pass.

        Raises:
            TaskDiscoveryError: The task loader failed
            TimetableStoreError: The timetable could not be read
        """
        report = PassReport(pass_id=uuid4().hex[:12], started_at=self._now())
        self._stats.passes += 1
        self._stats.last_pass_at = report.started_at

        with LogContext(pass_id=report.pass_id):
            tasks = self._load_tasks()
            timetable = Timetable(self.store, self.timetable_key)
            timetable.load()

            self._running = True
            try:
                if self.lock.scope == "pass":
                    self._run_pass_locked(tasks, timetable, report)
                else:
                    self._run_tasks(tasks, timetable, report)
            finally:
                self._running = False

            if report.aborted:
                self._stats.last_error = report.abort_reason
                self._log.error("pass_aborted", reason=report.abort_reason)
            else:
                self._log.debug(
                    "pass_completed",
                    executed=len(report.executed),
                    skipped=len(report.skipped),
                )
        return report

    def _load_tasks(self) -> list[Task]:
        try:
            loaded = list(self.task_loader.load_tasks())
        except Exception as e:
            raise TaskDiscoveryError(f"Task loader failed: {e}", cause=e) from e

        tasks: list[Task] = []
        seen: set[str] = set()
        for task in loaded:
            if task.identity in seen:
                self._log.warning("duplicate_task_ignored", task=task.identity)
                continue
            seen.add(task.identity)
            tasks.append(task)
        return tasks

    def _run_pass_locked(self, tasks: list[Task], timetable: Timetable, report: PassReport) -> None:
        try:
            acquired = self.lock.acquire_pass()
        except InfrastructureError as e:
            report.abort(str(e))
            return
        if not acquired:
            self._log.info("pass_lock_held_elsewhere")
            for task in tasks:
                report.tasks[task.identity] = TaskRunRecord(
                    task.identity, history=[TaskState.IDLE, TaskState.SKIPPED]
                )
            self._stats.tasks_skipped += len(tasks)
            return
        try:
            self._run_tasks(tasks, timetable, report)
        finally:
            try:
                self.lock.release_pass()
            except InfrastructureError as e:
                report.abort(str(e))

    def _run_tasks(self, tasks: list[Task], timetable: Timetable, report: PassReport) -> None:
        try:
            self._prepare_timetable(tasks, timetable)
        except InfrastructureError as e:
            report.abort(str(e))
            return

        for task in tasks:
            if report.aborted:
                break
            record = TaskRunRecord(task.identity)
            report.tasks[task.identity] = record
            self._process_task(task, timetable, record, report)

    def _prepare_timetable(self, tasks: list[Task], timetable: Timetable) -> None:
        """Schedule first-seen tasks and drop entries of removed ones."""
        now = self._now()
        changed = [task.identity for task in tasks if timetable.schedule_if_absent(task, now)]
        if self.remove_inactive_tasks and tasks:
            changed += timetable.remove_inactive(task.identity for task in tasks)
        if changed:
            with self.lock.timetable_guard():
                timetable.commit(changed)

    # === Task Processing ===

    def _process_task(
        self,
        task: Task,
        timetable: Timetable,
        record: TaskRunRecord,
        report: PassReport,
    ) -> None:
        now = self._now()
        record.scheduled_time = timetable.scheduled_time(task.identity)
        if not self._is_due(record.scheduled_time, now):
            return
        record.move(TaskState.DUE)

        if self.lock.scope == "task":
            try:
                acquired = self.lock.acquire_for(task.identity)
            except InfrastructureError as e:
                self._abort_task(record, report, e)
                return
            if not acquired:
                self._log.debug("task_locked_elsewhere", task=task.identity)
                record.move(TaskState.SKIPPED)
                self._stats.tasks_skipped += 1
                return
        record.move(TaskState.LOCKED)

        try:
            self._execute_locked(task, timetable, record, report)
        finally:
            self._current_task = None
            if self.lock.scope == "task":
                try:
                    self.lock.release_for(task.identity)
                except InfrastructureError as e:
                    self._abort_task(record, report, e)

    def _execute_locked(
        self,
        task: Task,
        timetable: Timetable,
        record: TaskRunRecord,
        report: PassReport,
    ) -> None:
        # Another instance may have run the task since our snapshot was loaded
        try:
            timetable.load()
        except InfrastructureError as e:
            self._abort_task(record, report, e)
            return
        now = self._now()
        record.scheduled_time = timetable.scheduled_time(task.identity)
        if not self._is_due(record.scheduled_time, now):
            self._log.debug("task_already_handled", task=task.identity)
            record.move(TaskState.SKIPPED)
            self._stats.tasks_skipped += 1
            return

        record.move(TaskState.RUNNING)
        self._current_task = task.identity
        self._stats.tasks_executed += 1
        self._log.info("task_started", task=task.identity, scheduled_time=record.scheduled_time)
        started = time.monotonic()
        outcome = capture_outcome(task.runnable)
        duration = round(time.monotonic() - started, 3)
        record.outcome = outcome

        match outcome:
            case Succeeded():
                record.move(TaskState.SUCCEEDED)
                timetable.clear_retry_count(task.identity)
                next_run = self._advance(task, record.scheduled_time)
                self._stats.tasks_succeeded += 1
                self._log.info("task_succeeded", task=task.identity, duration=duration)
            case RetryableFailure(message=message):
                record.move(TaskState.RETRYABLE_FAILED)
                retries = timetable.increment_retry_count(task.identity)
                base = record.scheduled_time if record.scheduled_time is not None else now
                next_run = base + self.retry_backoff_seconds
                self._stats.tasks_retried += 1
                self._log.warning(
                    "task_retry_scheduled",
                    task=task.identity,
                    error=message,
                    retry_count=retries,
                    next_run=next_run,
                )
            case FatalFailure(message=message, error=error):
                record.move(TaskState.FATAL_FAILED)
                next_run = self._advance(task, record.scheduled_time)
                self._stats.tasks_failed += 1
                self._log.error(
                    "task_failed",
                    task=task.identity,
                    error=message,
                    duration=duration,
                    exc_info=error,
                )

        if next_run is None:
            timetable.mark_consumed(task.identity)
        else:
            timetable.set_scheduled_time(task.identity, next_run)
        record.next_run = next_run
        try:
            with self.lock.timetable_guard():
                timetable.commit([task.identity])
        except InfrastructureError as e:
            self._abort_task(record, report, e)
            return
        record.move(TaskState.RESCHEDULED)
        self._log.debug("task_rescheduled", task=task.identity, next_run=next_run)

    @staticmethod
    def _is_due(scheduled_time: int | None, now: int) -> bool:
        return scheduled_time is not None and scheduled_time <= now

    def _advance(self, task: Task, previous: int | None) -> int | None:
        """Next slot after ``previous``; None once a one-off time is consumed."""
        reference = previous if previous is not None else self._now()
        next_run = task.schedule.next_run(reference)
        if next_run <= reference:
            return None
        return next_run

    def _abort_task(
        self, record: TaskRunRecord, report: PassReport, error: InfrastructureError
    ) -> None:
        record.move(TaskState.ABORTED)
        record.error = str(error)
        report.abort(f"{record.identity}: {error}")
        self._log.error("task_aborted", task=record.identity, error=error.to_dict())

    # === Manual Operations ===

    def get_task(self, identity: str) -> Task:
        """Look up a registered task.

        Raises:
            TaskNotFoundError: No task has this identity
        """
        for task in self._load_tasks():
            if task.identity == identity:
                return task
        raise TaskNotFoundError(identity)

    def run_task_now(self, identity: str) -> TaskOutcome:
        """Execute a task immediately, leaving its timetable entry alone.

        Raises:
            TaskNotFoundError: Unknown identity
            TaskLockedError: Another holder is running the task
        """
        task = self.get_task(identity)
        with self.lock.held(identity) as acquired:
            if not acquired:
                raise TaskLockedError(identity)
            self._log.info("task_run_now", task=identity)
            self._current_task = identity
            try:
                outcome = capture_outcome(task.runnable)
            finally:
                self._current_task = None
        if isinstance(outcome, (RetryableFailure, FatalFailure)):
            self._log.warning("task_run_now_failed", task=identity, error=outcome.message)
        return outcome

    def reschedule(self, identity: str) -> int:
        """Recompute a task's next run from now."""
        task = self.get_task(identity)
        next_run = task.schedule.next_run(self._now())
        timetable = Timetable(self.store, self.timetable_key)
        timetable.load()
        timetable.set_scheduled_time(identity, next_run)
        with self.lock.timetable_guard():
            timetable.commit([identity])
        self._log.info("task_rescheduled_manually", task=identity, next_run=next_run)
        return next_run

    def unschedule(self, identity: str) -> bool:
        """Drop a task's timetable entry. It is rescheduled on the next pass."""
        timetable = Timetable(self.store, self.timetable_key)
        timetable.load()
        removed = timetable.unschedule(identity)
        if removed:
            with self.lock.timetable_guard():
                timetable.commit([identity])
            self._log.info("task_unscheduled", task=identity)
        return removed

    # === Queries ===

    def timetable(self) -> Timetable:
        """Freshly loaded timetable."""
        timetable = Timetable(self.store, self.timetable_key)
        timetable.load()
        return timetable

    def scheduled_time(self, identity: str) -> int | None:
        return self.timetable().scheduled_time(identity)

    def scheduled_time_for_method(self, owner: str, method: str, parameter: Any = None) -> int | None:
        return self.scheduled_time(task_identity(owner, method, parameter))

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


__all__ = [
    "DEFAULT_RETRY_BACKOFF_SECONDS",
    "PassReport",
    "Scheduler",
    "SchedulerStats",
    "TaskRunRecord",
    "TaskState",
]
