"""Scheduling package for cadence.

Manifesto:
    Recurring background jobs in a multi-process deployment need more than a
    sleep loop. They need a persisted timetable (so restarts don't lose or
    repeat slots), lock-guarded execution (so two instances don't run the
    same task) and a clear split between failures worth retrying soon and
    failures that just wait for the next slot.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CADENCE SCHEDULER                                                            │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from cadence.scheduling import (                                   │   │
│  │       Daily, Scheduler, StaticTaskLoader, Task, TaskLock,            │   │
│  │       SqliteKeyValueStore, SqlLockBackend,                           │   │
│  │   )                                                                  │   │
│  │   from cadence.sqlite_conn import SqliteConnection                   │   │
│  │                                                                      │   │
│  │   conn = SqliteConnection("/var/lib/app/cadence.db")                 │   │
│  │   scheduler = Scheduler(                                             │   │
│  │       task_loader=StaticTaskLoader([                                 │   │
│  │           Task.from_callable(purge_old_rows, Daily(hour=3)),         │   │
│  │       ]),                                                            │   │
│  │       store=SqliteKeyValueStore(conn),                               │   │
│  │       lock=TaskLock(SqlLockBackend(conn)),                           │   │
│  │   )                                                                  │   │
│  │   scheduler.run()   # call from cron, a timer, or an admin request   │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Architecture:                                                                │
│                                                                               │
│   TaskLoader ──► Scheduler.run() ──► Timetable ──► KeyValueStore              │
│                        │                                                      │
│                        └──► TaskLock ──► LockBackend                          │
│                                                                               │
│  Modules:                                                                     │
│  - schedules:     Hourly / Daily / Weekly / Monthly / SpecificTime            │
│  - task:          Task, task_identity, loaders, @scheduled registry           │
│  - store:         InMemoryKeyValueStore, SqliteKeyValueStore                  │
│  - timetable:     Timetable, TimetableEntry                                   │
│  - lock_manager:  InMemoryLockBackend, SqlLockBackend, TaskLock               │
│  - service:       Scheduler, PassReport, TaskState                            │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Running a task without holding its lock
    ✅ Scheduler.run() skips any task whose lock it cannot win

    ❌ Writing part of the timetable
    ✅ Timetable is always written back whole under one key
"""

from .lock_manager import (
    PASS_LOCK_NAME,
    TASK_LOCK_PREFIX,
    TIMETABLE_LOCK_NAME,
    InMemoryLockBackend,
    SqlLockBackend,
    TaskLock,
)
from .schedules import Daily, Hourly, Monthly, Schedule, SpecificTime, Weekly
from .service import (
    DEFAULT_RETRY_BACKOFF_SECONDS,
    PassReport,
    Scheduler,
    SchedulerStats,
    TaskRunRecord,
    TaskState,
)
from .store import InMemoryKeyValueStore, SqliteKeyValueStore
from .task import (
    RegistryTaskLoader,
    StaticTaskLoader,
    Task,
    clear_registry,
    scheduled,
    task_identity,
)
from .timetable import DEFAULT_TIMETABLE_KEY, Timetable, TimetableEntry

__all__ = [
    # Schedules
    "Schedule",
    "Hourly",
    "Daily",
    "Weekly",
    "Monthly",
    "SpecificTime",
    # Tasks
    "Task",
    "task_identity",
    "StaticTaskLoader",
    "RegistryTaskLoader",
    "scheduled",
    "clear_registry",
    # Storage
    "InMemoryKeyValueStore",
    "SqliteKeyValueStore",
    "DEFAULT_TIMETABLE_KEY",
    "Timetable",
    "TimetableEntry",
    # Locks
    "PASS_LOCK_NAME",
    "TASK_LOCK_PREFIX",
    "TIMETABLE_LOCK_NAME",
    "InMemoryLockBackend",
    "SqlLockBackend",
    "TaskLock",
    # Service
    "DEFAULT_RETRY_BACKOFF_SECONDS",
    "PassReport",
    "Scheduler",
    "SchedulerStats",
    "TaskRunRecord",
    "TaskState",
]
