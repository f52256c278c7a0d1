"""
Cadence - periodic task scheduling with a persisted timetable.

- cadence.scheduling: schedules, tasks, timetable, locks and the Scheduler
- cadence.result: tagged task outcomes
- cadence.errors: error taxonomy
- cadence.cli: ``cadence`` command line entry point
"""

__version__ = "0.1.0"

from cadence.errors import (  # noqa: E402
    CadenceError,
    ConfigError,
    InfrastructureError,
    LockBackendError,
    TaskDiscoveryError,
    TaskLockedError,
    TaskNotFoundError,
    TimetableStoreError,
    TransientTaskError,
)
from cadence.result import FatalFailure, RetryableFailure, Succeeded, TaskOutcome  # noqa: E402
from cadence.scheduling import (  # noqa: E402
    Daily,
    Hourly,
    Monthly,
    Scheduler,
    SpecificTime,
    Task,
    TaskLock,
    Timetable,
    Weekly,
)

__all__ = [
    "__version__",
    "CadenceError",
    "ConfigError",
    "InfrastructureError",
    "LockBackendError",
    "TaskDiscoveryError",
    "TaskLockedError",
    "TaskNotFoundError",
    "TimetableStoreError",
    "TransientTaskError",
    "Succeeded",
    "RetryableFailure",
    "FatalFailure",
    "TaskOutcome",
    "Daily",
    "Hourly",
    "Monthly",
    "Scheduler",
    "SpecificTime",
    "Task",
    "TaskLock",
    "Timetable",
    "Weekly",
]
