"""
Structured error types for the cadence scheduler.

Every error raised by cadence carries a category and an explicit retry flag,
so the scheduler can tell a transient task failure (back off and retry) from
a fatal one (log and resume the normal cadence) without string matching.

Manifesto:
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Categorised:** Task, lock, storage and config problems are routed
      differently by the scheduler
    - **Chained:** The original exception survives as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         CadenceError                            │
        │              (category, retryable, cause, to_dict)              │
        └────────────────────────────┬────────────────────────────────────┘
                 ┌───────────────────┼────────────────────┬──────────────┐
                 ▼                   ▼                    ▼              ▼
        TransientTaskError   InfrastructureError     ConfigError   TaskNotFoundError
        (retryable=True)       ├─ LockBackendError                 TaskLockedError
                               └─ TimetableStoreError              TaskDiscoveryError

Examples:
    Signalling a transient failure from a task:

    >>> def refresh_rates():
    ...     raise TransientTaskError("rates API timed out")
    >>> is_retryable(TransientTaskError("timeout"))
    True

    Anything else is fatal for this run:

    >>> is_retryable(ValueError("bad row"))
    False

Tags:
    errors, retry-logic, scheduler, cadence

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for logging and retry decisions."""

    TASK = "TASK"  # Failures raised by task runnables
    LOCK = "LOCK"  # Lock backend unreachable or misbehaving
    STORAGE = "STORAGE"  # Timetable store unreadable/unwritable
    CONFIG = "CONFIG"  # Invalid schedules, settings, task specs
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


class CadenceError(Exception):
    """
    Base class for all cadence errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers can
    override both per instance. ``task`` names the task identity involved,
    when there is one, so log lines and reports can be filtered by task.

    Examples:
        >>> err = CadenceError("boom", category=ErrorCategory.TASK, retryable=True)
        >>> err.to_dict()["retryable"]
        True
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        task: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = self.default_category if category is None else category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.task = task
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Flat dict for log events and CLI output."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "category": self.category.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.task is not None:
            data["task"] = self.task
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TASK ERRORS
# =============================================================================


class TransientTaskError(CadenceError):
    """
    Raised by a task to signal an expected, recoverable failure.

    The scheduler reacts by incrementing the task's retry counter and
    re-running it after the retry backoff instead of waiting for the next
    regular slot.
    """

    default_category = ErrorCategory.TASK
    default_retryable = True


class TaskNotFoundError(CadenceError):
    """No task with the given identity is registered."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, identity: str):
        super().__init__(f"Task not found: {identity}", task=identity)
        self.identity = identity


class TaskLockedError(CadenceError):
    """The task's lock is held by another scheduler instance."""

    default_category = ErrorCategory.LOCK

    def __init__(self, identity: str):
        super().__init__(f"Task is locked by another holder: {identity}", task=identity)
        self.identity = identity


class TaskDiscoveryError(CadenceError):
    """The task loader could not produce the task set."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# INFRASTRUCTURE ERRORS
# =============================================================================


class InfrastructureError(CadenceError):
    """Lock or storage failure; aborts the affected part of a pass."""

    default_category = ErrorCategory.INTERNAL


class LockBackendError(InfrastructureError):
    """Lock backend is unreachable or failed mid-operation."""

    default_category = ErrorCategory.LOCK


class TimetableStoreError(InfrastructureError):
    """Timetable could not be read from or written to its store."""

    default_category = ErrorCategory.STORAGE


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(CadenceError):
    """Invalid configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """
    Check whether an exception signals a retryable task failure.

    Only cadence errors flagged ``retryable`` qualify; every other exception
    is treated as fatal for the current run.
    """
    return isinstance(error, CadenceError) and error.retryable


__all__ = [
    "ErrorCategory",
    "CadenceError",
    "TransientTaskError",
    "TaskNotFoundError",
    "TaskLockedError",
    "TaskDiscoveryError",
    "InfrastructureError",
    "LockBackendError",
    "TimetableStoreError",
    "ConfigError",
    "is_retryable",
]
