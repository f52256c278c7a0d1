"""
Tagged outcome of a single task execution.

A runnable finishes in exactly one of three ways: it succeeded, it failed in
a way worth retrying soon, or it failed in any other way. ``TaskOutcome``
makes that explicit in the type system so the scheduler pattern-matches on a
value instead of catching particular exception subclasses.

Manifesto:
    - **Explicit over Implicit:** The three outcomes are three types
    - **Single bridge:** Exceptions are converted once, in ``capture_outcome``
    - **Task-author friendly:** Runnables may return an outcome, return
      nothing, or raise; all three shapes end up as a ``TaskOutcome``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        TaskOutcome                            │
        │                        (Type Alias)                           │
        ├──────────────────┬────────────────────┬──────────────────────┤
        │   Succeeded      │  RetryableFailure  │  FatalFailure        │
        │ • value          │ • error            │ • error              │
        │                  │ • message          │ • message            │
        └──────────────────┴────────────────────┴──────────────────────┘

        capture_outcome(runnable)
            runnable returns TaskOutcome ─────────────► as returned
            runnable returns anything else ───────────► Succeeded(value)
            runnable raises retryable CadenceError ───► RetryableFailure
            runnable raises anything else ────────────► FatalFailure

Examples:
    >>> from cadence.errors import TransientTaskError
    >>> capture_outcome(lambda: 42)
    Succeeded(42)
    >>> def flaky():
    ...     raise TransientTaskError("upstream busy")
    >>> capture_outcome(flaky).is_retryable()
    True
    >>> match capture_outcome(lambda: 1 / 0):
    ...     case FatalFailure(error=err):
    ...         print(type(err).__name__)
    ZeroDivisionError

Tags:
    result-pattern, task-outcome, error-handling, cadence

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cadence.errors import is_retryable


@dataclass(frozen=True, slots=True)
class Succeeded:
    """The runnable completed normally."""

    value: Any = None

    def is_success(self) -> bool:
        return True

    def is_retryable(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": "succeeded"}

    def __repr__(self) -> str:
        return f"Succeeded({self.value!r})"


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    """
    The runnable hit a transient problem and should be retried after backoff.

    ``error`` is the original exception when the failure was raised, or
    ``None`` when the runnable returned this outcome directly.
    """

    message: str = ""
    error: BaseException | None = None

    def is_success(self) -> bool:
        return False

    def is_retryable(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": "retryable_failure", "message": self.message}

    def __repr__(self) -> str:
        return f"RetryableFailure({self.message!r})"


@dataclass(frozen=True, slots=True)
class FatalFailure:
    """The runnable failed; the task keeps its normal cadence."""

    message: str = ""
    error: BaseException | None = None

    def is_success(self) -> bool:
        return False

    def is_retryable(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": "fatal_failure", "message": self.message}

    def __repr__(self) -> str:
        return f"FatalFailure({self.message!r})"


TaskOutcome = Succeeded | RetryableFailure | FatalFailure


def capture_outcome(runnable: Callable[[], Any]) -> TaskOutcome:
    """
    Run a zero-argument callable and classify how it finished.

    Only ``Exception`` subclasses are captured; ``KeyboardInterrupt`` and
    ``SystemExit`` propagate.

    Args:
        runnable: The task's unit of work

    Returns:
        A ``TaskOutcome`` describing the run
    """
    try:
        value = runnable()
    except Exception as exc:
        if is_retryable(exc):
            return RetryableFailure(message=str(exc), error=exc)
        return FatalFailure(message=str(exc) or type(exc).__name__, error=exc)

    if isinstance(value, (Succeeded, RetryableFailure, FatalFailure)):
        return value
    return Succeeded(value)


__all__ = [
    "Succeeded",
    "RetryableFailure",
    "FatalFailure",
    "TaskOutcome",
    "capture_outcome",
]
