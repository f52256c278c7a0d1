"""Task value type, identity builder and task loaders.

Manifesto:
    A task is a plain value: an identity, a zero-argument runnable and a
    schedule. The identity is what the timetable and the locks are keyed by,
    so it must be stable across restarts; it is built by a pure function from
    the owning component, the method name and an optional parameter.

Tags:
    cadence, scheduling, task, registry, loader

Doc-Types:
    api-reference
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from cadence.errors import ConfigError
from cadence.logging import get_logger
from cadence.scheduling.schedules import Schedule

logger = get_logger(__name__)

Runnable = Callable[[], Any]


def task_identity(owner: str, method: str, parameter: Any = None) -> str:
    """Build the identity string of a task.

    Examples:
        >>> task_identity("reports.Archiver", "purge")
        'reports.Archiver.purge'
        >>> task_identity("reports.Archiver", "purge", 7)
        'reports.Archiver.purge_7'
    """
    if not owner or not method:
        raise ConfigError("Task identity needs a non-empty owner and method")
    identity = f"{owner}.{method}"
    if parameter is not None:
        identity = f"{identity}_{parameter}"
    return identity


@dataclass(frozen=True)
class Task:
    """A schedulable unit of recurring work."""

    identity: str
    runnable: Runnable
    schedule: Schedule

    def __post_init__(self) -> None:
        if not self.identity:
            raise ConfigError("Task identity must not be empty")
        if not callable(self.runnable):
            raise ConfigError(f"Task {self.identity!r} runnable is not callable")
        if not isinstance(self.schedule, Schedule):
            raise ConfigError(f"Task {self.identity!r} has no valid schedule")

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        schedule: Schedule,
        parameter: Any = None,
    ) -> Task:
        """Create a task whose identity is derived from ``func``.

        Bound methods use their class as owner, plain functions their module.
        When ``parameter`` is given it is passed as the only argument.
        """
        if inspect.ismethod(func):
            owner_type = type(func.__self__)
            owner = f"{owner_type.__module__}.{owner_type.__qualname__}"
            method = func.__name__
        else:
            owner = func.__module__
            method = func.__qualname__

        runnable: Runnable = func if parameter is None else functools.partial(func, parameter)
        return cls(
            identity=task_identity(owner, method, parameter),
            runnable=runnable,
            schedule=schedule,
        )


class StaticTaskLoader:
    """TaskLoader over a fixed sequence of tasks."""

    def __init__(self, tasks: Sequence[Task]) -> None:
        self._tasks = list(tasks)

    def load_tasks(self) -> list[Task]:
        return list(self._tasks)


# Global task registry, in registration order
_registry: dict[str, Task] = {}


def scheduled(
    schedule: Schedule,
    parameter: Any = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator to register a module-level function as a scheduled task.

    Usage:
        @scheduled(Daily(hour=3))
        def purge_old_rows() -> None:
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        task = Task.from_callable(func, schedule, parameter)
        if task.identity in _registry:
            raise ConfigError(f"Task '{task.identity}' is already registered")
        _registry[task.identity] = task
        logger.debug("task_registered", task=task.identity, period=schedule.period)
        return func

    return decorator


class RegistryTaskLoader:
    """TaskLoader over the tasks registered with ``@scheduled``."""

    def load_tasks(self) -> list[Task]:
        return list(_registry.values())


def clear_registry() -> None:
    """Clear registry (for testing)."""
    _registry.clear()


__all__ = [
    "Runnable",
    "Task",
    "task_identity",
    "StaticTaskLoader",
    "RegistryTaskLoader",
    "scheduled",
    "clear_registry",
]
