"""
Structured logging for cadence.

All cadence modules log through structlog with event-style messages and
key/value context, e.g. ``logger.info("task_succeeded", task=identity)``.
Log lines go to stderr so that command output on stdout (``cadence run
--json``) stays machine-readable.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="cadence")
            │
            ▼
        structlog processor chain:
          1. merge_contextvars   (pass_id bound by LogContext)
          2. TimeStamper(iso)
          3. add_log_level / add_logger_name
          4. service metadata
          5. JSONRenderer (non-TTY) or ConsoleRenderer (TTY)

Examples:
    >>> from cadence.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> log = get_logger("cadence.example")
    >>> log.debug("timetable_loaded", entries=3)

Tags:
    logging, structlog, observability, cadence
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from cadence.errors import ConfigError

_service_name = "cadence"

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _with_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service_name)
    return event_dict


def _resolve_level(level: str) -> int:
    name = level.upper()
    if name not in _LEVELS:
        raise ConfigError(f"Unknown log level {level!r}. Use one of: {', '.join(_LEVELS)}")
    return getattr(logging, name)


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "cadence",
) -> None:
    """Configure structlog for a scheduler process.

    Args:
        level: Minimum level name (DEBUG .. CRITICAL)
        json_format: Force JSON (True) or console (False) output; None picks
            JSON unless stderr is a terminal
        service: Value of the ``service`` key on every event

    Raises:
        ConfigError: Unknown level name
    """
    global _service_name
    numeric_level = _resolve_level(level)
    _service_name = service

    stream = sys.stderr
    if json_format is None:
        json_format = not stream.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _with_service,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=stream, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach key/values to every event logged from this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Bind context for the duration of a ``with`` block.

    On exit the previous values are restored, so a nested pass (or a task
    that itself logs with context) does not wipe the outer ``pass_id``.

    Example:
        with LogContext(pass_id="abc123"):
            logger.info("pass_started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "LogContext",
]
