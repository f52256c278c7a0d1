"""Schedule types: when does a task run next?

Manifesto:
    A schedule is a pure function from a reference time to the next eligible
    run time. It holds no run history, so the same schedule can be shared by
    any number of tasks and evaluated by any number of scheduler instances.

All times are integer unix timestamps (seconds). Period boundaries are
computed in the schedule's time zone (``tz``, default UTC) so "daily at 03:00"
means 03:00 local wall-clock time across DST changes.

Tags:
    cadence, scheduling, schedule, period, timezone

Doc-Types:
    api-reference


    Schedule Variants::

        Hourly(minute)                          every hour at :minute
        Daily(hour, minute)                     every day at hour:minute
        Weekly(day_of_week, hour, minute)       day_of_week: 0=Monday .. 6=Sunday
        Monthly(day_of_month, hour, minute)     day clamped to the month length
        SpecificTime(timestamp)                 one fixed moment

    Periodic variants return a time strictly after the reference.
    SpecificTime always returns its fixed timestamp; the scheduler treats a
    result that is not after the consumed slot as "no further runs".
"""

from __future__ import annotations

import calendar
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, ClassVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cadence.errors import ConfigError


@lru_cache(maxsize=64)
def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown time zone: {name!r}", cause=e) from e


def _check_range(field_name: str, value: int, low: int, high: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise ConfigError(f"{field_name} must be an integer in [{low}, {high}], got {value!r}")


class Schedule(ABC):
    """Base class for schedules."""

    period: ClassVar[str] = ""

    @abstractmethod
    def next_run(self, reference: int) -> int:
        """Return the next eligible run time for ``reference``."""

    @staticmethod
    def factory(period: str, **kwargs: Any) -> Schedule:
        """Build a periodic schedule from its period name.

        Args:
            period: One of "hourly", "daily", "weekly", "monthly"
            **kwargs: Fields of the schedule (hour, minute, tz, ...)

        Raises:
            ConfigError: Unknown period name or invalid fields
        """
        variants: dict[str, type[Schedule]] = {
            "hourly": Hourly,
            "daily": Daily,
            "weekly": Weekly,
            "monthly": Monthly,
        }
        cls = variants.get(period.lower())
        if cls is None:
            available = ", ".join(sorted(variants))
            raise ConfigError(f"Unknown schedule period {period!r}. Available: {available}")
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigError(f"Invalid arguments for {period} schedule: {e}", cause=e) from e


@dataclass(frozen=True)
class _PeriodicSchedule(Schedule):
    """Common fields for schedules anchored to a time of day."""

    hour: int = 0
    minute: int = 0
    tz: str = "UTC"

    def __post_init__(self) -> None:
        _check_range("hour", self.hour, 0, 23)
        _check_range("minute", self.minute, 0, 59)
        _zone(self.tz)

    def _local(self, reference: int) -> datetime:
        return datetime.fromtimestamp(reference, _zone(self.tz))

    def _at_time_of_day(self, moment: datetime) -> datetime:
        return moment.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)


@dataclass(frozen=True)
class Hourly(Schedule):
    """Run once an hour at ``minute`` past the hour."""

    period: ClassVar[str] = "hourly"

    minute: int = 0
    tz: str = "UTC"

    def __post_init__(self) -> None:
        _check_range("minute", self.minute, 0, 59)
        _zone(self.tz)

    def next_run(self, reference: int) -> int:
        local = datetime.fromtimestamp(reference, _zone(self.tz))
        candidate = int(local.replace(minute=self.minute, second=0, microsecond=0).timestamp())
        while candidate <= reference:
            candidate += 3600
        return candidate


@dataclass(frozen=True)
class Daily(_PeriodicSchedule):
    """Run once a day at ``hour:minute``."""

    period: ClassVar[str] = "daily"

    def next_run(self, reference: int) -> int:
        local = self._local(reference)
        candidate = self._at_time_of_day(local)
        if int(candidate.timestamp()) <= reference:
            candidate += timedelta(days=1)
        return int(candidate.timestamp())


@dataclass(frozen=True)
class Weekly(_PeriodicSchedule):
    """Run once a week on ``day_of_week`` (0=Monday) at ``hour:minute``."""

    period: ClassVar[str] = "weekly"

    day_of_week: int = 0

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_range("day_of_week", self.day_of_week, 0, 6)

    def next_run(self, reference: int) -> int:
        local = self._local(reference)
        days_ahead = (self.day_of_week - local.weekday()) % 7
        candidate = self._at_time_of_day(local) + timedelta(days=days_ahead)
        if int(candidate.timestamp()) <= reference:
            candidate += timedelta(days=7)
        return int(candidate.timestamp())


@dataclass(frozen=True)
class Monthly(_PeriodicSchedule):
    """Run once a month on ``day_of_month`` at ``hour:minute``.

    Days past the end of a short month run on its last day (31 → Feb 28/29).
    """

    period: ClassVar[str] = "monthly"

    day_of_month: int = 1

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_range("day_of_month", self.day_of_month, 1, 31)

    def _candidate(self, year: int, month: int) -> datetime:
        day = min(self.day_of_month, calendar.monthrange(year, month)[1])
        return datetime(year, month, day, self.hour, self.minute, tzinfo=_zone(self.tz))

    def next_run(self, reference: int) -> int:
        local = self._local(reference)
        year, month = local.year, local.month
        candidate = self._candidate(year, month)
        while int(candidate.timestamp()) <= reference:
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
            candidate = self._candidate(year, month)
        return int(candidate.timestamp())


@dataclass(frozen=True)
class SpecificTime(Schedule):
    """Run once at a fixed unix timestamp."""

    period: ClassVar[str] = "specific_time"

    timestamp: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.timestamp, int) or isinstance(self.timestamp, bool) or self.timestamp < 0:
            raise ConfigError(f"timestamp must be a non-negative integer, got {self.timestamp!r}")

    def next_run(self, reference: int) -> int:  # noqa: ARG002
        return self.timestamp


__all__ = [
    "Schedule",
    "Hourly",
    "Daily",
    "Weekly",
    "Monthly",
    "SpecificTime",
]
