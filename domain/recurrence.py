"""
Domain: weekly recurrence patterns and their expansion into concrete intervals.

Contract excerpts implemented here:
- Walk forward one local day at a time from `starting_from`, emitting an interval
  for each date whose weekday is in `days_of_week`.
- Stop when the end condition is met (after N occurrences, or past an end date)
  and always at the 30-day horizon, even if the end condition is not satisfied yet.
- An end date beyond the horizon is rejected with HorizonExceeded.

Patterns are transient: they exist only while occurrences are generated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import FrozenSet, Iterable, Iterator, Union

from .errors import HorizonExceeded
from .time import HORIZON, HORIZON_DAYS, Weekday
from .time_slot import TimeSlot, WallClock, resolve_zone, to_utc

MAX_OCCURRENCES: int = 30


class Frequency(str, Enum):
    WEEKLY = "weekly"


@dataclass(frozen=True, slots=True)
class AfterCount:
    count: int

    def __post_init__(self) -> None:
        if not 1 <= self.count <= MAX_OCCURRENCES:
            raise ValueError(f"count must be between 1 and {MAX_OCCURRENCES}")


@dataclass(frozen=True, slots=True)
class OnDate:
    last_day: date


EndCondition = Union[AfterCount, OnDate]


@dataclass(frozen=True, slots=True)
class RecurrencePattern:
    """
    Weekly pattern for a class series.

    `start_time` is a wall-clock time in `timezone`; each occurrence lasts
    `duration_minutes`. Duplicate weekdays in the input collapse to one.
    """

    days_of_week: FrozenSet[Weekday]
    end_condition: EndCondition
    start_time: time
    duration_minutes: int
    timezone: str = "UTC"
    frequency: Frequency = Frequency.WEEKLY

    def __post_init__(self) -> None:
        if not self.days_of_week:
            raise ValueError("days_of_week must not be empty")
        if self.duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        if self.frequency is not Frequency.WEEKLY:
            raise ValueError(f"Unsupported frequency: {self.frequency}")
        resolve_zone(self.timezone)

    @staticmethod
    def weekly(
        days: Iterable[int],
        end_condition: EndCondition,
        start_time: time,
        duration_minutes: int,
        timezone: str = "UTC",
    ) -> "RecurrencePattern":
        return RecurrencePattern(
            days_of_week=frozenset(Weekday(d) for d in days),
            end_condition=end_condition,
            start_time=start_time,
            duration_minutes=duration_minutes,
            timezone=timezone,
        )


def horizon_limit(starting_from: date, zone_name: str) -> datetime:
    """Latest UTC instant an occurrence may start at: local midnight + 30 days."""

    midnight = to_utc(WallClock.from_datetime(datetime.combine(starting_from, time())), zone_name)
    return midnight + HORIZON


def expand(pattern: RecurrencePattern, starting_from: date) -> Iterator[TimeSlot]:
    """
    Return a lazy iterator of occurrence intervals in chronological order.

    Validation (HorizonExceeded) happens eagerly, before the first item is requested.
    """

    last_allowed_day = starting_from + timedelta(days=HORIZON_DAYS)
    end = pattern.end_condition
    if isinstance(end, OnDate):
        if end.last_day > last_allowed_day:
            limit = horizon_limit(starting_from, pattern.timezone)
            requested = to_utc(
                WallClock.from_datetime(datetime.combine(end.last_day, time())), pattern.timezone
            )
            raise HorizonExceeded(requested, limit)
    return _walk(pattern, starting_from)


def _walk(pattern: RecurrencePattern, starting_from: date) -> Iterator[TimeSlot]:
    end = pattern.end_condition
    limit = horizon_limit(starting_from, pattern.timezone)
    duration = timedelta(minutes=pattern.duration_minutes)
    emitted = 0

    for offset in range(HORIZON_DAYS + 1):
        day = starting_from + timedelta(days=offset)
        if isinstance(end, OnDate) and day > end.last_day:
            return
        if Weekday.of(day) not in pattern.days_of_week:
            continue

        start = to_utc(WallClock.from_datetime(datetime.combine(day, pattern.start_time)), pattern.timezone)
        if start > limit:
            return
        yield TimeSlot(start_utc=start, end_utc=start + duration)

        emitted += 1
        if isinstance(end, AfterCount) and emitted >= end.count:
            return


__all__ = [
    "AfterCount",
    "EndCondition",
    "Frequency",
    "MAX_OCCURRENCES",
    "OnDate",
    "RecurrencePattern",
    "expand",
    "horizon_limit",
]
