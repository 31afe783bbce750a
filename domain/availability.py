"""
Domain: teacher availability and open-slot computation.

Contract excerpts implemented here:
- Open slots are the teacher's available windows minus every pending or scheduled
  occurrence and every blocked (is_available = False) window.
- Granularity is fixed at 30 minutes. Windows that do not sit on 30-minute
  boundaries are truncated inward, never rounded outward.
- Output is produced lazily, ordered by start_utc, without duplicates even when
  windows overlap.

This module contains only pure domain entities and functions: no I/O, no database.
"""

from __future__ import annotations

import heapq
from bisect import bisect_left
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence

from .time import SLOT_LENGTH, Weekday, ceil_to_slot, require_utc_timestamp
from .time_slot import TimeSlot, WallClock, resolve_zone, to_canonical_id, to_utc


class _Interval(Protocol):
    start_utc: datetime
    end_utc: datetime


@dataclass(frozen=True, slots=True)
class AvailabilityWindow:
    """
    A block of time a teacher granted (or blocked, when is_available is False).

    Windows are never partially mutated; a horizon regeneration replaces them
    wholesale.
    """

    teacher_id: str
    start_utc: datetime
    end_utc: datetime
    is_available: bool = True
    window_id: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("start_utc", self.start_utc)
        require_utc_timestamp("end_utc", self.end_utc)
        if self.start_utc >= self.end_utc:
            raise ValueError("start_utc must be before end_utc")

    @property
    def canonical_id(self) -> str:
        """Natural dedup key for the window."""

        return to_canonical_id(self.start_utc.date(), self.start_utc, self.end_utc)


@dataclass(frozen=True, slots=True)
class WeeklyAvailabilityRule:
    """One recurring block in a teacher's wall clock, e.g. Monday 09:00-12:00."""

    day_of_week: Weekday
    start_time: time
    end_time: time

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")


@dataclass(frozen=True, slots=True)
class WeeklyTemplate:
    """A teacher's weekly availability expressed in their own timezone."""

    timezone: str
    rules: Sequence[WeeklyAvailabilityRule] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        resolve_zone(self.timezone)

    def range_bounds(self, first_day: date, days: int) -> tuple[datetime, datetime]:
        """UTC bounds covering local midnight of first_day to local midnight `days` later."""

        start = to_utc(WallClock.from_datetime(datetime.combine(first_day, time())), self.timezone)
        last = first_day + timedelta(days=days)
        end = to_utc(WallClock.from_datetime(datetime.combine(last, time())), self.timezone)
        return start, end

    def windows_for(self, teacher_id: str, first_day: date, days: int) -> List[AvailabilityWindow]:
        """Materialize the template into UTC windows for `days` local dates."""

        windows: List[AvailabilityWindow] = []
        for offset in range(days):
            day = first_day + timedelta(days=offset)
            weekday = Weekday.of(day)
            for rule in self.rules:
                if rule.day_of_week != weekday:
                    continue
                start = to_utc(WallClock.from_datetime(datetime.combine(day, rule.start_time)), self.timezone)
                end = to_utc(WallClock.from_datetime(datetime.combine(day, rule.end_time)), self.timezone)
                if start >= end:
                    # wall-clock block swallowed by a DST gap
                    continue
                windows.append(AvailabilityWindow(teacher_id=teacher_id, start_utc=start, end_utc=end))
        windows.sort(key=lambda w: (w.start_utc, w.end_utc))
        return windows


def _slot_starts(window: AvailabilityWindow, horizon_start: datetime, horizon_end: datetime) -> Iterator[datetime]:
    cursor = ceil_to_slot(max(window.start_utc, horizon_start))
    limit = min(window.end_utc, horizon_end)
    while cursor + SLOT_LENGTH <= limit:
        yield cursor
        cursor += SLOT_LENGTH


class _BusyIndex:
    """Answers "does [start, end) overlap anything busy?" with one bisect."""

    def __init__(self, intervals: Iterable[_Interval]):
        ordered = sorted((i.start_utc, i.end_utc) for i in intervals)
        self._starts = [start for start, _ in ordered]
        self._max_ends: List[datetime] = []
        running: Optional[datetime] = None
        for _, end in ordered:
            running = end if running is None or end > running else running
            self._max_ends.append(running)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        idx = bisect_left(self._starts, end) - 1
        return idx >= 0 and self._max_ends[idx] > start


def open_slots(
    windows: Iterable[AvailabilityWindow],
    busy: Iterable[_Interval],
    horizon_start: datetime,
    horizon_end: datetime,
) -> Iterator[TimeSlot]:
    """
    Yield open 30-minute slots inside `[horizon_start, horizon_end]`.

    `busy` holds anything with start_utc/end_utc that must not be offered
    (pending or scheduled occurrences). Blocked windows from `windows` are added
    to it.
    """

    require_utc_timestamp("horizon_start", horizon_start)
    require_utc_timestamp("horizon_end", horizon_end)
    if horizon_start >= horizon_end:
        raise ValueError("horizon_start must be before horizon_end")

    granted: List[AvailabilityWindow] = []
    blocked: List[_Interval] = list(busy)
    for window in windows:
        if window.is_available:
            granted.append(window)
        else:
            blocked.append(window)

    index = _BusyIndex(blocked)
    starts = heapq.merge(*(_slot_starts(w, horizon_start, horizon_end) for w in granted))

    previous: Optional[datetime] = None
    for start in starts:
        if start == previous:
            continue
        previous = start
        end = start + SLOT_LENGTH
        if index.overlaps(start, end):
            continue
        yield TimeSlot(start_utc=start, end_utc=end)


def covers(slots: Iterable[TimeSlot], start_utc: datetime, end_utc: datetime) -> bool:
    """True when consecutive open slots cover `[start_utc, end_utc)` exactly."""

    cursor = start_utc
    for slot in slots:
        if slot.end_utc <= cursor:
            continue
        if slot.start_utc != cursor:
            return False
        cursor = slot.end_utc
        if cursor >= end_utc:
            return cursor == end_utc
    return False


__all__ = [
    "AvailabilityWindow",
    "WeeklyAvailabilityRule",
    "WeeklyTemplate",
    "covers",
    "open_slots",
]
