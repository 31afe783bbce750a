"""
Domain: TimeSlot value object and timezone codec.

Slots are stored as absolute UTC instants. Viewer timezones only matter at the
edges (display and input), so conversion lives here and nowhere else.

Identity of a slot is `<date>-<HH:MM>-<HH:MM>` using the UTC time of day of both
endpoints, so the same interval produces the same identifier no matter which
timezone the caller was in.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidTimezone
from .time import require_utc_timestamp


def resolve_zone(name: str) -> ZoneInfo:
    """Look up an IANA zone. Unknown names raise InvalidTimezone, never default to UTC."""

    if not name or not name.strip():
        raise InvalidTimezone(name)
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezone(name) from e


def _hh_mm(value: datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def to_canonical_id(date_str: Union[str, date], start_utc: datetime, end_utc: datetime) -> str:
    """
    Build the canonical slot identifier.

    Example:
        to_canonical_id("2025-03-10", 09:00Z, 09:30Z) -> "2025-03-10-09:00-09:30"
    """

    require_utc_timestamp("start_utc", start_utc)
    require_utc_timestamp("end_utc", end_utc)
    if isinstance(date_str, date):
        date_str = date_str.isoformat()
    return f"{date_str}-{_hh_mm(start_utc)}-{_hh_mm(end_utc)}"


@dataclass(frozen=True, slots=True)
class WallClock:
    """Calendar fields of an instant as seen in a named zone."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int = 0
    microsecond: int = 0
    fold: int = 0  # second occurrence of an ambiguous wall time (DST fall-back)

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)

    def to_naive(self) -> datetime:
        return datetime(
            self.year,
            self.month,
            self.day,
            self.hour,
            self.minute,
            self.second,
            self.microsecond,
            fold=self.fold,
        )

    @staticmethod
    def from_datetime(value: datetime) -> "WallClock":
        return WallClock(
            year=value.year,
            month=value.month,
            day=value.day,
            hour=value.hour,
            minute=value.minute,
            second=value.second,
            microsecond=value.microsecond,
            fold=value.fold,
        )


def to_local(instant_utc: datetime, zone_name: str) -> WallClock:
    """Project a UTC instant into the calendar fields of `zone_name`."""

    require_utc_timestamp("instant_utc", instant_utc)
    zone = resolve_zone(zone_name)
    return WallClock.from_datetime(instant_utc.astimezone(zone))


def to_utc(parts: WallClock, zone_name: str) -> datetime:
    """
    Interpret wall-clock fields in `zone_name` and return the UTC instant.

    Ambiguous wall times (DST fall-back) are disambiguated by `parts.fold`.
    Non-existent wall times (DST spring-forward gap) follow the zoneinfo rule and
    map to the instant the offset before the gap would give; they do not
    round-trip.
    """

    zone = resolve_zone(zone_name)
    local = parts.to_naive().replace(tzinfo=zone)
    return local.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class TimeSlot:
    """
    Immutable, timezone-agnostic interval `[start_utc, end_utc)`.

    Invariants:
    - both endpoints are UTC timestamps
    - start_utc < end_utc
    """

    start_utc: datetime
    end_utc: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("start_utc", self.start_utc)
        require_utc_timestamp("end_utc", self.end_utc)
        if self.start_utc >= self.end_utc:
            raise ValueError("start_utc must be before end_utc")

    @property
    def canonical_id(self) -> str:
        return to_canonical_id(self.start_utc.date(), self.start_utc, self.end_utc)

    @property
    def duration(self) -> timedelta:
        return self.end_utc - self.start_utc

    def overlaps(self, start_utc: datetime, end_utc: datetime) -> bool:
        return self.start_utc < end_utc and start_utc < self.end_utc

    def local_bounds(self, zone_name: str) -> tuple[WallClock, WallClock]:
        return to_local(self.start_utc, zone_name), to_local(self.end_utc, zone_name)


__all__ = [
    "TimeSlot",
    "WallClock",
    "resolve_zone",
    "to_canonical_id",
    "to_local",
    "to_utc",
]
