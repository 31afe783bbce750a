"""
Domain time utilities (pure).

Centralized timestamp validation and UTC helpers.

Behavior and error messages must remain consistent across the domain model.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import IntEnum

SLOT_MINUTES: int = 30
SLOT_LENGTH: timedelta = timedelta(minutes=SLOT_MINUTES)
HORIZON_DAYS: int = 30
HORIZON: timedelta = timedelta(days=HORIZON_DAYS)


def require_utc_timestamp(name: str, value: datetime) -> None:
    """
    Enforces the contract requirement that timestamps are UTC.

    Invariants:
    - Timestamps must be timezone-aware.
    - Timestamps must have UTC offset 0.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{name} must be a UTC timestamp (offset 0)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def floor_to_slot(value: datetime) -> datetime:
    """Truncate a UTC instant down to the enclosing 30-minute boundary."""

    return value.replace(minute=value.minute - value.minute % SLOT_MINUTES, second=0, microsecond=0)


def ceil_to_slot(value: datetime) -> datetime:
    """Move a UTC instant up to the next 30-minute boundary (identity if aligned)."""

    floored = floor_to_slot(value)
    if floored == value:
        return value
    return floored + SLOT_LENGTH


def parse_utc_datetime(value: object) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Supabase commonly returns ISO-8601 strings, sometimes with a trailing 'Z'.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso_utc(dt: datetime, *, name: str) -> str:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


class Weekday(IntEnum):
    """Day-of-week numbering used by patterns and templates (Sunday = 0)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return cls((day.weekday() + 1) % 7)
