"""
Availability service.

Handles:
- Open-slot listing (windows minus pending/scheduled occurrences and blocked windows)
- Slot re-validation for booking creation
- Horizon regeneration from a teacher's weekly template (atomic replace per teacher)
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Iterator

from domain.availability import WeeklyTemplate, covers, open_slots
from domain.errors import HorizonExceeded
from domain.time import HORIZON, HORIZON_DAYS, require_utc_timestamp, utc_now
from domain.time_slot import TimeSlot
from repositories.protocols import AvailabilityRepository, OccurrenceRepository

logger = logging.getLogger(__name__)

REGENERATION_SLACK: timedelta = timedelta(days=1)


class AvailabilityService:
    def __init__(
        self,
        windows: AvailabilityRepository,
        occurrences: OccurrenceRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._windows = windows
        self._occurrences = occurrences
        self._clock = clock

    def open_slots(self, teacher_id: str, horizon_start: datetime, horizon_end: datetime) -> Iterator[TimeSlot]:
        """
        Open 30-minute slots for a teacher, ordered by start.

        The range may not reach further than 30 days from now.
        Validation happens here; the slots themselves are produced lazily.
        """

        require_utc_timestamp("horizon_start", horizon_start)
        require_utc_timestamp("horizon_end", horizon_end)
        if horizon_start >= horizon_end:
            raise ValueError("horizon_start must be before horizon_end")

        limit = self._clock() + HORIZON
        if horizon_end > limit:
            raise HorizonExceeded(horizon_end, limit)

        windows = self._windows.list_windows(teacher_id, horizon_start, horizon_end)
        busy = self._occurrences.list_holding(teacher_id, horizon_start, horizon_end)
        return open_slots(windows, busy, horizon_start, horizon_end)

    def is_open(self, teacher_id: str, slot: TimeSlot) -> bool:
        """True when consecutive open slots cover the whole of `slot`."""

        windows = self._windows.list_windows(teacher_id, slot.start_utc, slot.end_utc)
        busy = self._occurrences.list_holding(teacher_id, slot.start_utc, slot.end_utc)
        return covers(open_slots(windows, busy, slot.start_utc, slot.end_utc), slot.start_utc, slot.end_utc)

    def regenerate(
        self,
        teacher_id: str,
        template: WeeklyTemplate,
        first_day: date,
        days: int = HORIZON_DAYS,
    ) -> int:
        """
        Replace every window in the regenerated range with the template's windows.

        The swap is atomic per teacher: the previous windows stay until the new set
        is written. Occurrences are untouched; open slots are always computed from
        live occurrence state.
        """

        if days <= 0:
            raise ValueError("days must be positive")
        range_start, range_end = template.range_bounds(first_day, days)
        if days > HORIZON_DAYS:
            raise HorizonExceeded(range_end, range_start + HORIZON)
        # the local "today" of a template zone can lie a day past the UTC date
        limit = self._clock() + HORIZON + REGENERATION_SLACK
        if range_end > limit:
            raise HorizonExceeded(range_end, limit)

        windows = template.windows_for(teacher_id, first_day, days)
        written = self._windows.replace_windows(teacher_id, range_start, range_end, windows)
        logger.info(
            "Regenerated %d availability windows for teacher %s (%s .. %s)",
            written,
            teacher_id,
            range_start.isoformat(),
            range_end.isoformat(),
        )
        return written


__all__ = ["AvailabilityService", "REGENERATION_SLACK"]
