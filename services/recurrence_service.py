"""
Recurrence service.

Expands a weekly pattern and books each occurrence as a Pending class. An
occurrence whose slot is not open (or breaks a booking rule) is skipped and
reported as a gap; it is never retried or moved. Whether gaps make the whole
request a failure is the caller's decision.

The series ends at the last occurrence that finishes within 30 days from now;
a start or end date beyond that raises HorizonExceeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from itertools import takewhile
from typing import Callable, List, Optional
from uuid import uuid4

from domain.errors import BookingRuleViolation, HorizonExceeded, SlotUnavailable
from domain.occurrence import ClassOccurrence
from domain.recurrence import OnDate, RecurrencePattern, expand
from domain.time_slot import TimeSlot, WallClock, to_utc
from services.booking_service import BookingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RecurrenceGap:
    slot: TimeSlot
    reason: str


@dataclass(frozen=True, slots=True)
class RecurrenceOutcome:
    group_id: str
    occurrences: List[ClassOccurrence]
    gaps: List[RecurrenceGap]

    @property
    def complete(self) -> bool:
        return not self.gaps


class RecurrenceService:
    def __init__(self, bookings: BookingService, *, group_id_factory: Callable[[], str] = lambda: str(uuid4())):
        self._bookings = bookings
        self._group_id_factory = group_id_factory

    def expand_recurrence(
        self,
        teacher_id: str,
        student_id: str,
        pattern: RecurrencePattern,
        starting_from: date,
        *,
        notes: Optional[str] = None,
    ) -> RecurrenceOutcome:
        # HorizonExceeded / InvalidTimezone surface here, before anything is booked
        limit = self._bookings.horizon_end()
        requested = [starting_from]
        if isinstance(pattern.end_condition, OnDate):
            requested.append(pattern.end_condition.last_day)
        for day in requested:
            midnight = to_utc(WallClock.from_datetime(datetime.combine(day, time())), pattern.timezone)
            if midnight > limit:
                raise HorizonExceeded(midnight, limit)
        slots = takewhile(lambda s: s.end_utc <= limit, expand(pattern, starting_from))

        group_id = self._group_id_factory()
        occurrences: List[ClassOccurrence] = []
        gaps: List[RecurrenceGap] = []
        for slot in slots:
            try:
                occurrences.append(
                    self._bookings.create(
                        teacher_id,
                        student_id,
                        slot,
                        recurring_group_id=group_id,
                        notes=notes,
                    )
                )
            except (SlotUnavailable, BookingRuleViolation) as e:
                gaps.append(RecurrenceGap(slot=slot, reason=str(e)))

        logger.info(
            "Recurring group %s for student %s: %d booked, %d gaps",
            group_id,
            student_id,
            len(occurrences),
            len(gaps),
        )
        return RecurrenceOutcome(group_id=group_id, occurrences=occurrences, gaps=gaps)


__all__ = ["RecurrenceGap", "RecurrenceOutcome", "RecurrenceService"]
