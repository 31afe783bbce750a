"""
Booking service: the class occurrence state machine.

    Pending   -> Scheduled | Cancelled
    Scheduled -> Completed | Cancelled

Handles:
- Creation with booking rules (notice, duration, 30-minute alignment) and slot
  re-validation; the database unique index closes the list-then-book race
- Confirmation gated on entitlement
- Silent cancellation of abandoned pending bookings
- Completion, which consumes one credit from the student's ledger

Every status write is conditional on the status read before it, so concurrent
cleanup and confirmation cannot corrupt an occurrence.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from uuid import uuid4

from domain.errors import (
    BookingRuleViolation,
    EntitlementRequired,
    HorizonExceeded,
    NotPending,
    OccurrenceNotFound,
    SlotUnavailable,
)
from domain.occurrence import ClassOccurrence, ClassStatus
from domain.time import HORIZON, SLOT_MINUTES, floor_to_slot, utc_now
from domain.time_slot import TimeSlot
from repositories.protocols import OccurrenceRepository
from services.availability_service import AvailabilityService
from services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

MIN_CLASS_MINUTES: int = 30
MAX_CLASS_MINUTES: int = 180
DEFAULT_MIN_NOTICE: timedelta = timedelta(hours=24)
DEFAULT_PENDING_TTL: timedelta = timedelta(minutes=30)


def _new_id() -> str:
    return str(uuid4())


class BookingService:
    def __init__(
        self,
        occurrences: OccurrenceRepository,
        availability: AvailabilityService,
        ledger: ReconciliationService,
        *,
        clock: Callable[[], datetime] = utc_now,
        min_notice: timedelta = DEFAULT_MIN_NOTICE,
        id_factory: Callable[[], str] = _new_id,
    ):
        self._occurrences = occurrences
        self._availability = availability
        self._ledger = ledger
        self._clock = clock
        self._min_notice = min_notice
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def check_rules(self, slot: TimeSlot) -> None:
        """Raise BookingRuleViolation when `slot` breaks duration, alignment or notice rules.

        A slot ending more than 30 days from now raises HorizonExceeded instead.
        """

        minutes = slot.duration.total_seconds() / 60
        if minutes < MIN_CLASS_MINUTES or minutes > MAX_CLASS_MINUTES:
            raise BookingRuleViolation(
                f"Class duration must be between {MIN_CLASS_MINUTES} and {MAX_CLASS_MINUTES} minutes"
            )
        if minutes % SLOT_MINUTES:
            raise BookingRuleViolation(f"Class duration must be a multiple of {SLOT_MINUTES} minutes")
        if floor_to_slot(slot.start_utc) != slot.start_utc:
            raise BookingRuleViolation(f"Classes start on {SLOT_MINUTES}-minute boundaries")

        earliest = self._clock() + self._min_notice
        if slot.start_utc < earliest:
            hours = self._min_notice.total_seconds() / 3600
            raise BookingRuleViolation(f"Classes must be booked at least {hours:g} hours in advance")

        limit = self.horizon_end()
        if slot.end_utc > limit:
            raise HorizonExceeded(slot.end_utc, limit)

    def horizon_end(self) -> datetime:
        """Latest instant a class booked now may end at."""

        return self._clock() + HORIZON

    def create(
        self,
        teacher_id: str,
        student_id: str,
        slot: TimeSlot,
        *,
        recurring_group_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ClassOccurrence:
        """Create a Pending occurrence. Raises SlotUnavailable if the slot is not open."""

        self.check_rules(slot)
        if not self._availability.is_open(teacher_id, slot):
            logger.info("Slot %s for teacher %s is not open", slot.canonical_id, teacher_id)
            raise SlotUnavailable(teacher_id, slot.start_utc, slot.end_utc)

        occurrence = ClassOccurrence(
            occurrence_id=self._id_factory(),
            teacher_id=teacher_id,
            student_id=student_id,
            start_utc=slot.start_utc,
            end_utc=slot.end_utc,
            status=ClassStatus.PENDING,
            created_at=self._clock(),
            recurring_group_id=recurring_group_id,
            notes=notes,
        )
        try:
            created = self._occurrences.insert(occurrence)
        except SlotUnavailable:
            logger.info("Lost booking race for slot %s (teacher %s)", slot.canonical_id, teacher_id)
            raise

        logger.info("Created pending class %s for student %s", created.occurrence_id, student_id)
        return created

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _get(self, occurrence_id: str) -> ClassOccurrence:
        occurrence = self._occurrences.get(occurrence_id)
        if occurrence is None:
            raise OccurrenceNotFound(occurrence_id)
        return occurrence

    def confirm(self, occurrence_id: str) -> ClassOccurrence:
        """
        Pending -> Scheduled, once the student holds access and credits.

        A duplicate confirm of a scheduled class returns it unchanged.
        """

        occurrence = self._get(occurrence_id)
        if occurrence.status is ClassStatus.SCHEDULED:
            return occurrence
        if occurrence.status is not ClassStatus.PENDING:
            raise NotPending(occurrence_id, occurrence.status.value)

        if not self._ledger.check_entitlement(occurrence.student_id):
            raise EntitlementRequired(occurrence.student_id)

        updated = self._occurrences.transition(occurrence.confirmed(), ClassStatus.PENDING)
        if updated is not None:
            logger.info("Confirmed class %s", occurrence_id)
            return updated

        # someone else moved it first
        current = self._get(occurrence_id)
        if current.status is ClassStatus.SCHEDULED:
            return current
        raise NotPending(occurrence_id, current.status.value)

    def cancel_pending(self, occurrence_id: str) -> Optional[ClassOccurrence]:
        """
        Cancel an abandoned pending booking.

        Returns None, without raising, when the occurrence is no longer pending.
        """

        occurrence = self._get(occurrence_id)
        if occurrence.status is not ClassStatus.PENDING:
            logger.debug("Class %s is %s; nothing to clean up", occurrence_id, occurrence.status.value)
            return None

        updated = self._occurrences.transition(
            occurrence.cancelled("Checkout abandoned"), ClassStatus.PENDING
        )
        if updated is None:
            logger.debug("Class %s left pending concurrently; nothing to clean up", occurrence_id)
            return None
        logger.info("Cancelled abandoned pending class %s", occurrence_id)
        return updated

    def cancel(self, occurrence_id: str, reason: Optional[str] = None) -> ClassOccurrence:
        """Cancel a pending or scheduled class. Credit refunds are not performed here."""

        occurrence = self._get(occurrence_id)
        for _ in range(2):
            cancelled = occurrence.cancelled(reason)
            if cancelled is occurrence:
                return occurrence
            updated = self._occurrences.transition(cancelled, occurrence.status)
            if updated is not None:
                logger.info("Cancelled class %s (%s)", occurrence_id, reason or "no reason given")
                return updated
            occurrence = self._get(occurrence_id)
        raise NotPending(occurrence_id, occurrence.status.value)

    def complete(self, occurrence_id: str) -> ClassOccurrence:
        """Scheduled -> Completed after the class has ended; consumes one credit."""

        occurrence = self._get(occurrence_id)
        if occurrence.status is ClassStatus.COMPLETED:
            return occurrence

        completed = occurrence.completed(self._clock())
        updated = self._occurrences.transition(completed, ClassStatus.SCHEDULED)
        if updated is None:
            current = self._get(occurrence_id)
            if current.status is ClassStatus.COMPLETED:
                return current
            raise BookingRuleViolation(f"Occurrence {occurrence_id} is {current.status.value}; cannot complete")

        try:
            self._ledger.consume_credit(occurrence.student_id)
        except ValueError as e:
            logger.warning("Class %s completed without a credit to consume: %s", occurrence_id, e)
        return updated

    def cleanup_abandoned(self, ttl: timedelta = DEFAULT_PENDING_TTL) -> List[ClassOccurrence]:
        """Cancel every pending class created more than `ttl` ago."""

        cutoff = self._clock() - ttl
        cancelled: List[ClassOccurrence] = []
        for occurrence in self._occurrences.list_pending_created_before(cutoff):
            result = self.cancel_pending(occurrence.occurrence_id)
            if result is not None:
                cancelled.append(result)
        if cancelled:
            logger.info("Cleaned up %d abandoned pending classes", len(cancelled))
        return cancelled


__all__ = [
    "BookingService",
    "DEFAULT_MIN_NOTICE",
    "DEFAULT_PENDING_TTL",
    "MAX_CLASS_MINUTES",
    "MIN_CLASS_MINUTES",
]
