"""
Bookings API Endpoints.

Endpoints for creating single and recurring bookings and moving classes through
their lifecycle.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import Container, get_container
from api.models import (
    BookingRequest,
    CancelRequest,
    CleanupBatchResponse,
    CleanupResponse,
    OccurrenceResponse,
    RecurrenceGapResponse,
    RecurringBookingRequest,
    RecurringBookingResponse,
)
from domain.occurrence import ClassOccurrence
from domain.recurrence import AfterCount, EndCondition, OnDate, RecurrencePattern
from domain.time import parse_utc_datetime
from domain.time_slot import TimeSlot

router = APIRouter()


def _occurrence_response(occurrence: ClassOccurrence) -> OccurrenceResponse:
    return OccurrenceResponse(
        occurrence_id=occurrence.occurrence_id,
        teacher_id=occurrence.teacher_id,
        student_id=occurrence.student_id,
        canonical_id=occurrence.slot.canonical_id,
        start_utc=occurrence.start_utc,
        end_utc=occurrence.end_utc,
        status=occurrence.status.value,
        recurring_group_id=occurrence.recurring_group_id,
        notes=occurrence.notes,
        cancellation_reason=occurrence.cancellation_reason,
    )


@router.post(
    "/bookings",
    response_model=OccurrenceResponse,
    status_code=201,
    summary="Create Pending Booking",
    description="Hold a slot for a student. The slot is re-validated at creation time."
)
def create_booking(request: BookingRequest, container: Container = Depends(get_container)):
    """
    Create a pending booking.

    **Conflicts:** if another student took the slot between listing and booking,
    the response is `409` ("slot no longer available, please pick another").
    """
    slot = TimeSlot(start_utc=parse_utc_datetime(request.start_utc), end_utc=parse_utc_datetime(request.end_utc))
    occurrence = container.bookings.create(request.teacher_id, request.student_id, slot, notes=request.notes)
    return _occurrence_response(occurrence)


@router.post(
    "/bookings/recurring",
    response_model=RecurringBookingResponse,
    status_code=201,
    summary="Create Recurring Booking",
    description="Book a weekly series within the 30-day horizon; unavailable dates are reported as gaps."
)
def create_recurring_booking(request: RecurringBookingRequest, container: Container = Depends(get_container)):
    """
    Create a weekly series of pending bookings.

    Occurrences whose slot is not open are skipped and returned in `gaps`.
    The series never reaches past 30 days from `starting_from`, even when
    `after_count` asks for more.
    """
    if (request.after_count is None) == (request.end_date is None):
        raise HTTPException(status_code=422, detail="Provide exactly one of after_count or end_date")

    end_condition: EndCondition
    if request.after_count is not None:
        end_condition = AfterCount(request.after_count)
    else:
        end_condition = OnDate(request.end_date)

    pattern = RecurrencePattern.weekly(
        request.days_of_week,
        end_condition,
        request.start_time,
        request.duration_minutes,
        request.timezone,
    )
    outcome = container.recurrence.expand_recurrence(
        request.teacher_id,
        request.student_id,
        pattern,
        request.starting_from,
        notes=request.notes,
    )
    return RecurringBookingResponse(
        group_id=outcome.group_id,
        occurrences=[_occurrence_response(o) for o in outcome.occurrences],
        gaps=[
            RecurrenceGapResponse(
                canonical_id=gap.slot.canonical_id,
                start_utc=gap.slot.start_utc,
                end_utc=gap.slot.end_utc,
                reason=gap.reason,
            )
            for gap in outcome.gaps
        ],
        complete=outcome.complete,
    )


@router.post(
    "/bookings/cleanup",
    response_model=CleanupBatchResponse,
    summary="Clean Up Abandoned Bookings",
    description="Cancel every pending booking older than the configured TTL."
)
def cleanup_abandoned_bookings(container: Container = Depends(get_container)):
    cancelled = container.bookings.cleanup_abandoned(container.settings.pending_booking_ttl)
    return CleanupBatchResponse(
        cancelled_ids=[o.occurrence_id for o in cancelled],
        total_count=len(cancelled),
    )


@router.post(
    "/bookings/{occurrence_id}/confirm",
    response_model=OccurrenceResponse,
    summary="Confirm Booking",
    description="Move a pending booking to scheduled once the student has access and credits."
)
def confirm_booking(occurrence_id: str, container: Container = Depends(get_container)):
    return _occurrence_response(container.bookings.confirm(occurrence_id))


@router.post(
    "/bookings/{occurrence_id}/cancel",
    response_model=OccurrenceResponse,
    summary="Cancel Booking"
)
def cancel_booking(
    occurrence_id: str,
    request: Optional[CancelRequest] = None,
    container: Container = Depends(get_container),
):
    reason = request.reason if request else None
    return _occurrence_response(container.bookings.cancel(occurrence_id, reason))


@router.post(
    "/bookings/{occurrence_id}/cleanup",
    response_model=CleanupResponse,
    summary="Cancel Abandoned Pending Booking",
    description="Called when the student leaves checkout. A no-op if the booking is no longer pending."
)
def cancel_pending_booking(occurrence_id: str, container: Container = Depends(get_container)):
    result = container.bookings.cancel_pending(occurrence_id)
    return CleanupResponse(occurrence_id=occurrence_id, cancelled=result is not None)


@router.post(
    "/bookings/{occurrence_id}/complete",
    response_model=OccurrenceResponse,
    summary="Complete Class"
)
def complete_booking(occurrence_id: str, container: Container = Depends(get_container)):
    return _occurrence_response(container.bookings.complete(occurrence_id))
