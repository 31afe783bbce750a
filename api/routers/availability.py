"""
Availability API Endpoints.

Endpoints for listing a teacher's open slots and regenerating their availability.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from api.dependencies import Container, get_container
from api.models import (
    AvailabilityUpdateRequest,
    AvailabilityUpdateResponse,
    SlotListResponse,
    SlotResponse,
)
from domain.availability import WeeklyAvailabilityRule, WeeklyTemplate
from domain.time import Weekday, parse_utc_datetime
from domain.time_slot import resolve_zone, to_local

router = APIRouter()


@router.get(
    "/teachers/{teacher_id}/slots",
    response_model=SlotListResponse,
    summary="List Open Slots",
    description="Open 30-minute slots for a teacher within a range of at most 30 days."
)
def list_open_slots(
    teacher_id: str,
    start: datetime = Query(..., description="Range start (ISO-8601, UTC if no offset)"),
    end: datetime = Query(..., description="Range end (ISO-8601, UTC if no offset)"),
    timezone: str = Query("UTC", description="IANA timezone for the local display fields"),
    container: Container = Depends(get_container),
):
    """
    List open slots.

    Slots are the teacher's availability minus pending and scheduled classes and
    blocked windows. `canonical_id` is the same for every viewer; `local_start`
    and `local_end` are rendered in the requested timezone.

    **Example:** `GET /api/v1/teachers/teacher-123/slots?start=2025-03-10T00:00:00Z&end=2025-03-11T00:00:00Z&timezone=America/New_York`
    """
    zone = resolve_zone(timezone)
    slots = container.availability.open_slots(teacher_id, parse_utc_datetime(start), parse_utc_datetime(end))

    items = [
        SlotResponse(
            canonical_id=slot.canonical_id,
            start_utc=slot.start_utc,
            end_utc=slot.end_utc,
            local_start=to_local(slot.start_utc, zone.key).to_naive().isoformat(),
            local_end=to_local(slot.end_utc, zone.key).to_naive().isoformat(),
        )
        for slot in slots
    ]
    return SlotListResponse(teacher_id=teacher_id, timezone=timezone, slots=items, total_count=len(items))


@router.put(
    "/teachers/{teacher_id}/availability",
    response_model=AvailabilityUpdateResponse,
    summary="Regenerate Availability",
    description="Replace the teacher's windows in the range with ones generated from a weekly template."
)
def regenerate_availability(
    teacher_id: str,
    request: AvailabilityUpdateRequest,
    container: Container = Depends(get_container),
):
    template = WeeklyTemplate(
        timezone=request.timezone,
        rules=tuple(
            WeeklyAvailabilityRule(
                day_of_week=Weekday(rule.day_of_week),
                start_time=rule.start_time,
                end_time=rule.end_time,
            )
            for rule in request.rules
        ),
    )
    written = container.availability.regenerate(teacher_id, template, request.first_day, request.days)
    range_start, range_end = template.range_bounds(request.first_day, request.days)
    return AvailabilityUpdateResponse(
        teacher_id=teacher_id,
        windows_written=written,
        range_start_utc=range_start,
        range_end_utc=range_end,
    )
