"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Availability Models
# ============================================================================

class SlotResponse(BaseModel):
    """One open 30-minute slot."""
    canonical_id: str  # "2025-03-10-09:00-09:30" (UTC)
    start_utc: datetime
    end_utc: datetime
    local_start: str  # wall clock in the requested timezone
    local_end: str

    class Config:
        json_schema_extra = {
            "example": {
                "canonical_id": "2025-03-10-14:00-14:30",
                "start_utc": "2025-03-10T14:00:00Z",
                "end_utc": "2025-03-10T14:30:00Z",
                "local_start": "2025-03-10T10:00:00",
                "local_end": "2025-03-10T10:30:00"
            }
        }


class SlotListResponse(BaseModel):
    """Response for open-slot listing."""
    teacher_id: str
    timezone: str
    slots: List[SlotResponse]
    total_count: int


class AvailabilityRuleRequest(BaseModel):
    """One weekly block in the teacher's own timezone."""
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: time
    end_time: time


class AvailabilityUpdateRequest(BaseModel):
    """Request to regenerate a teacher's availability from a weekly template."""
    timezone: str = Field(..., description="IANA timezone of the rules, e.g. America/New_York")
    rules: List[AvailabilityRuleRequest]
    first_day: date
    days: int = Field(30, ge=1, le=30)

    class Config:
        json_schema_extra = {
            "example": {
                "timezone": "America/New_York",
                "rules": [
                    {"day_of_week": 1, "start_time": "09:00", "end_time": "12:00"},
                    {"day_of_week": 3, "start_time": "14:00", "end_time": "18:00"}
                ],
                "first_day": "2025-03-10",
                "days": 30
            }
        }


class AvailabilityUpdateResponse(BaseModel):
    teacher_id: str
    windows_written: int
    range_start_utc: datetime
    range_end_utc: datetime


# ============================================================================
# Booking Models
# ============================================================================

class BookingRequest(BaseModel):
    """Request to create a pending booking."""
    teacher_id: str
    student_id: str
    start_utc: datetime
    end_utc: datetime
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "teacher_id": "teacher-123",
                "student_id": "student-456",
                "start_utc": "2025-03-10T14:00:00Z",
                "end_utc": "2025-03-10T15:00:00Z",
                "notes": "Conversation practice"
            }
        }


class OccurrenceResponse(BaseModel):
    """A class occurrence."""
    occurrence_id: str
    teacher_id: str
    student_id: str
    canonical_id: str
    start_utc: datetime
    end_utc: datetime
    status: str  # "pending", "scheduled", "completed" or "cancelled"
    recurring_group_id: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None


class RecurringBookingRequest(BaseModel):
    """Request to book a weekly series. Give exactly one of after_count / end_date."""
    teacher_id: str
    student_id: str
    days_of_week: List[int] = Field(..., min_length=1, description="0 = Sunday ... 6 = Saturday")
    start_time: time
    duration_minutes: int = Field(..., gt=0)
    timezone: str = "UTC"
    starting_from: date
    after_count: Optional[int] = Field(None, ge=1, le=30)
    end_date: Optional[date] = None
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "teacher_id": "teacher-123",
                "student_id": "student-456",
                "days_of_week": [1, 3],
                "start_time": "18:00",
                "duration_minutes": 60,
                "timezone": "Europe/Madrid",
                "starting_from": "2025-03-14",
                "after_count": 20
            }
        }


class RecurrenceGapResponse(BaseModel):
    canonical_id: str
    start_utc: datetime
    end_utc: datetime
    reason: str


class RecurringBookingResponse(BaseModel):
    group_id: str
    occurrences: List[OccurrenceResponse]
    gaps: List[RecurrenceGapResponse]
    complete: bool


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class CleanupResponse(BaseModel):
    occurrence_id: str
    cancelled: bool


class CleanupBatchResponse(BaseModel):
    cancelled_ids: List[str]
    total_count: int


# ============================================================================
# Billing Models
# ============================================================================

class PlanChangeEntryResponse(BaseModel):
    date: datetime
    kind: str
    from_plan: Optional[str] = None
    to_plan: Optional[str] = None
    credits_added: int
    total_credits_after_change: int


class LedgerResponse(BaseModel):
    """Credit ledger of one student."""
    student_id: str
    credits: int
    has_access: bool
    package_name: Optional[str] = None
    package_expiration_utc: Optional[datetime] = None
    price_id: Optional[str] = None
    current_subscription_id: Optional[str] = None
    is_upgrade_or_downgrade: bool = False
    plan_change_history: List[PlanChangeEntryResponse] = []

    class Config:
        json_schema_extra = {
            "example": {
                "student_id": "student-456",
                "credits": 29,
                "has_access": True,
                "package_name": "Master",
                "package_expiration_utc": "2025-04-10T00:00:00Z",
                "price_id": "price_master_monthly",
                "current_subscription_id": "sub_123",
                "is_upgrade_or_downgrade": True,
                "plan_change_history": []
            }
        }


class CheckoutReconcileRequest(BaseModel):
    """Sent by the client right after returning from checkout."""
    session_id: str = Field(..., min_length=1, description="Checkout session id")


class CheckoutReconcileResponse(BaseModel):
    status: str  # "reconciled" or "processing"
    message: str
    ledger: Optional[LedgerResponse] = None


class WebhookResponse(BaseModel):
    received: bool
    handled: bool
    event_type: str
    note: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
    retryable: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "error": "SlotUnavailable",
                "detail": "Slot no longer available, please pick another.",
                "status_code": 409,
                "retryable": False
            }
        }
