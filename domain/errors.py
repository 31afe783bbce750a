"""
Domain: error taxonomy for booking and entitlement reconciliation.

Validation errors (InvalidTimezone, HorizonExceeded, BookingRuleViolation) are
rejected at the boundary and never retried. Race outcomes (SlotUnavailable,
NotPending) are ordinary alternate results. UpstreamLookupFailed is the only
retryable class. UnknownCustomer is terminal.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class BookingEngineError(Exception):
    """Base class for every error raised by the booking engine."""

    retryable: bool = False


class InvalidTimezone(BookingEngineError):
    def __init__(self, zone_name: str):
        self.zone_name = zone_name
        super().__init__(f"Unknown timezone: {zone_name!r}")


class HorizonExceeded(BookingEngineError):
    def __init__(self, requested_end: datetime, horizon_end: datetime):
        self.requested_end = requested_end
        self.horizon_end = horizon_end
        super().__init__(
            f"Requested range ends at {requested_end.isoformat()}, "
            f"beyond the scheduling horizon ({horizon_end.isoformat()})"
        )


class SlotUnavailable(BookingEngineError):
    """The slot is not open, or another booking claimed it first."""

    def __init__(self, teacher_id: str, start_utc: datetime, end_utc: datetime):
        self.teacher_id = teacher_id
        self.start_utc = start_utc
        self.end_utc = end_utc
        super().__init__(
            f"Slot {start_utc.isoformat()} - {end_utc.isoformat()} "
            f"for teacher {teacher_id} is no longer available"
        )


class NotPending(BookingEngineError):
    def __init__(self, occurrence_id: str, status: str):
        self.occurrence_id = occurrence_id
        self.status = status
        super().__init__(f"Occurrence {occurrence_id} is {status}, not pending")


class OccurrenceNotFound(BookingEngineError):
    def __init__(self, occurrence_id: str):
        self.occurrence_id = occurrence_id
        super().__init__(f"Occurrence {occurrence_id} not found")


class BookingRuleViolation(BookingEngineError):
    """Minimum notice or duration limits were not met."""


class EntitlementRequired(BookingEngineError):
    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"Student {student_id} has no active access or no credits left")


class UpstreamLookupFailed(BookingEngineError):
    """The payment provider lookup failed or timed out; nothing was written."""

    retryable = True

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class UnknownCustomer(BookingEngineError):
    def __init__(self, customer_id: Optional[str], student_id: Optional[str] = None):
        self.customer_id = customer_id
        self.student_id = student_id
        super().__init__(f"No ledger found for customer {customer_id!r} (student {student_id!r})")


class CheckoutOwnershipMismatch(BookingEngineError):
    """A signed-in student tried to reconcile a checkout that belongs to someone else."""

    def __init__(self, session_id: str, actor_id: str):
        self.session_id = session_id
        self.actor_id = actor_id
        super().__init__(f"Checkout {session_id} does not belong to student {actor_id}")


class StaleLedgerWrite(BookingEngineError):
    """Optimistic-concurrency conflict on a ledger upsert."""

    retryable = True

    def __init__(self, student_id: str, expected_version: int):
        self.student_id = student_id
        self.expected_version = expected_version
        super().__init__(f"Ledger for student {student_id} changed since version {expected_version}")


__all__ = [
    "BookingEngineError",
    "BookingRuleViolation",
    "CheckoutOwnershipMismatch",
    "EntitlementRequired",
    "HorizonExceeded",
    "InvalidTimezone",
    "NotPending",
    "OccurrenceNotFound",
    "SlotUnavailable",
    "StaleLedgerWrite",
    "UnknownCustomer",
    "UpstreamLookupFailed",
]
