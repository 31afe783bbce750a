"""
Domain: class occurrences and their lifecycle.

    Pending   -> Scheduled | Cancelled
    Scheduled -> Completed | Cancelled

Pending and Cancelled are the only states reachable without entitlement
confirmation. Transitions return new instances; an occurrence is never mutated.
Siblings sharing a recurring_group_id are independent: cancelling one does not
cascade.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import BookingRuleViolation, NotPending
from .time import require_utc_timestamp
from .time_slot import TimeSlot


class ClassStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def holds_slot(self) -> bool:
        """Pending and scheduled occurrences keep their slot out of the open set."""

        return self in (ClassStatus.PENDING, ClassStatus.SCHEDULED)


@dataclass(frozen=True, slots=True)
class ClassOccurrence:
    occurrence_id: str
    teacher_id: str
    student_id: str
    start_utc: datetime
    end_utc: datetime
    status: ClassStatus = ClassStatus.PENDING
    created_at: Optional[datetime] = None
    recurring_group_id: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("start_utc", self.start_utc)
        require_utc_timestamp("end_utc", self.end_utc)
        if self.start_utc >= self.end_utc:
            raise ValueError("start_utc must be before end_utc")
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(start_utc=self.start_utc, end_utc=self.end_utc)

    def confirmed(self) -> "ClassOccurrence":
        """Pending -> Scheduled. A duplicate confirm of a scheduled class is a no-op."""

        if self.status is ClassStatus.SCHEDULED:
            return self
        if self.status is not ClassStatus.PENDING:
            raise NotPending(self.occurrence_id, self.status.value)
        return replace(self, status=ClassStatus.SCHEDULED)

    def cancelled(self, reason: Optional[str] = None) -> "ClassOccurrence":
        if self.status is ClassStatus.CANCELLED:
            return self
        if self.status is ClassStatus.COMPLETED:
            raise BookingRuleViolation(f"Occurrence {self.occurrence_id} is already completed")
        return replace(self, status=ClassStatus.CANCELLED, cancellation_reason=reason)

    def completed(self, now: datetime) -> "ClassOccurrence":
        require_utc_timestamp("now", now)
        if self.status is ClassStatus.COMPLETED:
            return self
        if self.status is not ClassStatus.SCHEDULED:
            raise BookingRuleViolation(
                f"Occurrence {self.occurrence_id} is {self.status.value}; only scheduled classes complete"
            )
        if now < self.end_utc:
            raise BookingRuleViolation(f"Occurrence {self.occurrence_id} has not ended yet")
        return replace(self, status=ClassStatus.COMPLETED)


__all__ = ["ClassOccurrence", "ClassStatus"]
