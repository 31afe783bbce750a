"""
Repository contracts used by the services.

Supabase-backed implementations live next to this module; tests provide
in-memory implementations with the same behavior (unique constraint on active
occurrences, compare-and-swap ledger upsert, atomic window replacement).
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from domain.availability import AvailabilityWindow
from domain.ledger import CreditLedgerState
from domain.occurrence import ClassOccurrence, ClassStatus


class AvailabilityRepository(Protocol):
    def list_windows(self, teacher_id: str, start_utc: datetime, end_utc: datetime) -> List[AvailabilityWindow]:
        """Windows overlapping `[start_utc, end_utc)`."""

    def replace_windows(
        self,
        teacher_id: str,
        range_start: datetime,
        range_end: datetime,
        windows: Sequence[AvailabilityWindow],
    ) -> int:
        """Atomically swap every window starting in the range for `windows`."""


class OccurrenceRepository(Protocol):
    def insert(self, occurrence: ClassOccurrence) -> ClassOccurrence:
        """Insert; raises SlotUnavailable when an active occurrence holds the same slot."""

    def get(self, occurrence_id: str) -> Optional[ClassOccurrence]:
        ...

    def transition(self, occurrence: ClassOccurrence, expected_status: ClassStatus) -> Optional[ClassOccurrence]:
        """Write `occurrence` only if the stored status still equals `expected_status`."""

    def list_holding(self, teacher_id: str, start_utc: datetime, end_utc: datetime) -> List[ClassOccurrence]:
        """Pending or scheduled occurrences overlapping `[start_utc, end_utc)`."""

    def list_pending_created_before(self, cutoff: datetime) -> List[ClassOccurrence]:
        ...


class LedgerRepository(Protocol):
    def get_by_student(self, student_id: str) -> Optional[CreditLedgerState]:
        ...

    def get_by_customer(self, customer_id: str) -> Optional[CreditLedgerState]:
        ...

    def upsert(self, state: CreditLedgerState, expected_version: int) -> CreditLedgerState:
        """
        Create-if-absent / update-if-unchanged keyed on student_id.

        Raises StaleLedgerWrite when the stored version differs from
        `expected_version` (0 means "must not exist yet").
        """


__all__ = ["AvailabilityRepository", "LedgerRepository", "OccurrenceRepository"]
