"""
Class occurrence repository (persistence).

This module provides *only* persistence operations for ClassOccurrence. The one
business rule it enforces is delegated to the database: the partial unique index
on (teacher_id, start_utc, end_utc) among non-cancelled rows, which turns a
concurrent double booking into SlotUnavailable.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from postgrest.exceptions import APIError

from domain.errors import SlotUnavailable
from domain.occurrence import ClassOccurrence, ClassStatus
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import Client, is_unique_violation

_CLASSES_TABLE: str = "classes"


def _row_to_occurrence(row: Mapping[str, Any]) -> ClassOccurrence:
    return ClassOccurrence(
        occurrence_id=str(row["occurrence_id"]),
        teacher_id=str(row["teacher_id"]),
        student_id=str(row["student_id"]),
        start_utc=parse_utc_datetime(row["start_utc"]),
        end_utc=parse_utc_datetime(row["end_utc"]),
        status=ClassStatus(str(row["status"])),
        created_at=parse_utc_datetime(row["created_at_utc"]) if row.get("created_at_utc") else None,
        recurring_group_id=row.get("recurring_group_id"),
        notes=row.get("notes"),
        cancellation_reason=row.get("cancellation_reason"),
    )


def _occurrence_to_payload(occurrence: ClassOccurrence) -> dict[str, Any]:
    return {
        "occurrence_id": occurrence.occurrence_id,
        "teacher_id": occurrence.teacher_id,
        "student_id": occurrence.student_id,
        "start_utc": to_iso_utc(occurrence.start_utc, name="start_utc"),
        "end_utc": to_iso_utc(occurrence.end_utc, name="end_utc"),
        "status": occurrence.status.value,
        "created_at_utc": to_iso_utc(occurrence.created_at, name="created_at") if occurrence.created_at else None,
        "recurring_group_id": occurrence.recurring_group_id,
        "notes": occurrence.notes,
        "cancellation_reason": occurrence.cancellation_reason,
    }


class SupabaseOccurrenceRepository:
    def __init__(self, client: Client):
        self._client = client

    def _rows(self, response: Any, action: str) -> List[Mapping[str, Any]]:
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to {action}: {error}")
        return getattr(response, "data", None) or []

    def insert(self, occurrence: ClassOccurrence) -> ClassOccurrence:
        try:
            response = self._client.table(_CLASSES_TABLE).insert(_occurrence_to_payload(occurrence)).execute()
        except APIError as e:
            if is_unique_violation(e):
                raise SlotUnavailable(occurrence.teacher_id, occurrence.start_utc, occurrence.end_utc) from e
            raise

        rows = self._rows(response, "insert class")
        return _row_to_occurrence(rows[0]) if rows else occurrence

    def get(self, occurrence_id: str) -> Optional[ClassOccurrence]:
        response = (
            self._client.table(_CLASSES_TABLE)
            .select("*")
            .eq("occurrence_id", occurrence_id)
            .limit(1)
            .execute()
        )
        rows = self._rows(response, "get class")
        if not rows:
            return None
        return _row_to_occurrence(rows[0])

    def transition(self, occurrence: ClassOccurrence, expected_status: ClassStatus) -> Optional[ClassOccurrence]:
        payload = {
            "status": occurrence.status.value,
            "cancellation_reason": occurrence.cancellation_reason,
            "updated_at_utc": datetime.now(timezone.utc).isoformat(),
        }
        response = (
            self._client.table(_CLASSES_TABLE)
            .update(payload)
            .eq("occurrence_id", occurrence.occurrence_id)
            .eq("status", expected_status.value)
            .execute()
        )

        rows = self._rows(response, "update class status")
        if not rows:
            return None
        return _row_to_occurrence(rows[0])

    def list_holding(self, teacher_id: str, start_utc: datetime, end_utc: datetime) -> List[ClassOccurrence]:
        response = (
            self._client.table(_CLASSES_TABLE)
            .select("*")
            .eq("teacher_id", teacher_id)
            .in_("status", [ClassStatus.PENDING.value, ClassStatus.SCHEDULED.value])
            .lt("start_utc", to_iso_utc(end_utc, name="end_utc"))
            .gt("end_utc", to_iso_utc(start_utc, name="start_utc"))
            .order("start_utc")
            .execute()
        )
        return [_row_to_occurrence(row) for row in self._rows(response, "list classes")]

    def list_pending_created_before(self, cutoff: datetime) -> List[ClassOccurrence]:
        response = (
            self._client.table(_CLASSES_TABLE)
            .select("*")
            .eq("status", ClassStatus.PENDING.value)
            .lt("created_at_utc", to_iso_utc(cutoff, name="cutoff"))
            .execute()
        )
        return [_row_to_occurrence(row) for row in self._rows(response, "list pending classes")]


__all__ = ["SupabaseOccurrenceRepository"]
