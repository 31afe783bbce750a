"""
Availability repository (persistence).

Reads teacher availability windows and replaces a range of them atomically via
the `replace_teacher_availability` PostgreSQL function (see
supabase/migrations), so a failed regeneration leaves the previous windows in
place.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Sequence

from domain.availability import AvailabilityWindow
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import Client

# Supabase table name for availability windows.
# Keep this aligned with your database schema.
_WINDOWS_TABLE: str = "teacher_availability"


def _row_to_window(row: Mapping[str, Any]) -> AvailabilityWindow:
    return AvailabilityWindow(
        teacher_id=str(row["teacher_id"]),
        start_utc=parse_utc_datetime(row["start_utc"]),
        end_utc=parse_utc_datetime(row["end_utc"]),
        is_available=bool(row.get("is_available", True)),
        window_id=str(row["window_id"]) if row.get("window_id") else None,
    )


def _window_to_payload(window: AvailabilityWindow) -> dict[str, Any]:
    return {
        "teacher_id": window.teacher_id,
        "start_utc": to_iso_utc(window.start_utc, name="start_utc"),
        "end_utc": to_iso_utc(window.end_utc, name="end_utc"),
        "is_available": window.is_available,
        "slot_key": window.canonical_id,
    }


class SupabaseAvailabilityRepository:
    def __init__(self, client: Client):
        self._client = client

    def list_windows(self, teacher_id: str, start_utc: datetime, end_utc: datetime) -> List[AvailabilityWindow]:
        response = (
            self._client.table(_WINDOWS_TABLE)
            .select("*")
            .eq("teacher_id", teacher_id)
            .lt("start_utc", to_iso_utc(end_utc, name="end_utc"))
            .gt("end_utc", to_iso_utc(start_utc, name="start_utc"))
            .order("start_utc")
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list availability windows: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_window(row) for row in rows]

    def replace_windows(
        self,
        teacher_id: str,
        range_start: datetime,
        range_end: datetime,
        windows: Sequence[AvailabilityWindow],
    ) -> int:
        for window in windows:
            if window.teacher_id != teacher_id:
                raise ValueError(f"Window belongs to teacher {window.teacher_id}, not {teacher_id}")

        response = self._client.rpc(
            "replace_teacher_availability",
            {
                "p_teacher_id": teacher_id,
                "p_range_start": to_iso_utc(range_start, name="range_start"),
                "p_range_end": to_iso_utc(range_end, name="range_end"),
                "p_windows": [_window_to_payload(w) for w in windows],
            },
        ).execute()

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to replace availability windows: {error}")

        data = getattr(response, "data", None)
        return int(data) if data is not None else len(windows)


__all__ = ["SupabaseAvailabilityRepository"]
