"""
Student ledger repository (persistence).

One row per student (unique on student_id). Writes are compare-and-swap on the
`version` column: insert when the caller expects no row, otherwise update only
where the stored version still matches. Losing either race raises
StaleLedgerWrite so the reconciler can re-read and re-apply.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping, Optional

from postgrest.exceptions import APIError

from domain.errors import StaleLedgerWrite
from domain.ledger import CreditLedgerState, SubscriptionJournal
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import Client, is_unique_violation

_LEDGERS_TABLE: str = "student_ledgers"


def _row_to_ledger(row: Mapping[str, Any]) -> CreditLedgerState:
    return CreditLedgerState(
        student_id=str(row["student_id"]),
        customer_id=row.get("customer_id"),
        credits=int(row.get("credits") or 0),
        has_access=bool(row.get("has_access", False)),
        package_name=row.get("package_name"),
        package_expiration_utc=(
            parse_utc_datetime(row["package_expiration_utc"]) if row.get("package_expiration_utc") else None
        ),
        price_id=row.get("price_id"),
        subscription_info=SubscriptionJournal.from_dict(row.get("subscription_info")),
        version=int(row.get("version") or 0),
    )


def _ledger_to_payload(state: CreditLedgerState) -> dict[str, Any]:
    expiration = state.package_expiration_utc
    return {
        "student_id": state.student_id,
        "customer_id": state.customer_id,
        "credits": state.credits,
        "has_access": state.has_access,
        "package_name": state.package_name,
        "package_expiration_utc": to_iso_utc(expiration, name="package_expiration_utc") if expiration else None,
        "price_id": state.price_id,
        "subscription_info": state.subscription_info.to_dict(),
        "version": state.version,
    }


class SupabaseLedgerRepository:
    def __init__(self, client: Client):
        self._client = client

    def _first(self, column: str, value: str) -> Optional[CreditLedgerState]:
        response = (
            self._client.table(_LEDGERS_TABLE)
            .select("*")
            .eq(column, value)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch ledger: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_ledger(rows[0])

    def get_by_student(self, student_id: str) -> Optional[CreditLedgerState]:
        return self._first("student_id", student_id)

    def get_by_customer(self, customer_id: str) -> Optional[CreditLedgerState]:
        return self._first("customer_id", customer_id)

    def upsert(self, state: CreditLedgerState, expected_version: int) -> CreditLedgerState:
        written = replace(state, version=expected_version + 1)
        payload = _ledger_to_payload(written)

        if expected_version == 0:
            try:
                response = self._client.table(_LEDGERS_TABLE).insert(payload).execute()
            except APIError as e:
                if is_unique_violation(e):
                    raise StaleLedgerWrite(state.student_id, expected_version) from e
                raise
        else:
            response = (
                self._client.table(_LEDGERS_TABLE)
                .update(payload)
                .eq("student_id", state.student_id)
                .eq("version", expected_version)
                .execute()
            )

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to write ledger: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            raise StaleLedgerWrite(state.student_id, expected_version)
        return _row_to_ledger(rows[0])


__all__ = ["SupabaseLedgerRepository"]
