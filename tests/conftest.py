"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides in-memory repositories that
behave like the Supabase schema (unique active slot, compare-and-swap ledger
writes, atomic window replacement), a fake payment gateway and a fixed clock.
"""

from __future__ import annotations

import itertools
import json
import sys
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.availability import AvailabilityWindow  # noqa: E402
from domain.errors import SlotUnavailable, StaleLedgerWrite, UpstreamLookupFailed  # noqa: E402
from domain.ledger import CreditLedgerState  # noqa: E402
from domain.occurrence import ClassOccurrence, ClassStatus  # noqa: E402
from domain.plan import PlanCatalog  # noqa: E402
from services.availability_service import AvailabilityService  # noqa: E402
from services.booking_service import BookingService  # noqa: E402
from services.payment_gateway import ActiveSubscription, CheckoutDetails  # noqa: E402
from services.reconciliation_service import ReconciliationService  # noqa: E402
from services.recurrence_service import RecurrenceService  # noqa: E402

# Monday
NOW = datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class InMemoryAvailabilityRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.windows: List[AvailabilityWindow] = []
        self.fail_next_replace = False

    def add(self, *windows: AvailabilityWindow) -> None:
        with self._lock:
            self.windows.extend(windows)

    def list_windows(self, teacher_id: str, start_utc: datetime, end_utc: datetime) -> List[AvailabilityWindow]:
        with self._lock:
            return sorted(
                (
                    w for w in self.windows
                    if w.teacher_id == teacher_id and w.start_utc < end_utc and w.end_utc > start_utc
                ),
                key=lambda w: w.start_utc,
            )

    def replace_windows(
        self,
        teacher_id: str,
        range_start: datetime,
        range_end: datetime,
        windows: Sequence[AvailabilityWindow],
    ) -> int:
        with self._lock:
            if self.fail_next_replace:
                self.fail_next_replace = False
                raise RuntimeError("Failed to replace availability windows: connection reset")
            kept = [
                w for w in self.windows
                if not (w.teacher_id == teacher_id and range_start <= w.start_utc < range_end)
            ]
            self.windows = kept + list(windows)
            return len(windows)


class InMemoryOccurrenceRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rows: Dict[str, ClassOccurrence] = {}

    def insert(self, occurrence: ClassOccurrence) -> ClassOccurrence:
        with self._lock:
            for existing in self.rows.values():
                if (
                    existing.teacher_id == occurrence.teacher_id
                    and existing.start_utc == occurrence.start_utc
                    and existing.end_utc == occurrence.end_utc
                    and existing.status is not ClassStatus.CANCELLED
                ):
                    raise SlotUnavailable(occurrence.teacher_id, occurrence.start_utc, occurrence.end_utc)
            self.rows[occurrence.occurrence_id] = occurrence
            return occurrence

    def get(self, occurrence_id: str) -> Optional[ClassOccurrence]:
        with self._lock:
            return self.rows.get(occurrence_id)

    def transition(self, occurrence: ClassOccurrence, expected_status: ClassStatus) -> Optional[ClassOccurrence]:
        with self._lock:
            stored = self.rows.get(occurrence.occurrence_id)
            if stored is None or stored.status is not expected_status:
                return None
            updated = replace(
                stored,
                status=occurrence.status,
                cancellation_reason=occurrence.cancellation_reason,
            )
            self.rows[occurrence.occurrence_id] = updated
            return updated

    def list_holding(self, teacher_id: str, start_utc: datetime, end_utc: datetime) -> List[ClassOccurrence]:
        with self._lock:
            return sorted(
                (
                    o for o in self.rows.values()
                    if o.teacher_id == teacher_id
                    and o.status.holds_slot
                    and o.start_utc < end_utc
                    and o.end_utc > start_utc
                ),
                key=lambda o: o.start_utc,
            )

    def list_pending_created_before(self, cutoff: datetime) -> List[ClassOccurrence]:
        with self._lock:
            return [
                o for o in self.rows.values()
                if o.status is ClassStatus.PENDING and o.created_at is not None and o.created_at < cutoff
            ]


class InMemoryLedgerRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rows: Dict[str, CreditLedgerState] = {}
        self.writes = 0

    def seed(self, state: CreditLedgerState) -> CreditLedgerState:
        stored = replace(state, version=max(state.version, 1))
        self.rows[state.student_id] = stored
        return stored

    def get_by_student(self, student_id: str) -> Optional[CreditLedgerState]:
        with self._lock:
            return self.rows.get(student_id)

    def get_by_customer(self, customer_id: str) -> Optional[CreditLedgerState]:
        with self._lock:
            for state in self.rows.values():
                if state.customer_id == customer_id:
                    return state
            return None

    def upsert(self, state: CreditLedgerState, expected_version: int) -> CreditLedgerState:
        with self._lock:
            current = self.rows.get(state.student_id)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise StaleLedgerWrite(state.student_id, expected_version)
            written = replace(state, version=expected_version + 1)
            self.rows[state.student_id] = written
            self.writes += 1
            return written


class FakePaymentGateway:
    """Stands in for Stripe. A signature of "valid" passes verification."""

    def __init__(self) -> None:
        self.checkouts: Dict[str, CheckoutDetails] = {}
        self.active: Dict[str, List[ActiveSubscription]] = {}
        self.cancelled_at_period_end: List[str] = []
        self.stamped: Dict[str, Dict[str, str]] = {}
        self.fail_lookups = False
        self.fail_stamping = False

    def add_checkout(self, details: CheckoutDetails) -> None:
        self.checkouts[details.session_id] = details

    def add_active(self, subscription: ActiveSubscription) -> None:
        self.active.setdefault(subscription.customer_id or "", []).append(subscription)

    def retrieve_checkout(self, session_id: str) -> CheckoutDetails:
        if self.fail_lookups:
            raise UpstreamLookupFailed("Checkout session lookup failed: timed out")
        if session_id not in self.checkouts:
            raise UpstreamLookupFailed(f"No such checkout session: {session_id}")
        return self.checkouts[session_id]

    def list_active_subscriptions(self, customer_id: str) -> List[ActiveSubscription]:
        if self.fail_lookups:
            raise UpstreamLookupFailed("Subscription listing failed: timed out")
        return list(self.active.get(customer_id, []))

    def cancel_at_period_end(self, subscription_id: str) -> None:
        self.cancelled_at_period_end.append(subscription_id)
        for customer_id, subs in self.active.items():
            self.active[customer_id] = [
                replace(s, cancel_at_period_end=True) if s.subscription_id == subscription_id else s
                for s in subs
            ]

    def stamp_subscription_metadata(self, subscription_id: str, metadata: Mapping[str, str]) -> None:
        if self.fail_stamping:
            raise UpstreamLookupFailed("Updating subscription metadata failed")
        self.stamped[subscription_id] = dict(metadata)

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        if signature != "valid":
            raise ValueError("Webhook signature verification failed")
        return json.loads(payload)


def sequential_ids(prefix: str):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def availability_repo() -> InMemoryAvailabilityRepository:
    return InMemoryAvailabilityRepository()


@pytest.fixture
def occurrence_repo() -> InMemoryOccurrenceRepository:
    return InMemoryOccurrenceRepository()


@pytest.fixture
def ledger_repo() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog()


@pytest.fixture
def reconciler(ledger_repo, gateway, catalog, clock) -> ReconciliationService:
    return ReconciliationService(ledger_repo, gateway, catalog, clock=clock)


@pytest.fixture
def availability_service(availability_repo, occurrence_repo, clock) -> AvailabilityService:
    return AvailabilityService(availability_repo, occurrence_repo, clock=clock)


@pytest.fixture
def booking_service(occurrence_repo, availability_service, reconciler, clock) -> BookingService:
    return BookingService(
        occurrence_repo,
        availability_service,
        reconciler,
        clock=clock,
        id_factory=sequential_ids("class"),
    )


@pytest.fixture
def recurrence_service(booking_service) -> RecurrenceService:
    return RecurrenceService(booking_service, group_id_factory=sequential_ids("group"))
