"""
Domain: per-student credit ledger, its subscription journal, and plan-change events.

Contract excerpts implemented here:
- The ledger is mutated only by reconciliation (plus the single "class consumed a
  credit" debit). Credits never go below zero.
- NewSubscription / PlanChange with no prior active subscription replace the
  balance with the plan's units; with a prior active subscription they add to it.
  Renewal adds the plan's units; a late renewal of an ended or superseded
  subscription never restores access. SubscriptionEnded revokes access and
  leaves credits untouched.
- A redelivered event (same subscription id, same invoice id, same ended
  subscription) is a no-op that returns the state unchanged.
- Every credit change appends one PlanChangeEntry, so replaying `credits_added`
  in date order reconstructs the balance (before class-consumption debits).

Everything here is pure; persistence and provider lookups live in services.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping, Optional, Tuple, Union

from .plan import Plan, PlanInterval
from .time import parse_utc_datetime, require_utc_timestamp, to_iso_utc

JOURNAL_SCHEMA_VERSION: int = 1


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True, slots=True)
class NewSubscription:
    student_id: Optional[str]
    customer_id: str
    subscription_id: str
    price_id: str
    plan_units: int
    plan_name: str
    plan_interval: PlanInterval
    period_end_utc: Optional[datetime] = None

    kind = "new_subscription"


@dataclass(frozen=True, slots=True)
class Renewal:
    customer_id: str
    price_id: str
    period_end_utc: Optional[datetime] = None
    invoice_id: Optional[str] = None
    subscription_id: Optional[str] = None

    kind = "renewal"


@dataclass(frozen=True, slots=True)
class PlanChange:
    customer_id: str
    subscription_id: str
    from_price_id: Optional[str]
    to_price_id: str
    new_plan_units: int
    new_plan_name: str
    new_plan_interval: PlanInterval
    period_end_utc: Optional[datetime] = None
    student_id: Optional[str] = None

    kind = "plan_change"


@dataclass(frozen=True, slots=True)
class SubscriptionEnded:
    customer_id: str
    subscription_id: Optional[str] = None

    kind = "subscription_ended"


PlanEvent = Union[NewSubscription, Renewal, PlanChange, SubscriptionEnded]


# ============================================================================
# Journal
# ============================================================================

@dataclass(frozen=True, slots=True)
class PlanChangeEntry:
    date: datetime
    kind: str
    from_plan: Optional[str]
    to_plan: Optional[str]
    credits_added: int
    total_credits_after_change: int
    reference: Optional[str] = None  # provider subscription or invoice id

    def __post_init__(self) -> None:
        require_utc_timestamp("date", self.date)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": to_iso_utc(self.date, name="date"),
            "kind": self.kind,
            "from_plan": self.from_plan,
            "to_plan": self.to_plan,
            "credits_added": self.credits_added,
            "total_credits_after_change": self.total_credits_after_change,
            "reference": self.reference,
        }

    @staticmethod
    def from_dict(row: Mapping[str, Any]) -> "PlanChangeEntry":
        return PlanChangeEntry(
            date=parse_utc_datetime(row["date"]),
            kind=str(row.get("kind", "unknown")),
            from_plan=row.get("from_plan"),
            to_plan=row.get("to_plan"),
            credits_added=int(row.get("credits_added", 0)),
            total_credits_after_change=int(row.get("total_credits_after_change", 0)),
            reference=row.get("reference"),
        )


@dataclass(frozen=True, slots=True)
class SubscriptionJournal:
    """Versioned, append-only record of every plan change applied to a ledger."""

    current_subscription_id: Optional[str] = None
    previous_subscription_id: Optional[str] = None
    plan_interval: Optional[PlanInterval] = None
    plan_units: int = 0
    is_upgrade_or_downgrade: bool = False
    plan_change_history: Tuple[PlanChangeEntry, ...] = ()
    ended_subscription_ids: Tuple[str, ...] = ()
    last_updated: Optional[datetime] = None
    schema_version: int = JOURNAL_SCHEMA_VERSION

    def has_reference(self, reference: Optional[str], *kinds: str) -> bool:
        """True if an entry carries `reference` (restricted to `kinds` when given)."""

        if not reference:
            return False
        return any(
            entry.reference == reference and (not kinds or entry.kind in kinds)
            for entry in self.plan_change_history
        )

    def appended(self, entry: PlanChangeEntry, **changes: Any) -> "SubscriptionJournal":
        return replace(
            self,
            plan_change_history=self.plan_change_history + (entry,),
            last_updated=entry.date,
            **changes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "current_subscription_id": self.current_subscription_id,
            "previous_subscription_id": self.previous_subscription_id,
            "plan_interval": self.plan_interval.value if self.plan_interval else None,
            "plan_units": self.plan_units,
            "is_upgrade_or_downgrade": self.is_upgrade_or_downgrade,
            "plan_change_history": [entry.to_dict() for entry in self.plan_change_history],
            "ended_subscription_ids": list(self.ended_subscription_ids),
            "last_updated": to_iso_utc(self.last_updated, name="last_updated") if self.last_updated else None,
        }

    @staticmethod
    def from_dict(row: Optional[Mapping[str, Any]]) -> "SubscriptionJournal":
        if not row:
            return SubscriptionJournal()
        version = int(row.get("schema_version", JOURNAL_SCHEMA_VERSION))
        if version > JOURNAL_SCHEMA_VERSION:
            raise ValueError(f"Unsupported subscription journal schema version: {version}")
        interval = row.get("plan_interval")
        return SubscriptionJournal(
            current_subscription_id=row.get("current_subscription_id"),
            previous_subscription_id=row.get("previous_subscription_id"),
            plan_interval=PlanInterval(interval) if interval else None,
            plan_units=int(row.get("plan_units", 0)),
            is_upgrade_or_downgrade=bool(row.get("is_upgrade_or_downgrade", False)),
            plan_change_history=tuple(
                PlanChangeEntry.from_dict(entry) for entry in row.get("plan_change_history") or ()
            ),
            ended_subscription_ids=tuple(row.get("ended_subscription_ids") or ()),
            last_updated=parse_utc_datetime(row["last_updated"]) if row.get("last_updated") else None,
            schema_version=JOURNAL_SCHEMA_VERSION,
        )


def replay_credits(journal: SubscriptionJournal) -> int:
    """Rebuild the balance from zero by applying `credits_added` in date order."""

    ordered = sorted(journal.plan_change_history, key=lambda entry: entry.date)
    return sum(entry.credits_added for entry in ordered)


# ============================================================================
# Ledger state
# ============================================================================

@dataclass(frozen=True, slots=True)
class CreditLedgerState:
    """
    Credit balance and access entitlement of one student.

    `version` is 0 for a ledger that has never been persisted and increases by
    one on every write (optimistic concurrency).
    """

    student_id: str
    customer_id: Optional[str] = None
    credits: int = 0
    has_access: bool = False
    package_name: Optional[str] = None
    package_expiration_utc: Optional[datetime] = None
    price_id: Optional[str] = None
    subscription_info: SubscriptionJournal = field(default_factory=SubscriptionJournal)
    version: int = 0

    def __post_init__(self) -> None:
        if self.credits < 0:
            raise ValueError("credits must be >= 0")
        if self.package_expiration_utc is not None:
            require_utc_timestamp("package_expiration_utc", self.package_expiration_utc)

    @property
    def has_entitlement(self) -> bool:
        return self.has_access and self.credits > 0

    def debited(self, amount: int = 1) -> "CreditLedgerState":
        """Consume class credits. Raises ValueError rather than going negative."""

        if amount <= 0:
            raise ValueError("amount must be positive")
        if self.credits < amount:
            raise ValueError(f"Student {self.student_id} has {self.credits} credits, cannot debit {amount}")
        return replace(self, credits=self.credits - amount)


# ============================================================================
# Transitions
# ============================================================================

def is_duplicate(state: CreditLedgerState, event: PlanEvent) -> bool:
    """True when `event` has already been applied to `state`."""

    journal = state.subscription_info
    if isinstance(event, (NewSubscription, PlanChange)):
        return (
            journal.current_subscription_id == event.subscription_id
            or journal.has_reference(event.subscription_id, NewSubscription.kind, PlanChange.kind)
        )
    if isinstance(event, Renewal):
        return journal.has_reference(event.invoice_id, Renewal.kind)
    if isinstance(event, SubscriptionEnded):
        if event.subscription_id:
            return event.subscription_id in journal.ended_subscription_ids
        return not state.has_access and state.package_expiration_utc is None
    raise TypeError(f"Unsupported event type: {type(event)!r}")


def apply_subscription(
    state: CreditLedgerState,
    event: Union[NewSubscription, PlanChange],
    *,
    prior_subscription_id: Optional[str],
    now: datetime,
) -> CreditLedgerState:
    """
    Apply a new subscription or an upgrade/downgrade.

    With a prior active subscription the new units are added to the balance.
    Without one the balance is replaced by the plan's units.
    """

    if isinstance(event, NewSubscription):
        units, name, interval, price_id = event.plan_units, event.plan_name, event.plan_interval, event.price_id
    else:
        units, name, interval, price_id = (
            event.new_plan_units,
            event.new_plan_name,
            event.new_plan_interval,
            event.to_price_id,
        )

    is_change = prior_subscription_id is not None
    if is_change:
        total = state.credits + units
    else:
        total = units

    journal = state.subscription_info
    # an out-of-order end for this subscription may already have been seen
    still_active = event.subscription_id not in journal.ended_subscription_ids

    entry = PlanChangeEntry(
        date=now,
        kind=event.kind,
        from_plan=state.package_name,
        to_plan=name,
        credits_added=total - state.credits,
        total_credits_after_change=total,
        reference=event.subscription_id,
    )
    return replace(
        state,
        customer_id=event.customer_id,
        credits=total,
        has_access=still_active,
        package_name=name,
        package_expiration_utc=event.period_end_utc if still_active else None,
        price_id=price_id,
        subscription_info=journal.appended(
            entry,
            current_subscription_id=event.subscription_id,
            previous_subscription_id=prior_subscription_id,
            plan_interval=interval,
            plan_units=units,
            is_upgrade_or_downgrade=is_change,
        ),
    )


def apply_renewal(state: CreditLedgerState, event: Renewal, *, plan: Plan, now: datetime) -> CreditLedgerState:
    """
    Add a paid period's units.

    A renewal for a subscription that already ended, or that an upgrade
    superseded, still adds its units but leaves access, package and price alone.
    """

    journal = state.subscription_info
    total = state.credits + plan.units
    entry = PlanChangeEntry(
        date=now,
        kind=event.kind,
        from_plan=state.package_name,
        to_plan=plan.name,
        credits_added=plan.units,
        total_credits_after_change=total,
        reference=event.invoice_id,
    )

    stale = event.subscription_id is not None and (
        event.subscription_id in journal.ended_subscription_ids
        or (
            journal.current_subscription_id is not None
            and event.subscription_id != journal.current_subscription_id
        )
    )
    if stale:
        return replace(state, credits=total, subscription_info=journal.appended(entry))

    return replace(
        state,
        credits=total,
        has_access=True,
        package_name=plan.name,
        package_expiration_utc=event.period_end_utc,
        price_id=plan.price_id,
        subscription_info=state.subscription_info.appended(
            entry,
            plan_interval=plan.interval,
            plan_units=plan.units,
            is_upgrade_or_downgrade=False,
        ),
    )


def apply_subscription_ended(state: CreditLedgerState, event: SubscriptionEnded, *, now: datetime) -> CreditLedgerState:
    """
    Revoke access when the current subscription ends.

    The end of a superseded subscription (the old plan finishing its period after
    an upgrade) is only remembered; access and credits stay as they are.
    """

    journal = state.subscription_info
    ended = journal.ended_subscription_ids
    if event.subscription_id:
        ended = ended + (event.subscription_id,)

    superseded = (
        event.subscription_id is not None
        and journal.current_subscription_id is not None
        and event.subscription_id != journal.current_subscription_id
    )
    if superseded:
        previous = journal.previous_subscription_id
        if previous == event.subscription_id:
            previous = None
        return replace(
            state,
            subscription_info=replace(
                journal,
                ended_subscription_ids=ended,
                previous_subscription_id=previous,
                last_updated=now,
            ),
        )

    entry = PlanChangeEntry(
        date=now,
        kind=event.kind,
        from_plan=state.package_name,
        to_plan=None,
        credits_added=0,
        total_credits_after_change=state.credits,
        reference=event.subscription_id,
    )
    return replace(
        state,
        has_access=False,
        package_expiration_utc=None,
        subscription_info=journal.appended(entry, ended_subscription_ids=ended),
    )


__all__ = [
    "CreditLedgerState",
    "JOURNAL_SCHEMA_VERSION",
    "NewSubscription",
    "PlanChange",
    "PlanChangeEntry",
    "PlanEvent",
    "Renewal",
    "SubscriptionEnded",
    "SubscriptionJournal",
    "apply_renewal",
    "apply_subscription",
    "apply_subscription_ended",
    "is_duplicate",
    "replay_credits",
]
