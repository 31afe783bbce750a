"""
Tests for `domain/ledger.py`.

Covers contract rules:
- Replace on a new subscription, add on an upgrade/downgrade and on renewal.
- The same event applied twice leaves the ledger unchanged.
- Credits never go negative; an ended subscription keeps its credits.
- Replaying the journal reconstructs the balance.
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from domain.ledger import (
    JOURNAL_SCHEMA_VERSION,
    CreditLedgerState,
    NewSubscription,
    PlanChange,
    Renewal,
    SubscriptionEnded,
    SubscriptionJournal,
    apply_renewal,
    apply_subscription,
    apply_subscription_ended,
    is_duplicate,
    replay_credits,
)
from domain.plan import Plan, PlanCatalog, PlanInterval

NOW = datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc)
PERIOD_END = datetime(2025, 4, 3, 8, 0, tzinfo=timezone.utc)
ENTHUSIAST = Plan("price_enthusiast_monthly", "Enthusiast", PlanInterval.MONTHLY, 12)


def _new_subscription(subscription_id: str = "sub_1", units: int = 12, name: str = "Enthusiast") -> NewSubscription:
    return NewSubscription(
        student_id="student-1",
        customer_id="cus_1",
        subscription_id=subscription_id,
        price_id=f"price_{name.lower()}_monthly",
        plan_units=units,
        plan_name=name,
        plan_interval=PlanInterval.MONTHLY,
        period_end_utc=PERIOD_END,
    )


def _subscribed(credits: int = 0) -> CreditLedgerState:
    state = CreditLedgerState(student_id="student-1", customer_id="cus_1", credits=credits)
    return apply_subscription(state, _new_subscription(), prior_subscription_id=None, now=NOW)


def test_new_subscription_grants_units_and_access() -> None:
    state = _subscribed()

    assert state.credits == 12
    assert state.has_access
    assert state.has_entitlement
    assert state.package_name == "Enthusiast"
    assert state.package_expiration_utc == PERIOD_END
    assert state.subscription_info.current_subscription_id == "sub_1"
    assert not state.subscription_info.is_upgrade_or_downgrade
    assert len(state.subscription_info.plan_change_history) == 1


def test_new_subscription_without_prior_replaces_balance() -> None:
    fresh = CreditLedgerState(student_id="student-1", credits=3)
    rich = CreditLedgerState(student_id="student-1", credits=20)

    assert apply_subscription(fresh, _new_subscription(), prior_subscription_id=None, now=NOW).credits == 12

    replaced = apply_subscription(rich, _new_subscription(units=8, name="Explorer"), prior_subscription_id=None, now=NOW)
    assert replaced.credits == 8
    assert replaced.subscription_info.plan_change_history[-1].credits_added == -12


def test_same_subscription_event_is_a_duplicate() -> None:
    event = _new_subscription()
    state = _subscribed()

    assert is_duplicate(state, event)
    assert not is_duplicate(state, _new_subscription("sub_2"))


def test_upgrade_mid_cycle_adds_units() -> None:
    """5 credits left on Enthusiast, upgrade to a 24-unit Master plan -> 29."""

    state = CreditLedgerState(
        student_id="student-1",
        customer_id="cus_1",
        credits=5,
        has_access=True,
        package_name="Enthusiast",
        price_id="price_enthusiast_monthly",
        subscription_info=SubscriptionJournal(current_subscription_id="sub_old", plan_units=12),
    )
    upgrade = PlanChange(
        customer_id="cus_1",
        subscription_id="sub_new",
        from_price_id="price_enthusiast_monthly",
        to_price_id="price_master_monthly",
        new_plan_units=24,
        new_plan_name="Master",
        new_plan_interval=PlanInterval.MONTHLY,
        period_end_utc=PERIOD_END,
    )

    result = apply_subscription(state, upgrade, prior_subscription_id="sub_old", now=NOW)

    assert result.credits == 29
    assert result.subscription_info.is_upgrade_or_downgrade
    assert result.subscription_info.previous_subscription_id == "sub_old"
    assert result.subscription_info.current_subscription_id == "sub_new"
    assert len(result.subscription_info.plan_change_history) == 1
    entry = result.subscription_info.plan_change_history[-1]
    assert entry.credits_added == 24
    assert entry.total_credits_after_change == 29
    assert (entry.from_plan, entry.to_plan) == ("Enthusiast", "Master")
    assert is_duplicate(result, upgrade)


def test_downgrade_is_additive_too() -> None:
    state = apply_subscription(
        CreditLedgerState(student_id="student-1", credits=10),
        _new_subscription("sub_master", 16, "Master"),
        prior_subscription_id=None,
        now=NOW,
    )

    result = apply_subscription(state, _new_subscription("sub_explorer", 8, "Explorer"), prior_subscription_id="sub_master", now=NOW)

    assert result.credits == 24


def test_renewal_adds_plan_units() -> None:
    state = CreditLedgerState(student_id="student-1", customer_id="cus_1", credits=3, has_access=True)
    renewal = Renewal(customer_id="cus_1", price_id=ENTHUSIAST.price_id, period_end_utc=PERIOD_END, invoice_id="in_1")

    result = apply_renewal(state, renewal, plan=ENTHUSIAST, now=NOW)

    assert result.credits == 15
    assert result.package_expiration_utc == PERIOD_END
    assert is_duplicate(result, renewal)
    assert not is_duplicate(result, Renewal(customer_id="cus_1", price_id=ENTHUSIAST.price_id, invoice_id="in_2"))


def test_renewal_after_subscription_ended_does_not_restore_access() -> None:
    """Unordered delivery: the cycle invoice of sub_1 arrives after sub_1 ended."""

    ended = apply_subscription_ended(_subscribed(), SubscriptionEnded(customer_id="cus_1", subscription_id="sub_1"), now=NOW)
    renewal = Renewal("cus_1", ENTHUSIAST.price_id, period_end_utc=PERIOD_END, invoice_id="in_1", subscription_id="sub_1")

    result = apply_renewal(ended, renewal, plan=ENTHUSIAST, now=NOW + timedelta(minutes=1))

    assert result.credits == 24
    assert not result.has_access
    assert result.package_expiration_utc is None
    assert is_duplicate(result, renewal)


def test_late_renewal_of_superseded_subscription_keeps_new_plan() -> None:
    upgraded = apply_subscription(_subscribed(), _new_subscription("sub_2", 16, "Master"), prior_subscription_id="sub_1", now=NOW)
    renewal = Renewal("cus_1", ENTHUSIAST.price_id, period_end_utc=PERIOD_END, invoice_id="in_1", subscription_id="sub_1")

    result = apply_renewal(upgraded, renewal, plan=ENTHUSIAST, now=NOW + timedelta(minutes=1))

    assert result.credits == upgraded.credits + 12
    assert result.has_access
    assert result.package_name == "Master"
    assert result.price_id == "price_master_monthly"
    assert result.subscription_info.plan_units == 16
    assert replay_credits(result.subscription_info) == result.credits


def test_subscription_ended_revokes_access_and_keeps_credits() -> None:
    state = _subscribed()

    ended = apply_subscription_ended(state, SubscriptionEnded(customer_id="cus_1", subscription_id="sub_1"), now=NOW)

    assert ended.credits == 12
    assert not ended.has_access
    assert ended.package_expiration_utc is None
    assert not ended.has_entitlement
    assert is_duplicate(ended, SubscriptionEnded(customer_id="cus_1", subscription_id="sub_1"))


def test_end_of_superseded_subscription_keeps_access() -> None:
    upgraded = apply_subscription(_subscribed(), _new_subscription("sub_2", 16, "Master"), prior_subscription_id="sub_1", now=NOW)

    result = apply_subscription_ended(upgraded, SubscriptionEnded(customer_id="cus_1", subscription_id="sub_1"), now=NOW)

    assert result.has_access
    assert result.credits == upgraded.credits
    assert result.subscription_info.previous_subscription_id is None
    assert "sub_1" in result.subscription_info.ended_subscription_ids
    assert result.subscription_info.plan_change_history == upgraded.subscription_info.plan_change_history


def test_end_seen_before_subscription_does_not_grant_access() -> None:
    """Unordered delivery: the end of sub_2 arrives before sub_2 itself."""

    state = _subscribed()
    state = apply_subscription_ended(state, SubscriptionEnded(customer_id="cus_1", subscription_id="sub_2"), now=NOW)
    assert state.has_access  # sub_2 is not current yet

    result = apply_subscription(state, _new_subscription("sub_2", 16, "Master"), prior_subscription_id="sub_1", now=NOW)

    assert result.credits == 28
    assert not result.has_access


def test_debit_never_goes_negative() -> None:
    state = CreditLedgerState(student_id="student-1", credits=1)

    assert state.debited().credits == 0
    with pytest.raises(ValueError):
        state.debited().debited()
    with pytest.raises(ValueError):
        CreditLedgerState(student_id="student-1", credits=-1)


def test_replay_reconstructs_balance() -> None:
    catalog = PlanCatalog()
    state = _subscribed()
    state = apply_renewal(state, Renewal("cus_1", ENTHUSIAST.price_id, invoice_id="in_1"), plan=ENTHUSIAST, now=NOW + timedelta(days=30))
    master = catalog.get("price_master_monthly")
    state = apply_subscription(
        state,
        PlanChange("cus_1", "sub_2", ENTHUSIAST.price_id, master.price_id, master.units, master.name, master.interval),
        prior_subscription_id="sub_1",
        now=NOW + timedelta(days=40),
    )
    state = apply_subscription_ended(state, SubscriptionEnded("cus_1", "sub_2"), now=NOW + timedelta(days=70))

    assert state.credits == 12 + 12 + 16
    assert replay_credits(state.subscription_info) == state.credits


def test_journal_survives_storage_and_rejects_newer_schema() -> None:
    journal = _subscribed().subscription_info

    assert SubscriptionJournal.from_dict(journal.to_dict()) == journal
    assert SubscriptionJournal.from_dict(None) == SubscriptionJournal()
    with pytest.raises(ValueError):
        SubscriptionJournal.from_dict({"schema_version": JOURNAL_SCHEMA_VERSION + 1})


def test_ledger_state_is_immutable() -> None:
    state = _subscribed()
    with pytest.raises(FrozenInstanceError):
        state.credits = 100  # type: ignore[misc]


def test_plan_catalog_defaults_and_json_override() -> None:
    catalog = PlanCatalog()
    assert len(catalog) == 6
    assert catalog.get("price_explorer_yearly").units == 96
    assert catalog.get("price_unknown") is None

    custom = PlanCatalog.from_json('[{"price_id": "price_x", "name": "Master", "interval": "yearly", "units": 192}]')
    assert "price_x" in custom
    assert custom.get("price_x").interval is PlanInterval.YEARLY
    with pytest.raises(ValueError):
        PlanCatalog.from_json('{"price_id": "price_x"}')
