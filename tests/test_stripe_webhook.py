"""
Tests for `services/stripe_webhook.py`.

Covers event mapping onto ledger events and the shared reconciliation path.
"""

from __future__ import annotations

import json

import pytest

from conftest import utc
from domain.errors import UpstreamLookupFailed
from services.payment_gateway import ActiveSubscription, CheckoutDetails
from services.stripe_webhook import StripeWebhookHandler

PERIOD_END_EPOCH = 1743667200  # 2025-04-03T08:00:00Z


@pytest.fixture
def handler(gateway, reconciler) -> StripeWebhookHandler:
    return StripeWebhookHandler(gateway, reconciler)


@pytest.fixture
def subscribed(gateway, reconciler):
    gateway.add_checkout(
        CheckoutDetails("cs_1", "cus_1", "price_enthusiast_monthly", "sub_1", "student-1", True, utc(2025, 4, 3, 8, 0))
    )
    gateway.add_active(ActiveSubscription("sub_1", "cus_1", "price_enthusiast_monthly"))
    return reconciler.reconcile_checkout("cs_1", actor_id="student-1")


def _payload(event_type: str, obj: dict, event_id: str = "evt_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


def test_invalid_signature_is_rejected(handler) -> None:
    with pytest.raises(ValueError):
        handler.handle(_payload("invoice.paid", {}), "forged")
    with pytest.raises(ValueError):
        handler.handle(_payload("invoice.paid", {}), None)


def test_checkout_completed_before_any_ledger_is_dropped(handler, gateway, ledger_repo) -> None:
    gateway.add_checkout(CheckoutDetails("cs_1", "cus_1", "price_enthusiast_monthly", "sub_1", "student-1", True))

    outcome = handler.handle(_payload("checkout.session.completed", {"id": "cs_1", "client_reference_id": "student-1"}), "valid")

    assert not outcome.handled
    assert outcome.note == "unknown_customer"
    assert ledger_repo.rows == {}


def test_checkout_completed_after_fallback_is_a_no_op(handler, subscribed, ledger_repo) -> None:
    outcome = handler.handle(_payload("checkout.session.completed", {"id": "cs_1", "client_reference_id": "student-1"}), "valid")

    assert outcome.handled
    assert outcome.ledger == subscribed
    assert ledger_repo.writes == 1


def test_checkout_lookup_failure_propagates_for_retry(handler, gateway, subscribed) -> None:
    gateway.fail_lookups = True

    with pytest.raises(UpstreamLookupFailed):
        handler.handle(_payload("checkout.session.completed", {"id": "cs_1"}), "valid")


def test_subscription_cycle_invoice_is_a_renewal(handler, subscribed) -> None:
    invoice = {
        "id": "in_1",
        "customer": "cus_1",
        "subscription": "sub_1",
        "billing_reason": "subscription_cycle",
        "lines": {"data": [{"price": {"id": "price_enthusiast_monthly"}, "period": {"end": PERIOD_END_EPOCH}}]},
    }

    first = handler.handle(_payload("invoice.paid", invoice), "valid")
    again = handler.handle(_payload("invoice.paid", invoice, event_id="evt_2"), "valid")

    assert first.handled
    assert first.ledger.credits == 24
    assert first.ledger.package_expiration_utc == utc(2025, 4, 3, 8, 0)
    assert again.ledger.credits == 24


def test_renewal_reads_newer_invoice_layout(handler, subscribed) -> None:
    invoice = {
        "id": "in_2",
        "customer": "cus_1",
        "billing_reason": "subscription_cycle",
        "parent": {"subscription_details": {"subscription": "sub_1"}},
        "lines": {"data": [{"pricing": {"price_details": {"price": "price_enthusiast_monthly"}}}]},
    }

    outcome = handler.handle(_payload("invoice.paid", invoice), "valid")

    assert outcome.handled
    assert outcome.ledger.credits == 24


@pytest.mark.parametrize(
    "invoice, note",
    [
        ({"id": "in_1", "customer": "cus_1", "billing_reason": "subscription_create"}, "not_a_renewal"),
        ({"id": "in_1", "customer": "cus_1", "billing_reason": "subscription_cycle", "lines": {"data": []}}, "missing_invoice_data"),
    ],
)
def test_invoices_that_are_not_renewals_are_ignored(handler, subscribed, ledger_repo, invoice, note) -> None:
    outcome = handler.handle(_payload("invoice.paid", invoice), "valid")

    assert not outcome.handled
    assert outcome.note == note
    assert ledger_repo.writes == 1


def test_subscription_deleted_revokes_access(handler, subscribed) -> None:
    outcome = handler.handle(_payload("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"}), "valid")

    assert outcome.handled
    assert not outcome.ledger.has_access
    assert outcome.ledger.credits == 12


def test_renewal_for_unknown_customer_is_dropped(handler) -> None:
    invoice = {
        "id": "in_1",
        "customer": "cus_404",
        "billing_reason": "subscription_cycle",
        "lines": {"data": [{"price": "price_enthusiast_monthly"}]},
    }

    outcome = handler.handle(_payload("invoice.paid", invoice), "valid")

    assert outcome.note == "unknown_customer"


def test_other_event_types_are_acknowledged(handler) -> None:
    outcome = handler.handle(_payload("customer.created", {"id": "cus_1"}), "valid")

    assert not outcome.handled
    assert outcome.note == "ignored"
    assert outcome.event_id == "evt_1"
