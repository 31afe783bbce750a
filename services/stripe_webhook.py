"""
Stripe webhook channel.

Maps verified provider events onto ledger events and hands them to the same
reconciliation path the fallback channel uses:

- checkout.session.completed                      -> checkout lookup -> NewSubscription / PlanChange
- invoice.paid (billing_reason=subscription_cycle) -> Renewal
- customer.subscription.deleted                    -> SubscriptionEnded

Everything else is acknowledged and ignored. The first invoice of a subscription
(billing_reason=subscription_create) is ignored on purpose: its credits arrive
through the checkout session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from domain.errors import UnknownCustomer
from domain.ledger import CreditLedgerState, Renewal, SubscriptionEnded
from services.payment_gateway import PaymentGateway, _epoch_to_utc
from services.reconciliation_service import Channel, ReconciliationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WebhookOutcome:
    event_id: Optional[str]
    event_type: str
    handled: bool
    ledger: Optional[CreditLedgerState] = None
    note: Optional[str] = None


def _get(mapping: Any, *path: str) -> Any:
    current = mapping
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _ref(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        return value.get("id")
    return value


def _invoice_price_id(line: Mapping[str, Any]) -> Optional[str]:
    price = _ref(line.get("price"))
    if price:
        return price
    # API versions from 2025 report the price under pricing.price_details
    return _ref(_get(line, "pricing", "price_details", "price"))


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    return _ref(invoice.get("subscription")) or _ref(
        _get(invoice, "parent", "subscription_details", "subscription")
    )


class StripeWebhookHandler:
    def __init__(self, gateway: PaymentGateway, reconciler: ReconciliationService):
        self._gateway = gateway
        self._reconciler = reconciler

    def handle(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """Verify and dispatch one delivery. Raises ValueError on a bad signature."""

        event = self._gateway.verify_webhook(payload, signature)
        return self.dispatch(event)

    def dispatch(self, event: Mapping[str, Any]) -> WebhookOutcome:
        event_id = event.get("id")
        event_type = str(event.get("type", ""))
        obj = _get(event, "data", "object") or {}

        try:
            if event_type == "checkout.session.completed":
                ledger = self._reconciler.reconcile_checkout(
                    str(obj["id"]),
                    actor_id=obj.get("client_reference_id"),
                    channel=Channel.WEBHOOK,
                )
                return WebhookOutcome(event_id, event_type, True, ledger)

            if event_type == "invoice.paid":
                return self._invoice_paid(event_id, event_type, obj)

            if event_type == "customer.subscription.deleted":
                ended = SubscriptionEnded(customer_id=str(_ref(obj.get("customer"))), subscription_id=obj.get("id"))
                ledger = self._reconciler.reconcile(ended, channel=Channel.WEBHOOK)
                return WebhookOutcome(event_id, event_type, True, ledger)
        except UnknownCustomer as e:
            # terminal: logged for manual investigation, never retried
            logger.warning("Webhook %s (%s) dropped: %s", event_id, event_type, e)
            return WebhookOutcome(event_id, event_type, False, note="unknown_customer")

        logger.debug("Ignoring webhook %s of type %s", event_id, event_type)
        return WebhookOutcome(event_id, event_type, False, note="ignored")

    def _invoice_paid(self, event_id: Optional[str], event_type: str, invoice: Mapping[str, Any]) -> WebhookOutcome:
        if invoice.get("billing_reason") != "subscription_cycle":
            return WebhookOutcome(event_id, event_type, False, note="not_a_renewal")

        lines = _get(invoice, "lines", "data") or []
        line = lines[0] if lines else {}
        customer_id = _ref(invoice.get("customer"))
        price_id = _invoice_price_id(line)
        if not customer_id or not price_id:
            logger.warning("Invoice %s is missing customer or price; ignored", invoice.get("id"))
            return WebhookOutcome(event_id, event_type, False, note="missing_invoice_data")

        renewal = Renewal(
            customer_id=customer_id,
            price_id=price_id,
            period_end_utc=_epoch_to_utc(_get(line, "period", "end")),
            invoice_id=invoice.get("id"),
            subscription_id=_invoice_subscription_id(invoice),
        )
        ledger = self._reconciler.reconcile(renewal, channel=Channel.WEBHOOK)
        return WebhookOutcome(event_id, event_type, True, ledger)


__all__ = ["StripeWebhookHandler", "WebhookOutcome"]
