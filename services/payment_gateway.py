"""
Payment provider gateway.

Wraps the Stripe calls the reconciler needs: checkout-session lookup, active
subscription listing, end-of-period cancellation, metadata stamping and webhook
signature verification. Every provider failure, including a network timeout,
is raised as UpstreamLookupFailed so callers can retry the whole reconciliation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Protocol

import stripe

from domain.errors import UpstreamLookupFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutDetails:
    session_id: str
    customer_id: Optional[str]
    price_id: Optional[str]
    subscription_id: Optional[str]
    client_reference_id: Optional[str]
    paid: bool
    period_end_utc: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class ActiveSubscription:
    subscription_id: str
    customer_id: Optional[str]
    price_id: Optional[str]
    cancel_at_period_end: bool = False
    period_end_utc: Optional[datetime] = None


class PaymentGateway(Protocol):
    def retrieve_checkout(self, session_id: str) -> CheckoutDetails:
        ...

    def list_active_subscriptions(self, customer_id: str) -> List[ActiveSubscription]:
        ...

    def cancel_at_period_end(self, subscription_id: str) -> None:
        ...

    def stamp_subscription_metadata(self, subscription_id: str, metadata: Mapping[str, str]) -> None:
        ...

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        """Return the decoded event. Raises ValueError when the signature is invalid."""


def _epoch_to_utc(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _field(obj: Any, name: str) -> Any:
    """Read a Stripe object field, tolerating both attribute and mapping access."""

    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _id_of(value: Any) -> Optional[str]:
    """Stripe returns either an id string or an expanded object for references."""

    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def _first_item(collection: Any) -> Any:
    data = _field(collection, "data") or []
    return data[0] if data else None


def _subscription_period_end(subscription: Any) -> Optional[datetime]:
    # newer API versions moved current_period_end onto the subscription items
    end = _field(subscription, "current_period_end")
    if end is None:
        end = _field(_first_item(_field(subscription, "items")), "current_period_end")
    return _epoch_to_utc(end)


def _subscription_price(subscription: Any) -> Optional[str]:
    return _id_of(_field(_first_item(_field(subscription, "items")), "price"))


class StripePaymentGateway:
    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None, *, timeout_seconds: int = 8):
        if not secret_key:
            raise RuntimeError(
                "Missing environment variable: STRIPE_SECRET_KEY. "
                "Set STRIPE_SECRET_KEY to your Stripe secret API key."
            )
        stripe.api_key = secret_key
        # bounded network time; a timeout surfaces as APIConnectionError
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
        stripe.max_network_retries = 1
        self._webhook_secret = webhook_secret

    def retrieve_checkout(self, session_id: str) -> CheckoutDetails:
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=["line_items", "subscription"])
        except stripe.StripeError as e:
            logger.warning("Checkout session lookup failed for %s: %s", session_id, e)
            raise UpstreamLookupFailed(f"Checkout session lookup failed: {e}", e) from e

        subscription = _field(session, "subscription")
        line_item = _first_item(_field(session, "line_items"))
        price_id = _id_of(_field(line_item, "price"))

        return CheckoutDetails(
            session_id=session_id,
            customer_id=_id_of(_field(session, "customer")),
            price_id=price_id,
            subscription_id=_id_of(subscription),
            client_reference_id=_field(session, "client_reference_id"),
            paid=_field(session, "payment_status") == "paid",
            period_end_utc=_subscription_period_end(subscription) if not isinstance(subscription, str) else None,
        )

    def list_active_subscriptions(self, customer_id: str) -> List[ActiveSubscription]:
        try:
            listing = stripe.Subscription.list(customer=customer_id, status="active", limit=10)
        except stripe.StripeError as e:
            logger.warning("Subscription listing failed for customer %s: %s", customer_id, e)
            raise UpstreamLookupFailed(f"Subscription listing failed: {e}", e) from e

        return [
            ActiveSubscription(
                subscription_id=str(_field(sub, "id")),
                customer_id=_id_of(_field(sub, "customer")),
                price_id=_subscription_price(sub),
                cancel_at_period_end=bool(_field(sub, "cancel_at_period_end")),
                period_end_utc=_subscription_period_end(sub),
            )
            for sub in (_field(listing, "data") or [])
        ]

    def cancel_at_period_end(self, subscription_id: str) -> None:
        try:
            # no proration: the old plan simply runs out at the end of its period
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=True, proration_behavior="none")
        except stripe.StripeError as e:
            logger.warning("Could not schedule cancellation of %s: %s", subscription_id, e)
            raise UpstreamLookupFailed(f"Scheduling cancellation failed: {e}", e) from e

    def stamp_subscription_metadata(self, subscription_id: str, metadata: Mapping[str, str]) -> None:
        try:
            stripe.Subscription.modify(subscription_id, metadata=dict(metadata))
        except stripe.StripeError as e:
            raise UpstreamLookupFailed(f"Updating subscription metadata failed: {e}", e) from e

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        if not self._webhook_secret:
            raise RuntimeError(
                "Missing environment variable: STRIPE_WEBHOOK_SECRET. "
                "Set STRIPE_WEBHOOK_SECRET to your webhook signing secret."
            )
        if not signature:
            raise ValueError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Webhook signature verification failed: {e}") from e
        return json.loads(payload)


__all__ = [
    "ActiveSubscription",
    "CheckoutDetails",
    "PaymentGateway",
    "StripePaymentGateway",
]
