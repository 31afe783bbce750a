"""
Credit ledger reconciliation service.

Both delivery channels end up in `reconcile()`:
- the asynchronous webhook (see services/stripe_webhook.py), and
- the synchronous fallback the client triggers right after checkout
  (`reconcile_checkout(..., channel=Channel.FALLBACK)`).

Process for one event:
1. Resolve the student (by student id, then customer id). Only a NewSubscription
   arriving through the fallback channel may create a ledger that does not exist.
2. Under the per-student lock, re-read the ledger and drop duplicates.
3. For NewSubscription / PlanChange, ask the provider whether another active
   subscription with a different price exists; if so it is scheduled to cancel
   at period end and the new units are added instead of replacing the balance.
4. Append the journal entry and upsert with a version check. A lost race is
   re-read and re-applied; the duplicate check keeps that safe.
5. Publish the written state to the notifier.

Provider failures abort before anything is written (UpstreamLookupFailed).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional, Union

from domain.errors import CheckoutOwnershipMismatch, StaleLedgerWrite, UnknownCustomer, UpstreamLookupFailed
from domain.ledger import (
    CreditLedgerState,
    NewSubscription,
    PlanChange,
    PlanEvent,
    Renewal,
    SubscriptionEnded,
    apply_renewal,
    apply_subscription,
    apply_subscription_ended,
    is_duplicate,
)
from domain.plan import Plan, PlanCatalog
from domain.time import utc_now
from repositories.protocols import LedgerRepository
from services.keyed_lock import KeyedLock
from services.notifications import LedgerNotifier
from services.payment_gateway import CheckoutDetails, PaymentGateway

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS: int = 3


class Channel(str, Enum):
    WEBHOOK = "webhook"
    FALLBACK = "fallback"


class ReconciliationService:
    def __init__(
        self,
        ledgers: LedgerRepository,
        gateway: PaymentGateway,
        catalog: PlanCatalog,
        *,
        notifier: Optional[LedgerNotifier] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable = utc_now,
    ):
        self._ledgers = ledgers
        self._gateway = gateway
        self._catalog = catalog
        self._notifier = notifier or LedgerNotifier()
        self._locks = locks or KeyedLock()
        self._clock = clock

    @property
    def notifier(self) -> LedgerNotifier:
        return self._notifier

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_ledger(self, student_id: str) -> Optional[CreditLedgerState]:
        return self._ledgers.get_by_student(student_id)

    def check_entitlement(self, student_id: str) -> bool:
        state = self._ledgers.get_by_student(student_id)
        return state is not None and state.has_entitlement

    # ------------------------------------------------------------------
    # The single reconciliation path
    # ------------------------------------------------------------------

    def reconcile(self, event: PlanEvent, *, channel: Channel = Channel.WEBHOOK) -> CreditLedgerState:
        student_id, may_create = self._resolve_student(event, channel)
        plan = self._renewal_plan(event) if isinstance(event, Renewal) else None

        last_conflict: Optional[StaleLedgerWrite] = None
        for _ in range(MAX_WRITE_ATTEMPTS):
            with self._locks.hold(student_id):
                state = self._ledgers.get_by_student(student_id)
                if state is None:
                    if not may_create:
                        logger.warning("Ledger for student %s disappeared; dropping %s", student_id, event.kind)
                        raise UnknownCustomer(getattr(event, "customer_id", None), student_id)
                    state = CreditLedgerState(student_id=student_id, customer_id=event.customer_id)

                if is_duplicate(state, event):
                    logger.info("Duplicate %s for student %s ignored (%s channel)", event.kind, student_id, channel.value)
                    return state

                updated = self._apply(state, event, plan)
                try:
                    saved = self._ledgers.upsert(updated, expected_version=state.version)
                except StaleLedgerWrite as e:
                    logger.info("Concurrent ledger write for student %s, retrying", student_id)
                    last_conflict = e
                    continue

            logger.info(
                "Applied %s for student %s via %s: credits %d -> %d, access=%s",
                event.kind,
                student_id,
                channel.value,
                state.credits,
                saved.credits,
                saved.has_access,
            )
            self._notifier.publish(saved)
            return saved

        assert last_conflict is not None
        raise last_conflict

    def _resolve_student(self, event: PlanEvent, channel: Channel) -> tuple[str, bool]:
        student_id = getattr(event, "student_id", None)
        if student_id:
            existing = self._ledgers.get_by_student(student_id)
            if existing is not None:
                return existing.student_id, False

        if event.customer_id:
            existing = self._ledgers.get_by_customer(event.customer_id)
            if existing is not None:
                return existing.student_id, False

        if isinstance(event, NewSubscription) and channel is Channel.FALLBACK and student_id:
            return student_id, True

        logger.warning(
            "Unknown customer %s for %s (%s channel); event dropped",
            event.customer_id,
            event.kind,
            channel.value,
        )
        raise UnknownCustomer(event.customer_id, student_id)

    def _renewal_plan(self, event: Renewal) -> Plan:
        plan = self._catalog.get(event.price_id)
        if plan is None:
            raise UpstreamLookupFailed(f"Price {event.price_id!r} does not match any known plan")
        return plan

    def _apply(self, state: CreditLedgerState, event: PlanEvent, plan: Optional[Plan]) -> CreditLedgerState:
        now = self._clock()
        if isinstance(event, (NewSubscription, PlanChange)):
            prior = self._prior_subscription(event)
            return apply_subscription(state, event, prior_subscription_id=prior, now=now)
        if isinstance(event, Renewal):
            assert plan is not None
            return apply_renewal(state, event, plan=plan, now=now)
        if isinstance(event, SubscriptionEnded):
            return apply_subscription_ended(state, event, now=now)
        raise TypeError(f"Unsupported event type: {type(event)!r}")

    def _prior_subscription(self, event: Union[NewSubscription, PlanChange]) -> Optional[str]:
        """Find another active subscription on a different price and let it lapse at period end."""

        new_price = event.price_id if isinstance(event, NewSubscription) else event.to_price_id
        active = self._gateway.list_active_subscriptions(event.customer_id)
        others = [
            sub for sub in active
            if sub.subscription_id != event.subscription_id and sub.price_id != new_price
        ]
        if not others:
            return None

        prior = others[0]
        if not prior.cancel_at_period_end:
            self._gateway.cancel_at_period_end(prior.subscription_id)
            logger.info("Scheduled %s to cancel at period end (replaced by %s)", prior.subscription_id, event.subscription_id)
        return prior.subscription_id

    # ------------------------------------------------------------------
    # Checkout-driven events (webhook and fallback)
    # ------------------------------------------------------------------

    def reconcile_checkout(
        self,
        session_id: str,
        *,
        actor_id: Optional[str] = None,
        channel: Channel = Channel.FALLBACK,
    ) -> CreditLedgerState:
        """
        Look up a completed checkout and reconcile it.

        `actor_id` is the authenticated user on the fallback channel, or the
        checkout's client reference on the webhook channel.
        """

        details = self._gateway.retrieve_checkout(session_id)
        if not details.paid:
            raise UpstreamLookupFailed(f"Checkout {session_id} is not paid yet")
        if not details.customer_id or not details.price_id:
            raise UpstreamLookupFailed(f"Checkout {session_id} is missing customer or price")

        plan = self._catalog.get(details.price_id)
        if plan is None:
            raise UpstreamLookupFailed(f"Price {details.price_id!r} does not match any known plan")

        student_id = actor_id or details.client_reference_id
        subscription_id = details.subscription_id or details.session_id

        if channel is Channel.FALLBACK and actor_id:
            self._check_ownership(session_id, actor_id, details)

        if channel is Channel.FALLBACK and details.subscription_id and student_id:
            self._stamp_metadata(details.subscription_id, student_id, plan)

        existing = None
        if student_id:
            existing = self._ledgers.get_by_student(student_id)
        if existing is None:
            existing = self._ledgers.get_by_customer(details.customer_id)

        event: PlanEvent
        if (
            existing is not None
            and existing.price_id
            and existing.price_id != plan.price_id
            and existing.subscription_info.current_subscription_id
        ):
            event = PlanChange(
                customer_id=details.customer_id,
                subscription_id=subscription_id,
                from_price_id=existing.price_id,
                to_price_id=plan.price_id,
                new_plan_units=plan.units,
                new_plan_name=plan.name,
                new_plan_interval=plan.interval,
                period_end_utc=details.period_end_utc,
                student_id=student_id,
            )
        else:
            event = NewSubscription(
                student_id=student_id,
                customer_id=details.customer_id,
                subscription_id=subscription_id,
                price_id=plan.price_id,
                plan_units=plan.units,
                plan_name=plan.name,
                plan_interval=plan.interval,
                period_end_utc=details.period_end_utc,
            )
        return self.reconcile(event, channel=channel)

    def _check_ownership(self, session_id: str, actor_id: str, details: CheckoutDetails) -> None:
        """The checkout must have been opened by the actor and its customer must not be another student's."""

        owners = {details.client_reference_id}
        if details.customer_id:
            owner = self._ledgers.get_by_customer(details.customer_id)
            owners.add(owner.student_id if owner is not None else None)
        owners.discard(None)
        others = owners - {actor_id}
        if others:
            logger.warning(
                "Student %s tried to reconcile checkout %s owned by %s", actor_id, session_id, ", ".join(sorted(others))
            )
            raise CheckoutOwnershipMismatch(session_id, actor_id)

    def _stamp_metadata(self, subscription_id: str, student_id: str, plan: Plan) -> None:
        try:
            self._gateway.stamp_subscription_metadata(
                subscription_id,
                {
                    "userId": student_id,
                    "planName": plan.name,
                    "planUnits": str(plan.units),
                    "planInterval": plan.interval.value,
                },
            )
        except UpstreamLookupFailed as e:
            # metadata is informational only; reconciliation does not depend on it
            logger.warning("Could not stamp metadata on %s: %s", subscription_id, e)

    # ------------------------------------------------------------------
    # Class consumption
    # ------------------------------------------------------------------

    def consume_credit(self, student_id: str) -> CreditLedgerState:
        """Debit one credit for a completed class. Raises ValueError when none are left."""

        last_conflict: Optional[StaleLedgerWrite] = None
        for _ in range(MAX_WRITE_ATTEMPTS):
            with self._locks.hold(student_id):
                state = self._ledgers.get_by_student(student_id)
                if state is None:
                    raise UnknownCustomer(None, student_id)
                try:
                    saved = self._ledgers.upsert(state.debited(1), expected_version=state.version)
                except StaleLedgerWrite as e:
                    last_conflict = e
                    continue
            logger.info("Consumed one credit for student %s (%d left)", student_id, saved.credits)
            self._notifier.publish(saved)
            return saved

        assert last_conflict is not None
        raise last_conflict


__all__ = ["Channel", "MAX_WRITE_ATTEMPTS", "ReconciliationService"]
