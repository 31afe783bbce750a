"""
Billing API Endpoints.

Both reconciliation channels live here:
- the Stripe webhook (asynchronous, signature-verified), and
- the checkout fallback the client calls right after returning from checkout.
They share one reconciliation path in ReconciliationService.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.dependencies import Container, get_actor_id, get_container
from api.models import (
    CheckoutReconcileRequest,
    CheckoutReconcileResponse,
    LedgerResponse,
    PlanChangeEntryResponse,
    WebhookResponse,
)
from domain.errors import UnknownCustomer, UpstreamLookupFailed
from domain.ledger import CreditLedgerState
from services.reconciliation_service import Channel

router = APIRouter()


def _ledger_response(state: CreditLedgerState) -> LedgerResponse:
    journal = state.subscription_info
    return LedgerResponse(
        student_id=state.student_id,
        credits=state.credits,
        has_access=state.has_access,
        package_name=state.package_name,
        package_expiration_utc=state.package_expiration_utc,
        price_id=state.price_id,
        current_subscription_id=journal.current_subscription_id,
        is_upgrade_or_downgrade=journal.is_upgrade_or_downgrade,
        plan_change_history=[
            PlanChangeEntryResponse(
                date=entry.date,
                kind=entry.kind,
                from_plan=entry.from_plan,
                to_plan=entry.to_plan,
                credits_added=entry.credits_added,
                total_credits_after_change=entry.total_credits_after_change,
            )
            for entry in journal.plan_change_history
        ],
    )


@router.post(
    "/webhooks/stripe",
    response_model=WebhookResponse,
    summary="Stripe Webhook",
    description="Receives Stripe events. A 503 response makes Stripe retry the delivery."
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    container: Container = Depends(get_container),
):
    payload = await request.body()
    try:
        outcome = await run_in_threadpool(container.webhooks.handle, payload, stripe_signature)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return WebhookResponse(
        received=True,
        handled=outcome.handled,
        event_type=outcome.event_type,
        note=outcome.note,
    )


@router.post(
    "/billing/checkout/reconcile",
    response_model=CheckoutReconcileResponse,
    summary="Reconcile Checkout",
    description="Apply a completed checkout to the caller's ledger without waiting for the webhook.",
    responses={202: {"model": CheckoutReconcileResponse}},
)
def reconcile_checkout(
    request: CheckoutReconcileRequest,
    actor_id: str = Depends(get_actor_id),
    container: Container = Depends(get_container),
):
    """
    Fallback channel.

    Runs the same reconciliation as the webhook. If the payment provider cannot
    confirm the checkout yet, the response is `202` with a "still processing"
    notice rather than an error; the client may call again.
    """
    try:
        state = container.reconciler.reconcile_checkout(
            request.session_id,
            actor_id=actor_id,
            channel=Channel.FALLBACK,
        )
    except UpstreamLookupFailed:
        body = CheckoutReconcileResponse(
            status="processing",
            message="Your class was booked; payment confirmation is still processing.",
        )
        return JSONResponse(status_code=202, content=body.model_dump(mode="json"))

    return CheckoutReconcileResponse(
        status="reconciled",
        message="Payment confirmed.",
        ledger=_ledger_response(state),
    )


@router.get(
    "/students/{student_id}/ledger",
    response_model=LedgerResponse,
    summary="Get Student Ledger"
)
def get_student_ledger(
    student_id: str,
    actor_id: str = Depends(get_actor_id),
    container: Container = Depends(get_container),
):
    if actor_id != student_id:
        raise HTTPException(status_code=403, detail="Cannot read another student's ledger")

    state = container.reconciler.get_ledger(student_id)
    if state is None:
        raise UnknownCustomer(None, student_id)
    return _ledger_response(state)
