"""
Dependency wiring for the API.

`get_container()` builds every service once per process from `Settings`.
Tests replace it through `app.dependency_overrides[get_container]`.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException

from core.config import Settings
from repositories.availability_repository import SupabaseAvailabilityRepository
from repositories.client import Client, create_supabase_client
from repositories.ledger_repository import SupabaseLedgerRepository
from repositories.occurrence_repository import SupabaseOccurrenceRepository
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from services.identity import SessionResolver, supabase_session_lookup
from services.payment_gateway import PaymentGateway, StripePaymentGateway
from services.reconciliation_service import ReconciliationService
from services.recurrence_service import RecurrenceService
from services.session_cache import TTLCache
from services.stripe_webhook import StripeWebhookHandler


@dataclass
class Container:
    settings: Settings
    availability: AvailabilityService
    bookings: BookingService
    recurrence: RecurrenceService
    reconciler: ReconciliationService
    webhooks: StripeWebhookHandler
    sessions: SessionResolver


def build_container(
    settings: Settings,
    *,
    client: Optional[Client] = None,
    gateway: Optional[PaymentGateway] = None,
) -> Container:
    client = client or create_supabase_client(settings)
    if gateway is None:
        gateway = StripePaymentGateway(
            settings.stripe_secret_key or "",
            settings.stripe_webhook_secret,
            timeout_seconds=settings.stripe_timeout_seconds,
        )

    occurrences = SupabaseOccurrenceRepository(client)
    availability = AvailabilityService(SupabaseAvailabilityRepository(client), occurrences)
    reconciler = ReconciliationService(SupabaseLedgerRepository(client), gateway, settings.plan_catalog)
    bookings = BookingService(occurrences, availability, reconciler, min_notice=settings.booking_min_notice)

    return Container(
        settings=settings,
        availability=availability,
        bookings=bookings,
        recurrence=RecurrenceService(bookings),
        reconciler=reconciler,
        webhooks=StripeWebhookHandler(gateway, reconciler),
        sessions=SessionResolver(
            supabase_session_lookup(client),
            TTLCache(settings.session_cache_ttl_seconds),
        ),
    )


@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container(Settings.from_env())


def get_actor_id(
    authorization: Optional[str] = Header(None),
    container: Container = Depends(get_container),
) -> str:
    """Authenticated user id from an `Authorization: Bearer <token>` header."""

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")

    actor_id = container.sessions.resolve(token.strip())
    if actor_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return actor_id


__all__ = ["Container", "build_container", "get_actor_id", "get_container"]
