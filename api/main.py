"""
Tutoring Booking Engine API - Main Application.

FastAPI application with CORS enabled for frontend communication.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import __version__
from api.models import ErrorResponse
from api.routers import availability, billing, bookings
from core.config import Settings
from core.logging import configure_logging
from domain.errors import (
    BookingEngineError,
    BookingRuleViolation,
    CheckoutOwnershipMismatch,
    EntitlementRequired,
    HorizonExceeded,
    InvalidTimezone,
    NotPending,
    OccurrenceNotFound,
    SlotUnavailable,
    StaleLedgerWrite,
    UnknownCustomer,
    UpstreamLookupFailed,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (SlotUnavailable, 409),
    (NotPending, 409),
    (StaleLedgerWrite, 409),
    (InvalidTimezone, 422),
    (HorizonExceeded, 422),
    (BookingRuleViolation, 422),
    (EntitlementRequired, 402),
    (CheckoutOwnershipMismatch, 403),
    (OccurrenceNotFound, 404),
    (UnknownCustomer, 404),
    (UpstreamLookupFailed, 503),
)

_USER_MESSAGES = {
    SlotUnavailable: "Slot no longer available, please pick another.",
    UpstreamLookupFailed: "Payment confirmation is still processing.",
}


def _status_for(error: BookingEngineError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 500


def _error_response(name: str, detail: str, status_code: int, retryable: bool = False) -> JSONResponse:
    body = ErrorResponse(error=name, detail=detail, status_code=status_code, retryable=retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def booking_engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    status_code = _status_for(exc)
    if isinstance(exc, UpstreamLookupFailed):
        logger.warning("Upstream lookup failed on %s: %s", request.url.path, exc)
    elif status_code >= 500:
        logger.error("Unhandled booking engine error on %s: %s", request.url.path, exc)

    detail = _USER_MESSAGES.get(type(exc), str(exc))
    return _error_response(type(exc).__name__, detail, status_code, exc.retryable)


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error_response("ValidationError", str(exc), 422)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Tutoring Booking Engine API",
        description="Availability, class booking and credit reconciliation for the tutoring marketplace",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Configure CORS - Allow all origins for development
    # TODO: Restrict origins to the web app's domain in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BookingEngineError, booking_engine_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status and version.
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "booking-engine-api"
        }

    app.include_router(availability.router, prefix="/api/v1", tags=["Availability"])
    app.include_router(bookings.router, prefix="/api/v1", tags=["Bookings"])
    app.include_router(billing.router, prefix="/api/v1", tags=["Billing"])
    return app


app = create_app()
