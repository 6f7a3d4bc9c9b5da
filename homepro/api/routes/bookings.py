"""
Booking API Routes
==================

Routes:
  POST /api/v1/bookings                       -- Create and auto-assign
  POST /api/v1/bookings/book-with-provider    -- Book a chosen provider
  POST /api/v1/bookings/{booking_id}/cancel   -- Cancel a booking
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, status

from homepro.api.deps import CalendarGateway, DBSession
from homepro.api.schemas.booking import (
    BookingConfirmationOut,
    BookingCreateRequest,
    BookingCreateResponse,
    BookingOut,
    BookWithProviderRequest,
    CancelBookingRequest,
    CancellationOut,
)
from homepro.core.exceptions import (
    CommitFailureError,
    ConflictDetectedError,
    NotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from homepro.services import bookingOrchestrator
from homepro.services.bookingOrchestrator import BookingRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _to_request(body: BookingCreateRequest) -> BookingRequest:
    return BookingRequest(
        service_id=body.service_id,
        scheduled_date=body.scheduled_date,
        scheduled_time=body.scheduled_time,
        estimated_duration_hours=body.estimated_duration_hours,
        address=body.address,
        customer_id=body.customer_id,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
        urgency=body.urgency.value,
        special_instructions=body.special_instructions,
        estimated_price=body.estimated_price,
        latitude=body.latitude,
        longitude=body.longitude,
    )


# ---------------------------------------------------------------------------
# POST /api/v1/bookings -- Create with automatic provider assignment
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=BookingCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a booking and auto-assign a provider",
    description=(
        "Creates the booking and assigns the best-scoring provider without an "
        "overlapping job. When nobody is free the booking is still created and "
        "stays in 'pending_assignment'."
    ),
)
async def create_booking(
    db: DBSession,
    body: BookingCreateRequest,
) -> BookingCreateResponse:
    try:
        created = await bookingOrchestrator.create_booking(db, _to_request(body))
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        )
    except UpstreamFailureError as exc:
        logger.error("Booking creation failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Something went wrong, please try again.",
        )

    return BookingCreateResponse(
        booking=BookingOut.model_validate(created.booking),
        assigned=created.assignment.assigned,
        provider_id=created.assignment.provider_id,
        score=created.assignment.score,
        candidates_considered=created.assignment.candidates_considered,
    )


# ---------------------------------------------------------------------------
# POST /api/v1/bookings/book-with-provider -- Two-phase booking
# ---------------------------------------------------------------------------

@router.post(
    "/book-with-provider",
    response_model=BookingConfirmationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Book a specific provider",
    description=(
        "Writes the booking and the provider's calendar booking together. If "
        "either side fails the other is rolled back and a 502 names the "
        "failed phase."
    ),
)
async def book_with_provider(
    db: DBSession,
    gateway: CalendarGateway,
    body: BookWithProviderRequest,
) -> BookingConfirmationOut:
    try:
        confirmation = await bookingOrchestrator.book_with_provider(
            db, gateway, body.provider_id, _to_request(body)
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        )
    except ConflictDetectedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No providers available for this time, try another slot.",
        ) from exc
    except CommitFailureError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_dict())
    except UpstreamFailureError as exc:
        logger.error("Booking with provider %s failed: %s", body.provider_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Something went wrong, please try again.",
        )

    return BookingConfirmationOut.model_validate(confirmation)


# ---------------------------------------------------------------------------
# POST /api/v1/bookings/{booking_id}/cancel
# ---------------------------------------------------------------------------

@router.post(
    "/{booking_id}/cancel",
    response_model=CancellationOut,
    summary="Cancel a booking",
)
async def cancel_booking(
    db: DBSession,
    gateway: CalendarGateway,
    booking_id: uuid.UUID,
    body: CancelBookingRequest | None = None,
) -> CancellationOut:
    try:
        result = await bookingOrchestrator.cancel_booking(
            db, gateway, booking_id, body.reason if body else None
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    return CancellationOut.model_validate(result)
