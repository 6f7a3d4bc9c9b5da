"""
Matching API Routes
===================

REST endpoints for provider search and availability.

Routes:
  POST /api/v1/matching/find                                -- Ranked providers for a request
  GET  /api/v1/matching/providers/{provider_id}/availability -- One provider's free slots
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from homepro.api.deps import CalendarGateway, DBSession
from homepro.api.schemas.matching import (
    AvailabilityOut,
    FindMatchRequest,
    FindMatchResponse,
    PricingOut,
    ProviderAvailabilityResponse,
    ProviderMatchOut,
)
from homepro.core.exceptions import NotFoundError, UpstreamFailureError, ValidationError
from homepro.services import matchingEngine
from homepro.services.matchingEngine import (
    CustomerPreferences,
    MatchingCriteria,
    PriceRange,
    ProviderMatch,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matching", tags=["Matching"])

DEFAULT_AVAILABILITY_WINDOW = timedelta(days=7)


def _to_criteria(body: FindMatchRequest) -> MatchingCriteria:
    prefs = body.preferences
    return MatchingCriteria(
        service_type=body.service_type,
        latitude=body.latitude,
        longitude=body.longitude,
        scheduled_date=body.scheduled_date,
        scheduled_time=body.scheduled_time,
        radius=body.radius,
        urgency=body.urgency.value,
        preferences=CustomerPreferences(
            military_veteran=prefs.military_veteran,
            min_rating=prefs.min_rating,
            max_distance=prefs.max_distance,
            price_range=(
                PriceRange(min=prefs.price_range.min, max=prefs.price_range.max)
                if prefs.price_range is not None
                else None
            ),
        ),
    )


def _to_match_out(match: ProviderMatch) -> ProviderMatchOut:
    provider = match.provider
    return ProviderMatchOut(
        provider_id=provider.id,
        display_name=provider.display_name,
        business_name=provider.business_name,
        email=provider.email,
        phone=provider.phone,
        profile_image_url=provider.profile_image_url,
        rating=provider.rating,
        review_count=provider.review_count,
        military_veteran=provider.military_veteran,
        specialties=list(provider.specialties),
        years_experience=provider.years_experience,
        distance_miles=round(match.distance_miles, 1),
        pricing=PricingOut.model_validate(match.pricing),
        estimated_arrival=match.estimated_arrival,
        availability=AvailabilityOut.model_validate(match.availability),
    )


# ---------------------------------------------------------------------------
# POST /api/v1/matching/find -- Ranked providers for a service request
# ---------------------------------------------------------------------------

@router.post(
    "/find",
    response_model=FindMatchResponse,
    summary="Find matching providers for a service request",
    description=(
        "Filters active providers by service, rating and distance, checks "
        "calendar availability for the requested date, prices each one and "
        "returns them ranked. An empty list with outcome 'no_candidates' means "
        "nobody qualified; a 503 means the search itself failed."
    ),
)
async def find_matching_providers(
    db: DBSession,
    gateway: CalendarGateway,
    body: FindMatchRequest,
) -> FindMatchResponse:
    try:
        result = await matchingEngine.find_matching_providers(
            db, gateway, _to_criteria(body)
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    except UpstreamFailureError as exc:
        logger.error("Provider search failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Provider search failed. Please try again.",
        )

    return FindMatchResponse(
        outcome=result.outcome.value,
        total_candidates=result.total_candidates,
        within_radius=result.within_radius,
        excluded_unavailable=result.excluded_unavailable,
        excluded_by_price=result.excluded_by_price,
        failed_availability_checks=result.failed_availability_checks,
        matches=[_to_match_out(m) for m in result.matches],
    )


# ---------------------------------------------------------------------------
# GET /api/v1/matching/providers/{provider_id}/availability
# ---------------------------------------------------------------------------

@router.get(
    "/providers/{provider_id}/availability",
    response_model=ProviderAvailabilityResponse,
    summary="List a provider's free slots",
    description="Defaults to the next seven days when no window is given.",
)
async def get_provider_availability(
    db: DBSession,
    gateway: CalendarGateway,
    provider_id: uuid.UUID,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
) -> ProviderAvailabilityResponse:
    window_start = start or datetime.now(timezone.utc)
    window_end = end or window_start + DEFAULT_AVAILABILITY_WINDOW

    try:
        snapshot = await matchingEngine.get_provider_availability(
            db, gateway, provider_id, window_start, window_end
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        )
    except UpstreamFailureError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    return ProviderAvailabilityResponse(
        provider_id=provider_id,
        window_start=window_start,
        window_end=window_end,
        is_available=snapshot.is_available,
        next_available_slot=snapshot.next_available_slot,
        available_slots=[
            {"start": w.start, "end": w.end} for w in snapshot.available_slots
        ],
    )
