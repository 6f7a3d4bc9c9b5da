"""
Pydantic v2 schemas for the Provider Matching API
=================================================

Request and response models for provider search and availability lookup.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from homepro.models import Urgency


# ---------------------------------------------------------------------------
# Match request
# ---------------------------------------------------------------------------

class PriceRangeIn(BaseModel):
    min: float = Field(ge=0, description="Lowest acceptable total estimate")
    max: float = Field(ge=0, description="Highest acceptable total estimate")


class MatchPreferences(BaseModel):
    """Optional customer preferences that narrow or reorder the results."""

    military_veteran: bool = Field(
        default=False, description="Rank veteran-owned providers first"
    )
    min_rating: Optional[float] = Field(default=None, ge=1.0, le=5.0)
    max_distance: Optional[float] = Field(
        default=None, gt=0, description="Maximum distance in miles"
    )
    price_range: Optional[PriceRangeIn] = None


class FindMatchRequest(BaseModel):
    """Request body for finding providers for a service request."""

    service_type: str = Field(min_length=1, max_length=100)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    scheduled_date: date
    scheduled_time: Optional[time] = Field(
        default=None, description="Requested start time in the calendar time zone"
    )
    radius: Optional[float] = Field(
        default=None, gt=0, description="Search radius in miles (default 50)"
    )
    urgency: Urgency = Urgency.STANDARD
    preferences: MatchPreferences = Field(default_factory=MatchPreferences)


# ---------------------------------------------------------------------------
# Match result
# ---------------------------------------------------------------------------

class PricingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base_rate: Decimal
    urgency_multiplier: Decimal
    travel_fee: Decimal
    total_estimate: Decimal


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: datetime
    end: datetime


class AvailabilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_available: bool
    next_available_slot: Optional[datetime] = None
    available_slots: list[SlotOut] = Field(default_factory=list)


class ProviderMatchOut(BaseModel):
    """A single ranked provider with pricing and availability."""

    provider_id: uuid.UUID
    display_name: str
    business_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None
    rating: float
    review_count: int
    military_veteran: bool
    specialties: list[str] = Field(default_factory=list)
    years_experience: Optional[int] = None
    distance_miles: float = Field(description="Great-circle distance, 0.1 mile precision")
    pricing: PricingOut
    estimated_arrival: datetime
    availability: AvailabilityOut


class FindMatchResponse(BaseModel):
    """Ranked providers plus counters explaining who was filtered out.

    ``outcome`` is ``no_candidates`` when the search succeeded but nobody
    qualified; a failed search returns an error status instead.
    """

    outcome: str
    total_candidates: int
    within_radius: int
    excluded_unavailable: int
    excluded_by_price: int
    failed_availability_checks: list[uuid.UUID] = Field(default_factory=list)
    matches: list[ProviderMatchOut]


class ProviderAvailabilityResponse(AvailabilityOut):
    provider_id: uuid.UUID
    window_start: datetime
    window_end: datetime
