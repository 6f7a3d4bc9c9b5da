"""
Provider Matching Engine
========================

Finds, filters, prices and ranks providers for a customer's service
request.

Pipeline:
  1. Candidates   -- active providers offering the service, rating floor
  2. Distance     -- keep providers within the tightest of the search
                     radius, the provider's own radius and the customer's
                     max-distance preference
  3. Availability -- calendar slots for the requested day, fetched
                     concurrently with a per-provider timeout
  4. Pricing      -- price estimate, optional customer price range
  5. Ranking      -- see ``homepro.algorithms.providerRanking``

Failure isolation: a calendar error, timeout or any unexpected error while
evaluating one provider excludes only that provider. A candidate query
failure aborts the search with ``UpstreamFailureError``. Finding nobody is
reported as the ``no_candidates`` outcome, never as an error.

Key functions:
  - find_matching_providers   -- full pipeline
  - get_provider_availability -- one provider's free slots for a window
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from homepro.algorithms.providerRanking import rank_matches
from homepro.core.config import settings
from homepro.core.exceptions import UpstreamFailureError, ValidationError
from homepro.integrations.calcom import AvailabilityGateway
from homepro.services import candidateRepository
from homepro.services.candidateRepository import CandidateProvider
from homepro.services.geoService import ProviderDistance, filter_by_radius
from homepro.services.pricingEngine import (
    PriceEstimate,
    calculate_price_estimate,
    estimate_arrival,
    get_urgency_multiplier,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PriceRange:
    min: float
    max: float


@dataclass(frozen=True)
class CustomerPreferences:
    military_veteran: bool = False
    min_rating: Optional[float] = None
    max_distance: Optional[float] = None
    price_range: Optional[PriceRange] = None


@dataclass(frozen=True)
class MatchingCriteria:
    """A customer's service request, as seen by the matching engine."""

    service_type: str
    latitude: float
    longitude: float
    scheduled_date: date
    scheduled_time: Optional[time] = None
    radius: Optional[float] = None
    urgency: str = "standard"
    preferences: CustomerPreferences = field(default_factory=CustomerPreferences)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

class MatchOutcome(str, enum.Enum):
    MATCHED = "matched"
    NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True)
class AvailabilityWindow:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class AvailabilitySnapshot:
    is_available: bool
    next_available_slot: Optional[datetime]
    available_slots: list[AvailabilityWindow]


@dataclass(frozen=True)
class ProviderMatch:
    """A provider joined with request-specific distance, price and availability."""

    provider: CandidateProvider
    distance_miles: float
    pricing: PriceEstimate
    estimated_arrival: datetime
    availability: AvailabilitySnapshot

    @property
    def provider_id(self) -> uuid.UUID:
        return self.provider.id

    @property
    def is_available(self) -> bool:
        return self.availability.is_available

    @property
    def military_veteran(self) -> bool:
        return self.provider.military_veteran

    @property
    def rating(self) -> float:
        return self.provider.rating


@dataclass
class MatchSearchResult:
    outcome: MatchOutcome
    matches: list[ProviderMatch]
    total_candidates: int = 0
    within_radius: int = 0
    excluded_unavailable: int = 0
    excluded_by_price: int = 0
    failed_availability_checks: list[uuid.UUID] = field(default_factory=list)


class _Exclusion(str, enum.Enum):
    CHECK_FAILED = "check_failed"
    UNAVAILABLE = "unavailable"
    PRICE = "price"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_criteria(criteria: MatchingCriteria) -> None:
    """Reject malformed criteria before any I/O.

    Raises:
        ValidationError: On the first invalid field.
    """
    if not criteria.service_type or not criteria.service_type.strip():
        raise ValidationError("Service type is required.", field="service_type")
    if not -90 <= criteria.latitude <= 90:
        raise ValidationError("Latitude must be between -90 and 90.", field="latitude")
    if not -180 <= criteria.longitude <= 180:
        raise ValidationError(
            "Longitude must be between -180 and 180.", field="longitude"
        )
    if criteria.radius is not None and criteria.radius <= 0:
        raise ValidationError("Search radius must be positive.", field="radius")

    get_urgency_multiplier(criteria.urgency)

    prefs = criteria.preferences
    if prefs.min_rating is not None and not 1 <= prefs.min_rating <= 5:
        raise ValidationError("Minimum rating must be between 1 and 5.", field="min_rating")
    if prefs.max_distance is not None and prefs.max_distance <= 0:
        raise ValidationError("Max distance must be positive.", field="max_distance")
    if prefs.price_range is not None:
        if prefs.price_range.min < 0 or prefs.price_range.max < 0:
            raise ValidationError("Price range cannot be negative.", field="price_range")
        if prefs.price_range.min > prefs.price_range.max:
            raise ValidationError(
                "Price range minimum exceeds maximum.", field="price_range"
            )


# ---------------------------------------------------------------------------
# Availability helpers
# ---------------------------------------------------------------------------

def day_bounds(on_date: date, time_zone: str) -> tuple[datetime, datetime]:
    """Start and end of ``on_date`` in the given time zone."""
    tz = ZoneInfo(time_zone)
    start = datetime.combine(on_date, time.min, tzinfo=tz)
    end = datetime.combine(on_date, time.max, tzinfo=tz)
    return start, end


def build_availability_snapshot(
    slot_starts: list[datetime],
    requested_at: datetime | None,
    *,
    slot_duration_hours: float | None = None,
) -> AvailabilitySnapshot:
    """Turn raw slot start times into an availability snapshot.

    With a requested time, the provider is available only if a slot window
    ``[start, start + slot_duration)`` contains it. Without one, any slot
    means available. The earliest slot is reported as the next available.
    """
    width = timedelta(
        hours=slot_duration_hours
        if slot_duration_hours is not None
        else settings.slot_duration_hours
    )
    ordered = sorted(slot_starts)
    windows = [AvailabilityWindow(start=s, end=s + width) for s in ordered]

    if requested_at is not None:
        is_available = any(w.start <= requested_at < w.end for w in windows)
    else:
        is_available = bool(windows)

    return AvailabilitySnapshot(
        is_available=is_available,
        next_available_slot=ordered[0] if ordered else None,
        available_slots=windows,
    )


async def _fetch_slots(
    gateway: AvailabilityGateway,
    provider: CandidateProvider,
    start: datetime,
    end: datetime,
) -> list[datetime]:
    if provider.cal_com_event_type_id is None:
        raise UpstreamFailureError(
            f"Provider {provider.id} has no calendar event type configured",
            source="cal.com",
        )
    return await asyncio.wait_for(
        gateway.get_available_slots(
            provider.cal_com_event_type_id,
            start,
            end,
            settings.cal_com_time_zone,
        ),
        timeout=settings.availability_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Candidate evaluation
# ---------------------------------------------------------------------------

async def _evaluate_candidate(
    gateway: AvailabilityGateway,
    nearby: ProviderDistance,
    criteria: MatchingCriteria,
    requested_at: datetime | None,
    now: datetime | None,
) -> tuple[Optional[ProviderMatch], Optional[_Exclusion]]:
    """Check availability and price for one provider.

    Returns the match, or ``None`` plus the exclusion reason.
    """
    provider: CandidateProvider = nearby.provider
    day_start, day_end = day_bounds(criteria.scheduled_date, settings.cal_com_time_zone)

    try:
        slots = await _fetch_slots(gateway, provider, day_start, day_end)
    except (UpstreamFailureError, asyncio.TimeoutError, httpx.HTTPError) as exc:
        logger.warning(
            "Availability check failed for provider %s; excluding from results: %r",
            provider.id,
            exc,
        )
        return None, _Exclusion.CHECK_FAILED

    availability = build_availability_snapshot(slots, requested_at)

    if requested_at is not None and not availability.is_available and not slots:
        return None, _Exclusion.UNAVAILABLE

    base_rate = (
        provider.base_rate if provider.base_rate is not None else settings.default_base_rate
    )
    pricing = calculate_price_estimate(base_rate, criteria.urgency, nearby.distance_miles)

    price_range = criteria.preferences.price_range
    if price_range is not None and not (
        price_range.min <= pricing.total_estimate <= price_range.max
    ):
        return None, _Exclusion.PRICE

    return (
        ProviderMatch(
            provider=provider,
            distance_miles=nearby.distance_miles,
            pricing=pricing,
            estimated_arrival=estimate_arrival(
                nearby.distance_miles, criteria.urgency, now=now
            ),
            availability=availability,
        ),
        None,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def find_matching_providers(
    db: AsyncSession,
    gateway: AvailabilityGateway,
    criteria: MatchingCriteria,
    *,
    now: datetime | None = None,
) -> MatchSearchResult:
    """Find and rank providers for a service request.

    Args:
        db: Async database session.
        gateway: Calendar used for slot availability.
        criteria: The validated-on-entry request.
        now: Reference time for arrival estimates (defaults to now).

    Returns:
        MatchSearchResult whose ``matches`` are in ranked order.

    Raises:
        ValidationError: If the criteria are malformed.
        UpstreamFailureError: If the candidate query fails.
    """
    validate_criteria(criteria)
    prefs = criteria.preferences

    candidates = await candidateRepository.fetch_candidates(
        db, criteria.service_type, prefs.min_rating
    )
    if not candidates:
        logger.info(
            "Matching for service %s on %s: no active candidates",
            criteria.service_type,
            criteria.scheduled_date,
        )
        return MatchSearchResult(outcome=MatchOutcome.NO_CANDIDATES, matches=[])

    nearby = filter_by_radius(
        candidates,
        criteria.latitude,
        criteria.longitude,
        search_radius_miles=(
            criteria.radius
            if criteria.radius is not None
            else settings.default_search_radius_miles
        ),
        max_distance_miles=prefs.max_distance,
        default_provider_radius_miles=settings.default_provider_radius_miles,
    )

    requested_at = None
    if criteria.scheduled_time is not None:
        requested_at = datetime.combine(
            criteria.scheduled_date,
            criteria.scheduled_time,
            tzinfo=ZoneInfo(settings.cal_com_time_zone),
        )

    evaluations = await asyncio.gather(
        *(
            _evaluate_candidate(gateway, pd, criteria, requested_at, now)
            for pd in nearby
        ),
        return_exceptions=True,
    )

    result = MatchSearchResult(
        outcome=MatchOutcome.NO_CANDIDATES,
        matches=[],
        total_candidates=len(candidates),
        within_radius=len(nearby),
    )
    survivors: list[ProviderMatch] = []
    for pd, evaluation in zip(nearby, evaluations):
        if isinstance(evaluation, Exception):
            logger.error(
                "Unexpected error evaluating provider %s; excluding from results",
                pd.provider.id,
                exc_info=evaluation,
            )
            result.failed_availability_checks.append(pd.provider.id)
            continue
        if isinstance(evaluation, BaseException):
            raise evaluation

        match, exclusion = evaluation
        if match is not None:
            survivors.append(match)
        elif exclusion is _Exclusion.CHECK_FAILED:
            result.failed_availability_checks.append(pd.provider.id)
        elif exclusion is _Exclusion.UNAVAILABLE:
            result.excluded_unavailable += 1
        elif exclusion is _Exclusion.PRICE:
            result.excluded_by_price += 1

    result.matches = rank_matches(survivors, prefer_veterans=prefs.military_veteran)
    if result.matches:
        result.outcome = MatchOutcome.MATCHED

    logger.info(
        "Matching for service %s on %s: candidates=%d, within_radius=%d, "
        "unavailable=%d, price_filtered=%d, check_failures=%d, returned=%d",
        criteria.service_type,
        criteria.scheduled_date,
        result.total_candidates,
        result.within_radius,
        result.excluded_unavailable,
        result.excluded_by_price,
        len(result.failed_availability_checks),
        len(result.matches),
    )
    return result


async def get_provider_availability(
    db: AsyncSession,
    gateway: AvailabilityGateway,
    provider_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> AvailabilitySnapshot:
    """Free slots for one provider over ``[start, end]``.

    Raises:
        ProviderNotFoundError: If the provider does not exist.
        ValidationError: If the window is inverted or the provider has no
            calendar configured.
        CalComError: If the calendar call fails.
    """
    if end <= start:
        raise ValidationError("Availability window end must be after start.", field="end")

    provider = await candidateRepository.get_provider(db, provider_id)
    if provider.cal_com_event_type_id is None:
        raise ValidationError(
            f"Provider {provider_id} has no calendar configured.",
            field="provider_id",
        )

    slots = await gateway.get_available_slots(
        provider.cal_com_event_type_id,
        start,
        end,
        settings.cal_com_time_zone,
    )
    return build_availability_snapshot(slots, None)
