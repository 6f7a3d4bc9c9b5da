"""
Candidate Repository
====================

Read-side queries over providers, their performance, and their committed
bookings. Rows are converted into typed, validated records at this boundary
so the matching and booking logic never handles raw ORM state.

An empty result is a valid answer. A database failure raises
``UpstreamFailureError``; callers must never read it as "no providers".
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from homepro.core.config import settings
from homepro.core.exceptions import (
    ProviderNotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from homepro.models import (
    COMMITTED_STATUSES,
    Booking,
    Provider,
    ProviderPerformance,
    ProviderService,
)
from homepro.services.conflictDetector import ScheduledJob

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Typed records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CandidateProvider:
    """A validated provider row, as consumed by matching and booking."""

    id: uuid.UUID
    display_name: str
    business_name: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    profile_image_url: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    service_radius_miles: Optional[float]
    rating: float
    review_count: int
    base_rate: Optional[float]
    military_veteran: bool
    specialties: tuple[str, ...]
    services: tuple[str, ...]
    years_experience: Optional[int]
    cal_com_event_type_id: Optional[int]


@dataclass(frozen=True)
class PerformanceStats:
    rating: float
    completed_jobs: int


# New providers without a performance row stay eligible but rank below
# established ones.
DEFAULT_PERFORMANCE = PerformanceStats(rating=2.5, completed_jobs=0)


def _as_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def to_candidate(provider: Provider) -> CandidateProvider:
    """Convert a provider row into a ``CandidateProvider``.

    Raises:
        ValidationError: If the row holds values outside their domain.
    """
    latitude = _as_float(provider.latitude)
    longitude = _as_float(provider.longitude)
    if latitude is not None and not -90 <= latitude <= 90:
        raise ValidationError(
            f"Provider {provider.id} has invalid latitude {latitude}", field="latitude"
        )
    if longitude is not None and not -180 <= longitude <= 180:
        raise ValidationError(
            f"Provider {provider.id} has invalid longitude {longitude}", field="longitude"
        )

    rating = float(provider.rating or 0)
    if not 0 <= rating <= 5:
        raise ValidationError(
            f"Provider {provider.id} has invalid rating {rating}", field="rating"
        )

    base_rate = _as_float(provider.base_rate)
    if base_rate is not None and base_rate < 0:
        raise ValidationError(
            f"Provider {provider.id} has negative base rate {base_rate}", field="base_rate"
        )

    service_radius = _as_float(provider.service_radius_miles)
    if service_radius is not None and service_radius <= 0:
        raise ValidationError(
            f"Provider {provider.id} has non-positive service radius {service_radius}",
            field="service_radius_miles",
        )

    specialties = provider.specialties or []
    if not isinstance(specialties, (list, tuple)):
        raise ValidationError(
            f"Provider {provider.id} specialties must be a list", field="specialties"
        )

    return CandidateProvider(
        id=provider.id,
        display_name=provider.display_name,
        business_name=provider.business_name,
        email=provider.email,
        phone=provider.phone,
        profile_image_url=provider.profile_image_url,
        latitude=latitude,
        longitude=longitude,
        service_radius_miles=service_radius,
        rating=rating,
        review_count=provider.review_count or 0,
        base_rate=base_rate,
        military_veteran=bool(provider.military_veteran),
        specialties=tuple(str(s) for s in specialties),
        services=tuple(provider.service_types),
        years_experience=provider.years_experience,
        cal_com_event_type_id=provider.cal_com_event_type_id,
    )


def _parse_rows(providers: Iterable[Provider]) -> list[CandidateProvider]:
    candidates: list[CandidateProvider] = []
    for provider in providers:
        try:
            candidates.append(to_candidate(provider))
        except ValidationError as exc:
            logger.warning("Skipping malformed provider row %s: %s", provider.id, exc)
    return candidates


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def _execute(db: AsyncSession, stmt: Any, context: str) -> Any:
    try:
        return await db.execute(stmt)
    except SQLAlchemyError as exc:
        logger.error("Database error while %s: %s", context, exc)
        raise UpstreamFailureError(
            f"Database error while {context}", source="database"
        ) from exc


def _service_providers_stmt(service_type: str) -> Any:
    return (
        select(Provider)
        .join(ProviderService, ProviderService.provider_id == Provider.id)
        .where(
            ProviderService.service_type == service_type,
            Provider.active.is_(True),
        )
    )


async def fetch_candidates(
    db: AsyncSession,
    service_type: str,
    min_rating: float | None = None,
) -> list[CandidateProvider]:
    """Active providers offering ``service_type`` with rating >= ``min_rating``.

    ``min_rating`` defaults to ``settings.default_min_rating``.

    Raises:
        UpstreamFailureError: If the database query fails.
    """
    floor = min_rating if min_rating is not None else settings.default_min_rating
    stmt = _service_providers_stmt(service_type).where(
        Provider.rating >= Decimal(str(floor))
    )
    result = await _execute(db, stmt, f"loading candidates for '{service_type}'")
    providers: Sequence[Provider] = result.scalars().unique().all()

    logger.info(
        "Candidate query for service=%s min_rating=%.1f returned %d rows",
        service_type,
        floor,
        len(providers),
    )
    return _parse_rows(providers)


async def fetch_service_providers(
    db: AsyncSession,
    service_type: str,
) -> list[CandidateProvider]:
    """All active providers offering ``service_type``, without a rating floor."""
    result = await _execute(
        db,
        _service_providers_stmt(service_type),
        f"loading providers for '{service_type}'",
    )
    return _parse_rows(result.scalars().unique().all())


async def get_provider(db: AsyncSession, provider_id: uuid.UUID) -> CandidateProvider:
    """Load a single provider.

    Raises:
        ProviderNotFoundError: If no such provider exists.
        ValidationError: If the stored row is malformed.
    """
    result = await _execute(
        db,
        select(Provider).where(Provider.id == provider_id),
        f"loading provider {provider_id}",
    )
    provider = result.scalar_one_or_none()
    if provider is None:
        raise ProviderNotFoundError(provider_id)
    return to_candidate(provider)


async def fetch_performance(
    db: AsyncSession,
    provider_ids: Sequence[uuid.UUID],
) -> dict[uuid.UUID, PerformanceStats]:
    """Performance stats per provider, defaulting missing rows."""
    stats = {pid: DEFAULT_PERFORMANCE for pid in provider_ids}
    if not provider_ids:
        return stats

    result = await _execute(
        db,
        select(ProviderPerformance).where(
            ProviderPerformance.provider_id.in_(provider_ids)
        ),
        "loading provider performance",
    )
    for row in result.scalars().all():
        stats[row.provider_id] = PerformanceStats(
            rating=float(row.rating),
            completed_jobs=int(row.completed_jobs or 0),
        )
    return stats


async def fetch_committed_jobs(
    db: AsyncSession,
    provider_ids: Sequence[uuid.UUID],
    on_date: date,
    *,
    exclude_booking_id: uuid.UUID | None = None,
) -> dict[uuid.UUID, list[ScheduledJob]]:
    """Committed bookings per provider on ``on_date``.

    Providers with no bookings map to an empty list.
    """
    jobs: dict[uuid.UUID, list[ScheduledJob]] = {pid: [] for pid in provider_ids}
    if not provider_ids:
        return jobs

    stmt = select(Booking).where(
        Booking.provider_id.in_(provider_ids),
        Booking.scheduled_date == on_date,
        Booking.status.in_(list(COMMITTED_STATUSES)),
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)

    result = await _execute(db, stmt, f"loading committed bookings for {on_date}")
    for booking in result.scalars().all():
        jobs.setdefault(booking.provider_id, []).append(
            ScheduledJob(
                booking_id=booking.id,
                start=datetime.combine(booking.scheduled_date, booking.scheduled_time),
                duration_hours=_as_float(booking.estimated_duration_hours),
            )
        )
    return jobs
