"""
Booking Orchestrator
====================

Turns a booking request into a committed, provider-assigned booking.

Two flows:

  - create_booking / auto_assign_provider
        Insert the booking in ``pending_assignment`` and pick the best
        conflict-free provider by ``rating + experience bonus``. Finding
        nobody leaves the booking pending for operator follow-up; it is not
        an error.

  - book_with_provider
        The customer picked a provider. The internal row and the external
        calendar booking are written as a saga:

          Phase 1  insert booking as ``pending`` and commit
          Phase 2  create the calendar booking (tagged with our booking id)
          Phase 3  store the external id/uid, mark ``confirmed``, commit

        Phase 2 failure deletes the Phase 1 row. Phase 3 failure cancels
        the calendar booking and deletes the row. If a compensating step
        fails too, ``CommitFailureError`` names the surviving artifact.

Plus cancel_booking, which cancels internally and best-effort externally.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from homepro.core.config import settings
from homepro.core.exceptions import (
    BookingNotFoundError,
    CommitFailureError,
    ConflictDetectedError,
    ValidationError,
)
from homepro.events.bookingEvents import (
    emit_assignment_pending,
    emit_booking_cancelled,
    emit_booking_confirmed,
    emit_booking_created,
    emit_commit_failed,
    emit_provider_assigned,
)
from homepro.integrations.calcom import Attendee, AvailabilityGateway, ExternalBooking
from homepro.models import (
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
    TrackingEntry,
    Urgency,
)
from homepro.services import candidateRepository
from homepro.services.candidateRepository import CandidateProvider, PerformanceStats
from homepro.services.conflictDetector import has_conflict
from homepro.services.geoService import haversine_distance
from homepro.services.notificationService import (
    BookingSummary,
    Notifier,
    send_booking_confirmation,
)
from homepro.services.pricingEngine import calculate_price_estimate, get_urgency_multiplier

logger = logging.getLogger(__name__)

# Experience bonus per completed job, capped below one full rating point.
EXPERIENCE_BONUS_PER_JOB = 0.01
MAX_EXPERIENCE_BONUS = 0.99


# ---------------------------------------------------------------------------
# Request / result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BookingRequest:
    """Job details for a new booking."""

    service_id: str
    scheduled_date: date
    scheduled_time: time
    estimated_duration_hours: float
    address: str
    customer_id: Optional[uuid.UUID] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    urgency: str = Urgency.STANDARD.value
    special_instructions: Optional[str] = None
    estimated_price: Optional[Decimal] = None
    # Customer location, used to price the job when no estimate is given.
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.scheduled_time)


@dataclass(frozen=True)
class AssignmentOutcome:
    booking_id: uuid.UUID
    assigned: bool
    provider_id: Optional[uuid.UUID] = None
    provider_name: Optional[str] = None
    score: Optional[float] = None
    candidates_considered: int = 0
    excluded_for_conflict: int = 0


@dataclass(frozen=True)
class BookingCreation:
    booking: Booking
    assignment: AssignmentOutcome


@dataclass(frozen=True)
class BookingConfirmation:
    booking_id: uuid.UUID
    provider_id: uuid.UUID
    external_booking_id: str
    external_booking_uid: str
    status: BookingStatus
    estimated_price: Optional[Decimal] = None


@dataclass(frozen=True)
class CancellationResult:
    booking_id: uuid.UUID
    status: BookingStatus
    external_cancelled: bool


# ---------------------------------------------------------------------------
# Validation & helpers
# ---------------------------------------------------------------------------

def validate_booking_request(request: BookingRequest, *, require_contact: bool = False) -> None:
    """Reject malformed booking input before any I/O.

    Raises:
        ValidationError: On the first invalid field.
    """
    if not request.service_id or not request.service_id.strip():
        raise ValidationError("Service id is required.", field="service_id")
    if request.estimated_duration_hours is None or request.estimated_duration_hours <= 0:
        raise ValidationError(
            "Estimated duration must be a positive number of hours.",
            field="estimated_duration_hours",
        )
    if not request.address or not request.address.strip():
        raise ValidationError("Address is required.", field="address")
    get_urgency_multiplier(request.urgency)
    if request.estimated_price is not None and request.estimated_price < 0:
        raise ValidationError("Estimated price cannot be negative.", field="estimated_price")

    if require_contact:
        if not request.customer_name:
            raise ValidationError("Customer name is required.", field="customer_name")
        if not request.customer_email or "@" not in request.customer_email:
            raise ValidationError(
                "A valid customer email is required.", field="customer_email"
            )


def assignment_score(stats: PerformanceStats) -> float:
    """``rating + min(completed_jobs * 0.01, 0.99)``."""
    bonus = min(stats.completed_jobs * EXPERIENCE_BONUS_PER_JOB, MAX_EXPERIENCE_BONUS)
    return stats.rating + bonus


def _estimate_price(request: BookingRequest, provider: CandidateProvider) -> Optional[Decimal]:
    if request.estimated_price is not None:
        return Decimal(str(request.estimated_price))
    if (
        request.latitude is None
        or request.longitude is None
        or provider.latitude is None
        or provider.longitude is None
    ):
        return None

    distance = haversine_distance(
        request.latitude, request.longitude, provider.latitude, provider.longitude
    )
    base_rate = (
        provider.base_rate if provider.base_rate is not None else settings.default_base_rate
    )
    return calculate_price_estimate(base_rate, request.urgency, distance).total_estimate


def _new_booking(
    request: BookingRequest,
    status: BookingStatus,
    provider_id: uuid.UUID | None = None,
    estimated_price: Decimal | None = None,
) -> Booking:
    return Booking(
        id=uuid.uuid4(),
        customer_id=request.customer_id,
        provider_id=provider_id,
        service_id=request.service_id,
        scheduled_date=request.scheduled_date,
        scheduled_time=request.scheduled_time,
        estimated_duration_hours=Decimal(str(request.estimated_duration_hours)),
        address=request.address,
        special_instructions=request.special_instructions,
        status=status,
        urgency=Urgency(request.urgency),
        estimated_price=(
            estimated_price if estimated_price is not None else request.estimated_price
        ),
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
    )


def _track(
    db: AsyncSession,
    booking: Booking,
    notes: str,
    provider_id: uuid.UUID | None = None,
) -> TrackingEntry:
    entry = TrackingEntry(
        booking_id=booking.id,
        provider_id=provider_id if provider_id is not None else booking.provider_id,
        status=booking.status.value,
        notes=notes,
    )
    db.add(entry)
    return entry


def _summary(booking: Booking, provider_name: str | None) -> BookingSummary:
    return BookingSummary(
        booking_id=booking.id,
        service_id=booking.service_id,
        scheduled_date=booking.scheduled_date,
        scheduled_time=booking.scheduled_time,
        address=booking.address,
        status=booking.status.value,
        provider_name=provider_name,
        estimated_price=booking.estimated_price,
    )


# ---------------------------------------------------------------------------
# (a) Auto-assignment
# ---------------------------------------------------------------------------

async def auto_assign_provider(db: AsyncSession, booking: Booking) -> AssignmentOutcome:
    """Assign the best conflict-free provider to a pending booking.

    Candidates with an overlapping committed job on the same date are
    excluded regardless of score. Among the rest, the highest
    ``assignment_score`` wins; ties go to more completed jobs, then the
    lower provider id.

    Returns:
        AssignmentOutcome. ``assigned`` is False when nobody was eligible,
        in which case the booking stays in ``pending_assignment``.
    """
    duration = booking.estimated_duration_hours
    if duration is None or duration <= 0:
        raise ValidationError(
            "Estimated duration must be a positive number of hours.",
            field="estimated_duration_hours",
        )

    candidates = await candidateRepository.fetch_service_providers(db, booking.service_id)
    provider_ids = [c.id for c in candidates]
    stats = await candidateRepository.fetch_performance(db, provider_ids)
    jobs = await candidateRepository.fetch_committed_jobs(
        db, provider_ids, booking.scheduled_date, exclude_booking_id=booking.id
    )

    eligible: list[CandidateProvider] = []
    for candidate in candidates:
        if has_conflict(jobs.get(candidate.id, []), booking.starts_at, float(duration)):
            logger.info(
                "Provider %s excluded from booking %s: overlapping job on %s",
                candidate.id,
                booking.id,
                booking.scheduled_date,
            )
            continue
        eligible.append(candidate)

    excluded = len(candidates) - len(eligible)

    if not eligible:
        logger.warning(
            "No provider available for booking %s (service=%s, %s %s); "
            "left in pending_assignment for operator follow-up",
            booking.id,
            booking.service_id,
            booking.scheduled_date,
            booking.scheduled_time,
        )
        _track(db, booking, "No conflict-free provider available; operator follow-up required")
        await db.flush()
        emit_assignment_pending(booking.id, len(candidates))
        return AssignmentOutcome(
            booking_id=booking.id,
            assigned=False,
            candidates_considered=len(candidates),
            excluded_for_conflict=excluded,
        )

    best = min(
        eligible,
        key=lambda c: (
            -assignment_score(stats[c.id]),
            -stats[c.id].completed_jobs,
            str(c.id),
        ),
    )
    score = assignment_score(stats[best.id])

    booking.provider_id = best.id
    booking.status = BookingStatus.SCHEDULED
    _track(db, booking, "Provider automatically assigned", provider_id=best.id)
    await db.flush()

    logger.info(
        "Booking %s auto-assigned to provider %s (score=%.2f, %d eligible of %d)",
        booking.id,
        best.id,
        score,
        len(eligible),
        len(candidates),
    )
    emit_provider_assigned(booking.id, best.id, score)
    return AssignmentOutcome(
        booking_id=booking.id,
        assigned=True,
        provider_id=best.id,
        provider_name=best.display_name,
        score=score,
        candidates_considered=len(candidates),
        excluded_for_conflict=excluded,
    )


async def create_booking(
    db: AsyncSession,
    request: BookingRequest,
    notifier: Notifier | None = None,
) -> BookingCreation:
    """Create a booking and try to auto-assign a provider.

    Raises:
        ValidationError: If the request is malformed.
    """
    validate_booking_request(request)

    booking = _new_booking(request, BookingStatus.PENDING_ASSIGNMENT)
    db.add(booking)
    await db.flush()
    _track(db, booking, "Booking created")
    emit_booking_created(booking.id, booking.customer_id, booking.service_id)

    assignment = await auto_assign_provider(db, booking)
    await db.commit()

    await send_booking_confirmation(
        notifier, booking.customer_email, _summary(booking, assignment.provider_name)
    )
    return BookingCreation(booking=booking, assignment=assignment)


# ---------------------------------------------------------------------------
# (b) Explicit booking with a chosen provider
# ---------------------------------------------------------------------------

async def _delete_pending(db: AsyncSession, booking_id: uuid.UUID) -> bool:
    """Compensation: remove a booking row. Returns False if that failed."""
    try:
        await db.execute(delete(Booking).where(Booking.id == booking_id))
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Compensation failed: could not delete booking %s", booking_id)
        await db.rollback()
        return False
    logger.warning("Compensation: deleted pending booking %s", booking_id)
    return True


async def _cancel_external(
    gateway: AvailabilityGateway,
    uid: str,
    booking_id: uuid.UUID,
) -> bool:
    """Compensation: cancel a calendar booking. Returns False if that failed."""
    try:
        await asyncio.wait_for(
            gateway.cancel_booking(uid, f"Internal booking {booking_id} could not be saved"),
            timeout=settings.external_booking_timeout_seconds,
        )
    except Exception:
        logger.exception(
            "Compensation failed: could not cancel calendar booking %s for %s",
            uid,
            booking_id,
        )
        return False
    logger.warning("Compensation: cancelled calendar booking %s for %s", uid, booking_id)
    return True


async def _link_external_booking(
    db: AsyncSession,
    booking: Booking,
    external: ExternalBooking,
) -> None:
    """Phase 3: point the internal row at the calendar booking and confirm it."""
    booking.external_booking_id = external.id
    booking.external_booking_uid = external.uid
    booking.status = BookingStatus.CONFIRMED
    _track(db, booking, f"Booking confirmed with calendar booking {external.uid}")
    await db.commit()


async def book_with_provider(
    db: AsyncSession,
    gateway: AvailabilityGateway,
    provider_id: uuid.UUID,
    details: BookingRequest,
    notifier: Notifier | None = None,
) -> BookingConfirmation:
    """Book a specific provider, keeping our row and the calendar in step.

    Raises:
        ValidationError: Malformed details, or the provider has no calendar.
        ProviderNotFoundError: Unknown provider.
        ConflictDetectedError: The provider has an overlapping job. Raised
            before anything is written.
        CommitFailureError: A phase of the commit failed. Compensation has
            run; ``orphaned_*`` attributes name anything it could not undo.
    """
    validate_booking_request(details, require_contact=True)

    provider = await candidateRepository.get_provider(db, provider_id)
    if provider.cal_com_event_type_id is None:
        raise ValidationError(
            f"Provider {provider_id} has no calendar configured.", field="provider_id"
        )

    jobs = await candidateRepository.fetch_committed_jobs(
        db, [provider.id], details.scheduled_date
    )
    if has_conflict(
        jobs.get(provider.id, []), details.starts_at, details.estimated_duration_hours
    ):
        logger.info(
            "Rejected booking with provider %s at %s: overlapping job",
            provider.id,
            details.starts_at,
        )
        raise ConflictDetectedError(provider.id)

    # Phase 1
    booking = _new_booking(
        details,
        BookingStatus.PENDING,
        provider_id=provider.id,
        estimated_price=_estimate_price(details, provider),
    )
    booking_id = booking.id
    db.add(booking)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        emit_commit_failed(booking_id, "insert")
        raise CommitFailureError(
            "Could not save the booking.", phase="insert", booking_id=booking_id
        ) from exc

    # Phase 2
    tz = settings.cal_com_time_zone
    start = datetime.combine(details.scheduled_date, details.scheduled_time, tzinfo=ZoneInfo(tz))
    end = start + timedelta(hours=float(details.estimated_duration_hours))
    try:
        external = await asyncio.wait_for(
            gateway.create_booking(
                provider.cal_com_event_type_id,
                start,
                end,
                Attendee(name=details.customer_name, email=details.customer_email, time_zone=tz),
                {
                    "booking_id": str(booking_id),
                    "service_type": details.service_id,
                    "address": details.address,
                    "phone": details.customer_phone,
                    "urgency": details.urgency,
                },
            ),
            timeout=settings.external_booking_timeout_seconds,
        )
    except Exception as exc:
        logger.warning(
            "Calendar booking failed for booking %s (provider %s): %r",
            booking_id,
            provider.id,
            exc,
        )
        deleted = await _delete_pending(db, booking_id)
        orphan = None if deleted else booking_id
        emit_commit_failed(booking_id, "external", orphaned_booking_id=orphan)
        raise CommitFailureError(
            "The provider's calendar could not take the booking.",
            phase="external",
            booking_id=booking_id,
            orphaned_booking_id=orphan,
        ) from exc

    # Phase 3
    try:
        await _link_external_booking(db, booking, external)
    except Exception as exc:
        logger.error(
            "Linking calendar booking %s to booking %s failed: %r",
            external.uid,
            booking_id,
            exc,
        )
        await db.rollback()
        cancelled = await _cancel_external(gateway, external.uid, booking_id)
        deleted = await _delete_pending(db, booking_id)
        orphaned_booking = None if deleted else booking_id
        orphaned_uid = None if cancelled else external.uid
        emit_commit_failed(
            booking_id,
            "link",
            orphaned_booking_id=orphaned_booking,
            orphaned_external_uid=orphaned_uid,
        )
        raise CommitFailureError(
            "The booking could not be confirmed.",
            phase="link",
            booking_id=booking_id,
            orphaned_booking_id=orphaned_booking,
            orphaned_external_uid=orphaned_uid,
        ) from exc

    emit_booking_confirmed(booking_id, provider.id, external.uid)
    await send_booking_confirmation(
        notifier, details.customer_email, _summary(booking, provider.display_name)
    )
    return BookingConfirmation(
        booking_id=booking_id,
        provider_id=provider.id,
        external_booking_id=external.id,
        external_booking_uid=external.uid,
        status=BookingStatus.CONFIRMED,
        estimated_price=booking.estimated_price,
    )


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

async def cancel_booking(
    db: AsyncSession,
    gateway: AvailabilityGateway,
    booking_id: uuid.UUID,
    reason: str | None = None,
) -> CancellationResult:
    """Cancel a booking and its calendar counterpart.

    The internal cancellation stands even if the calendar cancellation
    fails; the failure is logged and noted on the tracking entry.

    Raises:
        BookingNotFoundError: Unknown booking.
        ValidationError: The booking is already completed, cancelled or
            refunded.
    """
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if booking is None:
        raise BookingNotFoundError(booking_id)
    if booking.status in TERMINAL_STATUSES:
        raise ValidationError(
            f"Booking {booking_id} is already {booking.status.value}.", field="status"
        )

    reason_text = reason or "Cancelled by request"
    external_cancelled = True
    notes = reason_text
    if booking.external_booking_uid:
        try:
            await asyncio.wait_for(
                gateway.cancel_booking(booking.external_booking_uid, reason_text),
                timeout=settings.external_booking_timeout_seconds,
            )
        except Exception as exc:
            external_cancelled = False
            logger.warning(
                "Calendar cancellation failed for booking %s (uid %s): %r",
                booking_id,
                booking.external_booking_uid,
                exc,
            )
            notes = (
                f"{reason_text} (calendar booking {booking.external_booking_uid} "
                f"could not be cancelled)"
            )

    booking.status = BookingStatus.CANCELLED
    _track(db, booking, notes)
    await db.commit()

    emit_booking_cancelled(booking_id, reason_text, external_cancelled)
    return CancellationResult(
        booking_id=booking_id,
        status=booking.status,
        external_cancelled=external_cancelled,
    )
