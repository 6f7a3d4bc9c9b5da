"""
Booking Event Emitters
======================

Lifecycle events for bookings. Each emitter logs the event and returns the
payload dict so callers (and tests) can forward it to whichever transport
consumes it.

Events emitted:
  - booking.created
  - booking.provider_assigned
  - booking.assignment_pending
  - booking.confirmed
  - booking.cancelled
  - booking.commit_failed
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _build_event(event_type: str, booking_id: uuid.UUID, **data: Any) -> dict[str, Any]:
    """Envelope shared by every booking event; ``data`` is event specific."""
    return {
        "event_type": event_type,
        "booking_id": str(booking_id),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def emit_booking_created(
    booking_id: uuid.UUID,
    customer_id: uuid.UUID | None,
    service_id: str,
) -> dict[str, Any]:
    event = _build_event(
        "booking.created",
        booking_id,
        customer_id=str(customer_id) if customer_id else None,
        service_id=service_id,
    )
    logger.info("Event emitted: %s for booking %s", event["event_type"], booking_id)
    return event


def emit_provider_assigned(
    booking_id: uuid.UUID,
    provider_id: uuid.UUID,
    score: float | None = None,
) -> dict[str, Any]:
    """Emit event when auto-assignment picks a provider."""
    event = _build_event(
        "booking.provider_assigned",
        booking_id,
        provider_id=str(provider_id),
        score=score,
    )
    logger.info(
        "Event emitted: %s for booking %s -> provider %s",
        event["event_type"],
        booking_id,
        provider_id,
    )
    return event


def emit_assignment_pending(
    booking_id: uuid.UUID,
    candidates_considered: int,
) -> dict[str, Any]:
    """Emit event when no provider could be auto-assigned."""
    event = _build_event(
        "booking.assignment_pending",
        booking_id,
        candidates_considered=candidates_considered,
    )
    logger.warning(
        "Event emitted: %s for booking %s (%d candidates considered)",
        event["event_type"],
        booking_id,
        candidates_considered,
    )
    return event


def emit_booking_confirmed(
    booking_id: uuid.UUID,
    provider_id: uuid.UUID,
    external_booking_uid: str,
) -> dict[str, Any]:
    event = _build_event(
        "booking.confirmed",
        booking_id,
        provider_id=str(provider_id),
        external_booking_uid=external_booking_uid,
    )
    logger.info(
        "Event emitted: %s for booking %s (external %s)",
        event["event_type"],
        booking_id,
        external_booking_uid,
    )
    return event


def emit_booking_cancelled(
    booking_id: uuid.UUID,
    reason: str | None = None,
    external_cancelled: bool = True,
) -> dict[str, Any]:
    event = _build_event(
        "booking.cancelled",
        booking_id,
        reason=reason,
        external_cancelled=external_cancelled,
    )
    logger.info("Event emitted: %s for booking %s", event["event_type"], booking_id)
    return event


def emit_commit_failed(
    booking_id: uuid.UUID,
    phase: str,
    *,
    orphaned_booking_id: uuid.UUID | None = None,
    orphaned_external_uid: str | None = None,
) -> dict[str, Any]:
    """Emit event when the two-phase booking commit fails.

    Orphan fields are set only when compensation could not undo a side
    effect; those events need manual reconciliation.
    """
    event = _build_event(
        "booking.commit_failed",
        booking_id,
        phase=phase,
        orphaned_booking_id=str(orphaned_booking_id) if orphaned_booking_id else None,
        orphaned_external_uid=orphaned_external_uid,
    )
    if orphaned_booking_id or orphaned_external_uid:
        logger.error(
            "Event emitted: %s for booking %s at phase %s; orphan left "
            "(booking=%s, external=%s)",
            event["event_type"],
            booking_id,
            phase,
            orphaned_booking_id,
            orphaned_external_uid,
        )
    else:
        logger.warning(
            "Event emitted: %s for booking %s at phase %s; fully rolled back",
            event["event_type"],
            booking_id,
            phase,
        )
    return event
