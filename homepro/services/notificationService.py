"""
Booking Notification Service
============================

Hands booking confirmations to whatever delivery channel is configured.
Delivery is fire-and-forget from the booking flow's point of view: a
failure is logged and reported as ``False``, and never undoes the booking.

The default ``LoggingNotifier`` only records the hand-off. Email or push
delivery plugs in by implementing the ``Notifier`` protocol.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingSummary:
    booking_id: uuid.UUID
    service_id: str
    scheduled_date: date
    scheduled_time: time
    address: str
    status: str
    provider_name: Optional[str] = None
    estimated_price: Optional[Decimal] = None


class Notifier(Protocol):
    async def send_booking_confirmation(
        self,
        recipient_email: str,
        summary: BookingSummary,
    ) -> None: ...


class LoggingNotifier:
    """Notifier that writes the confirmation to the application log."""

    async def send_booking_confirmation(
        self,
        recipient_email: str,
        summary: BookingSummary,
    ) -> None:
        logger.info(
            "Booking confirmation for %s queued to %s: %s",
            summary.booking_id,
            recipient_email,
            describe_booking(summary),
        )


def _format_price(amount: Decimal | None) -> str:
    if amount is None:
        return "TBD"
    return f"${amount:,.2f}"


def describe_booking(summary: BookingSummary) -> str:
    """One-line human readable description, used in message bodies."""
    who = summary.provider_name or "a provider (assignment pending)"
    return (
        f"{summary.service_id} on {summary.scheduled_date.isoformat()} at "
        f"{summary.scheduled_time.strftime('%H:%M')} with {who}, "
        f"estimate {_format_price(summary.estimated_price)}"
    )


async def send_booking_confirmation(
    notifier: Notifier | None,
    recipient_email: str | None,
    summary: BookingSummary,
) -> bool:
    """Deliver a booking confirmation, swallowing delivery failures.

    Returns:
        True if the notifier accepted the message, False if there was no
        recipient or delivery failed.
    """
    if not recipient_email:
        logger.info(
            "Booking %s has no customer email; confirmation not sent",
            summary.booking_id,
        )
        return False

    target = notifier if notifier is not None else LoggingNotifier()
    try:
        await target.send_booking_confirmation(recipient_email, summary)
    except Exception:
        logger.exception(
            "Failed to send booking confirmation for %s to %s",
            summary.booking_id,
            recipient_email,
        )
        return False
    return True
