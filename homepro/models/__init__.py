"""
Homepro SQLAlchemy Models
=========================

Central import point for all ORM models. Import ``Base`` from here for
migrations and for the ``create_all`` convenience in tests.

Usage::

    from homepro.models import Base, Booking, Provider
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Providers --
from .provider import Provider, ProviderPerformance, ProviderService

# -- Bookings --
from .booking import (
    COMMITTED_STATUSES,
    PROVIDER_REQUIRED_STATUSES,
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
    TrackingEntry,
    Urgency,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Providers
    "Provider",
    "ProviderPerformance",
    "ProviderService",
    # Bookings
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "TrackingEntry",
    "Urgency",
    "COMMITTED_STATUSES",
    "PROVIDER_REQUIRED_STATUSES",
    "TERMINAL_STATUSES",
]
