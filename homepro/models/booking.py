"""
SQLAlchemy models for bookings and the append-only tracking log.
"""

import enum
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    Text,
    Time,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class BookingStatus(str, enum.Enum):
    PENDING_ASSIGNMENT = "pending_assignment"
    PENDING = "pending"                # transient: internal row written, calendar not yet
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    AUTHORIZED = "authorized"
    PAID = "paid"
    REFUNDED = "refunded"


class Urgency(str, enum.Enum):
    STANDARD = "standard"
    URGENT = "urgent"
    EMERGENCY = "emergency"


# Statuses that require an assigned provider.
PROVIDER_REQUIRED_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.SCHEDULED,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
})

# Statuses that occupy a provider's calendar for conflict detection.
COMMITTED_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.SCHEDULED,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
})

TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REFUNDED,
})


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Booking(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "provider_id IS NOT NULL OR status NOT IN "
            "('scheduled', 'confirmed', 'in_progress', 'completed')",
            name="ck_bookings_provider_when_scheduled",
        ),
        CheckConstraint(
            "estimated_duration_hours IS NULL OR estimated_duration_hours > 0",
            name="ck_bookings_positive_duration",
        ),
    )

    # Parties
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    # What / when / where
    service_id: Mapped[str] = mapped_column(String(100), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_time: Mapped[time] = mapped_column(Time, nullable=False)
    # NULL only on legacy rows; every write path requires a positive value.
    estimated_duration_hours: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    address: Mapped[str] = mapped_column(Text, nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING_ASSIGNMENT,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    urgency: Mapped[Urgency] = mapped_column(
        Enum(Urgency, name="booking_urgency", values_callable=_enum_values),
        nullable=False,
        default=Urgency.STANDARD,
    )

    # Pricing snapshot
    estimated_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    final_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Customer contact (denormalised for the calendar attendee)
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    # External calendar linkage
    external_booking_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    external_booking_uid: Mapped[Optional[str]] = mapped_column(
        String(200), nullable=True, unique=True
    )

    # Relationships
    tracking_entries: Mapped[list["TrackingEntry"]] = relationship(
        "TrackingEntry",
        back_populates="booking",
        order_by="TrackingEntry.created_at",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.scheduled_time)

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, status={self.status}, "
            f"provider={self.provider_id}, date={self.scheduled_date})>"
        )


class TrackingEntry(UUIDPrimaryKeyMixin, Base):
    """Immutable audit row recording a booking status transition."""

    __tablename__ = "tracking"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="tracking_entries")

    def __repr__(self) -> str:
        return (
            f"<TrackingEntry(booking={self.booking_id}, status={self.status!r})>"
        )
