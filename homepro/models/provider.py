"""
SQLAlchemy models for providers, provider_services, and provider_performance.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Provider(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "providers"

    # Identity / contact
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    business_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status (deactivated, never deleted)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Location
    latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 7), nullable=True)
    longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 7), nullable=True)
    service_radius_miles: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 2), nullable=True
    )

    # Reputation
    rating: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), nullable=False, server_default="0"
    )
    review_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0"
    )

    # Pricing
    base_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Profile
    military_veteran: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    specialties: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)
    years_experience: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # External calendar (Cal.com event type)
    cal_com_event_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    services: Mapped[list["ProviderService"]] = relationship(
        "ProviderService",
        back_populates="provider",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    performance: Mapped[Optional["ProviderPerformance"]] = relationship(
        "ProviderPerformance", back_populates="provider", uselist=False
    )

    @property
    def service_types(self) -> list[str]:
        return sorted(s.service_type for s in self.services)

    def __repr__(self) -> str:
        return (
            f"<Provider(id={self.id}, name={self.display_name!r}, "
            f"active={self.active}, rating={self.rating})>"
        )


class ProviderService(UUIDPrimaryKeyMixin, Base):
    """A service type a provider offers (the provider's offered-service set)."""

    __tablename__ = "provider_services"
    __table_args__ = (
        UniqueConstraint("provider_id", "service_type", name="uq_provider_service"),
    )

    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="services")


class ProviderPerformance(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Aggregated job performance used by auto-assignment scoring."""

    __tablename__ = "provider_performance"

    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    rating: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), nullable=False, server_default="0"
    )
    completed_jobs: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0"
    )

    provider: Mapped["Provider"] = relationship("Provider", back_populates="performance")
