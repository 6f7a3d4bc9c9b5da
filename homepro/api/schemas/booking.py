"""
Pydantic v2 schemas for the Booking API
=======================================

Request and response models for booking creation (with auto-assignment),
booking with a chosen provider, and cancellation.
"""

from __future__ import annotations

import uuid
from datetime import date, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from homepro.models import BookingStatus, Urgency


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class BookingCreateRequest(BaseModel):
    """Job details for a new booking."""

    service_id: str = Field(min_length=1, max_length=100)
    scheduled_date: date
    scheduled_time: time
    estimated_duration_hours: float = Field(gt=0, le=24)
    address: str = Field(min_length=1)
    customer_id: Optional[uuid.UUID] = None
    customer_name: Optional[str] = Field(default=None, max_length=200)
    customer_email: Optional[str] = Field(default=None, max_length=320)
    customer_phone: Optional[str] = Field(default=None, max_length=40)
    urgency: Urgency = Urgency.STANDARD
    special_instructions: Optional[str] = None
    estimated_price: Optional[Decimal] = Field(default=None, ge=0)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class BookWithProviderRequest(BookingCreateRequest):
    """Booking with a provider the customer picked from the match list."""

    provider_id: uuid.UUID
    customer_name: str = Field(min_length=1, max_length=200)
    customer_email: str = Field(min_length=3, max_length=320)


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    service_id: str
    provider_id: Optional[uuid.UUID] = None
    status: BookingStatus
    scheduled_date: date
    scheduled_time: time
    estimated_duration_hours: Optional[Decimal] = None
    estimated_price: Optional[Decimal] = None
    urgency: Urgency
    external_booking_uid: Optional[str] = None


class BookingCreateResponse(BaseModel):
    booking: BookingOut
    assigned: bool
    provider_id: Optional[uuid.UUID] = None
    score: Optional[float] = None
    candidates_considered: int


class BookingConfirmationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: uuid.UUID
    provider_id: uuid.UUID
    external_booking_id: str
    external_booking_uid: str
    status: BookingStatus
    estimated_price: Optional[Decimal] = None


class CancellationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: uuid.UUID
    status: BookingStatus
    external_cancelled: bool
