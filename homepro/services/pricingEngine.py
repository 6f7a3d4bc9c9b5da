"""
Pricing Engine
==============

Pure price and arrival estimates used when ranking provider matches.

Price model:
- Base rate: the provider's per-job rate (default 75 when unset)
- Urgency multiplier: standard 1.0x, urgent 1.25x, emergency 1.5x
- Travel fee: free up to 15 miles, then 3 per additional mile
- Total: base * multiplier + travel fee, rounded half-up to whole units

Arrival model:
- 30 mph average city speed, scaled by the same urgency multiplier

The multiplier values are read from settings and can be changed without a
code change. The tier names are fixed by the booking model. The quote
wizard's older 1.0/1.15/1.3 table is not used here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

from homepro.core.config import settings
from homepro.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FREE_TRAVEL_MILES = Decimal("15")
TRAVEL_FEE_PER_MILE = Decimal("3")
AVERAGE_SPEED_MPH: float = 30.0

_CENTS = Decimal("0.01")
_WHOLE = Decimal("1")


# ---------------------------------------------------------------------------
# Response DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PriceEstimate:
    """Price breakdown for a single provider and request."""
    base_rate: Decimal
    urgency_multiplier: Decimal
    travel_fee: Decimal
    total_estimate: Decimal


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_urgency_multiplier(
    urgency: str,
    multipliers: Mapping[str, float] | None = None,
) -> Decimal:
    """Look up the multiplier for an urgency tier.

    Raises:
        ValidationError: If the tier is not in the table.
    """
    table = multipliers if multipliers is not None else settings.urgency_multipliers
    key = getattr(urgency, "value", urgency)
    if key not in table:
        raise ValidationError(
            f"Unknown urgency '{key}'. Expected one of: {', '.join(sorted(table))}.",
            field="urgency",
        )
    return Decimal(str(table[key]))


def calculate_travel_fee(distance_miles: float) -> Decimal:
    """Travel fee in currency units, to the cent."""
    distance = Decimal(str(distance_miles))
    if distance <= FREE_TRAVEL_MILES:
        return Decimal("0.00")
    return ((distance - FREE_TRAVEL_MILES) * TRAVEL_FEE_PER_MILE).quantize(
        _CENTS, rounding=ROUND_HALF_UP
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def calculate_price_estimate(
    base_rate: float | Decimal,
    urgency: str,
    distance_miles: float,
    *,
    multipliers: Mapping[str, float] | None = None,
) -> PriceEstimate:
    """Estimate the job price for one provider.

    Args:
        base_rate: Provider's base rate.
        urgency: ``standard``, ``urgent`` or ``emergency``.
        distance_miles: Distance between provider and job location.
        multipliers: Optional urgency table override.

    Returns:
        PriceEstimate with the total rounded to whole currency units.
    """
    if distance_miles < 0:
        raise ValidationError("Distance cannot be negative.", field="distance_miles")

    rate = Decimal(str(base_rate))
    if rate < 0:
        raise ValidationError("Base rate cannot be negative.", field="base_rate")

    multiplier = get_urgency_multiplier(urgency, multipliers)
    travel_fee = calculate_travel_fee(distance_miles)
    total = (rate * multiplier + travel_fee).quantize(_WHOLE, rounding=ROUND_HALF_UP)

    return PriceEstimate(
        base_rate=rate,
        urgency_multiplier=multiplier,
        travel_fee=travel_fee,
        total_estimate=total,
    )


def estimate_arrival(
    distance_miles: float,
    urgency: str,
    *,
    now: datetime | None = None,
    multipliers: Mapping[str, float] | None = None,
) -> datetime:
    """Estimate when a provider would arrive if dispatched now.

    Urgent and emergency dispatches are assumed to travel proportionally
    faster than the 30 mph baseline.
    """
    speed = AVERAGE_SPEED_MPH * float(get_urgency_multiplier(urgency, multipliers))
    travel_minutes = round(distance_miles / speed * 60)
    start = now or datetime.now(timezone.utc)
    return start + timedelta(minutes=travel_minutes)
