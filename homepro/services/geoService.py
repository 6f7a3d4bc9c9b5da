"""
Geo Service
===========

Geographic utility functions for distance calculations and radius filtering.
Used by the matching engine to filter providers by proximity.

Uses the haversine formula for great-circle distance between two points
on Earth's surface, in miles.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

# Earth's mean radius in miles
EARTH_RADIUS_MILES: float = 3959.0


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Great-circle distance in miles between two ``(lat, lon)`` points
    given in decimal degrees. Symmetric, and zero for identical points."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    h = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    arc = 2 * math.asin(min(1.0, math.sqrt(h)))

    return EARTH_RADIUS_MILES * arc


def effective_radius(*limits: float | None) -> float:
    """Return the tightest of the given radius limits, ignoring unset ones.

    Raises ValueError if every limit is unset.
    """
    present = [float(limit) for limit in limits if limit is not None]
    if not present:
        raise ValueError("At least one radius limit is required")
    return min(present)


@dataclass
class ProviderDistance:
    """A candidate and its distance from the job location."""

    provider: Any
    distance_miles: float


def filter_by_radius(
    providers: Sequence[Any],
    center_lat: float,
    center_lon: float,
    *,
    search_radius_miles: float,
    max_distance_miles: float | None = None,
    default_provider_radius_miles: float,
) -> list[ProviderDistance]:
    """Filter providers to those within reach of a center point.

    A provider is kept when its distance is within the tightest of: the
    search radius, the provider's own ``service_radius_miles`` (or the
    default when unset), and the customer's ``max_distance_miles``
    preference.

    Args:
        providers: Sequence of objects with ``latitude``, ``longitude`` and
            ``service_radius_miles`` attributes.
        center_lat: Latitude of the job location.
        center_lon: Longitude of the job location.
        search_radius_miles: Requested search radius.
        max_distance_miles: Optional customer max-distance preference.
        default_provider_radius_miles: Radius assumed for providers that
            have not configured one.

    Returns:
        List of ProviderDistance objects sorted by distance (closest first).
    """
    results: list[ProviderDistance] = []

    for provider in providers:
        if provider.latitude is None or provider.longitude is None:
            continue

        distance = haversine_distance(
            center_lat,
            center_lon,
            float(provider.latitude),
            float(provider.longitude),
        )

        provider_radius = (
            float(provider.service_radius_miles)
            if provider.service_radius_miles is not None
            else default_provider_radius_miles
        )
        limit = effective_radius(search_radius_miles, provider_radius, max_distance_miles)

        if distance <= limit:
            results.append(ProviderDistance(provider=provider, distance_miles=distance))

    results.sort(key=lambda pd: pd.distance_miles)

    return results
