"""
Provider Ranking Algorithm
==========================

Orders priced, availability-checked provider matches for display or
auto-selection. The order is lexicographic over four criteria:

  1. Availability   -- available at the requested time first
  2. Veteran        -- veterans first, only when the customer asked for it
  3. Rating         -- higher first; gaps of 0.1 or less count as a tie
  4. Distance       -- closer first

Because the rating tie band makes "equal rating" non-transitive, ranking is
expressed as a pairwise comparator rather than a sort key.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from functools import cmp_to_key
from typing import Protocol, Sequence, TypeVar

# Rating differences at or below this are treated as equal. Ratings are
# stored to two decimals and compared at that precision.
RATING_TIE_THRESHOLD = Decimal("0.1")

_RATING_PRECISION = Decimal("0.01")


class Rankable(Protocol):
    """The attributes ranking needs from a match."""

    is_available: bool
    military_veteran: bool
    rating: float
    distance_miles: float


T = TypeVar("T", bound=Rankable)


def _exact_rating(value: float | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(_RATING_PRECISION, rounding=ROUND_HALF_UP)


def compare_matches(a: Rankable, b: Rankable, *, prefer_veterans: bool = False) -> int:
    """Negative when ``a`` ranks before ``b``, positive when after."""
    if a.is_available != b.is_available:
        return -1 if a.is_available else 1

    if prefer_veterans and a.military_veteran != b.military_veteran:
        return -1 if a.military_veteran else 1

    rating_gap = _exact_rating(b.rating) - _exact_rating(a.rating)
    if abs(rating_gap) > RATING_TIE_THRESHOLD:
        return -1 if rating_gap < 0 else 1

    if a.distance_miles != b.distance_miles:
        return -1 if a.distance_miles < b.distance_miles else 1
    return 0


def rank_matches(matches: Sequence[T], *, prefer_veterans: bool = False) -> list[T]:
    """Return ``matches`` in ranked order (best first). Stable for full ties."""
    return sorted(
        matches,
        key=cmp_to_key(
            lambda a, b: compare_matches(a, b, prefer_veterans=prefer_veterans)
        ),
    )
