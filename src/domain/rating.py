"""
Driver rating aggregation.

The aggregate is recomputed from scratch over the current review set on
every change, never maintained as a running average, so edits and
deletions cannot make it drift.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

STARS = (5, 4, 3, 2, 1)


def average_rating(ratings: Iterable[int]) -> float:
    """Arithmetic mean rounded half-up to one decimal; 0.0 when empty."""
    values = list(ratings)
    if not values:
        return 0.0
    mean = Decimal(sum(values)) / Decimal(len(values))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def rating_breakdown(ratings: Iterable[int]) -> dict[str, float | int]:
    values = list(ratings)
    counts = {star: 0 for star in STARS}
    for r in values:
        counts[r] = counts.get(r, 0) + 1
    return {
        "avg_rating": average_rating(values),
        "total_reviews": len(values),
        "five_stars": counts[5],
        "four_stars": counts[4],
        "three_stars": counts[3],
        "two_stars": counts[2],
        "one_star": counts[1],
    }
