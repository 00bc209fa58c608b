from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence

CONSISTENCY_HIGH = "High"
CONSISTENCY_MEDIUM = "Medium"
CONSISTENCY_LOW = "Low"

# Strict "<" cutoffs on standard deviation
HIGH_CONSISTENCY_BELOW = 0.5
MEDIUM_CONSISTENCY_BELOW = 1.0

RATING_BANDS = (1, 2, 3, 4, 5)


def round_half_up(value, places: int = 1) -> float:
    """Presentation rounding: 4.25 -> 4.3, never banker's rounding."""
    if value is None:
        return 0.0
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def mean(ratings: Sequence[float]) -> float:
    if not ratings:
        return 0.0
    return math.fsum(ratings) / len(ratings)


def variance(ratings: Sequence[float], avg: Optional[float] = None) -> float:
    """Sample variance (n-1); a single sample has no variance."""
    n = len(ratings)
    if n <= 1:
        return 0.0
    if avg is None:
        avg = mean(ratings)
    return math.fsum((r - avg) ** 2 for r in ratings) / (n - 1)


def std_dev(ratings: Sequence[float], avg: Optional[float] = None) -> float:
    return math.sqrt(variance(ratings, avg))


def consistency(deviation: float) -> str:
    if deviation < HIGH_CONSISTENCY_BELOW:
        return CONSISTENCY_HIGH
    if deviation < MEDIUM_CONSISTENCY_BELOW:
        return CONSISTENCY_MEDIUM
    return CONSISTENCY_LOW


def rating_band(value: float) -> int:
    """Nearest integer band, halves rounding up, clamped to 1..5."""
    band = int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return min(max(band, RATING_BANDS[0]), RATING_BANDS[-1])


def distribution(ratings: Iterable[float]) -> Dict[int, int]:
    counts = {band: 0 for band in RATING_BANDS}
    for r in ratings:
        counts[rating_band(r)] += 1
    return counts


def distribution_percentages(counts: Dict[int, int]) -> Dict[int, float]:
    total = sum(counts.values())
    if not total:
        return {band: 0.0 for band in counts}
    return {band: (c / total) * 100.0 for band, c in counts.items()}


def summarize(ratings: Sequence[float]) -> dict:
    """
    Full-precision summary of a rating population. Callers round at the
    presentation boundary only.
    """
    values: List[float] = [float(r) for r in ratings]
    avg = mean(values)
    var = variance(values, avg)
    dev = math.sqrt(var)
    return {
        "count": len(values),
        "mean": avg,
        "variance": var,
        "std_dev": dev,
        "min": min(values) if values else 0.0,
        "max": max(values) if values else 0.0,
        "consistency": consistency(dev),
        "distribution": distribution(values),
    }
