"""
Statistics Primitives

Order statistics and weighted aggregates used across the Star Rating
analytics. Functions that take `sorted_values` expect the caller to have
sorted them already.
"""

import math
from bisect import bisect_right
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel


def round_half_up(value: Optional[float], digits: int = 0) -> Optional[float]:
    """Round halves upward (2.25 -> 2.3, -2.5 -> -2)."""
    if value is None:
        return None
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_to_half(value: float) -> float:
    """Round a rating to the nearest half star (3.74 -> 3.5, 3.75 -> 4.0)."""
    return math.floor(value * 2 + 0.5) / 2


def is_finite_number(value) -> bool:
    """True for real, finite numbers (bools excluded)."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def median(sorted_values: Sequence[float]) -> float:
    """Median of a pre-sorted, non-empty sequence."""
    length = len(sorted_values)
    mid = length // 2
    if length % 2 == 0:
        return (sorted_values[mid - 1] + sorted_values[mid]) / 2
    return sorted_values[mid]


def quartiles(sorted_values: Sequence[float]) -> Tuple[Optional[float], Optional[float]]:
    """
    First and third quartiles as medians of the lower and upper halves.

    For odd lengths the middle element belongs to neither half.
    Returns (None, None) for fewer than 2 values.
    """
    length = len(sorted_values)
    if length < 2:
        return None, None

    mid = length // 2
    lower = sorted_values[:mid]
    upper = sorted_values[mid:] if length % 2 == 0 else sorted_values[mid + 1:]

    return median(lower), median(upper)


def percentile_rank(sorted_values: Sequence[float], target: Optional[float]) -> Optional[float]:
    """
    Percent of values less than or equal to target, rounded to 2 decimals.

    Ties are inclusive: every value equal to target counts toward its rank.
    """
    if target is None or not sorted_values:
        return None

    rank = bisect_right(sorted_values, target)
    return round_half_up(rank / len(sorted_values) * 100, 2)


def percentile(sorted_values: Sequence[float], pct: float) -> Optional[float]:
    """Percentile with linear interpolation between closest ranks."""
    if not len(sorted_values):
        return None
    return float(np.percentile(np.asarray(sorted_values, dtype=float), pct))


def _usable_pairs(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> List[Tuple[float, float]]:
    """Keep (value, weight) pairs with a finite value and a positive finite weight."""
    usable = []
    for value, weight in pairs:
        if not is_finite_number(value) or not is_finite_number(weight):
            continue
        if weight <= 0:
            continue
        usable.append((float(value), float(weight)))
    return usable


def weighted_mean(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> Optional[float]:
    """
    Weighted mean: sum(w * x) / sum(w).

    Returns None when no pair carries weight.
    """
    usable = _usable_pairs(pairs)
    if not usable:
        return None

    values, weights = zip(*usable)
    return float(np.average(values, weights=weights))


def weighted_variance(
    pairs: Iterable[Tuple[Optional[float], Optional[float]]],
    mean: Optional[float] = None
) -> Optional[float]:
    """
    Weighted variance around the weighted mean, with Bessel's correction.

    Formula from the CMS Technical Notes:
        variance = [n / (n - 1)] * sum(w * (x - mean)^2) / sum(w)

    Returns None for fewer than 2 usable pairs.
    """
    usable = _usable_pairs(pairs)
    n = len(usable)
    if n < 2:
        return None

    values = np.array([v for v, _ in usable])
    weights = np.array([w for _, w in usable])

    if mean is None:
        mean = float(np.average(values, weights=weights))

    squared = weights * (values - mean) ** 2
    return float(n / (n - 1) * squared.sum() / weights.sum())


class SummaryStats(BaseModel):
    """Distribution summary for a set of measure values."""
    count: int
    average: Optional[float] = None
    median: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    q1: Optional[float] = None
    q3: Optional[float] = None


def describe(values: Iterable[Optional[float]]) -> SummaryStats:
    """Count, average, median, min, max and quartiles of the finite values."""
    ordered = sorted(float(v) for v in values if is_finite_number(v))
    if not ordered:
        return SummaryStats(count=0)

    q1, q3 = quartiles(ordered)
    return SummaryStats(
        count=len(ordered),
        average=sum(ordered) / len(ordered),
        median=median(ordered),
        min=ordered[0],
        max=ordered[-1],
        q1=q1,
        q3=q3,
    )
