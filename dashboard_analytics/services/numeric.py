"""
Statistical helper functions shared by the analyzers.

Every helper is denominator-guarded: empty inputs and zero variances yield 0
(or the documented neutral value) instead of NaN or infinity, so results can be
serialized without further checks.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Sequence

import numpy as np
import pandas as pd


# =============================================================================
# Statistical Helper Functions
# =============================================================================


def mean(values: Sequence[float]) -> float:
    """
    Calculate the arithmetic mean of a list of values.

    Args:
        values: List of numeric values

    Returns:
        Arithmetic mean, or 0 if empty list
    """
    if not values:
        return 0.0
    return sum(values) / len(values)


def median(values: Sequence[float]) -> float:
    """
    Calculate the median of a list of values.

    Args:
        values: List of numeric values

    Returns:
        Median value, or 0 if empty list
    """
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    mid = len(sorted_vals) // 2
    if len(sorted_vals) % 2 != 0:
        return sorted_vals[mid]
    return (sorted_vals[mid - 1] + sorted_vals[mid]) / 2


def variance(values: Sequence[float]) -> float:
    """Population variance, 0 for an empty list."""
    if not values:
        return 0.0
    avg = mean(values)
    return sum((v - avg) ** 2 for v in values) / len(values)


def std_dev(values: Sequence[float]) -> float:
    """
    Calculate the population standard deviation of a list of values.

    Args:
        values: List of numeric values

    Returns:
        Standard deviation, or 0 if fewer than 2 values
    """
    if len(values) < 2:
        return 0.0
    return math.sqrt(variance(values))


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning ``default`` when the denominator is zero or the result is not finite."""
    if denominator == 0:
        return default
    result = numerator / denominator
    return result if math.isfinite(result) else default


def percent_change(new: float, old: float) -> float:
    """Relative change in percent, 0 when the base is zero."""
    return safe_divide(new - old, old) * 100


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (Python's round() is banker's rounding)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# Correlation Helpers
# =============================================================================


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Pearson correlation coefficient of two equally long sequences.

    r = Σ(dx·dy) / sqrt(Σdx²·Σdy²). Returns 0 when fewer than two points are
    given or either sequence is constant. The result is clamped to [-1, 1] to
    absorb floating point drift.

    Example:
        >>> pearson_correlation([1, 2, 3], [2, 4, 6])
        1.0
    """
    n = min(len(x), len(y))
    if n < 2:
        return 0.0
    xs = np.asarray(x[:n], dtype=float)
    ys = np.asarray(y[:n], dtype=float)
    dx = xs - xs.mean()
    dy = ys - ys.mean()
    denominator = math.sqrt(float(np.sum(dx * dx)) * float(np.sum(dy * dy)))
    if denominator == 0:
        return 0.0
    return clamp(float(np.sum(dx * dy)) / denominator, -1.0, 1.0)


def rank_values(values: Sequence[float]) -> List[float]:
    """Average ranks (1-based); tied values share the mean of their positions."""
    return pd.Series(values, dtype=float).rank(method="average").tolist()


def spearman_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Spearman rank correlation: Pearson over average ranks."""
    n = min(len(x), len(y))
    if n < 2:
        return 0.0
    return pearson_correlation(rank_values(x[:n]), rank_values(y[:n]))
