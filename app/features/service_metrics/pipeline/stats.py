"""
Robust statistics shared by the response-time and success-rate stages.
"""

import math
from collections.abc import Sequence


def clamp(value: float, lower: float | None = None, upper: float | None = None) -> float:
    if lower is not None and value < lower:
        value = lower
    if upper is not None and value > upper:
        value = upper
    return value


def percentile(sorted_values: Sequence[float], fraction: float) -> float | None:
    """Linear interpolation between order statistics of an ascending sequence."""
    if not sorted_values:
        return None
    if len(sorted_values) == 1:
        return sorted_values[0]
    index = (len(sorted_values) - 1) * fraction
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return sorted_values[lower]
    weight = index - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * weight


def exponential_weight(age_days: float, half_life_days: float) -> float:
    """0.5 ** (age / half_life); unknown or negative ages weigh 1."""
    if not math.isfinite(age_days) or age_days < 0:
        return 1.0
    if not math.isfinite(half_life_days) or half_life_days <= 0:
        return 1.0
    return 0.5 ** (age_days / half_life_days)


def wilson_lower_bound(ratio: float, n: float, z: float = 1.64) -> float:
    """
    Lower bound of the Wilson score interval for an observed ratio.

    Returns 0 when there is no sample. The bound rises towards the observed
    ratio as n grows, so small samples are never scored as confidently as
    large ones.
    """
    if not (math.isfinite(ratio) and math.isfinite(n) and math.isfinite(z)):
        return 0.0
    if n <= 0:
        return 0.0
    p = clamp(ratio, 0.0, 1.0)
    if p == 0:
        return 0.0
    z_squared = z * z
    denominator = 1 + z_squared / n
    centre = p + z_squared / (2 * n)
    margin = z * math.sqrt((p * (1 - p) + z_squared / (4 * n)) / n)
    bound = (centre - margin) / denominator
    if not math.isfinite(bound):
        return 0.0
    return clamp(bound, 0.0, 1.0)


def finite_sorted(values: Sequence[float]) -> list[float]:
    """Finite, non-negative values in ascending order."""
    return sorted(value for value in values if math.isfinite(value) and value >= 0)


def positive_or(value: float | None, fallback: float) -> float:
    if value is None or not math.isfinite(value) or value <= 0:
        return fallback
    return value
