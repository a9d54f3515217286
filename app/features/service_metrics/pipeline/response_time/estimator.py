"""
Response time estimator - reduces response pairs to one robust figure in minutes.

Small samples go straight to the recency-weighted mean. Larger samples are
winsorized at P5/P95, trimmed symmetrically, then averaged with the same
recency weights.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass

from app.config import settings
from app.features.service_metrics.domain.models import ResponsePair
from app.features.service_metrics.domain.trace import MetricsTrace
from app.features.service_metrics.pipeline.stats import clamp, exponential_weight, percentile

HALF_LIFE_DAYS = 90
TRIM_FRACTION = 0.05
LOWER_PERCENTILE = 0.05
UPPER_PERCENTILE = 0.95


@dataclass(frozen=True, slots=True)
class WeightedDelta:
    delta: float
    age_days: float


def weighted_mean(
    items: Sequence[WeightedDelta], trace: MetricsTrace, half_life_days: float = HALF_LIFE_DAYS
) -> float | None:
    numerator = 0.0
    denominator = 0.0
    for item in items:
        weight = exponential_weight(item.age_days, half_life_days)
        if not math.isfinite(weight) or weight <= 0 or not math.isfinite(item.delta):
            continue
        numerator += weight * item.delta
        denominator += weight

    if not denominator or not math.isfinite(denominator):
        trace.record(
            "weighted_response_time_denominator_zero",
            numerator=numerator,
            denominator=denominator,
        )
        return None

    value = numerator / denominator
    result = value if math.isfinite(value) else None
    trace.record(
        "weighted_response_time_computed",
        numerator=numerator,
        denominator=denominator,
        response_time=result,
    )
    return result


class ResponseTimeEstimator:
    def __init__(
        self,
        min_pairs: int | None = None,
        half_life_days: float = HALF_LIFE_DAYS,
        trim_fraction: float = TRIM_FRACTION,
    ) -> None:
        self.min_pairs = min_pairs if min_pairs is not None else settings.min_response_pairs()
        self.half_life_days = half_life_days
        self.trim_fraction = trim_fraction

    def estimate(self, pairs: Sequence[ResponsePair], trace: MetricsTrace) -> float | None:
        """Robust recency-weighted response time in minutes, or None without usable data."""
        if len(pairs) < self.min_pairs:
            trace.record(
                "insufficient_pairs_for_trimmed_mean",
                pair_count=len(pairs),
                minimum_required=self.min_pairs,
            )
            value = weighted_mean(
                [WeightedDelta(pair.delta_raw, pair.age_days) for pair in pairs],
                trace,
                self.half_life_days,
            )
            trace.record("final_response_time", value=value)
            return value

        winsorized = self.winsorize(pairs, trace)
        trimmed = self.trim(winsorized, trace)
        value = weighted_mean(trimmed, trace, self.half_life_days)
        trace.record("final_response_time", value=value)
        return value

    def winsorize(self, pairs: Sequence[ResponsePair], trace: MetricsTrace) -> list[WeightedDelta]:
        raw = sorted(pair.delta_raw for pair in pairs)
        lower = percentile(raw, LOWER_PERCENTILE)
        upper = percentile(raw, UPPER_PERCENTILE)
        trace.record("winsorization_bounds", p5=lower, p95=upper)
        return [WeightedDelta(clamp(pair.delta_raw, lower, upper), pair.age_days) for pair in pairs]

    def trim(self, winsorized: Sequence[WeightedDelta], trace: MetricsTrace) -> list[WeightedDelta]:
        ordered = sorted(winsorized, key=lambda item: item.delta)
        trim_count = math.floor(len(ordered) * self.trim_fraction)
        trimmed = ordered[trim_count : len(ordered) - trim_count]
        trace.record(
            "trimmed_pairs",
            original_count=len(ordered),
            trim_count=trim_count,
            resulting_count=len(trimmed),
        )
        if not trimmed:
            trace.record("trimmed_pairs_empty", fallback_count=len(ordered))
            return ordered
        return trimmed
