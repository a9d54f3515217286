"""
Success rate - one bounded quality score per service.

Seven weak signals (rating, repeat clients, cancellations, completion,
responsiveness, revenue, disputes) are scored 0-100, combined into a base
score, and the base score is shrunk towards the category prior according
to how many completed bookings back it.
"""

from __future__ import annotations

import asyncio
import math
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.features.service_metrics.domain.models import (
    BookingRecord,
    CategoryStats,
    ReviewRecord,
    ServiceResponseRecord,
    SuccessRateResult,
)
from app.features.service_metrics.domain.normalize import (
    coerce_key,
    normalize_timestamp,
    numeric_form,
    to_float,
)
from app.features.service_metrics.domain.trace import MetricsTrace
from app.features.service_metrics.pipeline.stats import (
    clamp,
    exponential_weight,
    finite_sorted,
    percentile,
    positive_or,
    wilson_lower_bound,
)
from app.infrastructure.observability.logging import get_logger

from .repository import SuccessRateRepository

logger = get_logger(__name__)

RETENTION_WINDOW_DAYS = 365
SUCCESS_WINDOW_DAYS = 180
SUCCESS_HALF_LIFE_DAYS = 90
BAYES_PRIOR_M = 10
WILSON_Z = 1.64
RELIABILITY_SCALE = 20
MIN_COMPLETED_THRESHOLD = 5
MIN_REVIEW_THRESHOLD = 3
MIN_DIVISOR = 0.01

SCORE_WEIGHTS = {
    "R_score": 0.35,
    "Repeat_score": 0.20,
    "Cancel_score": 0.15,
    "Complete_score": 0.10,
    "RT_score": 0.10,
    "Rev_score": 0.05,
    "Dispute_score": 0.05,
}

DEFAULT_MEAN_RATING = 3.5
DEFAULT_P90_CANCEL = 0.1
DEFAULT_P75_RESPONSE = 60.0
DEFAULT_P90_REVENUE = 100.0
DEFAULT_P90_DISPUTE = 0.05
DEFAULT_PRIOR = 50.0

CONFIRMED_STATUSES = frozenset({"accepted", "confirmed", "completed"})
CANCELLED_STATUSES = frozenset({"cancelled", "canceled"})
COMPLETED_STATUS = "completed"
PROFESSIONAL_CANCELLERS = frozenset({"professional", "pro", "provider"})

SECONDS_PER_DAY = 24 * 60 * 60


def age_in_days(moment: datetime, now: datetime) -> float:
    return max(0.0, (now - moment).total_seconds() / SECONDS_PER_DAY)


@dataclass(slots=True)
class ServiceActivity:
    """Booking aggregates of one service; *_weighted use recency weights."""

    confirmed_weighted: float = 0.0
    cancelled_weighted: float = 0.0
    completed_weighted: float = 0.0
    disputed_weighted: float = 0.0
    confirmed_count: int = 0
    completed_count: int = 0
    completed_clean_count: int = 0
    disputed_count: int = 0
    revenue: float = 0.0
    client_bookings: Counter = field(default_factory=Counter)


@dataclass(slots=True)
class ReviewActivity:
    weighted_sum: float = 0.0
    weighted_count: float = 0.0
    count: int = 0


@dataclass(slots=True)
class BaseScore:
    value: float
    scores: dict[str, float]
    completed_count: int
    review_count: int

    @property
    def meets_threshold(self) -> bool:
        return (
            self.completed_count >= MIN_COMPLETED_THRESHOLD
            and self.review_count >= MIN_REVIEW_THRESHOLD
        )


def is_counted_cancellation(booking: BookingRecord, policy: str) -> bool:
    if booking.status not in CANCELLED_STATUSES:
        return False
    if policy != "professional":
        return True
    return (booking.cancelled_by or "").strip().lower() in PROFESSIONAL_CANCELLERS


def aggregate_bookings(
    bookings: Iterable[BookingRecord], now: datetime, policy: str = "all"
) -> dict[Any, ServiceActivity]:
    activities: dict[Any, ServiceActivity] = {}
    for booking in bookings:
        key = coerce_key(booking.service_id)
        event_at = booking.event_at
        if key is None or event_at is None:
            continue
        age = age_in_days(event_at, now)
        if age > RETENTION_WINDOW_DAYS:
            continue

        activity = activities.setdefault(key, ServiceActivity())
        in_success_window = age <= SUCCESS_WINDOW_DAYS
        weight = exponential_weight(age, SUCCESS_HALF_LIFE_DAYS) if in_success_window else 0.0

        if in_success_window and booking.status in CONFIRMED_STATUSES:
            activity.confirmed_weighted += weight
            activity.confirmed_count += 1
        if in_success_window and is_counted_cancellation(booking, policy):
            activity.cancelled_weighted += weight

        if booking.status != COMPLETED_STATUS:
            continue

        client = coerce_key(booking.client_id)
        if client is not None:
            activity.client_bookings[client] += 1

        if in_success_window:
            activity.completed_weighted += weight
            activity.completed_count += 1
            activity.revenue += booking.net_revenue
            if booking.is_disputed:
                activity.disputed_weighted += weight
                activity.disputed_count += 1
            else:
                activity.completed_clean_count += 1

    return activities


def aggregate_reviews(
    reviews: Iterable[ReviewRecord], now: datetime
) -> tuple[dict[Any, ReviewActivity], float | None]:
    """Per-service review aggregates and the category's weighted mean rating."""
    activities: dict[Any, ReviewActivity] = {}
    total_sum = 0.0
    total_weight = 0.0
    for review in reviews:
        key = coerce_key(review.service_id)
        if key is None or review.reviewed_at is None or not math.isfinite(review.rating):
            continue
        age = age_in_days(review.reviewed_at, now)
        if age > SUCCESS_WINDOW_DAYS:
            continue
        weight = exponential_weight(age, SUCCESS_HALF_LIFE_DAYS)
        rating = clamp(review.rating, 1.0, 5.0)

        activity = activities.setdefault(key, ReviewActivity())
        activity.weighted_sum += rating * weight
        activity.weighted_count += weight
        activity.count += 1
        total_sum += rating * weight
        total_weight += weight

    mean = total_sum / total_weight if total_weight > 0 else None
    return activities, mean


def compute_category_stats(
    activities: Mapping[Any, ServiceActivity],
    mean_rating: float | None,
    response_figures: Mapping[Any, float],
) -> CategoryStats:
    cancel_ratios = finite_sorted(
        [
            activity.cancelled_weighted / activity.confirmed_weighted
            for activity in activities.values()
            if activity.confirmed_weighted > 0
        ]
    )
    revenues = finite_sorted(
        [activity.revenue for activity in activities.values() if activity.revenue > 0]
    )
    dispute_ratios = finite_sorted(
        [
            activity.disputed_weighted / activity.completed_weighted
            for activity in activities.values()
            if activity.completed_weighted > 0
        ]
    )
    response_minutes = finite_sorted(list(response_figures.values()))

    if mean_rating is None or not math.isfinite(mean_rating):
        mean_rating = DEFAULT_MEAN_RATING

    return CategoryStats(
        mean_rating=clamp(mean_rating, 1.0, 5.0),
        p90_cancel_ratio=positive_or(percentile(cancel_ratios, 0.9), DEFAULT_P90_CANCEL),
        p75_response_minutes=positive_or(percentile(response_minutes, 0.75), DEFAULT_P75_RESPONSE),
        p90_revenue=positive_or(percentile(revenues, 0.9), DEFAULT_P90_REVENUE),
        p90_dispute_ratio=positive_or(percentile(dispute_ratios, 0.9), DEFAULT_P90_DISPUTE),
    )


def compute_base_score(
    activity: ServiceActivity,
    reviews: ReviewActivity,
    stats: CategoryStats,
    response_minutes: float | None,
) -> BaseScore:
    bayes_denominator = BAYES_PRIOR_M + reviews.weighted_count
    rating = (stats.mean_rating * BAYES_PRIOR_M + reviews.weighted_sum) / bayes_denominator
    rating_score = 25 * (clamp(rating, 1.0, 5.0) - 1)

    clients = len(activity.client_bookings)
    repeat_clients = sum(1 for count in activity.client_bookings.values() if count >= 2)
    repeat_ratio = repeat_clients / clients if clients else 0.0
    repeat_score = 100 * wilson_lower_bound(repeat_ratio, clients, WILSON_Z)

    cancel_ratio = (
        activity.cancelled_weighted / activity.confirmed_weighted
        if activity.confirmed_weighted > 0
        else 0.0
    )
    cancel_score = 100 * (1 - min(1.0, cancel_ratio / max(stats.p90_cancel_ratio, MIN_DIVISOR)))

    confirmed = activity.confirmed_count
    successes = min(activity.completed_clean_count, confirmed)
    complete_ratio = successes / confirmed if confirmed else 0.0
    complete_score = 100 * wilson_lower_bound(complete_ratio, confirmed, WILSON_Z)

    if response_minutes is not None and math.isfinite(response_minutes):
        ratio = max(0.0, response_minutes) / max(stats.p75_response_minutes, MIN_DIVISOR)
        response_score = 100 * (1 - min(1.0, ratio))
    else:
        response_score = 0.0

    revenue_denominator = math.log1p(max(stats.p90_revenue, 1.0))
    revenue_score = 100 * min(1.0, math.log1p(max(0.0, activity.revenue)) / revenue_denominator)

    completed = activity.completed_count
    disputed = min(activity.disputed_count, completed)
    dispute_ratio = disputed / completed if completed else 0.0
    dispute_score = 100 * (1 - min(1.0, dispute_ratio / max(stats.p90_dispute_ratio, MIN_DIVISOR)))

    scores = {
        "R_score": rating_score,
        "Repeat_score": repeat_score,
        "Cancel_score": cancel_score,
        "Complete_score": complete_score,
        "RT_score": response_score,
        "Rev_score": revenue_score,
        "Dispute_score": dispute_score,
    }
    value = sum(SCORE_WEIGHTS[name] * score for name, score in scores.items())
    return BaseScore(
        value=value,
        scores=scores,
        completed_count=completed,
        review_count=reviews.count,
    )


def reliability_for(completed_count: int) -> float:
    return 1 - math.exp(-completed_count / RELIABILITY_SCALE)


class SuccessRateScorer:
    """Loads category data and scores one service against it."""

    def __init__(self, repository=SuccessRateRepository, cancellation_policy: str | None = None):
        self.repository = repository
        self.cancellation_policy = (
            cancellation_policy or settings.SUCCESS_CANCELLATION_POLICY or "all"
        ).strip().lower()

    async def score(
        self,
        service_id,
        category_id=None,
        response_time_minutes: float | None = None,
        trace: MetricsTrace | None = None,
    ) -> SuccessRateResult:
        trace = trace or MetricsTrace()
        if service_id is None or service_id == "":
            trace.record("missing_service_id")
            return SuccessRateResult(value=None, debug=trace)

        resolved_category = await self._resolve_category(service_id, category_id, trace)
        if resolved_category is None:
            return SuccessRateResult(value=None, debug=trace)

        bookings, reviews, response_records = await self._load_category(resolved_category, trace)
        return self.score_category(
            service_id,
            bookings,
            reviews,
            response_records,
            response_time_minutes=response_time_minutes,
            trace=trace,
        )

    def score_category(
        self,
        service_id,
        bookings: list[BookingRecord],
        reviews: list[ReviewRecord],
        response_records: list[ServiceResponseRecord],
        response_time_minutes: float | None = None,
        trace: MetricsTrace | None = None,
        now: datetime | None = None,
    ) -> SuccessRateResult:
        """Score one service from already-loaded category data."""
        trace = trace or MetricsTrace()
        now = now or datetime.now(UTC)

        if not bookings and not reviews:
            trace.record("no_category_activity")
            return SuccessRateResult(value=None, debug=trace)

        activities = aggregate_bookings(bookings, now, self.cancellation_policy)
        review_activities, mean_rating = aggregate_reviews(reviews, now)
        response_figures = {
            key: record.response_minutes
            for record in response_records
            if (key := coerce_key(record.service_id)) is not None
            and math.isfinite(record.response_minutes)
        }

        stats = compute_category_stats(activities, mean_rating, response_figures)

        target_key = coerce_key(service_id)
        service_keys = set(activities) | set(review_activities) | set(response_figures)
        if target_key is not None:
            service_keys.add(target_key)

        base_scores = []
        for key in service_keys:
            base = compute_base_score(
                activities.get(key, ServiceActivity()),
                review_activities.get(key, ReviewActivity()),
                stats,
                response_figures.get(key),
            )
            if math.isfinite(base.value):
                base_scores.append(base.value)
        if base_scores:
            stats.prior = sum(base_scores) / len(base_scores)
        trace.record("category_stats_computed", service_count=len(service_keys), **stats.to_dict())

        if response_time_minutes is not None and math.isfinite(response_time_minutes):
            target_response = response_time_minutes
        else:
            target_response = response_figures.get(target_key)

        target_activity = activities.get(target_key, ServiceActivity())
        target = compute_base_score(
            target_activity,
            review_activities.get(target_key, ReviewActivity()),
            stats,
            target_response,
        )
        trace.record("target_base_score", s_base=target.value, **target.scores)

        reliability = reliability_for(target_activity.completed_count)
        value = reliability * target.value + (1 - reliability) * stats.prior
        components = {
            "S_base": target.value,
            "reliability": reliability,
            "prior": stats.prior,
            "meetsPublicationThreshold": target.meets_threshold,
            "counts": {
                "completedRaw180": target.completed_count,
                "reviewsRaw180": target.review_count,
            },
            "scores": target.scores,
            "category": stats.to_dict(),
        }

        if not math.isfinite(value):
            trace.record("success_rate_non_finite", s_base=target.value, prior=stats.prior)
            return SuccessRateResult(value=None, components=components, debug=trace)

        value = clamp(value, 0.0, 100.0)
        trace.record(
            "success_rate_computed", value=value, reliability=reliability, prior=stats.prior
        )
        return SuccessRateResult(value=value, components=components, debug=trace)

    async def _resolve_category(self, service_id, category_id, trace: MetricsTrace):
        number = numeric_form(category_id)
        if number is not None and number > 0:
            return coerce_key(category_id)

        try:
            row = await self.repository.fetch_service_category(service_id)
        except (DatabaseError, RuntimeError) as exc:
            logger.warning("Service category lookup failed", service_id=service_id, error=str(exc))
            trace.record("category_lookup_failed", error=str(exc))
            return None

        resolved = coerce_key(row.get("service_category_id")) if row else None
        if resolved is None or (numeric_form(resolved) or 0) <= 0:
            trace.record("category_unresolved", service_id=str(service_id))
            return None
        return resolved

    async def _load_category(self, category_id, trace: MetricsTrace):
        include_cancelled_by = self.cancellation_policy == "professional"
        booking_rows, review_rows, response_rows = await asyncio.gather(
            self._read(
                self.repository.fetch_category_bookings(
                    category_id, RETENTION_WINDOW_DAYS, include_cancelled_by
                ),
                "bookings",
                trace,
            ),
            self._read(
                self.repository.fetch_category_reviews(category_id, SUCCESS_WINDOW_DAYS),
                "reviews",
                trace,
            ),
            self._read(
                self.repository.fetch_category_response_figures(category_id),
                "response_figures",
                trace,
            ),
        )

        bookings = [booking_from_row(row) for row in booking_rows]
        reviews = [review for review in map(review_from_row, review_rows) if review is not None]
        response_records = [
            record for record in map(response_record_from_row, response_rows) if record is not None
        ]
        trace.record(
            "category_data_loaded",
            category_id=str(category_id),
            booking_count=len(bookings),
            review_count=len(reviews),
            response_figure_count=len(response_records),
        )
        return bookings, reviews, response_records

    async def _read(self, awaitable, label: str, trace: MetricsTrace) -> list[dict]:
        try:
            return await awaitable
        except (DatabaseError, RuntimeError) as exc:
            logger.warning("Success rate query failed", query=label, error=str(exc))
            trace.record("query_failed", query=label, error=str(exc))
            return []


def booking_from_row(row: Mapping[str, Any]) -> BookingRecord:
    return BookingRecord(
        service_id=row.get("service_id"),
        client_id=row.get("user_id"),
        status=str(row.get("booking_status") or "").strip().lower(),
        start_at=normalize_timestamp(row.get("booking_start_datetime")),
        end_at=normalize_timestamp(row.get("booking_end_datetime")),
        ordered_at=normalize_timestamp(row.get("order_datetime")),
        final_price=to_float(row.get("final_price")),
        commission=to_float(row.get("commission")),
        final_payment_status=str(row.get("final_payment_status") or "").lower(),
        cancelled_by=row.get("cancelled_by"),
    )


def review_from_row(row: Mapping[str, Any]) -> ReviewRecord | None:
    rating = to_float(row.get("rating"), math.nan)
    if not math.isfinite(rating):
        return None
    return ReviewRecord(
        service_id=row.get("service_id"),
        rating=rating,
        reviewed_at=normalize_timestamp(row.get("review_datetime")),
    )


def response_record_from_row(row: Mapping[str, Any]) -> ServiceResponseRecord | None:
    minutes = to_float(row.get("action_rate"), math.nan)
    if not math.isfinite(minutes):
        return None
    return ServiceResponseRecord(service_id=row.get("id"), response_minutes=minutes)


success_rate_scorer = SuccessRateScorer()
