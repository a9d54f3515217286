import math
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from app.db.helpers import DatabaseError
from app.features.service_metrics.domain.models import (
    BookingRecord,
    ReviewRecord,
    ServiceResponseRecord,
)
from app.features.service_metrics.domain.trace import MetricsTrace
from app.features.service_metrics.pipeline.success_rate.service import (
    SuccessRateScorer,
    booking_from_row,
    reliability_for,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _booking(
    service_id,
    client_id=1,
    status="completed",
    days_ago=10,
    price=100.0,
    commission=10.0,
    payment_status="succeeded",
    cancelled_by=None,
):
    when = NOW - timedelta(days=days_ago)
    return BookingRecord(
        service_id=service_id,
        client_id=client_id,
        status=status,
        start_at=when - timedelta(hours=2),
        end_at=when,
        ordered_at=when - timedelta(days=3),
        final_price=price,
        commission=commission,
        final_payment_status=payment_status,
        cancelled_by=cancelled_by,
    )


def _review(service_id, rating, days_ago=5):
    return ReviewRecord(
        service_id=service_id, rating=rating, reviewed_at=NOW - timedelta(days=days_ago)
    )


def _established_category(service_count=19):
    """Services with a steady, middling history."""
    bookings = []
    reviews = []
    for service_id in range(100, 100 + service_count):
        for index in range(10):
            bookings.append(_booking(service_id, client_id=index % 7, days_ago=5 + index))
        bookings.append(_booking(service_id, status="cancelled", days_ago=8))
        reviews.extend(_review(service_id, rating) for rating in (3, 3, 4, 2))
    figures = [
        ServiceResponseRecord(service_id=service_id, response_minutes=90.0)
        for service_id in range(100, 100 + service_count)
    ]
    return bookings, reviews, figures


def test_empty_category_returns_null():
    trace = MetricsTrace()
    result = SuccessRateScorer(cancellation_policy="all").score_category(
        1, [], [], [], trace=trace, now=NOW
    )

    assert result.value is None
    assert "no_category_activity" in trace.stages()


def test_service_without_completed_bookings_gets_the_prior():
    bookings, reviews, figures = _established_category()
    reviews.append(_review(1, 5))

    result = SuccessRateScorer(cancellation_policy="all").score_category(
        1, bookings, reviews, figures, now=NOW
    )

    assert result.components["reliability"] == 0
    assert result.value == pytest.approx(result.components["prior"])


def test_thin_outlier_is_pulled_towards_the_prior():
    bookings, reviews, figures = _established_category()
    bookings.append(_booking(1, client_id=50, days_ago=3, price=400.0))
    reviews.extend(_review(1, 5, days_ago=1) for _ in range(3))

    result = SuccessRateScorer(cancellation_policy="all").score_category(
        1, bookings, reviews, figures, response_time_minutes=1.0, now=NOW
    )

    base = result.components["S_base"]
    prior = result.components["prior"]
    reliability = result.components["reliability"]
    assert base > prior
    assert reliability == pytest.approx(1 - math.exp(-1 / 20))
    assert result.value == pytest.approx(reliability * base + (1 - reliability) * prior)
    assert result.value - prior < 0.1 * (base - prior)
    assert result.components["meetsPublicationThreshold"] is False
    assert result.components["counts"] == {"completedRaw180": 1, "reviewsRaw180": 3}


def test_well_established_service_converges_to_its_base_score():
    bookings, reviews, figures = _established_category()
    bookings.extend(
        _booking(1, client_id=index % 30, days_ago=1 + index % 170) for index in range(200)
    )
    reviews.extend(_review(1, 5) for _ in range(10))

    result = SuccessRateScorer(cancellation_policy="all").score_category(
        1, bookings, reviews, figures, now=NOW
    )

    assert result.components["reliability"] > 0.99
    assert result.value == pytest.approx(result.components["S_base"], rel=0.01)
    assert result.components["meetsPublicationThreshold"] is True
    assert 0 <= result.value <= 100


def test_scores_and_category_calibration_are_reported():
    bookings, reviews, figures = _established_category()
    trace = MetricsTrace()

    result = SuccessRateScorer(cancellation_policy="all").score_category(
        100, bookings, reviews, figures, trace=trace, now=NOW
    )

    assert set(result.components["scores"]) == {
        "R_score",
        "Repeat_score",
        "Cancel_score",
        "Complete_score",
        "RT_score",
        "Rev_score",
        "Dispute_score",
    }
    assert all(0 <= score <= 100 for score in result.components["scores"].values())
    assert result.components["category"]["P75_RT_cat"] == pytest.approx(90.0)
    assert trace.stages()[-1] == "success_rate_computed"


def test_rating_is_shrunk_towards_category_mean():
    reviews = [_review(1, 5, days_ago=0)] + [_review(2, 1, days_ago=0) for _ in range(10)]

    result = SuccessRateScorer(cancellation_policy="all").score_category(
        1, [], reviews, [], now=NOW
    )

    assert result.components["scores"]["R_score"] < 50


@pytest.mark.parametrize(
    ("policy", "expected"),
    [("all", 0.0), ("professional", 100.0), (" Professional ", 100.0)],
)
def test_cancellation_policy(policy, expected):
    bookings = [_booking(1, client_id=index) for index in range(5)]
    bookings += [
        _booking(1, client_id=index, status="cancelled", cancelled_by="client")
        for index in range(5)
    ]

    result = SuccessRateScorer(cancellation_policy=policy).score_category(
        1, bookings, [], [], now=NOW
    )

    assert result.components["scores"]["Cancel_score"] == pytest.approx(expected)


def test_disputed_bookings_lower_dispute_and_completion_scores():
    clean = [_booking(1, client_id=index) for index in range(10)]
    disputed = [_booking(1, client_id=index, payment_status="refunded") for index in range(10)]
    scorer = SuccessRateScorer(cancellation_policy="all")

    clean_result = scorer.score_category(1, clean + [_booking(2)], [], [], now=NOW)
    disputed_result = scorer.score_category(
        1, disputed[:5] + clean[:5] + [_booking(2)], [], [], now=NOW
    )

    clean_scores = clean_result.components["scores"]
    disputed_scores = disputed_result.components["scores"]
    assert disputed_scores["Complete_score"] < clean_scores["Complete_score"]
    assert disputed_scores["Dispute_score"] <= clean_scores["Dispute_score"]


def test_reliability_for():
    assert reliability_for(0) == 0
    assert reliability_for(20) == pytest.approx(1 - math.exp(-1))


def test_booking_from_row_normalises_types():
    record = booking_from_row(
        {
            "service_id": 7,
            "user_id": 3,
            "booking_status": "Completed",
            "booking_end_datetime": "2026-10-01T10:00:00Z",
            "final_price": Decimal("120.50"),
            "commission": Decimal("20.50"),
            "final_payment_status": "DISPUTED",
        }
    )

    assert record.status == "completed"
    assert record.net_revenue == pytest.approx(100.0)
    assert record.is_disputed is True
    assert record.event_at == datetime(2026, 10, 1, 10, 0, tzinfo=UTC)


class FakeSuccessRateRepository:
    def __init__(self, category_row=None, bookings=(), reviews=(), figures=(), failing=()):
        self.category_row = category_row
        self.bookings = list(bookings)
        self.reviews = list(reviews)
        self.figures = list(figures)
        self.failing = set(failing)
        self.booking_calls = []

    def _maybe_fail(self, name):
        if name in self.failing:
            raise DatabaseError(f"{name} failed", operation="fetch_all")

    async def fetch_service_category(self, service_id):
        self._maybe_fail("category")
        return self.category_row

    async def fetch_category_bookings(self, category_id, window_days, include_cancelled_by=False):
        self._maybe_fail("bookings")
        self.booking_calls.append((category_id, window_days, include_cancelled_by))
        return self.bookings

    async def fetch_category_reviews(self, category_id, window_days):
        self._maybe_fail("reviews")
        return self.reviews

    async def fetch_category_response_figures(self, category_id):
        self._maybe_fail("figures")
        return self.figures


def _recent_rows():
    when = datetime.now(UTC) - timedelta(days=2)
    bookings = [
        {
            "service_id": 5,
            "user_id": index,
            "booking_status": "completed",
            "booking_end_datetime": when,
            "final_price": Decimal("80"),
            "commission": Decimal("8"),
            "final_payment_status": "succeeded",
            "cancelled_by": None,
        }
        for index in range(3)
    ]
    reviews = [{"service_id": 5, "rating": 4, "review_datetime": when}]
    return bookings, reviews


class TestSuccessRateScorerLoading:
    """Category resolution and data loading around the pure scoring."""

    @pytest.mark.asyncio
    async def test_category_is_looked_up_when_missing(self):
        bookings, reviews = _recent_rows()
        repository = FakeSuccessRateRepository(
            category_row={"service_category_id": 9}, bookings=bookings, reviews=reviews
        )
        scorer = SuccessRateScorer(repository=repository, cancellation_policy="professional")

        result = await scorer.score("5")

        assert result.value is not None
        assert 0 <= result.value <= 100
        assert repository.booking_calls == [(9, 365, True)]
        assert result.debug.find("category_data_loaded").data["booking_count"] == 3

    @pytest.mark.asyncio
    async def test_explicit_category_skips_lookup(self):
        bookings, reviews = _recent_rows()
        repository = FakeSuccessRateRepository(
            bookings=bookings, reviews=reviews, failing={"category"}
        )
        scorer = SuccessRateScorer(repository=repository, cancellation_policy="all")

        result = await scorer.score(5, category_id="9")

        assert result.value is not None
        assert repository.booking_calls == [(9, 365, False)]

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_null(self):
        repository = FakeSuccessRateRepository(failing={"category"})

        result = await SuccessRateScorer(repository=repository).score(5)

        assert result.value is None
        assert "category_lookup_failed" in result.debug.stages()

    @pytest.mark.asyncio
    async def test_unknown_category_returns_null(self):
        result = await SuccessRateScorer(repository=FakeSuccessRateRepository()).score(5)

        assert result.value is None
        assert "category_unresolved" in result.debug.stages()

    @pytest.mark.asyncio
    async def test_failed_query_counts_as_empty(self):
        bookings, reviews = _recent_rows()
        repository = FakeSuccessRateRepository(
            bookings=bookings, reviews=reviews, failing={"figures"}
        )

        result = await SuccessRateScorer(repository=repository).score(5, category_id=9)

        assert result.value is not None
        failed = result.debug.find("query_failed")
        assert failed.data["query"] == "response_figures"

    @pytest.mark.asyncio
    async def test_missing_service_id(self):
        result = await SuccessRateScorer(repository=FakeSuccessRateRepository()).score(None)

        assert result.value is None
        assert result.debug.stages() == ["missing_service_id"]
