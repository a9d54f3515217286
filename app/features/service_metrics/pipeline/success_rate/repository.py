"""
Repository helpers for success-rate inputs.

All reads are category-wide: the score of one service is calibrated
against every other service in its category.
"""

from app.db.helpers import fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_BOOKINGS_QUERY = """
    SELECT
        b.service_id,
        b.user_id,
        LOWER(b.booking_status) AS booking_status,
        b.booking_start_datetime,
        b.booking_end_datetime,
        b.order_datetime,
        b.final_price,
        b.commission,
        COALESCE(pay.status, '') AS final_payment_status,
        {cancelled_by}
    FROM booking b
    JOIN service s ON s.id = b.service_id
    LEFT JOIN (
        SELECT DISTINCT ON (booking_id) booking_id, status
        FROM payments
        WHERE type = 'final'
        ORDER BY booking_id, id DESC
    ) pay ON pay.booking_id = b.id
    WHERE s.service_category_id = %s
      AND (
        b.booking_end_datetime >= NOW() - make_interval(days => %s)
        OR b.booking_start_datetime >= NOW() - make_interval(days => %s)
        OR b.order_datetime >= NOW() - make_interval(days => %s)
      )
"""


class SuccessRateRepository:
    """Raw SQL helpers for success-rate scoring."""

    @staticmethod
    async def fetch_service_category(service_id) -> dict | None:
        query = """
            SELECT service_category_id
            FROM service
            WHERE id = %s
            LIMIT 1
        """
        return await fetch_one(query, (service_id,))

    @staticmethod
    async def fetch_category_bookings(
        category_id, window_days: int, include_cancelled_by: bool = False
    ) -> list[dict]:
        """Bookings of the category touching the window, with their latest final payment status."""
        cancelled_by = "NULL AS cancelled_by"
        if include_cancelled_by:
            cancelled_by = "LOWER(b.cancelled_by) AS cancelled_by"
        query = _BOOKINGS_QUERY.format(cancelled_by=cancelled_by)
        return await fetch_all(query, (category_id, window_days, window_days, window_days))

    @staticmethod
    async def fetch_category_reviews(category_id, window_days: int) -> list[dict]:
        query = """
            SELECT r.service_id, r.rating, r.review_datetime
            FROM review r
            JOIN service s ON s.id = r.service_id
            WHERE s.service_category_id = %s
              AND r.review_datetime >= NOW() - make_interval(days => %s)
              AND r.rating IS NOT NULL
        """
        return await fetch_all(query, (category_id, window_days))

    @staticmethod
    async def fetch_category_response_figures(category_id) -> list[dict]:
        """Stored per-service response figure (minutes) for every service of the category."""
        query = """
            SELECT id, action_rate
            FROM service
            WHERE service_category_id = %s
              AND action_rate IS NOT NULL
        """
        return await fetch_all(query, (category_id,))
