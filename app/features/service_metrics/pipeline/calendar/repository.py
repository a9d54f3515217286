"""
Repository helpers for professional availability.

Read-only SQL over the weekly availability table and the blackout table.
"""

from app.db.helpers import fetch_all
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CalendarRepository:
    """Raw SQL helpers for calendar loading."""

    @staticmethod
    async def fetch_availability_rows(professional_id: str) -> list[dict]:
        query = """
            SELECT day_of_week, start_time, end_time
            FROM user_availability
            WHERE user_id = %s
        """
        return await fetch_all(query, (professional_id,))

    @staticmethod
    async def fetch_unavailability_rows(professional_id: str) -> list[dict]:
        query = """
            SELECT start_datetime, end_datetime
            FROM user_not_available
            WHERE user_id = %s
              AND end_datetime > start_datetime
        """
        return await fetch_all(query, (professional_id,))
