"""
Business calendar package.

Loads weekly availability and blackouts and measures elapsed business minutes.
"""

from .service import (
    BusinessCalendar,
    BusinessCalendarService,
    business_calendar_service,
    elapsed_business_minutes,
)

__all__ = [
    "BusinessCalendar",
    "BusinessCalendarService",
    "business_calendar_service",
    "elapsed_business_minutes",
]
