"""
Domain subpackage for the service metrics feature.
"""

from .models import (
    AvailabilitySegment,
    BookingRecord,
    CategoryStats,
    Message,
    ResponsePair,
    ResponseTimeResult,
    ReviewRecord,
    ServiceResponseRecord,
    SuccessRateResult,
    UnavailabilityInterval,
)
from .trace import MetricsTrace, TraceStep

__all__ = [
    "AvailabilitySegment",
    "BookingRecord",
    "CategoryStats",
    "Message",
    "MetricsTrace",
    "ResponsePair",
    "ResponseTimeResult",
    "ReviewRecord",
    "ServiceResponseRecord",
    "SuccessRateResult",
    "TraceStep",
    "UnavailabilityInterval",
]
