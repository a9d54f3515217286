"""
Service metrics feature package.

Computes two per-service quality figures from marketplace data: the
professional's business-hours response time (from chat messages in the
document store) and a bounded success rate (from bookings, payments and
reviews in the relational store). Domain models, pipeline stages and the
public service layer live together in this slice.
"""

# Re-export the primary building blocks for easy access.
from .services.metrics_service import (  # noqa: F401
    ServiceMetricsService,
    ServiceQualityResult,
    compute_service_quality,
    compute_service_response_time,
    compute_service_success_rate,
    service_metrics_service,
)
from .domain.models import ResponseTimeResult, SuccessRateResult  # noqa: F401
from .domain.trace import MetricsTrace  # noqa: F401
