"""
Service layer for the service metrics feature.
"""

from .metrics_service import ServiceMetricsService, service_metrics_service

__all__ = ["ServiceMetricsService", "service_metrics_service"]
