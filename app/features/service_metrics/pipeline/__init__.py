"""
Pipeline stages for service metrics.

Response time runs collection -> identity -> calendar -> response_time;
success rate is a single category-wide stage. Subpackages expose the
services other layers use.
"""

__all__ = ["calendar", "collection", "identity", "response_time", "success_rate"]
