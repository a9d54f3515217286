"""
Success rate package.

Scores a service against every other service in its category.
"""

from .service import SuccessRateScorer, success_rate_scorer

__all__ = ["SuccessRateScorer", "success_rate_scorer"]
