"""
Response time package.

Builds response pairs and reduces them to one robust figure.
"""

from .estimator import ResponseTimeEstimator
from .pairs import CAP_MINUTES, ResponsePairBuilder, response_pair_builder

__all__ = ["CAP_MINUTES", "ResponsePairBuilder", "ResponseTimeEstimator", "response_pair_builder"]
