"""
Message collection package.

Discovers a service's chat messages through speculative document queries.
"""

from .service import MessageCollector

__all__ = ["MessageCollector"]
