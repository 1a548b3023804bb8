"""
Service layer for the precalculation feature.
"""

from .metrics_client import MetricsClient, RetryPolicy
from .range_resolver import RangeResolver
from .regenerator import Regenerator

__all__ = [
    "MetricsClient",
    "RetryPolicy",
    "RangeResolver",
    "Regenerator",
]
