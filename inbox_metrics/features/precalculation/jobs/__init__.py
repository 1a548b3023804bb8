"""
Job runners for the precalculation feature.
"""

from .precalculation_job import PrecalculationJob, RegenerationItem, evaluate_staleness

__all__ = ["PrecalculationJob", "RegenerationItem", "evaluate_staleness"]
