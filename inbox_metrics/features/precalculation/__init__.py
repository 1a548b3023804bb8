"""
Metrics precalculation feature package.

This vertical slice keeps every layer of the precalculation engine
co-located (domain models, repositories, services, jobs and the API
router) so contributors can navigate the feature in one place.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as cache_router  # noqa: F401
from .jobs.precalculation_job import PrecalculationJob  # noqa: F401
from .services.engine import PrecalculationEngine, build_engine, open_engine  # noqa: F401
from .services.scheduler import PrecalculationScheduler  # noqa: F401
