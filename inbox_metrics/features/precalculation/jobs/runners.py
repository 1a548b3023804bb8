"""
Worker entry coroutines for the precalculation feature.

Each runner opens the engine for the lifetime of the job, so the worker
process can be started with nothing but the environment.
"""

from inbox_metrics.features.precalculation.services.engine import open_engine
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def run_precalculation(force_all: bool = False) -> dict:
    """Run a single precalculation pass and exit."""
    async with open_engine() as engine:
        result = await engine.job.run_all(force_all=force_all)
        logger.info("Precalculation run finished", force_all=force_all, result=result)
        return result


async def run_forced_precalculation() -> dict:
    """Recompute every entry regardless of staleness."""
    return await run_precalculation(force_all=True)


async def start_precalculation_scheduler() -> None:
    """Run the daily scheduler until cancelled."""
    async with open_engine() as engine:
        if not engine.scheduler.enabled:
            logger.info("Precalculation scheduler DISABLED")
            return
        await engine.scheduler.start()
