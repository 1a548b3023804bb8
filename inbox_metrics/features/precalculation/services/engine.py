"""
Wiring and lifecycle for the precalculation engine.

Both entry points (the API process and the worker) open the same set of
collaborators: database pool, cache store, provider client, regenerator,
job and scheduler. ``open_engine`` starts them in dependency order and
closes them in reverse on exit.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from inbox_metrics.db.pool import db_pool
from inbox_metrics.features.precalculation.jobs.precalculation_job import PrecalculationJob
from inbox_metrics.features.precalculation.repository.cache_store import CacheStore, build_cache_store
from inbox_metrics.features.precalculation.repository.directory_repository import (
    Directory,
    DirectoryRepository,
)
from inbox_metrics.features.precalculation.services.metrics_client import MetricsClient
from inbox_metrics.features.precalculation.services.range_resolver import RangeResolver
from inbox_metrics.features.precalculation.services.regenerator import Regenerator
from inbox_metrics.features.precalculation.services.scheduler import PrecalculationScheduler
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class PrecalculationEngine:
    cache_store: CacheStore
    metrics_client: MetricsClient
    job: PrecalculationJob
    scheduler: PrecalculationScheduler

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.metrics_client.close()
        await self.cache_store.close()


def build_engine(
    cache_store: CacheStore | None = None,
    directory: Directory = DirectoryRepository,
    metrics_client: MetricsClient | None = None,
) -> PrecalculationEngine:
    """Assemble the engine from settings; collaborators can be overridden."""
    cache_store = cache_store or build_cache_store()
    metrics_client = metrics_client or MetricsClient()
    resolver = RangeResolver()
    regenerator = Regenerator(metrics_client, directory)
    job = PrecalculationJob(regenerator, cache_store, directory, resolver)
    scheduler = PrecalculationScheduler(job, resolver)
    return PrecalculationEngine(
        cache_store=cache_store,
        metrics_client=metrics_client,
        job=job,
        scheduler=scheduler,
    )


@asynccontextmanager
async def open_engine(engine: PrecalculationEngine | None = None) -> AsyncIterator[PrecalculationEngine]:
    """Initialize the database pool and cache store, yield the engine, then shut down."""
    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        engine = engine or build_engine()

        logger.info("Initializing cache store", backend=engine.cache_store.backend)
        await engine.cache_store.initialize()
        startup_tasks.append("cache_store")

        logger.info("Precalculation engine initialized", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize precalculation engine", error=str(e), completed_tasks=startup_tasks)
        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))
        raise

    try:
        yield engine
    finally:
        logger.info("Shutting down precalculation engine")
        shutdown_errors = []

        try:
            await engine.close()
        except Exception as e:
            logger.error("Error closing precalculation engine", error=str(e))
            shutdown_errors.append(f"Engine: {e}")

        try:
            await db_pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
            shutdown_errors.append(f"Database: {e}")

        if shutdown_errors:
            logger.warning("Some services had shutdown errors", errors=shutdown_errors)
        else:
            logger.info("All services closed successfully")
