"""
FastAPI application: cache reads, regeneration triggers and health checks.

The lifespan opens the precalculation engine (database pool, cache store)
and starts the daily scheduler when it is enabled.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from inbox_metrics.config import settings
from inbox_metrics.features.precalculation import cache_router, open_engine
from inbox_metrics.infrastructure.observability.logging import get_logger, setup_logging
from inbox_metrics.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=not settings.debug)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    async with open_engine() as engine:
        app.state.engine = engine

        if engine.scheduler.enabled:
            engine.scheduler.start()
        else:
            logger.info("Precalculation scheduler DISABLED", environment=settings.environment)

        yield

        logger.info("Application shutting down")
        app.state.engine = None


app = FastAPI(
    title="Inbox Metrics",
    description="Precalculated inbox analytics per tenant, department and range",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(cache_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
