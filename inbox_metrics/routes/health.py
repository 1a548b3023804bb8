# inbox_metrics/routes/health.py
"""
Health check endpoints with database pool and cache store monitoring.
"""

import time

from fastapi import APIRouter, Request

from inbox_metrics.config import settings
from inbox_metrics.db.pool import db_health_check
from inbox_metrics.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "inbox-metrics"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check covering the directory database and the cache store.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool health check
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        latency_ms = round((time.time() - t0) * 1000, 1)

        checks["database"] = {"ok": is_healthy, "latency_ms": latency_ms}

        if "pool_stats" in db_health:
            checks["database"].update(db_health["pool_stats"])

        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy
        log_health_check("database", is_healthy, latency_ms, db_health.get("error"))

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Cache store health check
    t0 = time.time()
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        checks["cache_store"] = {"ok": False, "error": "Engine not initialized"}
        overall_ok = False
    else:
        try:
            cache_health = await engine.cache_store.health_check()
            cache_ok = bool(cache_health.get("healthy"))
            checks["cache_store"] = {
                "ok": cache_ok,
                "backend": cache_health.get("backend"),
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            overall_ok = overall_ok and cache_ok
        except Exception as e:
            checks["cache_store"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    # 3) Configuration checks
    config_issues = []
    if not settings.DATABASE_URL:
        config_issues.append("DATABASE_URL not set")
    if settings.CACHE_BACKEND == "redis" and not settings.REDIS_URL:
        config_issues.append("REDIS_URL not set for redis cache backend")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
