"""
Cache read and regeneration routes.

Regeneration endpoints only enqueue work: they answer 202 with an
acknowledgement and the job runs in the background on the engine's
scheduler.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from inbox_metrics.features.precalculation.api.models import (
    FullRegenerationRequest,
    SelectiveRegenerationRequest,
    TriggerAcceptedResponse,
)
from inbox_metrics.features.precalculation.domain import CacheStoreError
from inbox_metrics.features.precalculation.jobs.precalculation_job import RegenerationItem
from inbox_metrics.features.precalculation.services.engine import PrecalculationEngine
from inbox_metrics.features.precalculation.services.range_resolver import SUPPORTED_RANGES
from inbox_metrics.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


def get_engine(request: Request) -> PrecalculationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Precalculation engine not initialized",
        )
    return engine


@router.get("/status")
async def get_cache_status(engine: PrecalculationEngine = Depends(get_engine)) -> dict:
    """Scheduler and last-run status."""
    return engine.scheduler.get_status()


@router.post("/regenerate", status_code=status.HTTP_202_ACCEPTED, response_model=TriggerAcceptedResponse)
async def trigger_full_regeneration(
    body: FullRegenerationRequest | None = None,
    engine: PrecalculationEngine = Depends(get_engine),
) -> TriggerAcceptedResponse:
    force = body.force if body else False
    trigger = engine.scheduler.trigger_full(force=force)
    return TriggerAcceptedResponse(
        accepted=True,
        detail="Full precalculation started in background",
        trigger=trigger,
    )


@router.post(
    "/tenants/{tenant_id}/regenerate",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=TriggerAcceptedResponse,
)
async def trigger_selective_regeneration(
    tenant_id: int,
    body: SelectiveRegenerationRequest,
    engine: PrecalculationEngine = Depends(get_engine),
) -> TriggerAcceptedResponse:
    unknown = sorted({item.range_name for item in body.items} - set(SUPPORTED_RANGES))
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown range(s): {', '.join(unknown)}",
        )

    items = [RegenerationItem(subject=item.subject, range_name=item.range_name) for item in body.items]
    trigger = engine.scheduler.trigger_selective(tenant_id, items)
    return TriggerAcceptedResponse(
        accepted=True,
        detail=f"Regenerating {len(items)} cache entries in background",
        trigger=trigger,
    )


@router.get("/tenants/{tenant_id}/regenerate")
async def get_selective_regeneration_results(
    tenant_id: int,
    engine: PrecalculationEngine = Depends(get_engine),
) -> dict:
    results = engine.scheduler.get_selective_results(tenant_id)
    if results is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No selective regeneration recorded for tenant {tenant_id}",
        )
    return results


@router.get("/{tenant_slug}/{subject}/{range_name}")
async def get_cache_entry(
    tenant_slug: str,
    subject: str,
    range_name: str,
    engine: PrecalculationEngine = Depends(get_engine),
) -> dict:
    """Return the cached entry as stored."""
    if range_name not in SUPPORTED_RANGES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown range: {range_name}")

    try:
        entry = await engine.cache_store.get(tenant_slug, subject, range_name)
    except CacheStoreError as e:
        logger.error("Cache read failed", tenant=tenant_slug, subject=subject, range=range_name, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cache store unavailable") from e

    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cache entry not found")
    return entry.to_dict()
