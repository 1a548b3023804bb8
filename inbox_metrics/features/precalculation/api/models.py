# inbox_metrics/features/precalculation/api/models.py
from pydantic import BaseModel, ConfigDict, Field


class FullRegenerationRequest(BaseModel):
    """Request body for a full precalculation pass."""

    force: bool = Field(default=False, description="Recompute every entry regardless of staleness")


class RegenerationItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(..., min_length=1, description="Department name or 'individuals'")
    range_name: str = Field(..., alias="range", min_length=1, description="lastWeek, lastMonth or lastQuarter")


class SelectiveRegenerationRequest(BaseModel):
    """Request body for regenerating specific (subject, range) entries of one tenant."""

    items: list[RegenerationItemRequest] = Field(..., min_length=1)


class TriggerAcceptedResponse(BaseModel):
    accepted: bool
    detail: str
    trigger: dict
