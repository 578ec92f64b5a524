"""History import trigger."""
from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field

from ingest.api.dependencies import get_provider, get_services
from ingest.providers.base import ProviderKind
from ingest.services import Services

router = APIRouter()


class BackfillRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: date = Field(alias="startDate")
    end_date: date = Field(alias="endDate")


class BackfillResponse(BaseModel):
    result: str
    windows: int
    skipped_windows: int = 0
    enqueued: int = 0


def _midnight_utc(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


@router.post("/{provider}", response_model=BackfillResponse)
async def request_backfill(
    request: BackfillRequest,
    provider: ProviderKind = Depends(get_provider),
    user_id: str = Header(..., alias="X-User-ID"),
    services: Services = Depends(get_services),
):
    """
    Request a history import for the calling user.

    Failures come back as {"code", "category", "message", "details"} with
    the status mapped from the failure category.
    """
    result = await services.orchestrator.backfill(
        user_id, provider, _midnight_utc(request.start_date), _midnight_utc(request.end_date)
    )
    return BackfillResponse(
        result="History import requested",
        windows=result.windows,
        skipped_windows=result.skipped_windows,
        enqueued=result.enqueued,
    )
