"""Queue drain trigger and operator stats."""
from typing import Dict

from fastapi import APIRouter, Depends

from ingest.api.dependencies import get_provider, get_services
from ingest.models.stats import QueueStats
from ingest.providers.base import ProviderKind
from ingest.services import Services

router = APIRouter()


@router.post("/{provider}/process")
async def process_queue(
    history: bool = False,
    provider: ProviderKind = Depends(get_provider),
    services: Services = Depends(get_services),
) -> Dict[str, int]:
    """Drain one batch of the provider's live (or history) queue."""
    return await services.processor.process_pending(provider, from_history=history)


@router.get("/stats", response_model=QueueStats)
def queue_stats(services: Services = Depends(get_services)):
    return services.stats.compute()
