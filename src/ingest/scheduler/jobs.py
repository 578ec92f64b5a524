"""
APScheduler jobs: the timer side of the trigger layer.

  refresh_tokens  every N hours, force-refresh every stored credential
  drain_queues    every N minutes, process one batch of every live and
                  history queue

Each job builds its components from a fresh DocumentStore; a failure for
one provider is logged and never stops the others.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ingest.config import get_settings
from ingest.db.store import DocumentStore
from ingest.providers.base import ProviderKind

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine the jobs open their DocumentStore on.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _refresh_tokens,
        trigger="interval",
        hours=settings.token_refresh_interval_hours,
        id="refresh_tokens",
        replace_existing=True,
        kwargs={"engine": engine},
    )
    scheduler.add_job(
        _drain_queues,
        trigger="interval",
        minutes=settings.queue_drain_interval_minutes,
        id="drain_queues",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _refresh_tokens(engine) -> None:
    """Sweep job: force-refresh every credential of every provider."""
    from ingest.services import build_services

    services = build_services(DocumentStore(engine))
    for provider in ProviderKind:
        try:
            await services.tokens.refresh_all(provider)
        except Exception as exc:
            logger.error("Token sweep for %s failed: %s", provider.value, exc)


async def _drain_queues(engine) -> None:
    """Drain job: one batch from each live and history queue."""
    from ingest.services import build_services

    services = build_services(DocumentStore(engine))
    for provider in ProviderKind:
        config = services.configs[provider]
        for history in (False, True):
            if history and config.history_queue_collection == config.queue_collection:
                continue
            try:
                await services.processor.process_pending(provider, from_history=history)
            except Exception as exc:
                logger.error(
                    "Draining %s %s queue failed: %s",
                    provider.value, "history" if history else "live", exc,
                )
