"""
Main entrypoint: runs the APScheduler jobs (token sweep + queue drain).

FastAPI runs separately under uvicorn (for the HTTP triggers).

Usage:
    python -m ingest                                          # starts the scheduler
    uvicorn ingest.api.main:app --host 0.0.0.0 --port 8000    # starts the API
    python -m ingest.scripts.backfill --provider ... --user ... --start ... --end ...
"""
import asyncio
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_scheduler() -> None:
    from ingest.config import get_settings
    from ingest.db.engine import get_engine
    from ingest.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (token sweep every %dh, queue drain every %dmin)",
        settings.token_refresh_interval_hours,
        settings.queue_drain_interval_minutes,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    asyncio.run(_run_scheduler())
