"""
Backfill script: request one history import from the command line.

Usage:
    python -m ingest.scripts.backfill --provider garmin --user U --start 2023-01-01 --end 2023-04-10

Runs exactly what POST /backfill/{provider} runs. Exits 0 on success and 1
on a rejected or failed import (2 on bad arguments), logging the failure
code and message.
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def _backfill(provider_name: str, user_id: str, start: str, end: str) -> int:
    from ingest.backfill.orchestrator import parse_date
    from ingest.db.engine import get_engine
    from ingest.db.store import DocumentStore
    from ingest.errors import IngestError, ProviderError
    from ingest.providers.registry import parse_provider
    from ingest.services import build_services

    try:
        provider = parse_provider(provider_name)
        start_date, end_date = parse_date(start), parse_date(end)
    except ValueError as e:
        logger.error("Invalid arguments: %s", e)
        return 2

    services = build_services(DocumentStore(get_engine()))

    try:
        result = await services.orchestrator.backfill(user_id, provider, start_date, end_date)
    except IngestError as e:
        logger.error("Backfill rejected [%s/%s]: %s", e.code.value, e.category.value, e.message)
        return 1
    except ProviderError as e:
        logger.error("Backfill failed at the provider (%s): %s", e.code, e)
        return 1

    logger.info(
        "History import requested: %d window(s), %d skipped, %d item(s) enqueued",
        result.windows, result.skipped_windows, result.enqueued,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Request a provider history import for one user")
    parser.add_argument("--provider", required=True, help="garmin, suunto or coros")
    parser.add_argument("--user", required=True, help="Internal user id")
    parser.add_argument("--start", required=True, help="Start date, YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="End date, YYYY-MM-DD")
    args = parser.parse_args()
    sys.exit(asyncio.run(_backfill(args.provider, args.user, args.start, args.end)))


if __name__ == "__main__":
    main()
