"""
Wires the core components together for an entry point.

The API, the scheduler and the CLI all build their components here so that
Settings is read in exactly one place and business code only ever sees
the resulting immutable provider configs.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from ingest.backfill.orchestrator import BackfillOrchestrator
from ingest.config import Settings, get_settings
from ingest.credentials import CredentialStore
from ingest.db.store import DocumentStore
from ingest.http import HttpClient
from ingest.providers.base import ProviderAdapter, ProviderConfig, ProviderKind
from ingest.providers.registry import build_provider_configs, get_adapter
from ingest.queue.dead_letter import DeadLetterMigrator
from ingest.queue.processor import QueueItemProcessor
from ingest.queue.stats import QueueStatsAggregator
from ingest.tokens import TokenManager


@dataclass
class Services:
    store: DocumentStore
    configs: Dict[ProviderKind, ProviderConfig]
    adapters: Dict[ProviderKind, ProviderAdapter]
    credentials: CredentialStore
    tokens: TokenManager
    dead_letter: DeadLetterMigrator
    processor: QueueItemProcessor
    orchestrator: BackfillOrchestrator
    stats: QueueStatsAggregator


def build_services(
    store: DocumentStore,
    settings: Optional[Settings] = None,
    http: Optional[HttpClient] = None,
) -> Services:
    """
    Args:
        store: The document store every component shares.
        settings: Defaults to get_settings().
        http: Shared HTTP client (tests pass one over httpx.MockTransport).
    """
    settings = settings or get_settings()
    http = http or HttpClient(timeout=settings.http_timeout_seconds)

    configs = build_provider_configs(settings)
    adapters = {kind: get_adapter(config, http) for kind, config in configs.items()}
    credentials = CredentialStore(store, configs)
    tokens = TokenManager(credentials, adapters, buffer_ms=settings.token_expiry_buffer_ms)
    dead_letter = DeadLetterMigrator(store, ttl_days=settings.failed_jobs_ttl_days)

    return Services(
        store=store,
        configs=configs,
        adapters=adapters,
        credentials=credentials,
        tokens=tokens,
        dead_letter=dead_letter,
        processor=QueueItemProcessor(
            store,
            credentials,
            tokens,
            adapters,
            dead_letter,
            max_retry=settings.max_retry_count,
            batch_limit=settings.queue_batch_limit,
        ),
        orchestrator=BackfillOrchestrator(
            store,
            credentials,
            tokens,
            adapters,
            timeout_seconds=settings.backfill_timeout_seconds,
        ),
        stats=QueueStatsAggregator(store, configs, max_retry=settings.max_retry_count),
    )
