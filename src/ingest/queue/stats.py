"""
Read-only queue rollups for operational dashboards.

Nothing here writes. Counts are per provider (live and history queue
together) and in total, plus dead-letter breakdowns, a retry histogram,
last-hour throughput, the oldest pending item's age and the most common
error topics.
"""
import re
from collections import Counter
from typing import Callable, Dict, Iterable, List, Tuple

from ingest.db.store import DocumentStore
from ingest.models.queue import FAILED_JOBS_COLLECTION
from ingest.models.stats import (
    AdvancedStats,
    CountByKey,
    DeadLetterStats,
    ErrorCluster,
    ProviderQueueStats,
    QueueStats,
)
from ingest.providers.base import ProviderConfig, ProviderKind
from ingest.utils import now_ms

HOUR_MS = 60 * 60 * 1000
TOP_ERRORS = 10

RETRY_BUCKETS: Tuple[Tuple[str, int, int], ...] = (
    ("0-3", 0, 3),
    ("4-7", 4, 7),
    ("8-9", 8, 9),
)

_UUID = re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.I)
_HEX = re.compile(r"\b(?=[0-9a-f]*[a-f])[0-9a-f]{8,}\b", re.I)
_DIGITS = re.compile(r"\d+")


def normalize_error(text: str) -> str:
    """Replace dynamic values so structurally identical errors cluster together."""
    text = _UUID.sub("<uuid>", text or "")
    text = _HEX.sub("<hex>", text)
    text = _DIGITS.sub("<n>", text)
    return " ".join(text.split())


def retry_bucket(retry_count: int) -> str:
    for label, low, high in RETRY_BUCKETS:
        if low <= retry_count <= high:
            return label
    return f"{RETRY_BUCKETS[-1][2] + 1}+"


def _ranked(counter: Counter) -> List[CountByKey]:
    return [CountByKey(key=k, count=c) for k, c in counter.most_common()]


class QueueStatsAggregator:
    """
    Args:
        store: The document store.
        configs: Provider configuration records.
        max_retry: Pending items at or above this count are "stuck".
        clock: Returns the current time in epoch millis.
    """

    def __init__(
        self,
        store: DocumentStore,
        configs: Dict[ProviderKind, ProviderConfig],
        max_retry: int = 10,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.configs = configs
        self.max_retry = max_retry
        self.clock = clock

    def _collections(self, config: ProviderConfig) -> Iterable[str]:
        return dict.fromkeys([config.queue_collection, config.history_queue_collection])

    def compute(self) -> QueueStats:
        now = self.clock()
        stats = QueueStats(generated_at=now)
        histogram = {label: 0 for label, _, _ in RETRY_BUCKETS}
        errors: Counter = Counter()

        dlq = self._dead_letters()
        dead_by_provider = {entry.key: entry.count for entry in dlq.by_provider}

        for kind, config in self.configs.items():
            row = ProviderQueueStats(provider=kind.value, dead=dead_by_provider.get(kind.value, 0))
            for collection in self._collections(config):
                for snapshot in self.store.query(collection):
                    data = snapshot.data
                    retry_count = int(data.get("retryCount") or 0)

                    if data.get("processed"):
                        row.succeeded += 1
                        if (data.get("processedAt") or 0) >= now - HOUR_MS:
                            stats.advanced.throughput += 1
                        continue

                    if retry_count >= self.max_retry:
                        row.stuck += 1
                    else:
                        row.pending += 1
                        bucket = retry_bucket(retry_count)
                        histogram[bucket] = histogram.get(bucket, 0) + 1
                        created = data.get("dateCreated")
                        if created:
                            stats.advanced.max_lag_ms = max(stats.advanced.max_lag_ms, now - created)

                    item_errors = data.get("errors") or []
                    if item_errors:
                        errors[normalize_error(item_errors[-1].get("error", ""))] += 1

            stats.providers.append(row)
            stats.pending += row.pending
            stats.succeeded += row.succeeded
            stats.stuck += row.stuck

        stats.advanced.retry_histogram = histogram
        stats.advanced.top_errors = [
            ErrorCluster(error=text, count=count) for text, count in errors.most_common(TOP_ERRORS)
        ]
        stats.dlq = dlq
        return stats

    def _dead_letters(self) -> DeadLetterStats:
        by_context: Counter = Counter()
        by_provider: Counter = Counter()
        total = 0
        for snapshot in self.store.query(FAILED_JOBS_COLLECTION):
            total += 1
            by_context[snapshot.data.get("context") or "UNKNOWN"] += 1
            by_provider[snapshot.data.get("provider") or "unknown"] += 1
        return DeadLetterStats(
            total=total, by_context=_ranked(by_context), by_provider=_ranked(by_provider)
        )
