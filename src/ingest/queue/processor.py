"""
QueueItemProcessor: turns one pending queue item into a stored workout.

Flow for a single item:
  1. Skip it if it is already processed (or gone from its queue)
  2. Find every credential linked to the item's provider account
     - none at all → dead-letter NO_TOKEN_FOUND, retry budget untouched
  3. Try the credentials one by one, in creation order:
     refresh if needed → download the FIT file → parse → write the event
     - the first success marks the item processed and stops the loop
     - a failure is logged and the next credential is tried
  4. All credentials failed → retryCount + 1 and an error entry, or
     dead-letter MAX_RETRY_REACHED once the new count reaches the ceiling

Credentials are tried sequentially on purpose: the second one is only
touched after the first has definitively failed.
"""
import logging
from enum import Enum
from typing import Callable, Dict, Optional

from ingest.credentials import CredentialStore
from ingest.db.store import DocumentStore
from ingest.errors import FailureCode, ProviderError, TokenRefreshError
from ingest.models.queue import QueueErrorEntry, QueueItem
from ingest.providers.base import ProviderAdapter, ProviderKind
from ingest.queue.dead_letter import DeadLetterMigrator
from ingest.tokens import TokenManager
from ingest.utils import now_ms
from ingest.workouts.fit_parser import FitParseError, parse_fit_bytes
from ingest.workouts.writer import WorkoutWriter

logger = logging.getLogger(__name__)

ALL_ATTEMPTS_FAILED = "All token processing attempts failed"


class QueueResult(str, Enum):
    PROCESSED = "processed"
    RETRY_INCREMENTED = "retry_incremented"
    MOVED_TO_DLQ = "moved_to_dlq"
    SKIPPED = "skipped"
    FAILED = "failed"


class QueueItemProcessor:
    """
    Args:
        store: The document store holding the queues.
        credentials: CredentialStore adapter.
        tokens: TokenManager used to get a valid access token.
        adapters: One adapter per provider kind.
        dead_letter: Migrator for items that cannot succeed.
        writer: Persists parsed workouts. Defaults to a WorkoutWriter on `store`.
        max_retry: Retry ceiling per item.
        batch_limit: Items fetched per process_pending() call.
        clock: Returns the current time in epoch millis.
    """

    def __init__(
        self,
        store: DocumentStore,
        credentials: CredentialStore,
        tokens: TokenManager,
        adapters: Dict[ProviderKind, ProviderAdapter],
        dead_letter: DeadLetterMigrator,
        writer: Optional[WorkoutWriter] = None,
        max_retry: int = 10,
        batch_limit: int = 200,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.credentials = credentials
        self.tokens = tokens
        self.adapters = adapters
        self.dead_letter = dead_letter
        self.writer = writer or WorkoutWriter(store, clock=clock)
        self.max_retry = max_retry
        self.batch_limit = batch_limit
        self.clock = clock

    async def process(self, provider: ProviderKind, item: QueueItem) -> QueueResult:
        """
        Process one queue item. Safe to call again for the same item.

        Returns:
            What happened to the item.
        """
        stored = self.store.get(item.path)
        if stored is None:
            logger.info("Queue item %s no longer exists in %s; skipping", item.id, item.collection)
            return QueueResult.SKIPPED
        # Retry counters and errors come from the stored row, not the caller's snapshot.
        item = QueueItem.from_document(item.path, stored, provider)
        if item.processed:
            return QueueResult.SKIPPED

        candidates = self.credentials.find_by_external_id(provider, item.external_user_id)
        if not candidates:
            self.dead_letter.migrate(
                item,
                f"No token found for {provider.value} user {item.external_user_id}",
                FailureCode.NO_TOKEN_FOUND,
            )
            return QueueResult.MOVED_TO_DLQ

        adapter = self.adapters[provider]
        last_error: Optional[Exception] = None

        for credential in candidates:
            try:
                resolved = await self.tokens.resolve_credential(credential)
                payload = await adapter.fetch_activity(resolved.access_token, item)
                summary = parse_fit_bytes(payload)
            except (TokenRefreshError, ProviderError, FitParseError) as e:
                last_error = e
                logger.warning(
                    "Item %s (%s workout %s) failed with token %s: %s",
                    item.id, provider.value, item.workout_id, credential.token_id, e,
                )
                continue

            self.writer.write(resolved.user_id, item, summary)
            self.store.update(item.path, {"processed": True, "processedAt": self.clock()})
            logger.info("Processed %s item %s with token %s", provider.value, item.id, credential.token_id)
            return QueueResult.PROCESSED

        return self._record_failure(item, last_error)

    def _record_failure(self, item: QueueItem, last_error: Optional[Exception]) -> QueueResult:
        now = self.clock()
        message = ALL_ATTEMPTS_FAILED
        if last_error is not None:
            message = f"{ALL_ATTEMPTS_FAILED}: {last_error}"

        entry = QueueErrorEntry(timestamp=now, error=message, at_retry_count=item.retry_count)
        failed = item.model_copy(update={
            "retry_count": item.retry_count + 1,
            "total_retry_count": item.total_retry_count + 1,
            "errors": list(item.errors) + [entry],
        })

        if failed.retry_count >= self.max_retry:
            self.dead_letter.migrate(
                failed, message, FailureCode.MAX_RETRY_REACHED, _provider_code(last_error)
            )
            return QueueResult.MOVED_TO_DLQ

        doc = failed.to_document()
        self.store.update(item.path, {
            "retryCount": doc["retryCount"],
            "totalRetryCount": doc["totalRetryCount"],
            "errors": doc["errors"],
        })
        logger.info("Item %s retry count now %d", item.id, failed.retry_count)
        return QueueResult.RETRY_INCREMENTED

    async def process_pending(
        self, provider: ProviderKind, from_history: bool = False
    ) -> Dict[str, int]:
        """
        Drain one batch of pending items from a provider's queue.

        Items are processed one after another; an unexpected error on one
        item is logged and counted as FAILED, and the drain goes on.

        Returns:
            Count per QueueResult value.
        """
        collection = self.adapters[provider].config.queue_name(history=from_history)
        snapshots = self.store.query(
            collection,
            [("processed", "==", False), ("retryCount", "<", self.max_retry)],
            limit=self.batch_limit,
        )
        summary = {result.value: 0 for result in QueueResult}
        for snapshot in snapshots:
            item = QueueItem.from_document(snapshot.path, snapshot.data, provider)
            try:
                result = await self.process(provider, item)
            except Exception:
                logger.exception("Unexpected failure processing %s item %s", provider.value, item.id)
                result = QueueResult.FAILED
            summary[result.value] += 1

        logger.info("Drained %d item(s) from %s: %s", len(snapshots), collection, summary)
        return summary


def _provider_code(error: Optional[Exception]) -> Optional[str]:
    if isinstance(error, TokenRefreshError) and isinstance(error.cause, ProviderError):
        return error.cause.code
    if isinstance(error, ProviderError):
        return error.code
    return None
