"""
Dead-letter migration.

Moves an item that can never succeed on its own out of its queue and into
``failed_jobs``. The record write and the source delete go through one
WriteBatch, so either both are applied or neither is.
"""
import logging
from typing import Callable, Optional, Union

from ingest.db.store import DocumentStore
from ingest.errors import FailureCode
from ingest.models.queue import FailedJob, QueueItem
from ingest.utils import DAY_MS, now_ms

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


class DeadLetterMigrator:
    """
    Args:
        store: The document store.
        ttl_days: Failed jobs get an expireAt this far in the future.
        clock: Returns the current time in epoch millis.
    """

    def __init__(self, store: DocumentStore, ttl_days: int = 7, clock: Callable[[], int] = now_ms):
        self.store = store
        self.ttl_days = ttl_days
        self.clock = clock

    def migrate(
        self,
        item: QueueItem,
        error: Union[str, Exception],
        context: Union[FailureCode, str] = FailureCode.MAX_RETRY_REACHED,
        provider_error_code: Optional[str] = None,
    ) -> FailedJob:
        """
        Record `item` as a failed job and delete it from its queue.

        Args:
            item: The queue item, with its latest state (retry count, errors).
            error: The final error; normalised to a single bounded string.
            context: Classification code, e.g. NO_TOKEN_FOUND.
            provider_error_code: Last provider error code (HTTP_403, TIMEOUT, ...).

        Returns:
            The written FailedJob.
        """
        now = self.clock()
        job = FailedJob(
            id=item.id,
            original_collection=item.collection,
            original_id=item.id,
            provider=item.provider.value,
            payload=item.to_document(),
            context=context.value if isinstance(context, FailureCode) else str(context),
            error=_normalize(error),
            provider_error_code=provider_error_code,
            failed_at=now,
            expire_at=now + self.ttl_days * DAY_MS,
        )

        with self.store.batch() as batch:
            batch.set(job.path, job.to_document())
            batch.delete(item.path)

        logger.warning(
            "Moved %s item %s from %s to %s (%s)",
            item.provider.value, item.id, item.collection, job.path, job.context,
        )
        return job


def _normalize(error: Union[str, Exception]) -> str:
    text = str(error).strip() or error.__class__.__name__
    return " ".join(text.split())[:MAX_ERROR_LENGTH]
