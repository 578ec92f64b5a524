"""Queue items (one workout to fetch and persist) and dead-letter records."""
from typing import Any, Dict, List, Optional

from sqlmodel import Field, SQLModel

from ingest.providers.base import ProviderKind
from ingest.utils import generate_id_from_parts, now_ms


class QueueErrorEntry(SQLModel):
    timestamp: int
    error: str
    at_retry_count: int = 0


class QueueItem(SQLModel):
    """
    Pending work: fetch one external workout and persist it.

    Pending while processed is False; terminal once processed is True.
    retry_count only ever grows.
    """

    id: str
    collection: str  # queue collection the item lives in
    provider: ProviderKind
    external_user_id: str  # userID / userName / openId depending on provider
    workout_id: str
    file_url: Optional[str] = None  # COROS FIT URL, Garmin callback URL
    file_type: str = "FIT"
    processed: bool = False
    processed_at: Optional[int] = None
    retry_count: int = 0
    total_retry_count: int = 0
    errors: List[QueueErrorEntry] = Field(default_factory=list)
    date_created: int = Field(default_factory=now_ms)

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.id}"

    @classmethod
    def new(
        cls,
        collection: str,
        provider: ProviderKind,
        external_user_id: str,
        workout_id: str,
        file_url: Optional[str] = None,
        file_type: str = "FIT",
    ) -> "QueueItem":
        """Create a fresh pending item with a deterministic id."""
        parts = [external_user_id, workout_id] + ([file_url] if file_url else [])
        return cls(
            id=generate_id_from_parts(parts),
            collection=collection,
            provider=provider,
            external_user_id=external_user_id,
            workout_id=workout_id,
            file_url=file_url,
            file_type=file_type,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            self.provider.external_id_field: self.external_user_id,
            "workoutID": self.workout_id,
            "fileURL": self.file_url,
            "fileType": self.file_type,
            "processed": self.processed,
            "processedAt": self.processed_at,
            "retryCount": self.retry_count,
            "totalRetryCount": self.total_retry_count,
            "errors": [
                {"timestamp": e.timestamp, "error": e.error, "atRetryCount": e.at_retry_count}
                for e in self.errors
            ],
            "dateCreated": self.date_created,
        }

    @classmethod
    def from_document(cls, path: str, data: Dict[str, Any], provider: ProviderKind) -> "QueueItem":
        collection, item_id = path.rsplit("/", 1)
        return cls(
            id=item_id,
            collection=collection,
            provider=provider,
            external_user_id=str(data.get(provider.external_id_field) or ""),
            workout_id=str(data.get("workoutID") or ""),
            file_url=data.get("fileURL"),
            file_type=data.get("fileType") or "FIT",
            processed=bool(data.get("processed", False)),
            processed_at=data.get("processedAt"),
            retry_count=int(data.get("retryCount") or 0),
            total_retry_count=int(data.get("totalRetryCount") or 0),
            errors=[
                QueueErrorEntry(
                    timestamp=e.get("timestamp", 0),
                    error=e.get("error", ""),
                    at_retry_count=e.get("atRetryCount", 0),
                )
                for e in data.get("errors") or []
            ],
            date_created=int(data.get("dateCreated") or 0),
        )


FAILED_JOBS_COLLECTION = "failed_jobs"


class FailedJob(SQLModel):
    """Terminal dead-letter record. Never re-enqueued automatically."""

    id: str
    original_collection: str
    original_id: str
    provider: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    context: str
    error: str
    provider_error_code: Optional[str] = None
    failed_at: int
    expire_at: Optional[int] = None

    @property
    def path(self) -> str:
        return f"{FAILED_JOBS_COLLECTION}/{self.id}"

    def to_document(self) -> Dict[str, Any]:
        return {
            "originalCollection": self.original_collection,
            "originalId": self.original_id,
            "provider": self.provider,
            "payload": self.payload,
            "context": self.context,
            "error": self.error,
            "providerErrorCode": self.provider_error_code,
            "failedAt": self.failed_at,
            "expireAt": self.expire_at,
        }
