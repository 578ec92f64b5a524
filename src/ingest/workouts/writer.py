"""Persists a parsed workout as an event document under its owner."""
import logging
from typing import Any, Callable, Dict

from ingest.db.store import DocumentStore
from ingest.models.queue import QueueItem
from ingest.providers.base import ProviderKind
from ingest.utils import generate_id_from_parts, now_ms

logger = logging.getLogger(__name__)


def event_id_for(item: QueueItem) -> str:
    """Deterministic event id, so a re-processed workout overwrites itself."""
    parts = [item.provider.value, item.external_user_id, item.workout_id]
    if item.provider == ProviderKind.COROS and item.file_url:
        parts.append(item.file_url)  # one event per triathlon leg
    return generate_id_from_parts(parts)


class WorkoutWriter:
    def __init__(self, store: DocumentStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    def write(self, user_id: str, item: QueueItem, summary: Dict[str, Any]) -> str:
        """
        Write the workout summary to ``users/{userId}/events/{eventId}``.

        Returns:
            The event document path.
        """
        path = f"users/{user_id}/events/{event_id_for(item)}"
        self.store.set(path, {
            "provider": item.provider.value,
            "externalUserId": item.external_user_id,
            "workoutId": item.workout_id,
            "sourceQueue": item.collection,
            "fileType": item.file_type,
            "sport": summary.get("sport"),
            "startDate": summary.get("start_time"),
            "durationSeconds": summary.get("duration_seconds"),
            "distanceMeters": summary.get("distance_meters"),
            "avgHeartRate": summary.get("avg_heart_rate"),
            "maxHeartRate": summary.get("max_heart_rate"),
            "recordCount": summary.get("record_count"),
            "dateImported": self.clock(),
        })
        logger.info("Stored %s workout %s for user %s", item.provider.value, item.workout_id, user_id)
        return path
