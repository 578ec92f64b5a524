"""Per user, per provider backfill bookkeeping."""
from typing import Any, Dict, Optional

from sqlmodel import SQLModel


class BackfillJobState(SQLModel):
    """
    Stored at ``users/{userId}/meta/{provider}``.

    Written only after a backfill attempt completes (fully or with tolerated
    partial failures); never on an aborted one.
    """

    user_id: str
    provider: str
    last_import: Optional[int] = None
    processed_activities_count: int = 0

    @staticmethod
    def path_for(user_id: str, provider: str) -> str:
        return f"users/{user_id}/meta/{provider}"

    @property
    def path(self) -> str:
        return self.path_for(self.user_id, self.provider)

    def to_document(self) -> Dict[str, Any]:
        return {
            "didLastHistoryImport": self.last_import,
            "processedActivitiesFromLastHistoryImportCount": self.processed_activities_count,
        }

    @classmethod
    def from_document(cls, user_id: str, provider: str, data: Dict[str, Any]) -> "BackfillJobState":
        return cls(
            user_id=user_id,
            provider=provider,
            last_import=data.get("didLastHistoryImport"),
            processed_activities_count=int(
                data.get("processedActivitiesFromLastHistoryImportCount") or 0
            ),
        )
