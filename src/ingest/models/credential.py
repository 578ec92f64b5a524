"""Stored OAuth2 credential for one user / provider pairing."""
from typing import Any, Dict, List, Optional

from sqlmodel import Field, SQLModel

from ingest.providers.base import ProviderKind


class Credential(SQLModel):
    """
    One credential row, stored at ``{tokenCollection}/{userId}/tokens/{tokenId}``.

    expires_at is epoch millis and already has the safety buffer subtracted,
    so `now >= expires_at` is the only expiry check needed.
    """

    path: str
    user_id: str
    provider: ProviderKind
    external_id: str = ""

    access_token: str
    refresh_token: str = ""
    token_type: str = "bearer"
    scope: str = ""

    expires_at: int = 0
    date_created: Optional[int] = None
    date_refreshed: Optional[int] = None

    permissions: List[str] = Field(default_factory=list)
    permissions_last_changed_at: Optional[int] = None

    @property
    def token_id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks.
        return (
            f"Credential(path={self.path!r}, provider={self.provider.value!r}, "
            f"external_id={self.external_id!r}, expires_at={self.expires_at})"
        )

    __str__ = __repr__

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "serviceName": self.provider.value,
            self.provider.external_id_field: self.external_id,
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenType": self.token_type,
            "scope": self.scope,
            "expiresAt": self.expires_at,
            "dateCreated": self.date_created,
            "dateRefreshed": self.date_refreshed,
        }
        if self.permissions or self.permissions_last_changed_at is not None:
            doc["permissions"] = list(self.permissions)
            doc["permissionsLastChangedAt"] = self.permissions_last_changed_at
        return doc

    @classmethod
    def from_document(cls, path: str, data: Dict[str, Any], provider: ProviderKind) -> "Credential":
        segments = path.split("/")
        return cls(
            path=path,
            user_id=segments[-3] if len(segments) >= 4 else "",
            provider=provider,
            external_id=str(data.get(provider.external_id_field) or ""),
            access_token=data.get("accessToken", ""),
            refresh_token=data.get("refreshToken", ""),
            token_type=data.get("tokenType") or "bearer",
            scope=data.get("scope") or "",
            expires_at=int(data.get("expiresAt") or 0),
            date_created=data.get("dateCreated"),
            date_refreshed=data.get("dateRefreshed"),
            permissions=list(data.get("permissions") or []),
            permissions_last_changed_at=data.get("permissionsLastChangedAt"),
        )
