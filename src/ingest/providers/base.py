"""
Provider kinds, their fixed configuration records, and the adapter interface.

The set of providers is closed: ProviderKind enumerates it and the registry
binds each kind to exactly one adapter class. Everything provider-specific
(URLs, header conventions, window limits, permission requirements, cooldown
rule) is captured in an immutable ProviderConfig built once from Settings.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ingest.utils import DAY_MS


class ProviderKind(str, Enum):
    GARMIN = "garmin"
    SUUNTO = "suunto"
    COROS = "coros"

    @property
    def external_id_field(self) -> str:
        """Field holding the provider's user id on credentials and queue items."""
        return _EXTERNAL_ID_FIELDS[self]


_EXTERNAL_ID_FIELDS = {
    ProviderKind.GARMIN: "userID",
    ProviderKind.SUUNTO: "userName",
    ProviderKind.COROS: "openId",
}


# ── Cooldown policies ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FixedCooldown:
    """A backfill may run again `days` after the previous one."""

    days: int

    def next_available(self, last_import_ms: int, processed_count: int) -> Optional[int]:
        return last_import_ms + self.days * DAY_MS


@dataclass(frozen=True)
class VolumeCooldown:
    """
    Cooldown grows with the size of the previous import: one day per
    `items_per_day` imported activities. An import that enqueued nothing
    never blocks the next one.
    """

    items_per_day: int = 500

    def next_available(self, last_import_ms: int, processed_count: int) -> Optional[int]:
        if not processed_count:
            return None
        return last_import_ms + math.ceil(processed_count / self.items_per_day * DAY_MS)


# ── Configuration ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderConfig:
    kind: ProviderKind
    token_collection: str
    queue_collection: str
    history_queue_collection: str
    token_url: str
    api_base_url: str
    max_window_days: int  # documented maximum span per backfill request
    safe_window_days: int  # what we actually request; strictly below the maximum
    cooldown: Any  # FixedCooldown | VolumeCooldown
    client_id: str = ""
    client_secret: str = ""
    scopes: str = ""
    required_backfill_permissions: Tuple[str, ...] = ()
    token_lifetime_ms: Optional[int] = None  # for providers whose refresh returns no expiry
    history_limit_months: Optional[int] = None
    subscription_key: str = ""
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.safe_window_days >= self.max_window_days:
            raise ValueError(
                f"{self.kind.value}: safe window ({self.safe_window_days}d) must be "
                f"below the documented maximum ({self.max_window_days}d)"
            )

    @property
    def external_id_field(self) -> str:
        return self.kind.external_id_field

    def queue_name(self, history: bool = False) -> str:
        return self.history_queue_collection if history else self.queue_collection

    def credential_collection(self, user_id: str) -> str:
        return f"{self.token_collection}/{user_id}/tokens"


# ── Adapter interface ─────────────────────────────────────────────────────────

@dataclass
class TokenGrant:
    """A token endpoint response normalised across providers."""

    access_token: Optional[str]
    refresh_token: Optional[str]
    token_type: Optional[str]
    scope: Optional[str]
    expires_at: int  # remote expiry in epoch millis, before the safety buffer
    external_id: Optional[str] = None


class ProviderAdapter:
    """
    Capability interface every provider implements.

    Subclasses receive their ProviderConfig and an HttpClient; they translate
    between provider wire formats and our models and never touch storage.
    """

    kind: ProviderKind

    def __init__(self, config: ProviderConfig, http):
        self.config = config
        self.http = http

    # OAuth2 ----------------------------------------------------------------

    def normalize_token(self, response: Dict[str, Any], now: int) -> TokenGrant:
        """
        Read a token response into a TokenGrant.

        Expiry comes from `expires_at` (seconds or millis), else `expires_in`
        seconds from now, else the provider's fixed token lifetime.
        """
        if response.get("expires_at") is not None:
            raw = int(response["expires_at"])
            expires_at = raw * 1000 if raw < 10 ** 12 else raw
        elif response.get("expires_in") is not None:
            expires_at = now + int(response["expires_in"]) * 1000
        elif self.config.token_lifetime_ms:
            expires_at = now + self.config.token_lifetime_ms
        else:
            expires_at = now
        return TokenGrant(
            access_token=response.get("access_token"),
            refresh_token=response.get("refresh_token"),
            token_type=response.get("token_type"),
            scope=response.get("scope"),
            expires_at=expires_at,
        )

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> Dict[str, Any]:
        """Exchange an authorization code for a raw token response dict."""
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier
        return await self.http.post(self.config.token_url, form=form)

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Call the provider's token endpoint with a refresh token."""
        return await self.http.post(
            self.config.token_url,
            form={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )

    async def resolve_user_id(self, token_response: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def fetch_permissions(self, access_token: str) -> List[str]:
        return []

    async def deauthorize(self, access_token: str) -> None:
        raise NotImplementedError

    # Data ------------------------------------------------------------------

    async def fetch_activity(self, access_token: str, item) -> bytes:
        """Download the workout file described by a queue item."""
        raise NotImplementedError

    async def request_backfill(self, credential, window) -> List[Any]:
        """
        Ask the provider for one window of history.

        Returns QueueItems to enqueue into the history queue; push-based
        providers (Garmin) return an empty list because the data arrives
        later through their own notification channel.
        """
        raise NotImplementedError
