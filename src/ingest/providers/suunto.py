"""
Suunto cloud API adapter.

Suunto sends the raw access token in the Authorization header (no "Bearer"
prefix) and every data call also needs the API Management subscription key.
The user's Suunto id comes back in the token response itself as ``user``.
"""
import logging
from typing import Any, Dict, List

from ingest.errors import ErrorKind, ProviderError
from ingest.models.queue import QueueItem
from ingest.providers.base import ProviderAdapter, ProviderKind, TokenGrant

logger = logging.getLogger(__name__)

TOKEN_URL = "https://cloudapi-oauth.suunto.com/oauth/token"
DEAUTHORIZE_URL = "https://cloudapi-oauth.suunto.com/oauth/deauthorize"
API_BASE_URL = "https://cloudapi.suunto.com/v2"
SCOPES = "workout"


class SuuntoAdapter(ProviderAdapter):
    kind = ProviderKind.SUUNTO

    def _data_headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": access_token,
            "Ocp-Apim-Subscription-Key": self.config.subscription_key,
        }

    def normalize_token(self, response: Dict[str, Any], now: int) -> TokenGrant:
        grant = super().normalize_token(response, now)
        grant.external_id = response.get("user")
        grant.scope = grant.scope or SCOPES
        return grant

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        # Suunto wants the client credentials as HTTP basic auth.
        return await self.http.post(
            self.config.token_url,
            form={"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=(self.config.client_id, self.config.client_secret),
        )

    async def resolve_user_id(self, token_response: Dict[str, Any]) -> str:
        user = token_response.get("user")
        if not user:
            raise ProviderError(
                ErrorKind.INVALID_RESPONSE,
                "Suunto token response carried no user",
                provider=self.kind.value,
            )
        return str(user)

    async def deauthorize(self, access_token: str) -> None:
        await self.http.get(
            DEAUTHORIZE_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            params={"client_id": self.config.client_id},
        )

    async def fetch_activity(self, access_token: str, item) -> bytes:
        return await self.http.get(
            f"{self.config.api_base_url}/workout/exportFit/{item.workout_id}",
            headers=self._data_headers(access_token),
            raw=True,
        )

    async def request_backfill(self, credential, window) -> List[QueueItem]:
        """List the window's workouts and turn each into a history queue item."""
        body = await self.http.get(
            f"{self.config.api_base_url}/workouts",
            headers=self._data_headers(credential.access_token),
            params={
                "since": window.start_ms,
                "until": window.end_ms,
                "limit": 1000000,
                "filter-by-modification-time": "false",
            },
        )
        body = body or {}
        if body.get("error"):
            raise ProviderError(
                ErrorKind.INVALID_RESPONSE,
                f"Suunto workout list failed: {body['error']}",
                provider_message=str(body["error"]),
                provider=self.kind.value,
            )

        collection = self.config.queue_name(history=True)
        return [
            QueueItem.new(collection, self.kind, credential.external_id, str(w["workoutKey"]))
            for w in body.get("payload") or []
            if w.get("workoutKey")
        ]
