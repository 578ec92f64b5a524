"""
Garmin Health API adapter.

Garmin is push-based: a backfill request only asks Garmin to replay the
user's history, and the workouts arrive later as ping notifications that
land in the regular queue. So request_backfill() never enqueues anything.

Auth uses OAuth2 with PKCE against diauth.garmin.com; every API call sends
a standard ``Authorization: Bearer`` header.
"""
import logging
from typing import Any, Dict, List, Optional

from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ingest.errors import ErrorKind, ProviderError
from ingest.providers.base import ProviderAdapter, ProviderKind

logger = logging.getLogger(__name__)

TOKEN_URL = "https://diauth.garmin.com/di-oauth2-service/oauth/token"
API_BASE_URL = "https://apis.garmin.com/wellness-api/rest"
SCOPES = "PARTNER_WRITE PARTNER_READ CONNECT_READ CONNECT_WRITE"
HISTORY_PERMISSION = "HISTORICAL_DATA_EXPORT"

PERMISSION_ATTEMPTS = 3


class GarminAdapter(ProviderAdapter):
    kind = ProviderKind.GARMIN

    def _auth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Raises:
            ValueError: without a PKCE code verifier; Garmin rejects such exchanges.
        """
        if not code_verifier:
            raise ValueError("Garmin requires a PKCE code_verifier")
        return await super().exchange_code(code, redirect_uri, code_verifier)

    async def resolve_user_id(self, token_response: Dict[str, Any]) -> str:
        body = await self.http.get(
            f"{self.config.api_base_url}/user/id",
            headers=self._auth_headers(token_response["access_token"]),
        )
        user_id = (body or {}).get("userId")
        if not user_id:
            raise ProviderError(
                ErrorKind.INVALID_RESPONSE,
                "Garmin user id lookup returned no userId",
                provider=self.kind.value,
            )
        return str(user_id)

    async def fetch_permissions(self, access_token: str) -> List[str]:
        """
        Return the permissions the user granted us.

        Retried with exponential backoff; an empty list after the last attempt
        means "unknown", never an error, so connecting an account still works.
        """
        try:
            return await self._get_permissions(access_token)
        except ProviderError as e:
            logger.warning("Garmin permissions lookup gave up after %d attempts: %s", PERMISSION_ATTEMPTS, e)
            return []

    @retry(
        stop=stop_after_attempt(PERMISSION_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(ProviderError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _get_permissions(self, access_token: str) -> List[str]:
        body = await self.http.get(
            f"{self.config.api_base_url}/user/permissions",
            headers=self._auth_headers(access_token),
        )
        return list(body or [])

    async def deauthorize(self, access_token: str) -> None:
        await self.http.delete(
            f"{self.config.api_base_url}/user/registration",
            headers=self._auth_headers(access_token),
        )

    async def fetch_activity(self, access_token: str, item) -> bytes:
        # Ping notifications carry a callback URL; fall back to the file endpoint.
        url = item.file_url or f"{self.config.api_base_url}/activityFile"
        params = None if item.file_url else {"id": item.workout_id}
        return await self.http.get(
            url, headers=self._auth_headers(access_token), params=params, raw=True
        )

    async def request_backfill(self, credential, window) -> List[Any]:
        await self.http.get(
            f"{self.config.api_base_url}/backfill/activities",
            headers=self._auth_headers(credential.access_token),
            params={
                "summaryStartTimeInSeconds": window.start_seconds,
                "summaryEndTimeInSeconds": window.end_seconds,
            },
        )
        return []
