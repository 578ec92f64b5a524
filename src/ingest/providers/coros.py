"""
COROS open API adapter.

COROS is unusual in three ways:
- the access token travels as a ``token`` query parameter, not a header;
- the refresh endpoint only extends the existing token's life and answers
  ``{"message": "OK"}`` with no new tokens;
- the workout list only reaches back a few months, and a triathlon entry
  carries one FIT file per leg in ``triathlonItemList``.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from ingest.errors import ErrorKind, ProviderError
from ingest.models.queue import QueueItem
from ingest.providers.base import ProviderAdapter, ProviderKind

logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://open.coros.com"
STAGING_URL = "https://opentest.coros.com"

TOKEN_LIFETIME_DAYS = 30


def base_url(use_staging: bool) -> str:
    return STAGING_URL if use_staging else PRODUCTION_URL


def _ok(body: Optional[Dict[str, Any]]) -> bool:
    return bool(body) and body.get("message") == "OK"


def _date_param(value) -> str:
    return value.strftime("%Y%m%d")


def workouts_to_queue_items(
    workouts: Iterable[Dict[str, Any]],
    collection: str,
    open_id: Optional[str] = None,
) -> List[QueueItem]:
    """
    Convert COROS sport-list entries into queue items.

    A triathlon yields one item per leg. Entries without a FIT URL are
    dropped. `open_id`, when given, overrides the id on each entry.
    """
    items: List[QueueItem] = []
    for workout in workouts:
        owner = open_id or workout.get("openId") or ""
        legs = workout.get("triathlonItemList")
        urls = [leg.get("fitUrl") for leg in legs] if legs else [workout.get("fitUrl")]
        for url in urls:
            if not url:
                continue
            items.append(QueueItem.new(
                collection, ProviderKind.COROS, owner, str(workout.get("labelId")), file_url=url,
            ))
    return items


class CorosAdapter(ProviderAdapter):
    kind = ProviderKind.COROS

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        body = await self.http.post(
            f"{self.config.api_base_url}/oauth2/refresh-token",
            form={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        if not _ok(body):
            raise ProviderError(
                ErrorKind.INVALID_RESPONSE,
                f"COROS token refresh answered {body!r}",
                provider_message=(body or {}).get("message"),
                provider=self.kind.value,
            )
        return body

    async def resolve_user_id(self, token_response: Dict[str, Any]) -> str:
        open_id = token_response.get("openId")
        if not open_id:
            raise ProviderError(
                ErrorKind.INVALID_RESPONSE,
                "COROS token response carried no openId",
                provider=self.kind.value,
            )
        return str(open_id)

    async def deauthorize(self, access_token: str) -> None:
        await self.http.post(
            f"{self.config.api_base_url}/oauth2/deauthorize",
            params={"token": access_token},
        )

    async def fetch_activity(self, access_token: str, item) -> bytes:
        # FIT URLs are pre-signed download links.
        if not item.file_url:
            raise ProviderError(
                ErrorKind.BAD_REQUEST,
                f"COROS queue item {item.id} has no FIT URL",
                provider=self.kind.value,
            )
        return await self.http.get(item.file_url, raw=True)

    async def request_backfill(self, credential, window) -> List[QueueItem]:
        body = await self.http.get(
            f"{self.config.api_base_url}/v2/coros/sport/list",
            params={
                "token": credential.access_token,
                "openId": credential.external_id,
                "startDate": _date_param(window.start),
                "endDate": _date_param(window.end),
            },
        )
        body = body or {}
        if body.get("message") and body["message"] != "OK":
            raise ProviderError(
                ErrorKind.INVALID_RESPONSE,
                f"COROS API Error with code {body.get('result')}",
                provider_message=body["message"],
                provider=self.kind.value,
            )
        return workouts_to_queue_items(
            body.get("data") or [],
            self.config.queue_name(history=True),
            open_id=credential.external_id,
        )
