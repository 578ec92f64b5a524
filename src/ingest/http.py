"""
Async HTTP boundary for every provider call.

Wraps httpx.AsyncClient so that the rest of the code never sees an httpx
exception or a raw status code: every failure leaves this module as a
ProviderError with a kind, the HTTP status (if any) and the provider's own
error message (if it sent one). Timeouts are ordinary failures here.
"""
import json
import logging
from typing import Any, Dict, Optional

import httpx

from ingest.errors import ErrorKind, ProviderError, kind_for_status

logger = logging.getLogger(__name__)

_MESSAGE_KEYS = ("errorMessage", "error_description", "message", "error")


def extract_provider_message(response: httpx.Response) -> Optional[str]:
    """
    Pull the provider's error text out of a failed response.

    Providers disagree on the shape: Garmin nests {"error": {"errorMessage"}},
    OAuth servers use error_description, COROS uses message. Falls back to
    the first 300 characters of the body.
    """
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:300] or None

    for _ in range(3):
        if not isinstance(body, dict):
            break
        for key in _MESSAGE_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        nested = body.get("error")
        if isinstance(nested, dict):
            body = nested
            continue
        break
    return json.dumps(body)[:300]


class HttpClient:
    """
    Thin async wrapper over httpx.

    Args:
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        provider: Provider name stamped on raised ProviderErrors.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        provider: Optional[str] = None,
    ):
        self.timeout = timeout
        self._transport = transport
        self.provider = provider

    def with_provider(self, provider: str, timeout: Optional[float] = None) -> "HttpClient":
        """Return a copy stamped with another provider name (and optionally timeout)."""
        return HttpClient(
            timeout=timeout if timeout is not None else self.timeout,
            transport=self._transport,
            provider=provider,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        auth: Optional[tuple] = None,
        raw: bool = False,
    ) -> Any:
        """
        Perform one request and return the decoded body.

        Args:
            raw: If True return the body as bytes (FIT downloads); otherwise
                 JSON is decoded, and an empty body returns None.

        Raises:
            ProviderError: on timeout, transport failure, non-2xx status or
                an undecodable JSON body.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    data=form,
                    json=json_body,
                    auth=auth,
                )
        except httpx.TimeoutException as exc:
            raise ProviderError(
                ErrorKind.TIMEOUT,
                f"{method} {_strip_query(url)} timed out after {self.timeout}s",
                provider=self.provider,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                ErrorKind.NETWORK,
                f"{method} {_strip_query(url)} failed: {exc.__class__.__name__}",
                provider=self.provider,
            ) from exc

        if response.status_code >= 400:
            provider_message = extract_provider_message(response)
            raise ProviderError(
                kind_for_status(response.status_code),
                f"{method} {_strip_query(url)} returned {response.status_code}: {provider_message}",
                http_status=response.status_code,
                provider_message=provider_message,
                provider=self.provider,
            )

        if raw:
            return response.content
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                ErrorKind.INVALID_RESPONSE,
                f"{method} {_strip_query(url)} returned a non-JSON body",
                http_status=response.status_code,
                provider=self.provider,
            ) from exc

    async def get(self, url: str, **kwargs) -> Any:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> Any:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs) -> Any:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> Any:
        return await self.request("DELETE", url, **kwargs)


def _strip_query(url: str) -> str:
    # COROS passes the access token as a query parameter; never echo it.
    return url.split("?", 1)[0]
