"""
TokenManager: keeps stored OAuth2 credentials usable.

resolve_credential() is the refresh engine every other component goes
through: a credential that is not yet expired is returned untouched (no
network call); otherwise it is refreshed against the provider and written
back exactly once.

A failed refresh never deletes the stored credential. It raises
TokenRefreshError carrying the last-known-good credential, so the queue
processor can move on to the next candidate while callers that need this
one (backfill) surface TOKEN_REFRESH_FAILED.
"""
import logging
from typing import Callable, Dict, Optional

from ingest.credentials import CredentialStore
from ingest.errors import NoTokenFoundError, ProviderError, TokenRefreshError
from ingest.models.credential import Credential
from ingest.providers.base import ProviderAdapter, ProviderKind
from ingest.utils import now_ms

logger = logging.getLogger(__name__)

# Provider answers that mean "try again later", not "this grant is gone".
_PRESERVE_ON_STATUS = (500, 502)


class TokenManager:
    """
    Args:
        credentials: CredentialStore adapter.
        adapters: One adapter per provider kind.
        buffer_ms: Subtracted from the provider's reported expiry.
        clock: Returns the current time in epoch millis.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        adapters: Dict[ProviderKind, ProviderAdapter],
        buffer_ms: int = 6000,
        clock: Callable[[], int] = now_ms,
    ):
        self.credentials = credentials
        self.adapters = adapters
        self.buffer_ms = buffer_ms
        self.clock = clock

    async def resolve_credential(
        self, credential: Credential, force_refresh: bool = False
    ) -> Credential:
        """
        Return a credential whose access token is currently valid.

        Args:
            credential: Stored credential.
            force_refresh: Refresh even if the stored token has not expired.

        Returns:
            The stored credential unchanged, or the refreshed and persisted one.

        Raises:
            TokenRefreshError: if the provider refused or failed the refresh.
        """
        now = self.clock()
        if not force_refresh and not credential.is_expired(now):
            return credential

        adapter = self.adapters[credential.provider]
        try:
            response = await adapter.refresh_token(credential.refresh_token)
        except ProviderError as e:
            logger.warning(
                "Refreshing %s token %s for user %s failed (%s): %s",
                credential.provider.value, credential.token_id, credential.user_id, e.code, e,
            )
            raise TokenRefreshError(
                f"Could not refresh {credential.provider.value} token {credential.token_id}: {e.code}",
                credential=credential,
                cause=e,
            ) from e

        grant = adapter.normalize_token(response or {}, now)
        # COROS refreshes in place and returns no tokens; keep the stored ones.
        refreshed = credential.model_copy(update={
            "access_token": grant.access_token or credential.access_token,
            "refresh_token": grant.refresh_token or credential.refresh_token,
            "token_type": grant.token_type or credential.token_type,
            "scope": grant.scope or credential.scope,
            "external_id": grant.external_id or credential.external_id,
            "expires_at": grant.expires_at - self.buffer_ms,
            "date_refreshed": now,
        })
        self.credentials.save(refreshed)
        logger.info(
            "Refreshed %s token %s for user %s",
            credential.provider.value, credential.token_id, credential.user_id,
        )
        return refreshed

    async def exchange_code(
        self,
        user_id: str,
        provider: ProviderKind,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> Credential:
        """
        Finish an OAuth2 authorization-code flow and store the new credential.

        The credential is stored under the provider's user id as token id.
        Any other user linked to the same provider account loses that link.
        """
        adapter = self.adapters[provider]
        response = await adapter.exchange_code(code, redirect_uri, code_verifier)
        now = self.clock()
        grant = adapter.normalize_token(response, now)
        external_id = await adapter.resolve_user_id(response)
        permissions = await adapter.fetch_permissions(grant.access_token)

        credential = Credential(
            path=self.credentials.path_for(provider, user_id, external_id),
            user_id=user_id,
            provider=provider,
            external_id=external_id,
            access_token=grant.access_token or "",
            refresh_token=grant.refresh_token or "",
            token_type=grant.token_type or "bearer",
            scope=grant.scope or adapter.config.scopes,
            expires_at=grant.expires_at - self.buffer_ms,
            date_created=now,
            date_refreshed=now,
            permissions=permissions,
            permissions_last_changed_at=now if permissions else None,
        )
        self.credentials.save(credential)
        logger.info("Stored %s credential %s for user %s", provider.value, external_id, user_id)

        try:
            self.credentials.remove_duplicate_connections(user_id, provider, external_id)
        except Exception as exc:
            logger.error(
                "Duplicate connection cleanup for %s %s failed: %s", provider.value, external_id, exc
            )
        return credential

    async def refresh_all(self, provider: ProviderKind) -> Dict[str, int]:
        """
        Force-refresh every stored credential of a provider.

        Returns:
            {"refreshed": n, "failed": m}. A failure never stops the sweep.
        """
        counts = {"refreshed": 0, "failed": 0}
        for credential in self.credentials.all(provider):
            try:
                await self.resolve_credential(credential, force_refresh=True)
                counts["refreshed"] += 1
            except TokenRefreshError:
                counts["failed"] += 1
        logger.info(
            "%s token sweep: %d refreshed, %d failed",
            provider.value, counts["refreshed"], counts["failed"],
        )
        return counts

    async def deauthorize(self, user_id: str, provider: ProviderKind) -> None:
        """
        Revoke a user's provider access and delete the local credentials.

        A credential whose refresh or revoke failed with a provider server
        error (500/502) is kept so the operation can be retried; any other
        failure still deletes it locally.

        Raises:
            NoTokenFoundError: if the user has no credential for the provider.
        """
        candidates = self.credentials.get(user_id, provider)
        if not candidates:
            logger.warning("No %s tokens for user %s; removing leftovers", provider.value, user_id)
            self.credentials.delete_user_tree(provider, user_id)
            raise NoTokenFoundError(details={"userId": user_id, "provider": provider.value})

        adapter = self.adapters[provider]
        for credential in candidates:
            delete_local = True
            resolved: Optional[Credential] = None

            try:
                resolved = await self.resolve_credential(credential)
            except TokenRefreshError as e:
                if _server_failure(e.cause):
                    logger.error("Refresh failed with a server error for %s; keeping it", credential)
                    delete_local = False
                else:
                    logger.warning("Refresh failed for %s; removing it locally", credential)

            if delete_local and resolved is not None:
                try:
                    await adapter.deauthorize(resolved.access_token)
                    logger.info("Deauthorized %s for user %s", credential, user_id)
                except ProviderError as e:
                    if _server_failure(e):
                        logger.error("%s deauthorize failed (%s); keeping %s",
                                     provider.value, e.code, credential)
                        delete_local = False
                    else:
                        logger.warning("%s deauthorize failed (%s); removing %s locally",
                                       provider.value, e.code, credential)

            if delete_local:
                self.credentials.delete(credential)


def _server_failure(error) -> bool:
    return isinstance(error, ProviderError) and error.http_status in _PRESERVE_ON_STATUS
