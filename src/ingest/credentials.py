"""
Credential store adapter.

Credentials live at ``{tokenCollection}/{userId}/tokens/{tokenId}``. A user
may hold several credentials for one provider (e.g. two linked accounts);
reads always return them in creation order, which is the order the queue
processor tries them in.
"""
import logging
from typing import Any, Dict, List

from ingest.db.store import DocumentStore
from ingest.models.credential import Credential
from ingest.providers.base import ProviderConfig, ProviderKind

logger = logging.getLogger(__name__)

TOKENS_COLLECTION_ID = "tokens"


class CredentialStore:
    """
    Args:
        store: The document store.
        configs: Provider configuration records, keyed by kind.
    """

    def __init__(self, store: DocumentStore, configs: Dict[ProviderKind, ProviderConfig]):
        self.store = store
        self.configs = configs

    def path_for(self, provider: ProviderKind, user_id: str, token_id: str) -> str:
        return f"{self.configs[provider].credential_collection(user_id)}/{token_id}"

    def _user_root(self, provider: ProviderKind, user_id: str) -> str:
        return f"{self.configs[provider].token_collection}/{user_id}"

    def _from_snapshots(self, snapshots, provider: ProviderKind) -> List[Credential]:
        return [Credential.from_document(s.path, s.data, provider) for s in snapshots]

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, user_id: str, provider: ProviderKind) -> List[Credential]:
        """All of a user's credentials for a provider, oldest first."""
        snapshots = self.store.query(self.configs[provider].credential_collection(user_id))
        return self._from_snapshots(snapshots, provider)

    def find_by_external_id(self, provider: ProviderKind, external_id: str) -> List[Credential]:
        """Every credential, across users, linked to one provider account."""
        config = self.configs[provider]
        snapshots = self.store.query(
            TOKENS_COLLECTION_ID,
            [
                (config.external_id_field, "==", external_id),
                ("serviceName", "==", provider.value),
            ],
            group=True,
        )
        prefix = config.token_collection + "/"
        return self._from_snapshots([s for s in snapshots if s.path.startswith(prefix)], provider)

    def all(self, provider: ProviderKind) -> List[Credential]:
        config = self.configs[provider]
        snapshots = self.store.query(
            TOKENS_COLLECTION_ID, [("serviceName", "==", provider.value)], group=True
        )
        prefix = config.token_collection + "/"
        return self._from_snapshots([s for s in snapshots if s.path.startswith(prefix)], provider)

    # ── Writes ────────────────────────────────────────────────────────────────

    def save(self, credential: Credential) -> None:
        """Create or overwrite the credential's fields (other fields are kept)."""
        self.store.set(credential.path, credential.to_document(), merge=True)

    def update(self, credential: Credential, fields: Dict[str, Any]) -> None:
        self.store.update(credential.path, fields)

    def delete(self, credential: Credential) -> None:
        """
        Delete one credential. Deleting a user's last credential for the
        provider also removes the user's token document tree.
        """
        self.store.delete(credential.path)
        logger.info("Deleted %s token %s for user %s",
                    credential.provider.value, credential.token_id, credential.user_id)
        if not self.get(credential.user_id, credential.provider):
            self.delete_user_tree(credential.provider, credential.user_id)

    def delete_user_tree(self, provider: ProviderKind, user_id: str) -> int:
        return self.store.delete_tree(self._user_root(provider, user_id))

    def remove_duplicate_connections(
        self, user_id: str, provider: ProviderKind, external_id: str
    ) -> int:
        """
        Delete credentials for the same provider account held by other users.

        A provider account can be linked to one user at a time; the newest
        link supersedes older ones. Returns the number of credentials removed.
        """
        removed = 0
        for credential in self.find_by_external_id(provider, external_id):
            if credential.user_id == user_id:
                continue
            logger.warning(
                "Removing duplicate %s connection %s from user %s (now linked to %s)",
                provider.value, external_id, credential.user_id, user_id,
            )
            self.delete(credential)
            removed += 1
        return removed
