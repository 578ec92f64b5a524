"""Tests for the credential store adapter."""
from ingest.models.credential import Credential
from ingest.providers.base import ProviderKind


class TestCredentialRoundTrip:
    def test_document_uses_provider_id_field(self, make_credential, store):
        cred = make_credential(provider=ProviderKind.COROS, external_id="open-1")
        data = store.get(cred.path)
        assert data["openId"] == "open-1"
        assert data["serviceName"] == "coros"
        assert data["accessToken"] == "access-1"

    def test_from_document_recovers_user_id(self, make_credential, store):
        cred = make_credential(user_id="u-42")
        loaded = Credential.from_document(cred.path, store.get(cred.path), ProviderKind.SUUNTO)
        assert loaded.user_id == "u-42"
        assert loaded.external_id == "ext-1"

    def test_repr_has_no_secrets(self, make_credential):
        cred = make_credential(access_token="very-secret", refresh_token="also-secret")
        assert "very-secret" not in repr(cred)
        assert "also-secret" not in str(cred)


class TestCredentialStore:
    def test_get_returns_creation_order(self, credentials, make_credential):
        make_credential(token_id="b-second-alpha")
        make_credential(token_id="a-later")
        ids = [c.token_id for c in credentials.get("user-1", ProviderKind.SUUNTO)]
        assert ids == ["b-second-alpha", "a-later"]

    def test_get_is_scoped_to_provider(self, credentials, make_credential):
        make_credential(provider=ProviderKind.GARMIN)
        assert credentials.get("user-1", ProviderKind.SUUNTO) == []

    def test_find_by_external_id_across_users(self, credentials, make_credential):
        make_credential(user_id="u1", external_id="bob")
        make_credential(user_id="u2", external_id="bob")
        make_credential(user_id="u3", external_id="alice")
        make_credential(user_id="u4", external_id="bob", provider=ProviderKind.COROS)

        found = credentials.find_by_external_id(ProviderKind.SUUNTO, "bob")
        assert [c.user_id for c in found] == ["u1", "u2"]

    def test_all(self, credentials, make_credential):
        make_credential(user_id="u1")
        make_credential(user_id="u2", external_id="ext-2")
        make_credential(user_id="u3", provider=ProviderKind.GARMIN)
        assert len(credentials.all(ProviderKind.SUUNTO)) == 2

    def test_update(self, credentials, make_credential, store):
        cred = make_credential()
        credentials.update(cred, {"permissions": ["HISTORICAL_DATA_EXPORT"]})
        assert store.get(cred.path)["permissions"] == ["HISTORICAL_DATA_EXPORT"]

    def test_delete_last_credential_removes_user_tree(self, credentials, make_credential, store, configs):
        cred = make_credential()
        root = f"{configs[ProviderKind.SUUNTO].token_collection}/user-1"
        store.set(root, {"meta": True})

        credentials.delete(cred)
        assert store.get(cred.path) is None
        assert store.get(root) is None

    def test_delete_keeps_tree_while_other_tokens_remain(self, credentials, make_credential, store, configs):
        first = make_credential(token_id="t1")
        make_credential(token_id="t2")
        root = f"{configs[ProviderKind.SUUNTO].token_collection}/user-1"
        store.set(root, {"meta": True})

        credentials.delete(first)
        assert store.get(root) == {"meta": True}
        assert [c.token_id for c in credentials.get("user-1", ProviderKind.SUUNTO)] == ["t2"]

    def test_remove_duplicate_connections(self, credentials, make_credential):
        make_credential(user_id="old-owner", external_id="bob")
        make_credential(user_id="new-owner", external_id="bob")

        removed = credentials.remove_duplicate_connections("new-owner", ProviderKind.SUUNTO, "bob")

        assert removed == 1
        assert credentials.get("old-owner", ProviderKind.SUUNTO) == []
        assert len(credentials.get("new-owner", ProviderKind.SUUNTO)) == 1
