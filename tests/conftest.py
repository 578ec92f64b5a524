"""Shared test fixtures."""
from datetime import datetime, timezone
from typing import Callable, Tuple

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from ingest.db.store import Document, DocumentStore  # noqa: F401
from ingest.config import Settings
from ingest.credentials import CredentialStore
from ingest.http import HttpClient
from ingest.models.credential import Credential
from ingest.models.queue import QueueItem
from ingest.providers.base import ProviderKind
from ingest.providers.registry import build_provider_configs
from ingest.utils import DAY_MS, datetime_to_ms

NOW = datetime_to_ms(datetime(2023, 6, 1, 12, 0, tzinfo=timezone.utc))


class FakeClock:
    """Callable epoch-millis clock that only moves when told to."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="store")
def store_fixture(engine) -> DocumentStore:
    return DocumentStore(engine)


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        garmin_client_id="garmin-id",
        garmin_client_secret="garmin-secret",
        suunto_client_id="suunto-id",
        suunto_client_secret="suunto-secret",
        suunto_subscription_key="suunto-key",
        coros_client_id="coros-id",
        coros_client_secret="coros-secret",
    )


@pytest.fixture(name="configs")
def configs_fixture(settings):
    return build_provider_configs(settings)


@pytest.fixture(name="credentials")
def credentials_fixture(store, configs) -> CredentialStore:
    return CredentialStore(store, configs)


@pytest.fixture(name="make_credential")
def make_credential_fixture(credentials) -> Callable[..., Credential]:
    """Factory that stores a credential and returns it."""

    def _make(
        user_id: str = "user-1",
        provider: ProviderKind = ProviderKind.SUUNTO,
        external_id: str = "ext-1",
        token_id: str = None,
        expires_at: int = NOW + DAY_MS,
        permissions=None,
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
    ) -> Credential:
        credential = Credential(
            path=credentials.path_for(provider, user_id, token_id or external_id),
            user_id=user_id,
            provider=provider,
            external_id=external_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            date_created=NOW - DAY_MS,
            date_refreshed=NOW - DAY_MS,
            permissions=permissions or [],
        )
        credentials.save(credential)
        return credential

    return _make


@pytest.fixture(name="make_item")
def make_item_fixture(store, configs) -> Callable[..., QueueItem]:
    """Factory that stores a pending queue item and returns it."""

    def _make(
        provider: ProviderKind = ProviderKind.SUUNTO,
        external_user_id: str = "ext-1",
        workout_id: str = "workout-1",
        retry_count: int = 0,
        history: bool = False,
        file_url: str = None,
        date_created: int = NOW - 60_000,
    ) -> QueueItem:
        item = QueueItem.new(
            configs[provider].queue_name(history), provider, external_user_id, workout_id, file_url
        )
        item = item.model_copy(update={"retry_count": retry_count, "date_created": date_created})
        store.set(item.path, item.to_document())
        return item

    return _make


class Router:
    """httpx.MockTransport handler answering by (method, path) and recording calls."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": f"no route {key}"})
        answer = self.routes[key]
        return answer(request) if callable(answer) else answer


@pytest.fixture(name="make_http")
def make_http_fixture() -> Callable[..., Tuple[HttpClient, Router]]:
    """Factory: routes dict → (HttpClient over a MockTransport, the recording Router)."""

    def _make(routes=None) -> Tuple[HttpClient, Router]:
        router = Router(routes if routes is not None else {})
        return HttpClient(transport=httpx.MockTransport(router)), router

    return _make
