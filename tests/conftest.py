"""
Shared fixtures: an in-memory settings store and a fake upstream that
answers for all four providers through ``httpx.MockTransport``.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from config.settings import Settings
from connectors.cache import ResultCache
from connectors.encryption import CredentialCipher
from connectors.facade import IntegrationFacade
from connectors.token_manager import OAuthSessionManager
from database.settings_store import SettingsStore
from utils.schemas import IntegrationSettings

TEST_KEY = "a1" * 32
USER_ID = "dev-user-001"
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

Handler = Union[Callable[[httpx.Request], httpx.Response], Tuple[int, Any]]


class InMemorySettingsStore(SettingsStore):
    def __init__(self) -> None:
        self.records: Dict[str, IntegrationSettings] = {}
        self.writes: List[Dict[str, Any]] = []

    def seed(self, user_id: str = USER_ID, **fields: Any) -> IntegrationSettings:
        record = IntegrationSettings(user_id=user_id, **fields)
        self.records[user_id] = record
        return record

    async def get_settings(self, user_id: str) -> Optional[IntegrationSettings]:
        return self.records.get(user_id)

    async def upsert_settings(self, user_id: str, partial: Dict[str, Any]) -> IntegrationSettings:
        self.writes.append(dict(partial))
        current = self.records.get(user_id) or IntegrationSettings(user_id=user_id)
        record = current.model_copy(update=partial)
        self.records[user_id] = record
        return record


class FakeUpstream:
    """
    Routes requests by ``(method, scheme://host/path)`` and records them.

    A handler is either a callable taking the request or a
    ``(status, json_body)`` tuple; ``json_body=None`` sends no body.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler) -> None:
        self.routes[(method.upper(), url)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}")
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {key}"})
        if callable(handler):
            return handler(request)
        status, body = handler
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def count(self, url_prefix: str = "") -> int:
        return sum(1 for r in self.requests if str(r.url).startswith(url_prefix))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        encryption_key=TEST_KEY,
        oauth_state_secret="test-state-secret",
        oauth_redirect_base="http://localhost:8000",
        app_base_url="http://ui.test",
        google_client_id="",
        google_client_secret="",
        spotify_client_id="",
        spotify_client_secret="",
        monday_account_slug="acme",
        monday_view_id="",
        monday_board_names=["Projects"],
        monday_excluded_groups={"Projects": ["Archive"]},
        default_user_id=USER_ID,
    )


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(TEST_KEY)


@pytest.fixture
def store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def http(upstream) -> httpx.AsyncClient:
    return upstream.client()


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache(ttl_seconds=300)


@pytest.fixture
def oauth(store, cipher, http, settings) -> OAuthSessionManager:
    return OAuthSessionManager(store, cipher, http, settings=settings)


@pytest.fixture
def facade(store, cipher, http, cache, oauth, settings) -> IntegrationFacade:
    return IntegrationFacade(store, cipher, http, cache, oauth, settings=settings, clock=lambda: NOW)
