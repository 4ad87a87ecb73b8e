from __future__ import annotations

import os
from collections.abc import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

# Ensure CI can import app settings without a local .env file.
_ENV_DEFAULTS = {
    "APP_ENV": "test",
    "FRONTEND_URL": "http://localhost:3000",
    "SUPABASE_URL": "https://example.supabase.co",
    "SUPABASE_ANON_KEY": "test-anon-key",
    "SUPABASE_SERVICE_ROLE_KEY": "test-service-role-key",
    "CHALLENGE_TIMEZONE": "UTC",
}
for _key, _value in _ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _value)

from habitduel.core.security import AuthContext, verify_token
from habitduel.main import app
from habitduel.routes.challenges import get_challenge_store, get_notifier
from habitduel.services.supabase_auth import clear_user_cache
from tests.fixtures.challenges import OPPONENT_ID, OWNER_ID, OUTSIDER_ID
from tests.fixtures.memory_store import MemoryChallengeStore, RecordingNotifier

TEST_ACCESS_TOKEN = "test-access-token-for-pytest-0001"


@pytest.fixture(autouse=True)
def reset_test_state() -> None:
    app.dependency_overrides.clear()
    clear_user_cache()


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def memory_store() -> MemoryChallengeStore:
    store = MemoryChallengeStore()
    store.add_profile(OWNER_ID, "alice", "https://cdn.example.com/alice.png")
    store.add_profile(OPPONENT_ID, "bob")
    store.add_profile(OUTSIDER_ID, "mallory")
    store.add_friendship(OWNER_ID, OPPONENT_ID)
    return store


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def login_as(client: TestClient) -> Callable[[str], TestClient]:
    def _login(user_id: str) -> TestClient:
        async def _override_verify_token() -> AuthContext:
            return AuthContext(user_id=user_id, access_token=TEST_ACCESS_TOKEN)

        app.dependency_overrides[verify_token] = _override_verify_token
        return client

    return _login


@pytest.fixture
def api_client(
    login_as: Callable[[str], TestClient],
    memory_store: MemoryChallengeStore,
    notifier: RecordingNotifier,
) -> TestClient:
    app.dependency_overrides[get_challenge_store] = lambda: memory_store
    app.dependency_overrides[get_notifier] = lambda: notifier
    return login_as(OWNER_ID)
