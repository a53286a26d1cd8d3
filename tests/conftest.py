"""Shared fixtures: throwaway SQLite database, fast bcrypt, fresh singletons per test."""
from typing import Dict, List, Optional

import pytest
import yaml

from healbridge import config as config_module
from healbridge.services import database
from healbridge.services.auth_service import AuthService, reset_auth_service
from healbridge.services.copilot_service import CopilotService, reset_copilot_service
from healbridge.services.gemini_client import AIProvider, reset_ai_provider
from healbridge.services.token_service import TokenService, reset_token_service

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256-signing"


class FakeProvider(AIProvider):
    """Records every context it receives and answers from a script."""

    def __init__(self, reply: str = "Lyme disease is a tick-borne illness.", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[List[Dict[str, str]]] = []

    @property
    def is_configured(self) -> bool:
        return True

    async def generate(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture(autouse=True)
def test_config(tmp_path, monkeypatch):
    """Point the app at a per-test config and database."""
    config_file = tmp_path / "app.yaml"
    config_file.write_text(yaml.safe_dump({
        "app": {"env": "test", "log_level": "WARNING"},
        "auth": {"bcrypt_rounds": 4},
        "copilot": {"append_retries": 3, "retry_attempts": 1, "timeout_seconds": 2},
    }))
    monkeypatch.setenv("HEALBRIDGE_CONFIG", str(config_file))
    monkeypatch.setenv("JWT_SECRET_KEY", TEST_SECRET)
    monkeypatch.setenv("JWT_REFRESH_SECRET_KEY", "")
    monkeypatch.setenv("GOOGLE_AI_API_KEY", "")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'healbridge.db'}")

    config_module.reset_config()
    reset_token_service()
    reset_auth_service()
    reset_copilot_service()
    reset_ai_provider()
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_session_factory", None)

    cfg = config_module.load_config()
    yield cfg
    config_module.reset_config()


@pytest.fixture
async def db():
    await database.init_database()
    yield
    await database.close_database()


@pytest.fixture
def token_service(db) -> TokenService:
    return TokenService()


@pytest.fixture
def auth_service(token_service) -> AuthService:
    return AuthService(token_service=token_service)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def copilot(db, provider) -> CopilotService:
    return CopilotService(provider=provider)


@pytest.fixture
async def alice(auth_service) -> Dict:
    return await auth_service.register("alice@example.com", "Passw0rd!", "Alice")
