"""Shared test fixtures and configuration for backend tests."""
import asyncio
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient

from roomchat.auth.service import Identity
from roomchat.chat.engine import ChatEngine
from roomchat.chat.errors import AuthError
from roomchat.chat.models import Session
from roomchat.config import AppConfig, ChatSettings
from roomchat.main import create_app


TEST_SECRET = "test-secret-key"


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(secrets={"jwt": {"secret_key": TEST_SECRET}})


@pytest.fixture
def api_client(app_config):
    """Provide a TestClient for a fresh app, with the lifespan running.

    Each test gets its own ChatEngine and user directory.
    """
    with TestClient(create_app(app_config)) as client:
        yield client


def register_user(client: TestClient, username: str, password: str = "secret") -> dict:
    """Register through the REST API and return ``{token, user}``."""
    resp = client.post("/api/register", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Direct engine fixtures
# ---------------------------------------------------------------------------


class TokenTable:
    """Verifier for engine tests: a token is valid iff it is in the table."""

    def __init__(self) -> None:
        self.identities: Dict[str, Identity] = {}

    def add(self, user_id: str, username: str) -> str:
        token = f"token-{user_id}"
        self.identities[token] = Identity(user_id=user_id, username=username)
        return token

    def verify(self, token):
        identity = self.identities.get(token)
        if identity is None:
            raise AuthError("Invalid token")
        return identity


@pytest.fixture
def tokens() -> TokenTable:
    table = TokenTable()
    for name in ("alice", "bob", "carol", "dave"):
        table.add(name, name.capitalize())
    return table


@pytest.fixture
def chat_settings() -> ChatSettings:
    return ChatSettings()


@pytest.fixture
def engine(tokens, chat_settings) -> ChatEngine:
    return ChatEngine(tokens, chat_settings)


def drain(session: Session) -> List[dict]:
    """Pop every queued outbound event from a session without waiting."""
    events = []
    while True:
        try:
            item = session.outbox.get_nowait()
        except asyncio.QueueEmpty:
            return events
        if item is not None:
            events.append(item)


def events_named(events: List[dict], name: str) -> List[dict]:
    return [e["data"] for e in events if e["event"] == name]
