"""Shared fixtures for proxy tests."""

import json

import pytest
from fastapi.testclient import TestClient

from relay.app.core.config import RateLimitProfile, Settings
from relay.app.main import create_app

GROQ_CHAT_PATH = "/api.groq.com/openai/v1/chat/completions"
GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"


def chat_body(*contents: str) -> bytes:
    return json.dumps(
        {"model": "llama3", "messages": [{"role": "user", "content": c} for c in contents]}
    ).encode()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def make_client():
    """Build a TestClient around a freshly constructed app.

    Every app owns its own usage counters, so tests never share quota.
    """
    clients = []

    def _make(**overrides) -> TestClient:
        config = Settings(_env_file=None, **overrides)
        client = TestClient(create_app(config), raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def small_profile() -> RateLimitProfile:
    return RateLimitProfile(
        name="small",
        path_marker="api.groq.com",
        requests_per_window=3,
        tokens_per_window=10,
    )
