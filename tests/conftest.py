"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Force settings to use test-safe defaults before any import
os.environ.setdefault("HUB_API_KEY", "")
os.environ.setdefault("HUB_SOURCE_OWNER", "rahul-keus")
os.environ.setdefault("HUB_SOURCE_REPO", "media-hub-setup")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
from httpx import ASGITransport, AsyncClient

from hubsetup.config import Settings
from hubsetup.models.requests import HubTarget
from hubsetup.services.registry import SessionRegistry
from tests.mock_ssh import HUB_IP, MockSessionFactory, RecordingSink, capable_hub, no_sleep


@pytest.fixture
def test_settings():
    """Small retry budgets so failure paths stay quick."""
    return Settings(
        hub_connect_retry_limit=3,
        hub_connect_retry_delay_seconds=0,
        hub_command_retry_limit=3,
        hub_command_retry_delay_seconds=0,
    )


@pytest.fixture
def factory():
    """Builds mock sessions for a hub where the full setup succeeds."""
    return MockSessionFactory(configure=capable_hub)


@pytest.fixture
def registry(test_settings, factory):
    return SessionRegistry(test_settings, session_factory=factory, sleep=no_sleep)


@pytest.fixture
def target():
    return HubTarget(host=HUB_IP, username="root", password="x")


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def client(registry):
    """Async test client with the mock-backed registry injected."""
    from hubsetup.main import app as fastapi_app

    original = getattr(fastapi_app.state, "registry", None)
    fastapi_app.state.registry = registry

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Restore
    fastapi_app.state.registry = original
