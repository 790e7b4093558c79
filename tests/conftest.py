"""Pytest configuration."""

import asyncio
import json
import os
from unittest.mock import patch
from uuid import uuid4

# Ensure test environment (before anything imports app.config)
os.environ.setdefault("PW_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PW_DEBUG", "true")
os.environ.setdefault("PW_GEO_LOOKUP_URL", "")
os.environ.setdefault("PW_DELIVERY_TIMEOUT_SECONDS", "0.5")

import pytest
import pytest_asyncio

from app.core.transport import SubscriptionExpired, TransientDeliveryError, get_transport
from app.core.vapid import VapidKeys
from app.middleware.rate_limit import reset_rate_limits
from app.models.database import dispose_engine, init_models
from app.models.store import EntityStore


class FakeTransport:
    """Scripted push transport keyed by subscription endpoint.

    script[endpoint] = "expired" | "transient" | "hang" | "crash"; anything
    else (or absent) is delivered.
    """

    def __init__(self):
        self.script: dict[str, str] = {}
        self.calls: list[tuple[dict, dict]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def deliver(self, push_handle: dict, payload: str) -> None:
        self.calls.append((push_handle, json.loads(payload)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            behavior = self.script.get(push_handle.get("endpoint"))
            if behavior == "expired":
                raise SubscriptionExpired("410 Gone")
            if behavior == "transient":
                raise TransientDeliveryError("503 Service Unavailable")
            if behavior == "hang":
                await asyncio.sleep(3600)
            if behavior == "crash":
                raise RuntimeError("transport bug")
        finally:
            self.in_flight -= 1


def push_handle(endpoint: str | None = None) -> dict:
    return {
        "endpoint": endpoint or f"https://push.example.com/send/{uuid4().hex}",
        "keys": {"p256dh": "BNc-test-p256dh", "auth": "test-auth"},
    }


@pytest.fixture(autouse=True)
def _clean_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture(autouse=True)
def _fixed_vapid_keys():
    keys = VapidKeys(public_key="test-vapid-public-key", signer=None)
    with patch("app.api.accounts.get_vapid_keys", return_value=keys), \
         patch("app.api.subscribers.get_vapid_keys", return_value=keys):
        yield keys


@pytest.fixture
def transport():
    return FakeTransport()


@pytest_asyncio.fixture
async def store():
    """Fresh in-memory database for store / dispatcher tests."""
    await dispose_engine()
    await init_models()
    yield EntityStore()
    await dispose_engine()


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client(transport):
    from fastapi.testclient import TestClient
    from app.main import app

    app.dependency_overrides[get_transport] = lambda: transport
    # Lifespan creates the tables on startup and drops the engine on exit,
    # so every test gets an empty database.
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_account(client):
    def _make(email: str | None = None) -> dict:
        email = email or f"owner-{uuid4().hex[:8]}@example.com"
        resp = client.post("/api/users/register", json={"email": email})
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _make


@pytest.fixture
def make_website(client):
    def _make(api_key: str, domain: str | None = None) -> dict:
        domain = domain or f"site-{uuid4().hex[:8]}.example.com"
        resp = client.post("/api/websites/add", json={"domain": domain},
                           headers={"X-API-Key": api_key})
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _make


@pytest.fixture
def subscribe(client):
    def _subscribe(site_key: str, endpoint: str | None = None, headers: dict | None = None, **metadata) -> str:
        resp = client.post(
            "/api/subscribe",
            json={"subscription": push_handle(endpoint), "metadata": metadata},
            headers={"X-API-Key": site_key, **(headers or {})},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["subscriber_id"]
    return _subscribe
