import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from billing_sync.billing.dependencies import build_billing_services, get_billing_services
from billing_sync.billing.store import InMemorySubscriptionStore
from billing_sync.config import settings
from billing_sync.main import app
from tests.helpers.fakes import WEBHOOK_SECRET, FakeProcessor, StaticIdentityProvider


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@pytest.fixture
def store():
    return InMemorySubscriptionStore()


@pytest.fixture
def identity():
    return StaticIdentityProvider()


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def billing_services(store, identity, processor, monkeypatch):
    """Billing components wired with fakes and exposed through the app's accessor."""
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    services = build_billing_services(store, processor=processor, identity=identity)
    app.dependency_overrides[get_billing_services] = lambda: services
    yield services
    app.dependency_overrides.pop(get_billing_services, None)
