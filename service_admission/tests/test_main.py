"""
Unit tests for the admission gateway service.
"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from service_admission.app.auth.key_client import KeyAuthClient
from service_admission.app.entitlements import InMemoryEntitlementStore
from service_admission.app.main import GatewayService
from service_admission.app.store import InMemoryCounterStore
from shared.config import get_config
from shared.errors import ConfigurationError
from shared.test_helpers import (
    CLIENT_IP,
    DEMO_KEY,
    FakeClock,
    KeyFactory,
    StubAuthenticator,
    TestEnvironment,
    entitlement_tree,
    leaf,
)


@pytest.fixture(scope="module")
def keys():
    return KeyFactory()


class TestGatewayService:
    """Test cases for GatewayService."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def config(self):
        return get_config("admission", 8020, **TestEnvironment.get_mock_config())

    @pytest.fixture
    def counter_store(self, clock):
        return InMemoryCounterStore(clock=clock.monotonic)

    @pytest.fixture
    def entitlement_store(self, clock):
        store = InMemoryEntitlementStore(clock=clock.utc)
        store.add_subscription("org-1", "plan-pro")
        store.add_template("plan-pro", entitlement_tree(**{"search.text": leaf(quota=100, rpm=2)}))
        store.add_template("DEMO", entitlement_tree(**{"search.text": leaf(rpm=1)}))
        return store

    @pytest.fixture
    def service(self, config, counter_store, entitlement_store, keys, clock):
        service = GatewayService(
            config=config,
            counter_store=counter_store,
            entitlement_store=entitlement_store,
            authenticator=StubAuthenticator(),
            cipher=keys.cipher,
            clock=clock.utc,
        )

        @service.guarded_route("/api/v1/search/{query}", "search.text")
        async def search(request, query, context):
            return {"data": {"query": query, "organization": context.organization_id}}

        @service.guarded_route("/api/v1/private/search", "search.text", key_type="private", methods=["POST"])
        async def private_search(request, context):
            return {"data": "private"}

        return service

    @pytest.fixture
    def client(self, service):
        with TestClient(service.app) as client:
            yield client

    def _headers(self, api_key=None):
        return TestEnvironment.request_headers(api_key)

    def test_health_endpoint(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "admission"
        assert data["dependencies"] == {"counter_store": "ok", "entitlement_store": "ok"}

    def test_health_reports_unreachable_store(self, client, entitlement_store):
        entitlement_store.ping = AsyncMock(return_value=False)

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["dependencies"]["entitlement_store"] == "error"

    def test_lifespan_connects_stores(self, service, counter_store):
        with TestClient(service.app):
            assert counter_store.connected is True
        assert counter_store.connected is False

    def test_api_status(self, client):
        response = client.get("/api/v1/status")

        assert response.status_code == 200
        assert response.json()["demo_enabled"] is True
        assert "key_auth_circuit" not in response.json()

    def test_api_status_reports_key_auth_circuit(self, config, counter_store, entitlement_store, keys):
        service = GatewayService(
            config=config,
            counter_store=counter_store,
            entitlement_store=entitlement_store,
            authenticator=KeyAuthClient("http://auth.test"),
            cipher=keys.cipher,
        )

        with TestClient(service.app) as client:
            response = client.get("/api/v1/status")

        assert response.json()["key_auth_circuit"]["state"] == "closed"
        assert response.json()["key_auth_circuit"]["name"] == "key_auth_service"

    def test_guarded_route_admits(self, client, keys):
        response = client.get("/api/v1/search/cats", headers=self._headers(keys.issue("org-1")))

        assert response.status_code == 200
        assert response.json() == {"data": {"query": "cats", "organization": "org-1"}}
        assert response.headers["X-RateLimit-Resource"] == "search.text"
        assert response.headers["X-RateLimit-Quota-Limit"] == "100"
        assert response.headers["X-RateLimit-Quota-Remaining"] == "99"
        assert response.headers["X-RateLimit-RPM-Remaining"] == "1"
        assert "X-Request-ID" in response.headers

    def test_guarded_route_rate_limits(self, client, keys):
        api_key = keys.issue("org-1")
        for _ in range(2):
            assert client.get("/api/v1/search/cats", headers=self._headers(api_key)).status_code == 200

        response = client.get("/api/v1/search/cats", headers=self._headers(api_key))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json() == {"error": 'RPM limit exceeded for "search.text" (3/2 used).'}

    def test_missing_key(self, client):
        response = client.get("/api/v1/search/cats", headers={"X-Forwarded-For": CLIENT_IP})

        assert response.status_code == 401
        assert response.json() == {"error": "API key missing."}

    def test_demo_on_private_route(self, client, entitlement_store):
        response = client.post("/api/v1/private/search", headers=self._headers(DEMO_KEY))

        assert response.status_code == 400
        assert entitlement_store.calls == []

    def test_demo_on_public_route(self, client):
        response = client.get("/api/v1/search/dogs", headers=self._headers(DEMO_KEY))

        assert response.status_code == 200
        assert response.json()["data"]["organization"] == "org-demo"
        assert "X-RateLimit-Quota-Limit" not in response.headers

    def test_metrics_endpoint(self, client, keys):
        client.get("/api/v1/search/cats", headers=self._headers(keys.issue("org-1")))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "admission_decisions_total" in response.text
        assert "plan_cache_lookups_total" in response.text

    def test_missing_encryption_secret(self, counter_store, entitlement_store):
        config = get_config("admission", 8020, env="test", key_encryption_secret=None)

        with pytest.raises(ConfigurationError):
            GatewayService(
                config=config,
                counter_store=counter_store,
                entitlement_store=entitlement_store,
                authenticator=StubAuthenticator(),
            )
