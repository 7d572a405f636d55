"""
Unit tests for the security service composition and routes.
"""

import pydantic
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from homebase_shared.config import DEV_CSRF_SECRET, get_settings
from service_security.app.main import SecurityService, build_counter_store
from service_security.app.ratelimit import InMemoryCounterStore, PostgresCounterStore, RedisCounterStore


AUTH_HEADERS = {"Authorization": "Bearer token-user-1"}


@pytest.fixture
def settings():
    return get_settings(env="test", csrf_secret="service-test-secret")


@pytest.fixture
def service(settings, authenticator):
    return SecurityService(settings, authenticator=authenticator, counter_store=InMemoryCounterStore())


@pytest.fixture
def client(service):
    return TestClient(service.app)


class TestSettings:

    def test_defaults(self):
        settings = get_settings(env="test")
        assert settings.rate_limit_backend == "memory"
        assert settings.csrf_token_max_age_seconds == 86400
        assert settings.monitor_capacity == 1000

    def test_dev_secret_rejected_outside_local(self):
        with pytest.raises(pydantic.ValidationError):
            get_settings(env="production")

    def test_real_secret_accepted_in_production(self):
        settings = get_settings(env="production", csrf_secret="s3cr3t")
        assert settings.csrf_secret.get_secret_value() == "s3cr3t"

    def test_unknown_backend_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            get_settings(env="test", rate_limit_backend="memcached")

    def test_dev_secret_allowed_locally(self):
        assert get_settings(env="local").csrf_secret.get_secret_value() == DEV_CSRF_SECRET

    @pytest.mark.parametrize("backend,store_type", [
        ("memory", InMemoryCounterStore),
        ("redis", RedisCounterStore),
        ("postgres", PostgresCounterStore),
    ])
    def test_build_counter_store(self, backend, store_type):
        settings = get_settings(env="test", rate_limit_backend=backend)
        assert isinstance(build_counter_store(settings), store_type)


class TestSecurityService:
    """Test cases for SecurityService."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "security"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"counter_store": "ok"}

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_metrics_endpoint(self, client):
        client.get("/api/csrf-token")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "gateway_rejections_total" in response.text
        assert "http_requests_total" in response.text

    def test_csrf_token_requires_identity(self, client):
        assert client.get("/api/csrf-token").status_code == 401

    def test_csrf_token_is_read_only(self, client):
        assert client.post("/api/csrf-token", headers=AUTH_HEADERS).status_code == 405

    def test_issue_csrf_token(self, client, service):
        response = client.get("/api/csrf-token", headers=AUTH_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["expiresAt"].endswith("Z")
        assert service.csrf_service.validate(data["csrfToken"], "user-1")

    def test_bills_round_trip(self, client):
        token = client.get("/api/csrf-token", headers=AUTH_HEADERS).json()["csrfToken"]

        response = client.post(
            "/api/bills",
            headers={**AUTH_HEADERS, "X-CSRF-Token": token},
            json={"name": "Water", "amount": 42},
        )

        assert response.status_code == 200
        assert response.json()["bill"] == {"name": "Water", "amount": 42}
        assert response.headers["X-RateLimit-Limit"] == "20"

    def test_bills_rejects_without_token(self, client):
        assert client.post("/api/bills", headers=AUTH_HEADERS, json={}).status_code == 403

    def test_security_events(self, client):
        client.get("/api/bills")
        client.post("/api/bills", headers=AUTH_HEADERS)

        response = client.get("/api/security/events", headers=AUTH_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [e["type"] for e in data["events"]] == ["csrf_failure", "unauthorized_access"]

    def test_security_events_filters(self, client):
        client.get("/api/bills")
        client.post("/api/bills", headers=AUTH_HEADERS)

        by_type = client.get("/api/security/events?type=unauthorized_access", headers=AUTH_HEADERS).json()
        by_severity = client.get("/api/security/events?severity=high", headers=AUTH_HEADERS).json()

        assert [e["type"] for e in by_type["events"]] == ["unauthorized_access"]
        assert by_severity["count"] == 2

    def test_security_events_limit_capped(self, client, service):
        for _ in range(150):
            service.monitor.log_rate_limit_exceeded("user-1", "/api/bills", None)

        data = client.get("/api/security/events?limit=500", headers=AUTH_HEADERS).json()

        assert data["count"] == 100

    @pytest.mark.parametrize("query", ["limit=abc", "limit=0", "type=bogus", "severity=extreme"])
    def test_security_events_bad_query(self, client, query):
        response = client.get(f"/api/security/events?{query}", headers=AUTH_HEADERS)
        assert response.status_code == 400

    def test_security_metrics(self, client):
        client.get("/api/bills")

        data = client.get("/api/security/metrics", headers=AUTH_HEADERS).json()

        assert data["total_events"] == 1
        assert data["events_by_type"] == {"unauthorized_access": 1}
        assert data["recent_activity"] == 1


class TestServiceLifecycle:

    def test_startup_prepares_counter_store(self, settings, authenticator):
        store = InMemoryCounterStore()
        store.start = AsyncMock()
        store.close = AsyncMock()
        service = SecurityService(settings, authenticator=authenticator, counter_store=store)

        with TestClient(service.app):
            store.start.assert_awaited_once()

        store.close.assert_awaited_once()
