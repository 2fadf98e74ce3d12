"""HTTP-level tests for RealtyDesk admission control."""
from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from realtydesk.api.main import create_app
from realtydesk.core.config import Settings
from realtydesk.security.rate_limiter import FixedWindowRateLimiter
from realtydesk.telemetry.events import TelemetryClient, TelemetryEvent

API_KEY = "test-key"
CLIENT_IP = {"X-Forwarded-For": "203.0.113.7"}


def build_settings(**overrides) -> Settings:
    return Settings(_env_file=None, api_keys=[API_KEY], **overrides)


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter(clock=clock)


@pytest.fixture
def client(limiter):
    app = create_app(build_settings(), limiter=limiter)
    with TestClient(app) as test_client:
        yield test_client


class TestEdgeRateLimiting:
    def test_admitted_response_carries_quota_headers(self, client):
        response = client.get("/api/auth/whoami", headers=CLIENT_IP)

        assert response.status_code == 200
        assert response.json() == {"authenticated": False, "identifier": "203.0.113.7"}
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"
        assert "X-RateLimit-Reset" in response.headers

    def test_auth_routes_block_after_ceiling(self, client):
        for _ in range(5):
            assert client.get("/api/auth/whoami", headers=CLIENT_IP).status_code == 200

        response = client.get("/api/auth/whoami", headers=CLIENT_IP)

        assert response.status_code == 429
        assert response.json()["error"] == "Rate limit exceeded"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) >= 0

    def test_other_ips_are_unaffected(self, client):
        for _ in range(6):
            client.get("/api/auth/whoami", headers=CLIENT_IP)

        response = client.get("/api/auth/whoami", headers={"X-Forwarded-For": "203.0.113.8"})
        assert response.status_code == 200

    def test_authenticated_caller_gets_doubled_general_limit(self, client):
        response = client.get("/api/v1/rate-limits", headers={**CLIENT_IP, "X-RealtyDesk-Key": API_KEY})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "400"
        assert {"name": "chat", "windowMs": 60000, "maxRequests": 30} in response.json()["policies"]

    def test_anonymous_caller_gets_base_general_limit(self, client):
        response = client.get("/api/v1/rate-limits", headers=CLIENT_IP)

        assert response.status_code == 401
        assert response.headers["X-RateLimit-Limit"] == "200"

    def test_whoami_reports_api_key_identity(self, client):
        response = client.get("/api/auth/whoami", headers={**CLIENT_IP, "X-RealtyDesk-Key": API_KEY})

        body = response.json()
        assert body["authenticated"] is True
        assert body["identifier"].startswith("key:")

    def test_chat_routes_use_chat_policy(self, client):
        response = client.get("/api/chat/messages", headers=CLIENT_IP)
        assert response.headers["X-RateLimit-Limit"] == "30"

    def test_non_api_routes_use_route_bucket(self, client, limiter):
        response = client.get("/health", headers=CLIENT_IP)

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        assert limiter.store["route:203.0.113.7"].count == 1

    def test_root_blocks_after_api_ceiling(self, client):
        for _ in range(100):
            assert client.get("/", headers=CLIENT_IP).status_code == 200

        response = client.get("/", headers=CLIENT_IP)
        assert response.status_code == 429
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["Retry-After"] == "60"

    def test_edge_denial_retry_after_follows_limiter_clock(self, client):
        for _ in range(5):
            client.get("/api/auth/whoami", headers=CLIENT_IP)

        response = client.get("/api/auth/whoami", headers=CLIENT_IP)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "900"


class TestPolicyIsolation:
    """Each named policy keeps its own bucket for the same caller."""

    def test_general_traffic_does_not_consume_auth_quota(self, client):
        for _ in range(5):
            client.get("/api/v1/rate-limits", headers=CLIENT_IP)

        response = client.get("/api/auth/whoami", headers=CLIENT_IP)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_auth_traffic_does_not_stretch_general_window(self, client, limiter, clock):
        client.get("/api/auth/whoami", headers=CLIENT_IP)
        response = client.get("/api/v1/rate-limits", headers=CLIENT_IP)

        assert response.headers["X-RateLimit-Limit"] == "200"
        assert response.headers["X-RateLimit-Remaining"] == "199"
        assert limiter.store["general_api:203.0.113.7"].reset_at == clock.now + 60000
        assert limiter.store["auth:203.0.113.7"].reset_at == clock.now + 900000

    def test_chat_and_general_buckets_are_separate(self, client, limiter):
        client.get("/api/chat/messages", headers=CLIENT_IP)
        client.get("/api/v1/rate-limits", headers=CLIENT_IP)

        assert limiter.store["chat:203.0.113.7"].count == 1
        assert limiter.store["general_api:203.0.113.7"].count == 1


def test_disabled_rate_limiting_skips_api_routes(limiter):
    app = create_app(build_settings(rate_limit_enabled=False), limiter=limiter)
    with TestClient(app) as client:
        response = client.get("/api/auth/whoami", headers=CLIENT_IP)

    assert response.status_code == 200
    assert "X-RateLimit-Limit" not in response.headers
    assert len(limiter) == 0


def test_shutdown_clears_store(limiter):
    app = create_app(build_settings(), limiter=limiter)
    with TestClient(app) as client:
        client.get("/api/auth/whoami", headers=CLIENT_IP)
        assert len(limiter) > 0

    assert len(limiter) == 0


def test_settings_split_comma_separated_keys():
    settings = Settings(_env_file=None, api_keys="alpha, beta,,")
    assert settings.api_keys == ["alpha", "beta"]


def test_telemetry_does_not_queue_without_endpoint():
    telemetry = TelemetryClient(Settings(_env_file=None))

    asyncio.run(telemetry.record(TelemetryEvent(name="security.rate_limit_exceeded")))

    assert telemetry.forwarding is False
    assert telemetry._events.qsize() == 0


class TestSettingsFromEnvironment:
    def test_comma_separated_values(self, monkeypatch):
        monkeypatch.setenv("API_KEYS", "alpha,beta")
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example")

        settings = Settings(_env_file=None)

        assert settings.api_keys == ["alpha", "beta"]
        assert settings.allowed_origins == ["https://a.example", "https://b.example"]

    def test_json_list_values(self, monkeypatch):
        monkeypatch.setenv("API_KEYS", '["alpha", "beta"]')

        assert Settings(_env_file=None).api_keys == ["alpha", "beta"]

    def test_app_builds_from_environment(self, monkeypatch, limiter):
        monkeypatch.setenv("API_KEYS", "alpha,beta")

        app = create_app(Settings(_env_file=None), limiter=limiter)
        with TestClient(app) as client:
            response = client.get("/api/auth/whoami", headers={**CLIENT_IP, "X-RealtyDesk-Key": "beta"})

        assert response.json()["authenticated"] is True
