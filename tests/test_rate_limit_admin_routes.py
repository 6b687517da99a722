"""Tests for the /admin/rate-limit endpoints."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.config import settings


@pytest.fixture
def app(make_limiter) -> FastAPI:
    return create_app(limiter=make_limiter(max_requests=100, window_ms=60_000))


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


class TestConfigEndpoints:
    def test_get_config(self, client: TestClient) -> None:
        resp = client.get("/admin/rate-limit/config")

        assert resp.status_code == 200
        assert resp.json() == {
            "window_ms": 60_000,
            "max_requests": 100,
            "message": "Too many requests, please try again later.",
        }

    def test_patch_is_partial(self, client: TestClient) -> None:
        resp = client.patch("/admin/rate-limit/config", json={"max_requests": 5})

        assert resp.status_code == 200
        assert resp.json()["max_requests"] == 5
        assert resp.json()["window_ms"] == 60_000

        assert client.get("/admin/rate-limit/config").json()["max_requests"] == 5

    def test_patch_ignores_non_positive_values(self, client: TestClient) -> None:
        resp = client.patch(
            "/admin/rate-limit/config",
            json={"max_requests": 0, "window_ms": -1, "message": "Back off"},
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "window_ms": 60_000,
            "max_requests": 100,
            "message": "Back off",
        }

    def test_patch_rejects_wrong_types(self, client: TestClient) -> None:
        resp = client.patch("/admin/rate-limit/config", json={"max_requests": "lots"})

        assert resp.status_code == 422

    def test_updated_message_is_returned_to_throttled_clients(self, client: TestClient) -> None:
        client.patch(
            "/admin/rate-limit/config",
            json={"max_requests": 1, "message": "Slow down"},
        )

        client.get("/admin/rate-limit/status")
        resp = client.get("/admin/rate-limit/status")

        assert resp.status_code == 429
        assert resp.json()["message"] == "Slow down"


class TestBackendEndpoints:
    def test_status_reports_local_backend(self, client: TestClient) -> None:
        resp = client.get("/admin/rate-limit/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["backend"] == "local"
        assert body["remote_registered"] is False
        assert body["redis_configured"] is False
        assert body["local_store"]["entries"] == 1  # this request

    def test_fallback_switches_to_local(self, app: FastAPI, client: TestClient, fake_redis) -> None:
        app.state.rate_limiter.register_remote_store(fake_redis)

        resp = client.post("/admin/rate-limit/fallback")

        assert resp.status_code == 200
        assert resp.json()["backend"] == "local"
        assert app.state.rate_limiter.backend == "local"

    def test_retry_remote_without_redis_url_conflicts(self, client: TestClient) -> None:
        resp = client.post("/admin/rate-limit/remote")

        assert resp.status_code == 409

    def test_retry_remote_reuses_existing_client(
        self,
        app: FastAPI,
        client: TestClient,
        fake_redis,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(settings.redis, "url", "redis://localhost:6379/0")
        app.state.redis_client = fake_redis

        resp = client.post("/admin/rate-limit/remote")

        assert resp.status_code == 200
        assert resp.json()["backend"] == "remote"
        assert resp.json()["redis_configured"] is True
        assert app.state.rate_limiter.remote_client is fake_redis


def test_admin_routes_are_not_mounted_when_disabled(
    make_limiter, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings.app, "admin_routes_enabled", False)
    client = TestClient(create_app(limiter=make_limiter()))

    assert client.get("/admin/rate-limit/config").status_code == 404
