"""Tests for service-token authentication and request logging middleware."""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from billing_api.dependencies import get_gateway, get_notifier, get_session_factory, get_settings
from billing_api.main import create_app
from billing_api.middleware.auth import _is_public_path
from billing_api.middleware.logging import CORRELATION_HEADER


@pytest_asyncio.fixture()
async def anonymous(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# ServiceTokenMiddleware
# ---------------------------------------------------------------------------


class TestServiceToken:
    @pytest.mark.parametrize(
        "path",
        ["/api/v1/stripe/webhook", "/api/v1/health", "/api/v1/health/", "/ready", "/metrics", "/docs"],
    )
    def test_public_paths(self, path):
        assert _is_public_path(path)

    @pytest.mark.parametrize("path", ["/api/v1/stripe/create-customer", "/api/v1/tenants/t1/billing", "/"])
    def test_protected_paths(self, path):
        assert not _is_public_path(path)

    @pytest.mark.asyncio
    async def test_missing_header_401(self, anonymous):
        response = await anonymous.get("/api/v1/stripe/plans")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_wrong_scheme_401(self, anonymous):
        response = await anonymous.get("/api/v1/stripe/plans", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert response.status_code == 401
        assert "Bearer" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_wrong_token_401(self, anonymous):
        response = await anonymous.get("/api/v1/stripe/plans", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid service token"

    @pytest.mark.asyncio
    async def test_valid_token_passes(self, client):
        response = await client.get("/api/v1/stripe/plans")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_health_is_public(self, anonymous):
        response = await anonymous.get("/api/v1/health")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_empty_token_disables_check(self, test_settings, session_factory, mock_gateway, mock_notifier):
        settings = test_settings.model_copy(update={"service_token": SecretStr("")})
        application = create_app(settings)
        application.dependency_overrides[get_settings] = lambda: settings
        application.dependency_overrides[get_session_factory] = lambda: session_factory
        application.dependency_overrides[get_gateway] = lambda: mock_gateway
        application.dependency_overrides[get_notifier] = lambda: mock_notifier

        async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as ac:
            response = await ac.get("/api/v1/stripe/plans")
        assert response.status_code == 200


# ---------------------------------------------------------------------------
# RequestLoggingMiddleware
# ---------------------------------------------------------------------------


class TestRequestLogging:
    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, client):
        response = await client.get("/api/v1/health", headers={CORRELATION_HEADER: "corr-123"})
        assert response.headers[CORRELATION_HEADER] == "corr-123"

    @pytest.mark.asyncio
    async def test_correlation_id_generated(self, client):
        response = await client.get("/api/v1/health")
        assert len(response.headers[CORRELATION_HEADER]) == 36

    @pytest.mark.asyncio
    async def test_sensitive_headers_masked(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="billing_api.access"):
            await client.get("/api/v1/health", headers={"Stripe-Signature": "t=1,v1=abc"})

        records = [r for r in caplog.records if r.name == "billing_api.access"]
        assert records
        headers = records[-1].request["headers"]
        assert headers["authorization"] == "***"
        assert headers["stripe-signature"] == "***"

    @pytest.mark.asyncio
    async def test_client_errors_logged_as_warning(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="billing_api.access"):
            await client.get("/api/v1/tenants/missing/billing")

        record = [r for r in caplog.records if r.name == "billing_api.access"][-1]
        assert record.levelno == logging.WARNING
        assert record.request["status_code"] == 404
