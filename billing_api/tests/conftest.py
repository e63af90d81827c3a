"""Shared fixtures for billing API tests.

Provides a real SQLite-backed session factory, a mocked payment gateway,
an httpx client bound to the app, and helpers to sign Stripe webhook
payloads.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, Response
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Configure the environment BEFORE importing application modules; the module
# level ``app`` in billing_api.main reads settings at import time.
_WEBHOOK_SECRET = "whsec_test_secret"
_SERVICE_TOKEN = "test-service-token"
os.environ.setdefault("BILLING_ENV", "dev")
os.environ.setdefault("BILLING_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from billing_api.config import APISettings
from billing_api.dependencies import get_gateway, get_notifier, get_session_factory, get_settings
from billing_api.main import create_app
from billing_core.state.database import create_tables, get_session_factory as make_session_factory
from billing_core.state.repository import TenantRepository
from billing_core.state.sqlite_adapter import get_local_engine
from billing_core.state.tables import TenantTable

AUTH_HEADERS: dict[str, str] = {"Authorization": f"Bearer {_SERVICE_TOKEN}"}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> APISettings:
    """Settings with Stripe test-mode credentials and price ids configured."""
    return APISettings(
        env="dev",
        database_url="sqlite+aiosqlite:///:memory:",
        stripe_mode="test",
        stripe_secret_key_test=SecretStr("sk_test_dummy"),
        stripe_webhook_secret_test=SecretStr(_WEBHOOK_SECRET),
        stripe_price_standard_monthly_test="price_std_m",
        stripe_price_standard_yearly_test="price_std_y",
        stripe_price_premium_monthly_test="price_prem_m",
        stripe_price_premium_yearly_test="price_prem_y",
        stripe_price_extra_user_monthly_test="price_seat_m",
        stripe_price_extra_user_yearly_test="price_seat_y",
        service_token=SecretStr(_SERVICE_TOKEN),
        cors_origins=["http://localhost:3000"],
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = get_local_engine(tmp_path / "billing.db")
    await create_tables(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture()
def seed_tenant(session_factory) -> Callable[..., Awaitable[TenantTable]]:
    """Return an async factory that inserts a tenant in its own transaction."""

    async def _seed(
        tenant_id: str = "tenant-1",
        *,
        paid: bool = True,
        customer_id: str | None = "cus_123",
        access_status: str = "pending_payment",
    ) -> TenantTable:
        async with session_factory() as session:
            repo = TenantRepository(session)
            tenant = await repo.create(tenant_id, name=f"Tenant {tenant_id}", has_paid_entry_fee=paid)
            if customer_id:
                await repo.set_customer_id(tenant, customer_id)
            tenant.access_status = access_status
            await session.commit()
            return tenant

    return _seed


# ---------------------------------------------------------------------------
# Gateway and notifier
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_gateway() -> AsyncMock:
    """Payment gateway whose every call is an ``AsyncMock``."""
    gateway = AsyncMock()
    gateway.create_customer = AsyncMock(return_value={"id": "cus_new"})
    gateway.create_subscription = AsyncMock(
        return_value={
            "id": "sub_new",
            "status": "incomplete",
            "current_period_end": 1_767_225_600,
            "latest_invoice": {"payment_intent": {"client_secret": "pi_secret_123"}},
        }
    )
    gateway.retrieve_subscription = AsyncMock()
    gateway.create_portal_session = AsyncMock(return_value={"url": "https://billing.stripe.test/p/session"})
    return gateway


@pytest.fixture()
def mock_notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.trial_will_end = AsyncMock()
    notifier.payment_failed = AsyncMock()
    return notifier


# ---------------------------------------------------------------------------
# Application and client
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(test_settings, session_factory, mock_gateway, mock_notifier):
    application = create_app(test_settings)
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    application.dependency_overrides[get_gateway] = lambda: mock_gateway
    application.dependency_overrides[get_notifier] = lambda: mock_notifier
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async httpx client sending the service token on every request."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=AUTH_HEADERS) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Stripe webhook helpers
# ---------------------------------------------------------------------------


def sign_payload(payload: bytes, secret: str = _WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header for *payload*."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def make_event(event_id: str, event_type: str, data_object: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": data_object},
    }


def make_subscription(
    subscription_id: str = "sub_123",
    status: str = "active",
    *,
    tenant_id: str | None = "tenant-1",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": "cus_123",
        "status": status,
        "metadata": {"tenant_id": tenant_id} if tenant_id else {},
        "current_period_end": 1_767_225_600,
        "items": {"object": "list", "data": []},
        **extra,
    }


@pytest.fixture()
def signer() -> Callable[..., str]:
    return sign_payload


@pytest.fixture()
def event_factory() -> Callable[..., dict[str, Any]]:
    return make_event


@pytest.fixture()
def subscription_factory() -> Callable[..., dict[str, Any]]:
    return make_subscription


@pytest.fixture()
def send_event(client) -> Callable[..., Awaitable[Response]]:
    """Post a signed event to the webhook endpoint.

    ``signature=None`` signs the body with the test secret; an empty string
    omits the header.
    """

    async def _send(event: dict[str, Any], *, signature: str | None = None) -> Response:
        body = json.dumps(event).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signature is None:
            headers["Stripe-Signature"] = sign_payload(body)
        elif signature:
            headers["Stripe-Signature"] = signature
        return await client.post("/api/v1/stripe/webhook", content=body, headers=headers)

    return _send
