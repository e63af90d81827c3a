"""Tests for ``GET /api/v1/tenants/{tenant_id}/billing``."""

from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_unknown_tenant_404(client):
    response = await client.get("/api/v1/tenants/nope/billing")
    assert response.status_code == 404
    assert response.json()["code"] == "tenant_not_found"


@pytest.mark.asyncio
async def test_tenant_without_subscription(client, seed_tenant):
    await seed_tenant(paid=False, customer_id=None)
    response = await client.get("/api/v1/tenants/tenant-1/billing")
    assert response.status_code == 200
    body = response.json()
    assert body["access_status"] == "pending_payment"
    assert body["has_paid_entry_fee"] is False
    assert body["has_valid_access"] is False
    assert body["stripe_customer_id"] is None
    assert body["subscription"] is None


@pytest.mark.asyncio
async def test_tenant_with_active_subscription(client, seed_tenant, send_event, event_factory, subscription_factory):
    await seed_tenant()
    sub = subscription_factory(status="active")
    sub["metadata"].update({"plan_type": "premium", "billing_cycle": "monthly"})
    seat = {"price": {"id": "price_seat_m"}, "quantity": 1, "metadata": {"line_item_role": "extra_seat"}}
    sub["items"]["data"] = [seat]
    assert (await send_event(event_factory("evt_1", "customer.subscription.created", sub))).status_code == 200

    response = await client.get("/api/v1/tenants/tenant-1/billing")

    body = response.json()
    assert body["has_valid_access"] is True
    summary = body["subscription"]
    assert summary["subscription_id"] == "sub_123"
    assert summary["plan_type"] == "premium"
    assert summary["status"] == "active"
    assert summary["extra_users_count"] == 1
    assert summary["included_users"] == 4
    assert summary["activated_at"] is not None


@pytest.mark.asyncio
async def test_canceled_subscription_still_reported(
    client, seed_tenant, send_event, event_factory, subscription_factory
):
    await seed_tenant()
    await send_event(event_factory("evt_1", "customer.subscription.created", subscription_factory()))
    await send_event(event_factory("evt_2", "customer.subscription.deleted", subscription_factory(status="canceled")))

    body = (await client.get("/api/v1/tenants/tenant-1/billing")).json()

    assert body["access_status"] == "suspended"
    assert body["has_valid_access"] is False
    assert body["subscription"]["status"] == "canceled"


@pytest.mark.asyncio
async def test_requires_service_token(app, seed_tenant):
    from httpx import ASGITransport, AsyncClient

    await seed_tenant()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as anonymous:
        response = await anonymous.get("/api/v1/tenants/tenant-1/billing")
    assert response.status_code == 401
