"""Shared fixtures for billing_core tests.

Every test that touches the database gets a fresh SQLite file under
``tmp_path`` with all tables created.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from billing_core.state.database import create_tables, get_session_factory
from billing_core.state.repository import TenantRepository
from billing_core.state.sqlite_adapter import get_local_engine
from billing_core.state.tables import TenantTable


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = get_local_engine(tmp_path / "billing.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory(engine)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def make_tenant(session: AsyncSession) -> Callable[..., Awaitable[TenantTable]]:
    """Return an async factory that inserts and commits a tenant."""

    async def _make(
        tenant_id: str = "tenant-1",
        *,
        paid: bool = True,
        customer_id: str | None = "cus_123",
        access_status: str = "pending_payment",
    ) -> TenantTable:
        repo = TenantRepository(session)
        tenant = await repo.create(tenant_id, name=f"Tenant {tenant_id}", has_paid_entry_fee=paid)
        if customer_id:
            await repo.set_customer_id(tenant, customer_id)
        tenant.access_status = access_status
        await session.commit()
        return tenant

    return _make


def stripe_subscription(
    subscription_id: str = "sub_123",
    status: str = "active",
    *,
    tenant_id: str | None = "tenant-1",
    customer: str = "cus_123",
    items: list[dict[str, Any]] | None = None,
    current_period_end: int | None = 1_767_225_600,
    **metadata: str,
) -> dict[str, Any]:
    """Build a Stripe subscription object as delivered in webhook payloads."""
    meta = dict(metadata)
    if tenant_id is not None:
        meta["tenant_id"] = tenant_id
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "metadata": meta,
        "current_period_end": current_period_end,
        "items": {"object": "list", "data": items or []},
    }


@pytest.fixture()
def subscription_payload() -> Callable[..., dict[str, Any]]:
    return stripe_subscription
