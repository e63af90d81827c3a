"""Repository classes providing CRUD access to the billing state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_core.billing.errors import EventAlreadyProcessedError
from billing_core.state.tables import ProcessedEventTable, SubscriptionTable, TenantTable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# TenantRepository
# ---------------------------------------------------------------------------


class TenantRepository:
    """CRUD operations for the ``tenants`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, tenant_id: str, *, for_update: bool = False) -> TenantTable | None:
        """Fetch a tenant by id.

        With ``for_update=True`` the row is locked until the transaction ends
        (``SELECT ... FOR UPDATE`` on PostgreSQL; ignored by SQLite, which
        serializes writers anyway).
        """
        stmt = select(TenantTable).where(TenantTable.id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_customer_id(self, stripe_customer_id: str) -> TenantTable | None:
        result = await self._session.execute(
            select(TenantTable).where(TenantTable.stripe_customer_id == stripe_customer_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        tenant_id: str,
        *,
        name: str,
        email: str | None = None,
        has_paid_entry_fee: bool = False,
    ) -> TenantTable:
        """Register a new tenant in ``pending_payment``.

        Raises
        ------
        ValueError
            If the tenant already exists.
        """
        row = TenantTable(
            id=tenant_id,
            name=name,
            email=email,
            has_paid_entry_fee=has_paid_entry_fee,
            access_status="pending_payment",
        )
        try:
            self._session.add(row)
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            raise ValueError(f"Tenant '{tenant_id}' already exists")
        return row

    async def set_customer_id(self, tenant: TenantTable, stripe_customer_id: str) -> TenantTable:
        tenant.stripe_customer_id = stripe_customer_id
        tenant.updated_at = datetime.now(UTC)
        await self._session.flush()
        return tenant

    async def set_access_status(self, tenant: TenantTable, access_status: str) -> TenantTable:
        """Write the access gate.  Idempotent for an unchanged value."""
        if tenant.access_status != access_status:
            logger.info(
                "Tenant %s access %s -> %s",
                tenant.id,
                tenant.access_status,
                access_status,
            )
            tenant.access_status = access_status
            tenant.updated_at = datetime.now(UTC)
        await self._session.flush()
        return tenant

    async def set_entry_fee_paid(self, tenant: TenantTable, paid: bool) -> TenantTable:
        tenant.has_paid_entry_fee = paid
        tenant.updated_at = datetime.now(UTC)
        await self._session.flush()
        return tenant

    async def list_all(self) -> list[TenantTable]:
        result = await self._session.execute(select(TenantTable).order_by(TenantTable.id))
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# SubscriptionRepository
# ---------------------------------------------------------------------------


class SubscriptionRepository:
    """CRUD operations for the ``subscriptions`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_external_id(self, stripe_subscription_id: str) -> SubscriptionTable | None:
        result = await self._session.execute(
            select(SubscriptionTable).where(SubscriptionTable.stripe_subscription_id == stripe_subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_current_for_tenant(self, tenant_id: str) -> SubscriptionTable | None:
        """Return the tenant's non-canceled subscription, if any."""
        result = await self._session.execute(
            select(SubscriptionTable).where(
                SubscriptionTable.tenant_id == tenant_id,
                SubscriptionTable.status != "canceled",
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_for_tenant(self, tenant_id: str) -> SubscriptionTable | None:
        """Return the current subscription, or the most recent canceled one."""
        current = await self.get_current_for_tenant(tenant_id)
        if current is not None:
            return current
        result = await self._session.execute(
            select(SubscriptionTable)
            .where(SubscriptionTable.tenant_id == tenant_id)
            .order_by(SubscriptionTable.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: str) -> list[SubscriptionTable]:
        result = await self._session.execute(
            select(SubscriptionTable)
            .where(SubscriptionTable.tenant_id == tenant_id)
            .order_by(SubscriptionTable.created_at)
        )
        return list(result.scalars().all())

    async def add(
        self,
        *,
        tenant_id: str,
        stripe_customer_id: str,
        stripe_subscription_id: str | None,
        plan_type: str,
        billing_cycle: str,
        extra_users_count: int,
        status: str,
        activated_at: datetime | None = None,
        current_period_end: datetime | None = None,
    ) -> SubscriptionTable:
        row = SubscriptionTable(
            tenant_id=tenant_id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            plan_type=plan_type,
            billing_cycle=billing_cycle,
            extra_users_count=extra_users_count,
            status=status,
            activated_at=activated_at,
            current_period_end=current_period_end,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def update(self, row: SubscriptionTable, **fields: Any) -> SubscriptionTable:
        for name, value in fields.items():
            setattr(row, name, value)
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# ProcessedEventRepository (idempotency ledger)
# ---------------------------------------------------------------------------


class ProcessedEventRepository:
    """Append-only access to the ``processed_events`` ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def has_processed(self, event_id: str) -> bool:
        result = await self._session.execute(
            select(ProcessedEventTable.id).where(ProcessedEventTable.stripe_event_id == event_id)
        )
        return result.scalar_one_or_none() is not None

    async def mark_processed(
        self,
        event_id: str,
        event_type: str,
        payload: dict[str, Any] | None,
    ) -> ProcessedEventTable:
        """Insert the ledger row for *event_id*.

        The unique constraint on ``stripe_event_id`` decides concurrent
        deliveries.  On a violation the whole session transaction is rolled
        back, discarding any side effects written alongside it.

        Raises
        ------
        EventAlreadyProcessedError
            If another delivery already recorded *event_id*.
        """
        row = ProcessedEventTable(
            stripe_event_id=event_id,
            event_type=event_type,
            payload=payload,
        )
        try:
            self._session.add(row)
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            raise EventAlreadyProcessedError(event_id)
        return row

    async def get(self, event_id: str) -> ProcessedEventTable | None:
        result = await self._session.execute(
            select(ProcessedEventTable).where(ProcessedEventTable.stripe_event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 20) -> list[ProcessedEventTable]:
        result = await self._session.execute(
            select(ProcessedEventTable).order_by(ProcessedEventTable.processed_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
