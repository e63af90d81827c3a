"""Subscription reconciler: make local rows reflect a gateway subscription.

Every transition is a full re-derivation from the gateway's current status,
so re-ordered or repeated events converge on the same terminal state.  The
subscription write runs inside a SAVEPOINT; the tenant access write always
runs last, after the subscription write was attempted.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_core.billing.errors import ReconciliationIncompleteError
from billing_core.billing.line_items import count_extra_seats, subscription_items
from billing_core.billing.models import (
    AccessStatus,
    BillingCycle,
    PlanType,
    SubscriptionStatus,
    coerce_enum,
)
from billing_core.billing.status_mapper import grants_access, map_gateway_status
from billing_core.state.repository import SubscriptionRepository, TenantRepository
from billing_core.state.tables import SubscriptionTable, TenantTable

logger = logging.getLogger(__name__)

TENANT_METADATA_KEY = "tenant_id"


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    tenant_id: str | None = None
    subscription_id: str | None = None
    status: SubscriptionStatus | None = None
    access_status: AccessStatus | None = None

    @classmethod
    def skipped(cls, tenant_id: str | None = None) -> ReconcileResult:
        return cls(ReconcileOutcome.SKIPPED, tenant_id=tenant_id)


def tenant_reference(obj: Mapping[str, Any]) -> str | None:
    """Return the tenant id carried in a gateway object's metadata."""
    metadata = obj.get("metadata") or {}
    value = metadata.get(TENANT_METADATA_KEY)
    return str(value) if value else None


def resolve_access(access: AccessStatus, has_paid_entry_fee: bool) -> AccessStatus:
    """Apply the entry-fee rule to an access decision.

    A tenant that has not paid the entry fee is never ``active``; an
    access-granting decision becomes ``pending_payment`` instead.
    """
    if access == AccessStatus.ACTIVE and not has_paid_entry_fee:
        return AccessStatus.PENDING_PAYMENT
    return access


def period_end(subscription: Mapping[str, Any]) -> datetime | None:
    """Current period end, from the subscription or (newer API versions) its first item."""
    ts = subscription.get("current_period_end")
    if ts is None:
        items = subscription_items(subscription)
        if items:
            ts = items[0].get("current_period_end")
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=UTC)


def _customer_id(subscription: Mapping[str, Any]) -> str | None:
    customer = subscription.get("customer")
    if isinstance(customer, Mapping):
        customer = customer.get("id")
    return str(customer) if customer else None


class SubscriptionReconciler:
    """Apply gateway subscription state to the ``subscriptions`` and ``tenants`` rows.

    Parameters
    ----------
    session:
        Active database session.  The reconciler flushes; the caller commits.
    seat_price_ids:
        Configured extra-seat price ids, used to count seats on items that
        carry no role tag.
    """

    def __init__(self, session: AsyncSession, seat_price_ids: Iterable[str] = ()) -> None:
        self._session = session
        self._tenants = TenantRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._seat_price_ids = frozenset(seat_price_ids)

    async def reconcile(self, subscription: Mapping[str, Any]) -> ReconcileResult:
        """Re-derive local state from a gateway subscription object.

        Raises
        ------
        ReconciliationIncompleteError
            If the subscription write failed.  The tenant access write has
            still been flushed and should be committed by the caller.
        """
        external_id = subscription.get("id")
        tenant_id = tenant_reference(subscription)
        if tenant_id is None:
            logger.warning("Subscription %s carries no tenant reference; nothing to reconcile", external_id)
            return ReconcileResult.skipped()

        tenant = await self._tenants.get(tenant_id, for_update=True)
        if tenant is None:
            logger.warning("Subscription %s references unknown tenant %s", external_id, tenant_id)
            return ReconcileResult.skipped(tenant_id)

        decision = map_gateway_status(subscription.get("status"))
        extra_seats = count_extra_seats(subscription_items(subscription), self._seat_price_ids)

        async def _write() -> SubscriptionTable:
            return await self._upsert_subscription(tenant, subscription, decision.internal_status, extra_seats)

        row = await self._write_then_gate(tenant, _write, decision.access_status)
        logger.info(
            "Reconciled subscription %s for tenant %s: gateway=%s internal=%s",
            external_id,
            tenant_id,
            subscription.get("status"),
            decision.internal_status.value,
        )
        return ReconcileResult(
            ReconcileOutcome.APPLIED,
            tenant_id=tenant_id,
            subscription_id=row.id,
            status=decision.internal_status,
            access_status=AccessStatus(tenant.access_status),
        )

    async def cancel(self, subscription: Mapping[str, Any]) -> ReconcileResult:
        """Mark a deleted gateway subscription canceled and suspend the tenant.

        Only the row carrying the deleted subscription id is updated.  When
        there is none, a separate canceled row is recorded; the tenant's
        current row belongs to another subscription and is left alone.
        """
        external_id = subscription.get("id")
        row = await self._subscriptions.get_by_external_id(external_id) if external_id else None
        tenant_id = row.tenant_id if row is not None else tenant_reference(subscription)
        if tenant_id is None:
            logger.warning("Deleted subscription %s matches no tenant; ignoring", external_id)
            return ReconcileResult.skipped()

        tenant = await self._tenants.get(tenant_id, for_update=True)
        if tenant is None:
            logger.warning("Deleted subscription %s references unknown tenant %s", external_id, tenant_id)
            return ReconcileResult.skipped(tenant_id)

        async def _write() -> SubscriptionTable:
            return await self._upsert_subscription(
                tenant,
                subscription,
                SubscriptionStatus.CANCELED,
                None,
                existing=row,
                adopt_current=False,
            )

        written = await self._write_then_gate(tenant, _write, AccessStatus.SUSPENDED)
        logger.info("Subscription %s for tenant %s canceled; access suspended", external_id, tenant_id)
        return ReconcileResult(
            ReconcileOutcome.APPLIED,
            tenant_id=tenant_id,
            subscription_id=written.id,
            status=SubscriptionStatus.CANCELED,
            access_status=AccessStatus.SUSPENDED,
        )

    async def apply_payment_failure(
        self,
        stripe_subscription_id: str | None,
        tenant_id: str | None = None,
    ) -> ReconcileResult:
        """Force ``past_due`` + ``suspended`` after a failed payment.

        Applied immediately rather than waiting for a subscription-updated
        event.  A subscription already ``canceled`` keeps its status; the
        tenant is suspended either way.
        """
        row = await self._subscriptions.get_by_external_id(stripe_subscription_id) if stripe_subscription_id else None
        if row is not None:
            tenant_id = row.tenant_id
        if tenant_id is None:
            logger.warning("Failed payment for subscription %s matches no tenant", stripe_subscription_id)
            return ReconcileResult.skipped()

        tenant = await self._tenants.get(tenant_id, for_update=True)
        if tenant is None:
            logger.warning("Failed payment references unknown tenant %s", tenant_id)
            return ReconcileResult.skipped(tenant_id)
        if row is None:
            row = await self._subscriptions.get_current_for_tenant(tenant_id)

        status: SubscriptionStatus | None = None
        if row is not None:
            status = SubscriptionStatus(row.status)
            if status != SubscriptionStatus.CANCELED:
                status = SubscriptionStatus.PAST_DUE
                await self._subscriptions.update(row, status=status.value)

        await self._tenants.set_access_status(tenant, AccessStatus.SUSPENDED.value)
        logger.warning(
            "Payment failed for tenant %s (subscription %s): access suspended",
            tenant_id,
            stripe_subscription_id,
        )
        return ReconcileResult(
            ReconcileOutcome.APPLIED,
            tenant_id=tenant_id,
            subscription_id=row.id if row is not None else None,
            status=status,
            access_status=AccessStatus.SUSPENDED,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write_then_gate(
        self,
        tenant: TenantTable,
        write: Callable[[], Awaitable[SubscriptionTable]],
        access: AccessStatus,
    ) -> SubscriptionTable:
        tenant_id = tenant.id
        failure: SQLAlchemyError | None = None
        row: SubscriptionTable | None = None
        try:
            async with self._session.begin_nested():
                row = await write()
        except SQLAlchemyError as exc:
            failure = exc
            logger.error("Subscription write failed for tenant %s: %s", tenant_id, exc, exc_info=True)
            await self._session.refresh(tenant)

        effective = resolve_access(access, tenant.has_paid_entry_fee)
        if effective != access:
            logger.warning(
                "Tenant %s has not paid the entry fee; access held at %s",
                tenant_id,
                effective.value,
            )
        await self._tenants.set_access_status(tenant, effective.value)

        if failure is not None or row is None:
            raise ReconciliationIncompleteError(
                f"Subscription state for tenant {tenant_id} was not persisted; access set to {effective.value}"
            ) from failure
        return row

    async def _upsert_subscription(
        self,
        tenant: TenantTable,
        subscription: Mapping[str, Any],
        status: SubscriptionStatus,
        extra_seats: int | None,
        *,
        existing: SubscriptionTable | None = None,
        adopt_current: bool = True,
    ) -> SubscriptionTable:
        external_id = subscription.get("id")
        row = existing
        if row is None and external_id:
            row = await self._subscriptions.get_by_external_id(external_id)
        if row is None and adopt_current:
            row = await self._subscriptions.get_current_for_tenant(tenant.id)

        now = datetime.now(UTC)
        ends = period_end(subscription)

        if row is not None:
            fields: dict[str, Any] = {"status": status.value}
            if external_id:
                fields["stripe_subscription_id"] = external_id
            if extra_seats is not None:
                fields["extra_users_count"] = extra_seats
            if ends is not None:
                fields["current_period_end"] = ends
            if grants_access(status) and row.activated_at is None:
                fields["activated_at"] = now
            return await self._subscriptions.update(row, **fields)

        metadata = subscription.get("metadata") or {}
        plan = coerce_enum(PlanType, metadata.get("plan_type"), PlanType.STANDARD)
        cycle = coerce_enum(BillingCycle, metadata.get("billing_cycle"), BillingCycle.MONTHLY)
        logger.info("No local subscription for %s (tenant %s); inserting", external_id, tenant.id)
        return await self._subscriptions.add(
            tenant_id=tenant.id,
            stripe_customer_id=_customer_id(subscription) or tenant.stripe_customer_id or "",
            stripe_subscription_id=external_id,
            plan_type=plan.value,
            billing_cycle=cycle.value,
            extra_users_count=extra_seats or 0,
            status=status.value,
            activated_at=now if grants_access(status) else None,
            current_period_end=ends,
        )
