"""Read-only tenant billing view."""

from __future__ import annotations

from fastapi import APIRouter

from billing_api.dependencies import SessionDep
from billing_api.schemas import SubscriptionSummary, TenantBillingResponse
from billing_core.billing.errors import TenantNotFoundError
from billing_core.billing.models import (
    BILLING_CYCLE_LABELS,
    PLAN_LABELS,
    STATUS_LABELS,
    AccessStatus,
    BillingCycle,
    PlanType,
    SubscriptionStatus,
    has_valid_access,
    included_users,
)
from billing_core.state.repository import SubscriptionRepository, TenantRepository

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/{tenant_id}/billing", response_model=TenantBillingResponse)
async def get_tenant_billing(tenant_id: str, session: SessionDep) -> TenantBillingResponse:
    """Access gate and current (or most recent) subscription for a tenant."""
    tenant = await TenantRepository(session).get(tenant_id)
    if tenant is None:
        raise TenantNotFoundError(tenant_id)

    summary: SubscriptionSummary | None = None
    row = await SubscriptionRepository(session).get_latest_for_tenant(tenant_id)
    if row is not None:
        plan_type = PlanType(row.plan_type)
        cycle = BillingCycle(row.billing_cycle)
        status = SubscriptionStatus(row.status)
        summary = SubscriptionSummary(
            subscription_id=row.stripe_subscription_id,
            plan_type=plan_type,
            plan_label=PLAN_LABELS[plan_type],
            billing_cycle=cycle,
            billing_cycle_label=BILLING_CYCLE_LABELS[cycle],
            status=status,
            status_label=STATUS_LABELS[status],
            extra_users_count=row.extra_users_count,
            included_users=included_users(plan_type, row.extra_users_count),
            activated_at=row.activated_at,
            current_period_end=row.current_period_end,
        )

    return TenantBillingResponse(
        tenant_id=tenant.id,
        access_status=AccessStatus(tenant.access_status),
        has_paid_entry_fee=tenant.has_paid_entry_fee,
        has_valid_access=has_valid_access(tenant),
        stripe_customer_id=tenant.stripe_customer_id,
        subscription=summary,
    )
