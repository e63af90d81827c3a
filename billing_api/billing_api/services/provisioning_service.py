"""Provisioning flows: create the Stripe customer and subscription for a tenant.

These run before any webhook arrives and create the local records the
reconciler later updates.  Gateway objects cannot be rolled back, so a
local persistence failure after a successful gateway call is reported as an
inconsistent state that needs a manual ``billing-engine resync``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_core.billing.errors import (
    CustomerNotProvisionedError,
    EntryFeeUnpaidError,
    InconsistentStateError,
    MissingParametersError,
    SubscriptionAlreadyActiveError,
    TenantNotFoundError,
)
from billing_core.billing.gateway import PaymentGateway, client_secret_of
from billing_core.billing.line_items import build_line_items
from billing_core.billing.models import (
    LIVE_STATUSES,
    BillingCycle,
    PlanType,
    SubscriptionStatus,
)
from billing_core.billing.reconciler import TENANT_METADATA_KEY, period_end, resolve_access
from billing_core.billing.status_mapper import grants_access, map_gateway_status
from billing_core.config import BillingSettings
from billing_core.state.repository import SubscriptionRepository, TenantRepository
from billing_core.state.tables import TenantTable

logger = logging.getLogger(__name__)


class ProvisioningService:
    """Customer, subscription and portal operations backing the provisioning API.

    Parameters
    ----------
    session:
        Active database session.  Successful flows commit it so that a
        persistence failure is detected before the response is returned.
    gateway:
        Payment gateway for the active Stripe mode.
    settings:
        Engine settings holding the price ids of the active mode.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        settings: BillingSettings,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._settings = settings
        self._tenants = TenantRepository(session)
        self._subscriptions = SubscriptionRepository(session)

    async def _require_tenant(self, tenant_id: str) -> TenantTable:
        if not tenant_id.strip():
            raise MissingParametersError("tenant_id is required")
        tenant = await self._tenants.get(tenant_id, for_update=True)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    async def create_customer(
        self,
        tenant_id: str,
        *,
        email: str,
        name: str,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create the tenant's Stripe customer, or return the existing one.

        Returns
        -------
        dict
            ``customer_id`` and ``existing`` (``True`` when no gateway call
            was made).
        """
        if not email.strip() or not name.strip():
            raise MissingParametersError("email and name are required")

        tenant = await self._require_tenant(tenant_id)
        if tenant.stripe_customer_id:
            logger.info("Tenant %s already has Stripe customer %s", tenant_id, tenant.stripe_customer_id)
            return {"customer_id": tenant.stripe_customer_id, "existing": True}

        customer = await self._gateway.create_customer(
            email=email,
            name=name,
            description=f"Billing customer for tenant {tenant_id}",
            metadata={**(metadata or {}), TENANT_METADATA_KEY: tenant_id},
        )
        customer_id = str(customer["id"])

        try:
            await self._tenants.set_customer_id(tenant, customer_id)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.critical(
                "INCONSISTENT STATE: Stripe customer %s created for tenant %s but not persisted: %s",
                customer_id,
                tenant_id,
                exc,
            )
            raise InconsistentStateError(
                f"Stripe customer {customer_id} was created but could not be saved for tenant {tenant_id}"
            ) from exc

        logger.info("Created Stripe customer %s for tenant %s", customer_id, tenant_id)
        return {"customer_id": customer_id, "existing": False}

    async def create_subscription(
        self,
        tenant_id: str,
        *,
        plan_type: PlanType,
        billing_cycle: BillingCycle,
        extra_users_count: int = 0,
        trial_days: int = 0,
    ) -> dict[str, Any]:
        """Create the tenant's subscription with the gateway and record it locally.

        Raises
        ------
        TenantNotFoundError
            Unknown tenant (404).
        CustomerNotProvisionedError
            The tenant has no Stripe customer yet (400).
        EntryFeeUnpaidError
            The one-time entry fee has not been paid (403).
        SubscriptionAlreadyActiveError
            The tenant already has an ``active`` or ``trial`` subscription (400).
        InconsistentStateError
            The gateway subscription exists but the local write failed (500).
        """
        if extra_users_count < 0 or trial_days < 0:
            raise MissingParametersError("extra_users_count and trial_days must be >= 0")

        tenant = await self._require_tenant(tenant_id)
        if not tenant.stripe_customer_id:
            raise CustomerNotProvisionedError(f"Tenant {tenant_id} has no Stripe customer; create one first")
        if not tenant.has_paid_entry_fee:
            raise EntryFeeUnpaidError("The entry fee must be paid before subscribing")

        current = await self._subscriptions.get_current_for_tenant(tenant_id)
        if current is not None and SubscriptionStatus(current.status) in LIVE_STATUSES:
            raise SubscriptionAlreadyActiveError(f"Tenant {tenant_id} already has a {current.status} subscription")

        seat_price_id = self._settings.extra_seat_price_id(billing_cycle) if extra_users_count > 0 else None
        items = build_line_items(
            self._settings.plan_price_id(plan_type, billing_cycle),
            seat_price_id,
            extra_users_count,
        )

        subscription = await self._gateway.create_subscription(
            customer_id=tenant.stripe_customer_id,
            items=[item.to_gateway_params() for item in items],
            metadata={
                TENANT_METADATA_KEY: tenant_id,
                "tenant_name": tenant.name,
                "plan_type": plan_type.value,
                "billing_cycle": billing_cycle.value,
                "extra_users_count": str(extra_users_count),
            },
            trial_period_days=trial_days or None,
        )
        external_id = str(subscription["id"])

        decision = map_gateway_status(subscription.get("status"))
        access = resolve_access(decision.access_status, tenant.has_paid_entry_fee)
        ends = period_end(subscription)

        try:
            fields: dict[str, Any] = {
                "stripe_customer_id": tenant.stripe_customer_id,
                "stripe_subscription_id": external_id,
                "plan_type": plan_type.value,
                "billing_cycle": billing_cycle.value,
                "extra_users_count": extra_users_count,
                "status": decision.internal_status.value,
                "current_period_end": ends,
            }
            if current is not None:
                row = await self._subscriptions.update(current, **fields)
            else:
                row = await self._subscriptions.add(tenant_id=tenant_id, **fields)
            if grants_access(decision.internal_status) and row.activated_at is None:
                await self._subscriptions.update(row, activated_at=datetime.now(UTC))
            await self._tenants.set_access_status(tenant, access.value)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.critical(
                "INCONSISTENT STATE: Stripe subscription %s created for tenant %s but not persisted: %s",
                external_id,
                tenant_id,
                exc,
            )
            raise InconsistentStateError(
                f"Stripe subscription {external_id} was created but could not be saved for tenant {tenant_id}"
            ) from exc

        logger.info(
            "Created subscription %s for tenant %s (%s/%s, %d extra seats): %s",
            external_id,
            tenant_id,
            plan_type.value,
            billing_cycle.value,
            extra_users_count,
            decision.internal_status.value,
        )
        return {
            "subscription_id": external_id,
            "client_secret": client_secret_of(subscription),
            "status": decision.internal_status.value,
            "current_period_end": ends,
        }

    async def open_portal(self, customer_id: str, return_url: str) -> dict[str, str]:
        """Create a Stripe Customer Portal session.  No local state changes."""
        if not customer_id.strip() or not return_url.strip():
            raise MissingParametersError("customer_id and return_url are required")
        portal = await self._gateway.create_portal_session(customer_id=customer_id, return_url=return_url)
        return {"url": str(portal["url"])}
