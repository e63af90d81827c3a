"""Provisioning endpoints: Stripe customer, subscription, portal and plan catalogue."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from billing_api.dependencies import GatewayDep, SessionDep, SettingsDep
from billing_api.schemas import (
    CreateCustomerRequest,
    CreateSubscriptionRequest,
    CustomerResponse,
    PlanPrices,
    PlanResponse,
    PlansResponse,
    PortalRequest,
    PortalSessionResponse,
    SubscriptionCreatedResponse,
)
from billing_api.services.provisioning_service import ProvisioningService
from billing_core.billing.models import PLAN_CONFIGS, PLAN_LABELS, BillingCycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


def get_provisioning_service(
    session: SessionDep,
    gateway: GatewayDep,
    settings: SettingsDep,
) -> ProvisioningService:
    return ProvisioningService(session, gateway, settings)


ProvisioningDep = Annotated[ProvisioningService, Depends(get_provisioning_service)]


@router.post("/create-customer", response_model=CustomerResponse)
async def create_customer(body: CreateCustomerRequest, service: ProvisioningDep) -> dict[str, Any]:
    """Create the Stripe customer for a tenant (idempotent per tenant)."""
    return await service.create_customer(
        body.tenant_id,
        email=body.email,
        name=body.name,
        metadata=body.metadata,
    )


@router.post("/create-subscription", response_model=SubscriptionCreatedResponse)
async def create_subscription(body: CreateSubscriptionRequest, service: ProvisioningDep) -> dict[str, Any]:
    """Create a subscription for a tenant that has paid the entry fee.

    The response carries the ``client_secret`` the front end uses to
    confirm the first payment.  Final status arrives later via webhook.
    """
    return await service.create_subscription(
        body.tenant_id,
        plan_type=body.plan_type,
        billing_cycle=body.billing_cycle,
        extra_users_count=body.extra_users_count,
        trial_days=body.trial_days,
    )


@router.post("/customer-portal", response_model=PortalSessionResponse)
async def customer_portal(body: PortalRequest, service: ProvisioningDep) -> dict[str, str]:
    """Return a Stripe Customer Portal URL for the given customer."""
    return await service.open_portal(body.customer_id, body.return_url)


@router.get("/plans", response_model=PlansResponse)
async def list_plans(settings: SettingsDep) -> PlansResponse:
    """Plan catalogue with the price ids configured for the active Stripe mode."""
    plans = [
        PlanResponse(
            plan_type=plan_type,
            label=PLAN_LABELS[plan_type],
            max_users=config.max_users,
            features=list(config.features),
            prices=PlanPrices(
                monthly=settings.price_or_none(BillingCycle.MONTHLY, plan_type),
                yearly=settings.price_or_none(BillingCycle.YEARLY, plan_type),
            ),
        )
        for plan_type, config in PLAN_CONFIGS.items()
    ]
    return PlansResponse(
        plans=plans,
        extra_user_prices=PlanPrices(
            monthly=settings.price_or_none(BillingCycle.MONTHLY),
            yearly=settings.price_or_none(BillingCycle.YEARLY),
        ),
        stripe_mode=settings.stripe_mode.value,
    )
