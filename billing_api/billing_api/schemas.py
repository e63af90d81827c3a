"""Pydantic request and response models for the billing API.

Routers import from here so that request validation and the OpenAPI
document share one definition per payload.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from billing_core.billing.models import AccessStatus, BillingCycle, PlanType, SubscriptionStatus

# ---------------------------------------------------------------------------
# Provisioning requests
# ---------------------------------------------------------------------------


class CreateCustomerRequest(BaseModel):
    """Request body for ``POST /stripe/create-customer``."""

    tenant_id: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=3, max_length=320)
    name: str = Field(..., min_length=1, max_length=255)
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Extra metadata stored on the Stripe customer.  ``tenant_id`` is always set by the server.",
    )


class CreateSubscriptionRequest(BaseModel):
    """Request body for ``POST /stripe/create-subscription``."""

    tenant_id: str = Field(..., min_length=1, max_length=64)
    plan_type: PlanType
    billing_cycle: BillingCycle
    extra_users_count: int = Field(default=0, ge=0, le=1000)
    trial_days: int = Field(default=0, ge=0, le=730)


class PortalRequest(BaseModel):
    """Request body for ``POST /stripe/customer-portal``."""

    customer_id: str = Field(..., min_length=1)
    return_url: str = Field(
        ...,
        min_length=1,
        description="URL to redirect the user to after leaving the Stripe portal.",
    )


# ---------------------------------------------------------------------------
# Provisioning responses
# ---------------------------------------------------------------------------


class CustomerResponse(BaseModel):
    customer_id: str
    existing: bool


class SubscriptionCreatedResponse(BaseModel):
    """The subscription as created by the gateway.

    ``client_secret`` is present while the first payment still needs to be
    confirmed by the front end.
    """

    subscription_id: str
    client_secret: str | None = None
    status: SubscriptionStatus
    current_period_end: datetime | None = None


class PortalSessionResponse(BaseModel):
    url: str


# ---------------------------------------------------------------------------
# Catalogue and tenant billing views
# ---------------------------------------------------------------------------


class PlanPrices(BaseModel):
    monthly: str | None = None
    yearly: str | None = None


class PlanResponse(BaseModel):
    """A plan returned by ``GET /stripe/plans``."""

    plan_type: PlanType
    label: str
    max_users: int
    features: list[str]
    prices: PlanPrices


class PlansResponse(BaseModel):
    plans: list[PlanResponse]
    extra_user_prices: PlanPrices
    stripe_mode: str


class SubscriptionSummary(BaseModel):
    subscription_id: str | None = None
    plan_type: PlanType
    plan_label: str
    billing_cycle: BillingCycle
    billing_cycle_label: str
    status: SubscriptionStatus
    status_label: str
    extra_users_count: int
    included_users: int
    activated_at: datetime | None = None
    current_period_end: datetime | None = None


class TenantBillingResponse(BaseModel):
    """Response for ``GET /tenants/{tenant_id}/billing``."""

    tenant_id: str
    access_status: AccessStatus
    has_paid_entry_fee: bool
    has_valid_access: bool
    stripe_customer_id: str | None = None
    subscription: SubscriptionSummary | None = None


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
