"""Billing vocabulary: plans, cycles, statuses and the plan catalogue."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PlanType(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    """Internal subscription status, derived from the gateway status."""

    INACTIVE = "inactive"
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class AccessStatus(str, Enum):
    """Tenant access gate read by the rest of the application."""

    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class GatewayEventType(str, Enum):
    """Stripe event types the router has a handler for."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    TRIAL_WILL_END = "customer.subscription.trial_will_end"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


# Statuses under which the tenant is let in the door.
ACCESS_GRANTING_STATUSES: frozenset[SubscriptionStatus] = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL}
)

# Non-terminal statuses that block creating another subscription.
LIVE_STATUSES: frozenset[SubscriptionStatus] = ACCESS_GRANTING_STATUSES


@dataclass(frozen=True)
class PlanConfig:
    """Static limits and marketing features for a plan."""

    max_users: int
    max_clients: int | None = None
    max_products: int | None = None
    features: tuple[str, ...] = field(default_factory=tuple)


PLAN_CONFIGS: dict[PlanType, PlanConfig] = {
    PlanType.STANDARD: PlanConfig(
        max_users=1,
        features=(
            "Client management",
            "Product management",
            "Invoicing",
            "Deposit slips",
            "Credit notes",
            "Email support",
        ),
    ),
    PlanType.PREMIUM: PlanConfig(
        max_users=3,
        features=(
            "Everything in Standard",
            "Multiple users included",
            "Advanced statistics",
            "Data export",
            "Priority support",
            "API integration",
        ),
    ),
}

PLAN_LABELS: dict[PlanType, str] = {
    PlanType.STANDARD: "Standard",
    PlanType.PREMIUM: "Premium",
}

BILLING_CYCLE_LABELS: dict[BillingCycle, str] = {
    BillingCycle.MONTHLY: "Monthly",
    BillingCycle.YEARLY: "Yearly",
}

STATUS_LABELS: dict[SubscriptionStatus, str] = {
    SubscriptionStatus.INACTIVE: "Inactive",
    SubscriptionStatus.TRIAL: "Trial period",
    SubscriptionStatus.ACTIVE: "Active",
    SubscriptionStatus.PAST_DUE: "Payment overdue",
    SubscriptionStatus.CANCELED: "Canceled",
}


def included_users(plan_type: PlanType, extra_users_count: int = 0) -> int:
    """Number of seats a tenant is entitled to on *plan_type* with add-ons."""
    return PLAN_CONFIGS[plan_type].max_users + max(extra_users_count, 0)


def has_valid_access(tenant: Any) -> bool:
    """Return ``True`` when the tenant may use the application.

    Accepts any object exposing ``has_paid_entry_fee`` and
    ``access_status`` (the ORM row or a plain namespace).
    """
    return bool(tenant.has_paid_entry_fee) and tenant.access_status == AccessStatus.ACTIVE


def coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Any:
    """Parse *value* into *enum_cls*, falling back to *default*."""
    try:
        return enum_cls(value)
    except ValueError:
        return default
