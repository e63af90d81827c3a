"""Billing domain: status mapping, line items, reconciliation and gateway ports."""

from billing_core.billing.models import (
    AccessStatus,
    BillingCycle,
    GatewayEventType,
    PlanType,
    SubscriptionStatus,
    has_valid_access,
)
from billing_core.billing.status_mapper import StatusDecision, map_gateway_status

__all__ = [
    "AccessStatus",
    "BillingCycle",
    "GatewayEventType",
    "PlanType",
    "StatusDecision",
    "SubscriptionStatus",
    "has_valid_access",
    "map_gateway_status",
]
