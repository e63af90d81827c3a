"""Translate a gateway subscription status into internal status and access.

This table is the single source of truth for whether a tenant gets in the
door.  Both the webhook reconciler and the create-subscription flow go
through :func:`map_gateway_status`.
"""

from __future__ import annotations

from typing import NamedTuple

from billing_core.billing.models import ACCESS_GRANTING_STATUSES, AccessStatus, SubscriptionStatus


class StatusDecision(NamedTuple):
    internal_status: SubscriptionStatus
    access_status: AccessStatus


_STATUS_TABLE: dict[str, StatusDecision] = {
    "active": StatusDecision(SubscriptionStatus.ACTIVE, AccessStatus.ACTIVE),
    "trialing": StatusDecision(SubscriptionStatus.TRIAL, AccessStatus.ACTIVE),
    "past_due": StatusDecision(SubscriptionStatus.PAST_DUE, AccessStatus.SUSPENDED),
    "canceled": StatusDecision(SubscriptionStatus.CANCELED, AccessStatus.SUSPENDED),
    "unpaid": StatusDecision(SubscriptionStatus.CANCELED, AccessStatus.SUSPENDED),
}

_DEFAULT_DECISION = StatusDecision(SubscriptionStatus.INACTIVE, AccessStatus.PENDING_PAYMENT)


def map_gateway_status(status: str | None) -> StatusDecision:
    """Map a Stripe subscription status to ``(internal_status, access_status)``.

    Unknown or missing statuses (``incomplete``, ``paused``, future values)
    map to ``inactive`` / ``pending_payment``.
    """
    if not status:
        return _DEFAULT_DECISION
    return _STATUS_TABLE.get(status, _DEFAULT_DECISION)


def grants_access(status: SubscriptionStatus | str) -> bool:
    """Return ``True`` if *status* is an access-granting internal status."""
    try:
        return SubscriptionStatus(status) in ACCESS_GRANTING_STATUSES
    except ValueError:
        return False
