"""API router modules for the billing engine."""

from __future__ import annotations

from billing_api.routers import health, metrics, stripe, tenants, webhooks

__all__ = [
    "health",
    "metrics",
    "stripe",
    "tenants",
    "webhooks",
]
