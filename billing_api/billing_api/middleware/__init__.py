"""Middleware components for the billing API."""

from __future__ import annotations

from billing_api.middleware.auth import ServiceTokenMiddleware
from billing_api.middleware.json_formatter import JSONFormatter
from billing_api.middleware.logging import RequestLoggingMiddleware
from billing_api.middleware.prometheus import PrometheusMiddleware

__all__ = [
    "JSONFormatter",
    "PrometheusMiddleware",
    "RequestLoggingMiddleware",
    "ServiceTokenMiddleware",
]
