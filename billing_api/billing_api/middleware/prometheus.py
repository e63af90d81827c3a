"""Prometheus metrics for HTTP traffic and billing state changes.

Exposes RED metrics (Rate, Errors, Duration) for every request plus two
domain counters: webhook deliveries by outcome and tenant access
transitions.

Path normalisation collapses path parameters (e.g.
``/tenants/tenant-abc/billing`` -> ``/tenants/{id}/billing``) to prevent
unbounded label cardinality.
"""

from __future__ import annotations

import logging
import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

HTTP_REQUESTS_TOTAL = Counter(
    "billing_http_requests_total",
    "Total HTTP requests by method, path, and status code",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "billing_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

WEBHOOK_EVENTS_TOTAL = Counter(
    "billing_webhook_events_total",
    "Stripe webhook deliveries by event type and outcome",
    ["event_type", "outcome"],
)

ACCESS_TRANSITIONS_TOTAL = Counter(
    "billing_access_transitions_total",
    "Tenant access statuses written by reconciliation",
    ["access_status"],
)


# ---------------------------------------------------------------------------
# Path normalisation
# ---------------------------------------------------------------------------

_PATH_PARAM_PATTERNS = [
    # Segment following /tenants/ is always a tenant id
    (re.compile(r"(/tenants)/[^/]+"), r"\1/{id}"),
    # UUIDs (8-4-4-4-12 hex format)
    (re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"), "/{id}"),
    # Long hex strings
    (re.compile(r"/[0-9a-f]{12,64}"), "/{id}"),
    # Pure numeric segments
    (re.compile(r"/\d+(?=/|$)"), "/{id}"),
]


def _normalise_path(path: str) -> str:
    """Collapse path parameters to prevent cardinality explosion."""
    for pattern, replacement in _PATH_PARAM_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


_SKIP_PATHS: frozenset[str] = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record HTTP request rate, error rate, and latency."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        normalised = _normalise_path(path)

        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        HTTP_REQUESTS_TOTAL.labels(
            method=method,
            path=normalised,
            status_code=str(response.status_code),
        ).inc()
        HTTP_REQUEST_DURATION.labels(method=method, path=normalised).observe(duration)

        return response
