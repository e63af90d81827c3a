"""Service-token authentication for the provisioning endpoints.

Requires ``Authorization: Bearer <BILLING_SERVICE_TOKEN>`` on every request
except the paths in ``_PUBLIC_PATHS``.  The Stripe webhook is public at this
layer because it is authenticated by its signature instead.

An empty configured token disables the check.  Settings validation only
allows that in the ``dev`` environment.
"""

from __future__ import annotations

import logging
import secrets

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/stripe/webhook",
        "/api/v1/health",
        "/ready",
        "/metrics",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
    }
)


def _is_public_path(path: str) -> bool:
    return path.rstrip("/") in _PUBLIC_PATHS or path in _PUBLIC_PATHS


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": message, "code": "unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


class ServiceTokenMiddleware(BaseHTTPMiddleware):
    """Reject non-public requests that do not carry the shared service token.

    Parameters
    ----------
    app:
        The wrapped ASGI application.
    service_token:
        Expected bearer token.  Compared in constant time.
    """

    def __init__(self, app: ASGIApp, service_token: str) -> None:
        super().__init__(app)
        self._token = service_token
        if not service_token:
            logger.warning("BILLING_SERVICE_TOKEN is empty; provisioning endpoints are unauthenticated")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._token or _is_public_path(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return _unauthorized("Missing Authorization header")

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return _unauthorized("Authorization header must use Bearer scheme")

        if not secrets.compare_digest(parts[1].strip().encode("utf-8"), self._token.encode("utf-8")):
            logger.warning("Rejected request to %s: invalid service token", request.url.path)
            return _unauthorized("Invalid service token")

        return await call_next(request)
