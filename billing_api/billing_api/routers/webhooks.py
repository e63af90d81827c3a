"""Stripe webhook receiver.

The gateway's retry logic is the only consumer of this endpoint, so its
contract is the status code: 2xx stops redelivery, anything else schedules
a retry.  The endpoint bypasses service-token authentication; it is
authenticated by the Stripe signature instead.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from billing_api.dependencies import GatewayDep, NotifierDep, SessionFactoryDep, SettingsDep
from billing_api.middleware.prometheus import WEBHOOK_EVENTS_TOTAL
from billing_api.services.webhook_service import WebhookOutcome, WebhookService
from billing_api.services.webhook_verifier import WebhookVerifier
from billing_core.billing.errors import SignatureInvalidError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


def get_webhook_service(
    settings: SettingsDep,
    factory: SessionFactoryDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
) -> WebhookService:
    return WebhookService(factory, gateway, notifier, seat_price_ids=settings.seat_price_ids())


WebhookServiceDep = Annotated[WebhookService, Depends(get_webhook_service)]


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    settings: SettingsDep,
    service: WebhookServiceDep,
) -> JSONResponse:
    """Receive a Stripe event.

    Returns
    -------
    - ``200 {"received": true}`` once the event is applied (or ignored as
      an unknown type).
    - ``200 {"received": true, "skipped": true}`` for an already processed
      event.
    - ``400 {"error": ...}`` for a missing or invalid signature.
    - ``500 {"error": ...}`` when side effects did not complete; Stripe
      retries the delivery.
    """
    # Raw bytes: the signature covers the exact payload Stripe sent.
    payload = await request.body()
    verifier = WebhookVerifier(settings.webhook_secret(), settings.webhook_tolerance_seconds)

    try:
        event = verifier.verify(payload, request.headers.get("stripe-signature"))
    except SignatureInvalidError as exc:
        WEBHOOK_EVENTS_TOTAL.labels(event_type="unverified", outcome="rejected").inc()
        return JSONResponse(status_code=400, content={"error": str(exc)})

    try:
        outcome = await service.process(event)
    except Exception:
        # Already logged by the service with the event id.
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    if outcome == WebhookOutcome.DUPLICATE:
        return JSONResponse(status_code=200, content={"received": True, "skipped": True})
    return JSONResponse(status_code=200, content={"received": True})
