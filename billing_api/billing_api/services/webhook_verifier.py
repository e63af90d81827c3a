"""Stripe webhook signature verification.

The signature is checked against the raw request bytes.  The payload is
decoded only after verification succeeds; parsing first and re-serializing
would change the bytes the signature was computed over.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from billing_core.billing.errors import SignatureInvalidError

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class WebhookVerifier:
    """Authenticate and decode inbound Stripe events.

    Parameters
    ----------
    secret:
        Endpoint signing secret (``whsec_...``) for the active Stripe mode.
    tolerance:
        Maximum age in seconds of the signed timestamp.
    """

    def __init__(self, secret: str, tolerance: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self._secret = secret
        self._tolerance = tolerance

    def verify(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """Return the decoded event, or raise :class:`SignatureInvalidError`."""
        if not signature_header:
            raise SignatureInvalidError("Missing Stripe-Signature header")
        if not self._secret:
            raise SignatureInvalidError("Webhook signing secret is not configured")

        import stripe

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureInvalidError("Payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(text, signature_header, self._secret, self._tolerance)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise SignatureInvalidError("Signature verification failed") from exc

        try:
            event = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SignatureInvalidError("Invalid payload") from exc
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise SignatureInvalidError("Payload is not a Stripe event")
        return event
