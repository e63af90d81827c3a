"""Stripe gateway adapter.

Wraps the handful of Stripe API calls the engine makes.  The API key is
passed on every call instead of being assigned to the module-global
``stripe.api_key``, so several gateways (test and live) can coexist in one
process.  Results are returned as plain dictionaries.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from billing_core.billing.errors import GatewayError

logger = logging.getLogger(__name__)

# Expanding the first invoice's payment intent exposes the client secret the
# front end needs to confirm the first payment.
_SUBSCRIPTION_EXPAND = ["latest_invoice.payment_intent"]


class PaymentGateway(Protocol):
    """The gateway operations the engine depends on."""

    async def create_customer(
        self,
        *,
        email: str,
        name: str,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]: ...

    async def create_subscription(
        self,
        *,
        customer_id: str,
        items: list[dict[str, Any]],
        metadata: dict[str, str],
        trial_period_days: int | None = None,
    ) -> dict[str, Any]: ...

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]: ...

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> dict[str, Any]: ...


def to_plain(obj: Any) -> dict[str, Any]:
    """Convert a ``StripeObject`` (or a plain mapping) to a plain ``dict``."""
    if obj is None:
        return {}
    if type(obj) is dict:
        return obj
    to_dict_recursive = getattr(obj, "to_dict_recursive", None)
    if callable(to_dict_recursive):
        return to_dict_recursive()
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return json.loads(str(obj))


class StripeGateway:
    """Async Stripe client bound to one API key.

    Parameters
    ----------
    api_key:
        Secret key for the active Stripe mode.
    """

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def _get_stripe(self) -> Any:
        """Lazily import the Stripe library."""
        import stripe

        return stripe

    async def create_customer(
        self,
        *,
        email: str,
        name: str,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        stripe = self._get_stripe()
        try:
            customer = await stripe.Customer.create_async(
                api_key=self._api_key,
                email=email,
                name=name,
                description=description,
                metadata=metadata or {},
            )
        except stripe.StripeError as exc:
            logger.error("Stripe customer creation failed for %s: %s", email, exc)
            raise GatewayError(f"Stripe customer creation failed: {exc.user_message or exc}") from exc
        return to_plain(customer)

    async def create_subscription(
        self,
        *,
        customer_id: str,
        items: list[dict[str, Any]],
        metadata: dict[str, str],
        trial_period_days: int | None = None,
    ) -> dict[str, Any]:
        stripe = self._get_stripe()
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": items,
            "metadata": metadata,
            "payment_behavior": "default_incomplete",
            "payment_settings": {
                "payment_method_types": ["card"],
                "save_default_payment_method": "on_subscription",
            },
            "expand": _SUBSCRIPTION_EXPAND,
        }
        if trial_period_days:
            params["trial_period_days"] = trial_period_days
        try:
            subscription = await stripe.Subscription.create_async(api_key=self._api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Stripe subscription creation failed for customer %s: %s", customer_id, exc)
            raise GatewayError(f"Stripe subscription creation failed: {exc.user_message or exc}") from exc
        return to_plain(subscription)

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        stripe = self._get_stripe()
        try:
            subscription = await stripe.Subscription.retrieve_async(subscription_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe subscription retrieval failed for %s: %s", subscription_id, exc)
            raise GatewayError(f"Stripe subscription retrieval failed: {exc}") from exc
        return to_plain(subscription)

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> dict[str, Any]:
        stripe = self._get_stripe()
        try:
            session = await stripe.billing_portal.Session.create_async(
                api_key=self._api_key,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe portal session failed for customer %s: %s", customer_id, exc)
            raise GatewayError(f"Stripe portal session failed: {exc.user_message or exc}") from exc
        return to_plain(session)


def client_secret_of(subscription: dict[str, Any]) -> str | None:
    """Extract the first payment's client secret from an expanded subscription."""
    invoice = subscription.get("latest_invoice")
    if not isinstance(invoice, dict):
        return None
    intent = invoice.get("payment_intent")
    if isinstance(intent, dict) and intent.get("client_secret"):
        return str(intent["client_secret"])
    confirmation = invoice.get("confirmation_secret")
    if isinstance(confirmation, dict) and confirmation.get("client_secret"):
        return str(confirmation["client_secret"])
    return None
