"""Dispatch verified, non-duplicate Stripe events to their handlers.

The router holds no state of its own.  Unknown event types are accepted and
logged without side effects so new gateway event types never break
delivery.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from billing_core.billing.errors import GatewayError, ReconciliationIncompleteError
from billing_core.billing.gateway import PaymentGateway
from billing_core.billing.models import GatewayEventType
from billing_core.billing.notifier import BillingNotifier
from billing_core.billing.reconciler import ReconcileResult, SubscriptionReconciler, tenant_reference

logger = logging.getLogger(__name__)

_Handler = Callable[[Mapping[str, Any]], Awaitable[ReconcileResult | None]]


@dataclass(frozen=True)
class DispatchResult:
    event_type: str
    handled: bool
    result: ReconcileResult | None = None


def _ref_id(value: Any) -> str | None:
    """Return the id of a reference that may be a bare id or an expanded object."""
    if isinstance(value, Mapping):
        value = value.get("id")
    return str(value) if value else None


def invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    """Subscription referenced by an invoice (legacy and ``parent`` layouts)."""
    ref = _ref_id(invoice.get("subscription"))
    if ref:
        return ref
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _ref_id(details.get("subscription"))


def invoice_tenant_reference(invoice: Mapping[str, Any]) -> str | None:
    """Tenant id copied onto the invoice from its subscription's metadata."""
    for details in (
        invoice.get("subscription_details") or {},
        (invoice.get("parent") or {}).get("subscription_details") or {},
    ):
        tenant_id = tenant_reference(details)
        if tenant_id:
            return tenant_id
    return tenant_reference(invoice)


class WebhookEventRouter:
    """Route Stripe events to the reconciler.

    Parameters
    ----------
    reconciler:
        Reconciler bound to the delivery's database session.
    gateway:
        Used by invoice handlers to re-fetch the current subscription rather
        than trusting the status embedded in the invoice.
    notifier:
        Receives trial-ending and payment-failed notifications.
    """

    def __init__(
        self,
        reconciler: SubscriptionReconciler,
        gateway: PaymentGateway,
        notifier: BillingNotifier,
    ) -> None:
        self._reconciler = reconciler
        self._gateway = gateway
        self._notifier = notifier
        self._handlers: dict[str, _Handler] = {
            GatewayEventType.SUBSCRIPTION_CREATED.value: self._on_subscription_changed,
            GatewayEventType.SUBSCRIPTION_UPDATED.value: self._on_subscription_changed,
            GatewayEventType.SUBSCRIPTION_DELETED.value: self._on_subscription_deleted,
            GatewayEventType.INVOICE_PAYMENT_SUCCEEDED.value: self._on_invoice_paid,
            GatewayEventType.INVOICE_PAID.value: self._on_invoice_paid,
            GatewayEventType.INVOICE_PAYMENT_FAILED.value: self._on_invoice_payment_failed,
            GatewayEventType.TRIAL_WILL_END.value: self._on_trial_will_end,
        }

    @property
    def handled_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def dispatch(self, event: Mapping[str, Any]) -> DispatchResult:
        """Run the handler for *event*'s type.

        Exceptions raised by handlers propagate; the caller decides whether
        the event may be marked processed.
        """
        event_type = str(event.get("type", ""))
        data_object = (event.get("data") or {}).get("object") or {}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Stripe event type: %s (event %s)", event_type, event.get("id"))
            return DispatchResult(event_type, handled=False)

        result = await handler(data_object)
        return DispatchResult(event_type, handled=True, result=result)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_subscription_changed(self, subscription: Mapping[str, Any]) -> ReconcileResult:
        return await self._reconciler.reconcile(subscription)

    async def _on_subscription_deleted(self, subscription: Mapping[str, Any]) -> ReconcileResult:
        return await self._reconciler.cancel(subscription)

    async def _on_invoice_paid(self, invoice: Mapping[str, Any]) -> ReconcileResult | None:
        subscription_id = invoice_subscription_id(invoice)
        if subscription_id is None:
            logger.info("Invoice %s is not attached to a subscription; ignoring", invoice.get("id"))
            return None

        subscription = await self._gateway.retrieve_subscription(subscription_id)
        return await self._reconciler.reconcile(subscription)

    async def _on_invoice_payment_failed(self, invoice: Mapping[str, Any]) -> ReconcileResult | None:
        subscription_id = invoice_subscription_id(invoice)
        if subscription_id is None:
            logger.info("Failed invoice %s is not attached to a subscription; ignoring", invoice.get("id"))
            return None

        try:
            subscription = await self._gateway.retrieve_subscription(subscription_id)
        except GatewayError as exc:
            # Brake from local state; the event stays unmarked for retry.
            await self._reconciler.apply_payment_failure(subscription_id, invoice_tenant_reference(invoice))
            raise ReconciliationIncompleteError(
                f"Could not re-fetch subscription {subscription_id}; access suspended from local state"
            ) from exc

        incomplete: ReconciliationIncompleteError | None = None
        try:
            await self._reconciler.reconcile(subscription)
        except ReconciliationIncompleteError as exc:
            incomplete = exc

        result = await self._reconciler.apply_payment_failure(
            subscription_id,
            tenant_reference(subscription) or invoice_tenant_reference(invoice),
        )
        if result.tenant_id is not None:
            await self._notifier.payment_failed(result.tenant_id, subscription_id, invoice.get("id"))

        if incomplete is not None:
            raise incomplete
        return result

    async def _on_trial_will_end(self, subscription: Mapping[str, Any]) -> None:
        tenant_id = tenant_reference(subscription)
        if tenant_id is None:
            logger.warning("Trial-ending subscription %s carries no tenant reference", subscription.get("id"))
            return None

        trial_end_ts = subscription.get("trial_end")
        trial_end = datetime.fromtimestamp(int(trial_end_ts), tz=UTC) if trial_end_ts else None
        await self._notifier.trial_will_end(tenant_id, subscription.get("id"), trial_end)
        return None
