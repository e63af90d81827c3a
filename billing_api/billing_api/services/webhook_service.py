"""Webhook processing: ledger check, dispatch, and ledger mark in one transaction.

An event is marked processed only after its side effects were flushed in
the same transaction, so a crash between the two never loses work: the
gateway redelivers and the (idempotent) handlers run again.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_api.middleware.prometheus import ACCESS_TRANSITIONS_TOTAL, WEBHOOK_EVENTS_TOTAL
from billing_api.services.event_router import DispatchResult, WebhookEventRouter
from billing_core.billing.errors import EventAlreadyProcessedError, ReconciliationIncompleteError
from billing_core.billing.gateway import PaymentGateway
from billing_core.billing.notifier import BillingNotifier
from billing_core.billing.reconciler import SubscriptionReconciler
from billing_core.state.repository import ProcessedEventRepository

logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class WebhookService:
    """Process one verified Stripe event exactly once.

    Parameters
    ----------
    session_factory:
        Factory for the per-delivery session.  Each call to :meth:`process`
        owns its transaction.
    gateway:
        Gateway used by invoice handlers to re-fetch subscriptions.
    notifier:
        Receives trial-ending and payment-failed notifications.
    seat_price_ids:
        Configured extra-seat price ids for the active Stripe mode.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        notifier: BillingNotifier,
        *,
        seat_price_ids: Iterable[str] = (),
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._notifier = notifier
        self._seat_price_ids = frozenset(seat_price_ids)

    async def process(self, event: Mapping[str, Any]) -> WebhookOutcome:
        """Apply *event* unless it was already processed.

        Returns
        -------
        WebhookOutcome
            ``DUPLICATE`` when the ledger already holds the event (including
            a concurrent delivery that won the insert race), ``IGNORED`` for
            event types with no handler, ``PROCESSED`` otherwise.

        Raises
        ------
        ReconciliationIncompleteError
            Side effects did not complete.  Whatever was written (the tenant
            access gate) is committed; the event is left unmarked so the
            gateway retries it.
        """
        event_id = str(event["id"])
        event_type = str(event["type"])

        async with self._session_factory() as session:
            ledger = ProcessedEventRepository(session)
            if await ledger.has_processed(event_id):
                logger.info("Stripe event %s (%s) already processed; skipping", event_id, event_type)
                self._count(event_type, WebhookOutcome.DUPLICATE.value)
                return WebhookOutcome.DUPLICATE

            router = WebhookEventRouter(
                SubscriptionReconciler(session, self._seat_price_ids),
                self._gateway,
                self._notifier,
            )

            try:
                dispatched = await router.dispatch(event)
                await ledger.mark_processed(event_id, event_type, dict(event))
                await session.commit()
            except EventAlreadyProcessedError:
                # The ledger insert lost a race; this delivery's writes were rolled back.
                logger.info("Stripe event %s was processed by a concurrent delivery", event_id)
                self._count(event_type, WebhookOutcome.DUPLICATE.value)
                return WebhookOutcome.DUPLICATE
            except ReconciliationIncompleteError:
                await session.commit()
                logger.error("Stripe event %s (%s) left unmarked for redelivery", event_id, event_type)
                self._count(event_type, "incomplete")
                raise
            except Exception:
                await session.rollback()
                logger.exception(
                    "Stripe event %s (%s) failed",
                    event_id,
                    event_type,
                    extra={"stripe_event_id": event_id},
                )
                self._count(event_type, "failed")
                raise

        outcome = WebhookOutcome.PROCESSED if dispatched.handled else WebhookOutcome.IGNORED
        self._count(event_type, outcome.value)
        self._record_access(dispatched)
        logger.info(
            "Stripe event %s (%s) %s",
            event_id,
            event_type,
            outcome.value,
            extra={"stripe_event_id": event_id},
        )
        return outcome

    @staticmethod
    def _count(event_type: str, outcome: str) -> None:
        WEBHOOK_EVENTS_TOTAL.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def _record_access(dispatched: DispatchResult) -> None:
        result = dispatched.result
        if result is not None and result.access_status is not None:
            ACCESS_TRANSITIONS_TOTAL.labels(access_status=result.access_status.value).inc()
