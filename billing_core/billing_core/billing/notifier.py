"""Outbound billing notifications (trial ending, payment failed).

The transactional-email sender lives outside this engine; handlers only
talk to the :class:`BillingNotifier` protocol.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


class BillingNotifier(Protocol):
    """Dispatches billing related notifications to tenant administrators."""

    async def trial_will_end(
        self,
        tenant_id: str,
        stripe_subscription_id: str | None,
        trial_end: datetime | None,
    ) -> None: ...

    async def payment_failed(
        self,
        tenant_id: str,
        stripe_subscription_id: str | None,
        invoice_id: str | None,
    ) -> None: ...


class LoggingBillingNotifier:
    """Notifier that records billing notifications to the application logger."""

    async def trial_will_end(
        self,
        tenant_id: str,
        stripe_subscription_id: str | None,
        trial_end: datetime | None,
    ) -> None:
        logger.info(
            "Trial ending for tenant %s subscription=%s trial_end=%s",
            tenant_id,
            stripe_subscription_id,
            trial_end.isoformat() if trial_end else None,
        )

    async def payment_failed(
        self,
        tenant_id: str,
        stripe_subscription_id: str | None,
        invoice_id: str | None,
    ) -> None:
        logger.warning(
            "Payment failure for tenant %s subscription=%s invoice=%s",
            tenant_id,
            stripe_subscription_id,
            invoice_id,
        )
