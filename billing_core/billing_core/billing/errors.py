"""Billing error taxonomy.

Every error carries a machine-checkable ``code`` and the HTTP status the API
layer answers with, so callers can render a specific message rather than a
generic failure.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for all billing engine errors."""

    status_code: int = 500
    code: str = "billing_error"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class SignatureInvalidError(BillingError):
    """Inbound webhook payload could not be authenticated."""

    status_code = 400
    code = "signature_invalid"


class MissingParametersError(BillingError):
    status_code = 400
    code = "missing_parameters"


class TenantNotFoundError(BillingError):
    status_code = 404
    code = "tenant_not_found"

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id


class CustomerNotProvisionedError(BillingError):
    status_code = 400
    code = "customer_not_provisioned"


class EntryFeeUnpaidError(BillingError):
    """Business rule: a subscription requires the entry fee to be paid first."""

    status_code = 403
    code = "entry_fee_unpaid"


class SubscriptionAlreadyActiveError(BillingError):
    status_code = 400
    code = "subscription_already_active"


class GatewayError(BillingError):
    """The payment gateway rejected or failed a request."""

    status_code = 502
    code = "gateway_error"


class InconsistentStateError(BillingError):
    """A gateway object exists but its local record could not be persisted.

    Requires manual reconciliation (``billing-engine resync``).
    """

    status_code = 500
    code = "inconsistent_state"


class ReconciliationIncompleteError(BillingError):
    """The subscription write failed; the tenant access write still ran."""

    status_code = 500
    code = "reconciliation_incomplete"


class EventAlreadyProcessedError(BillingError):
    """The ledger already holds this event id (lost a concurrent insert)."""

    status_code = 200
    code = "duplicate_event"

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event already processed: {event_id}")
        self.event_id = event_id


class BillingConfigurationError(BillingError):
    status_code = 500
    code = "configuration_error"
