"""Tests for billing_core.billing.reconciler against SQLite."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from billing_core.billing.errors import ReconciliationIncompleteError
from billing_core.billing.line_items import ROLE_METADATA_KEY
from billing_core.billing.models import AccessStatus, SubscriptionStatus
from billing_core.billing.reconciler import (
    ReconcileOutcome,
    SubscriptionReconciler,
    period_end,
    resolve_access,
    tenant_reference,
)
from billing_core.state.repository import SubscriptionRepository, TenantRepository


async def _state(session, tenant_id="tenant-1"):
    tenant = await TenantRepository(session).get(tenant_id)
    rows = await SubscriptionRepository(session).list_for_tenant(tenant_id)
    return tenant, rows


def _seat_item(quantity: int) -> dict:
    return {"price": {"id": "price_seat"}, "quantity": quantity, "metadata": {ROLE_METADATA_KEY: "extra_seat"}}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_tenant_reference(self):
        assert tenant_reference({"metadata": {"tenant_id": "acme"}}) == "acme"
        assert tenant_reference({"metadata": {}}) is None
        assert tenant_reference({}) is None

    def test_resolve_access_downgrades_without_entry_fee(self):
        assert resolve_access(AccessStatus.ACTIVE, False) == AccessStatus.PENDING_PAYMENT
        assert resolve_access(AccessStatus.ACTIVE, True) == AccessStatus.ACTIVE
        assert resolve_access(AccessStatus.SUSPENDED, False) == AccessStatus.SUSPENDED

    def test_period_end_from_subscription(self):
        assert period_end({"current_period_end": 0}) == datetime(1970, 1, 1, tzinfo=UTC)

    def test_period_end_from_first_item(self):
        sub = {"items": {"data": [{"current_period_end": 86400}]}}
        assert period_end(sub) == datetime(1970, 1, 2, tzinfo=UTC)

    def test_period_end_missing(self):
        assert period_end({}) is None


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------


class TestReconcile:
    @pytest.mark.asyncio
    async def test_active_inserts_row_and_grants_access(self, session, make_tenant, subscription_payload):
        await make_tenant()
        sub = subscription_payload(status="active", items=[_seat_item(2)], plan_type="premium", billing_cycle="yearly")

        result = await SubscriptionReconciler(session).reconcile(sub)
        await session.commit()

        assert result.outcome == ReconcileOutcome.APPLIED
        assert result.status == SubscriptionStatus.ACTIVE
        assert result.access_status == AccessStatus.ACTIVE
        tenant, rows = await _state(session)
        assert tenant.access_status == "active"
        assert len(rows) == 1
        row = rows[0]
        assert row.stripe_subscription_id == "sub_123"
        assert row.status == "active"
        assert row.plan_type == "premium"
        assert row.billing_cycle == "yearly"
        assert row.extra_users_count == 2
        assert row.activated_at is not None
        assert row.current_period_end is not None

    @pytest.mark.asyncio
    async def test_trialing_grants_access(self, session, make_tenant, subscription_payload):
        await make_tenant()
        await SubscriptionReconciler(session).reconcile(subscription_payload(status="trialing"))
        await session.commit()
        tenant, rows = await _state(session)
        assert tenant.access_status == "active"
        assert rows[0].status == "trial"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("gateway_status", ["past_due", "canceled", "unpaid"])
    async def test_non_paying_statuses_suspend(self, session, make_tenant, subscription_payload, gateway_status):
        await make_tenant(access_status="active")
        await SubscriptionReconciler(session).reconcile(subscription_payload(status=gateway_status))
        await session.commit()
        tenant, _ = await _state(session)
        assert tenant.access_status == "suspended"

    @pytest.mark.asyncio
    async def test_unknown_status_leaves_pending(self, session, make_tenant, subscription_payload):
        await make_tenant()
        await SubscriptionReconciler(session).reconcile(subscription_payload(status="incomplete"))
        await session.commit()
        tenant, rows = await _state(session)
        assert tenant.access_status == "pending_payment"
        assert rows[0].status == "inactive"
        assert rows[0].activated_at is None

    @pytest.mark.asyncio
    async def test_entry_fee_unpaid_never_active(self, session, make_tenant, subscription_payload):
        await make_tenant(paid=False)
        result = await SubscriptionReconciler(session).reconcile(subscription_payload(status="active"))
        await session.commit()
        tenant, rows = await _state(session)
        assert tenant.access_status == "pending_payment"
        assert result.access_status == AccessStatus.PENDING_PAYMENT
        # The subscription row still mirrors the gateway.
        assert rows[0].status == "active"

    @pytest.mark.asyncio
    async def test_updates_existing_row_in_place(self, session, make_tenant, subscription_payload):
        await make_tenant()
        reconciler = SubscriptionReconciler(session)
        await reconciler.reconcile(subscription_payload(status="incomplete"))
        await reconciler.reconcile(subscription_payload(status="active", items=[_seat_item(1)]))
        await session.commit()
        _, rows = await _state(session)
        assert len(rows) == 1
        assert rows[0].status == "active"
        assert rows[0].extra_users_count == 1

    @pytest.mark.asyncio
    async def test_adopts_provisioned_row_without_external_id(self, session, make_tenant, subscription_payload):
        await make_tenant()
        await SubscriptionRepository(session).add(
            tenant_id="tenant-1",
            stripe_customer_id="cus_123",
            stripe_subscription_id=None,
            plan_type="standard",
            billing_cycle="monthly",
            extra_users_count=0,
            status="inactive",
        )
        await session.commit()

        await SubscriptionReconciler(session).reconcile(subscription_payload("sub_new", "active"))
        await session.commit()
        _, rows = await _state(session)
        assert len(rows) == 1
        assert rows[0].stripe_subscription_id == "sub_new"

    @pytest.mark.asyncio
    async def test_replay_converges(self, session, make_tenant, subscription_payload):
        await make_tenant()
        reconciler = SubscriptionReconciler(session)
        sub = subscription_payload(status="past_due")
        await reconciler.reconcile(sub)
        await session.commit()
        first_tenant, first_rows = await _state(session)
        first = (first_tenant.access_status, first_rows[0].status, first_rows[0].extra_users_count)

        await reconciler.reconcile(sub)
        await session.commit()
        tenant, rows = await _state(session)
        assert (tenant.access_status, rows[0].status, rows[0].extra_users_count) == first
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_untagged_seat_items_counted_by_configured_price(self, session, make_tenant, subscription_payload):
        await make_tenant()
        items = [{"price": {"id": "price_plan"}, "quantity": 1}, {"price": {"id": "price_seat_m"}, "quantity": 3}]
        await SubscriptionReconciler(session, {"price_seat_m"}).reconcile(subscription_payload(items=items))
        await session.commit()
        _, rows = await _state(session)
        assert rows[0].extra_users_count == 3

    @pytest.mark.asyncio
    async def test_missing_tenant_reference_is_skipped(self, session, subscription_payload):
        result = await SubscriptionReconciler(session).reconcile(subscription_payload(tenant_id=None))
        assert result.outcome == ReconcileOutcome.SKIPPED
        assert result.tenant_id is None

    @pytest.mark.asyncio
    async def test_unknown_tenant_is_skipped(self, session, subscription_payload):
        result = await SubscriptionReconciler(session).reconcile(subscription_payload(tenant_id="ghost"))
        assert result.outcome == ReconcileOutcome.SKIPPED
        assert result.tenant_id == "ghost"

    @pytest.mark.asyncio
    async def test_subscription_write_failure_still_writes_access(self, session, make_tenant, subscription_payload):
        await make_tenant(access_status="active")
        failure = OperationalError("INSERT INTO subscriptions", {}, Exception("disk I/O error"))

        with patch.object(SubscriptionRepository, "add", side_effect=failure):
            with pytest.raises(ReconciliationIncompleteError):
                await SubscriptionReconciler(session).reconcile(subscription_payload(status="past_due"))
        await session.commit()

        tenant, rows = await _state(session)
        assert tenant.access_status == "suspended"
        assert rows == []


# ---------------------------------------------------------------------------
# cancel
# ---------------------------------------------------------------------------


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_existing_row(self, session, make_tenant, subscription_payload):
        await make_tenant()
        reconciler = SubscriptionReconciler(session)
        await reconciler.reconcile(subscription_payload(status="active"))
        await session.commit()

        # Deleted events may arrive without metadata; the row is found by id.
        result = await reconciler.cancel(subscription_payload(status="canceled", tenant_id=None))
        await session.commit()

        assert result.status == SubscriptionStatus.CANCELED
        tenant, rows = await _state(session)
        assert tenant.access_status == "suspended"
        assert rows[0].status == "canceled"

    @pytest.mark.asyncio
    async def test_cancel_without_local_row_uses_metadata(self, session, make_tenant, subscription_payload):
        await make_tenant(access_status="active")
        await SubscriptionReconciler(session).cancel(subscription_payload(status="canceled"))
        await session.commit()
        tenant, rows = await _state(session)
        assert tenant.access_status == "suspended"
        assert rows[0].status == "canceled"

    @pytest.mark.asyncio
    async def test_cancel_of_replaced_subscription_keeps_live_row(self, session, make_tenant, subscription_payload):
        await make_tenant()
        reconciler = SubscriptionReconciler(session)
        await reconciler.reconcile(subscription_payload("sub_A", status="past_due"))
        await session.commit()

        # A new subscription took over the past_due row in place.
        _, rows = await _state(session)
        await SubscriptionRepository(session).update(rows[0], stripe_subscription_id="sub_B", status="active")
        await session.commit()

        result = await reconciler.cancel(subscription_payload("sub_A", status="canceled"))
        await session.commit()

        assert result.status == SubscriptionStatus.CANCELED
        tenant, rows = await _state(session)
        assert sorted((r.stripe_subscription_id, r.status) for r in rows) == [
            ("sub_A", "canceled"),
            ("sub_B", "active"),
        ]
        assert tenant.access_status == "suspended"
        current = await SubscriptionRepository(session).get_current_for_tenant("tenant-1")
        assert current.stripe_subscription_id == "sub_B"

    @pytest.mark.asyncio
    async def test_cancel_unmatched_is_skipped(self, session, subscription_payload):
        result = await SubscriptionReconciler(session).cancel(subscription_payload(tenant_id=None))
        assert result.outcome == ReconcileOutcome.SKIPPED


# ---------------------------------------------------------------------------
# apply_payment_failure
# ---------------------------------------------------------------------------


class TestApplyPaymentFailure:
    @pytest.mark.asyncio
    async def test_forces_past_due_and_suspends(self, session, make_tenant, subscription_payload):
        await make_tenant()
        reconciler = SubscriptionReconciler(session)
        await reconciler.reconcile(subscription_payload(status="active"))
        await session.commit()

        result = await reconciler.apply_payment_failure("sub_123")
        await session.commit()

        assert result.status == SubscriptionStatus.PAST_DUE
        tenant, rows = await _state(session)
        assert tenant.access_status == "suspended"
        assert rows[0].status == "past_due"

    @pytest.mark.asyncio
    async def test_canceled_row_stays_canceled(self, session, make_tenant, subscription_payload):
        await make_tenant()
        reconciler = SubscriptionReconciler(session)
        await reconciler.cancel(subscription_payload(status="canceled"))
        await session.commit()

        await reconciler.apply_payment_failure("sub_123")
        await session.commit()
        tenant, rows = await _state(session)
        assert rows[0].status == "canceled"
        assert tenant.access_status == "suspended"

    @pytest.mark.asyncio
    async def test_falls_back_to_tenant_id(self, session, make_tenant):
        await make_tenant(access_status="active")
        result = await SubscriptionReconciler(session).apply_payment_failure("sub_unknown", "tenant-1")
        await session.commit()
        assert result.outcome == ReconcileOutcome.APPLIED
        tenant, _ = await _state(session)
        assert tenant.access_status == "suspended"

    @pytest.mark.asyncio
    async def test_unmatched_is_skipped(self, session):
        result = await SubscriptionReconciler(session).apply_payment_failure("sub_unknown")
        assert result.outcome == ReconcileOutcome.SKIPPED
