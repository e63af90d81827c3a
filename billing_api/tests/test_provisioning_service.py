"""Direct tests for ProvisioningService failure paths."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from billing_api.services.provisioning_service import ProvisioningService
from billing_core.billing.errors import GatewayError, InconsistentStateError, MissingParametersError
from billing_core.billing.models import BillingCycle, PlanType
from billing_core.state.repository import SubscriptionRepository, TenantRepository


def _db_down() -> OperationalError:
    return OperationalError("UPDATE tenants", {}, Exception("database is locked"))


class TestInconsistentState:
    @pytest.mark.asyncio
    async def test_customer_persist_failure(self, seed_tenant, session_factory, mock_gateway, test_settings, caplog):
        await seed_tenant(customer_id=None)
        async with session_factory() as session:
            service = ProvisioningService(session, mock_gateway, test_settings)
            with patch.object(TenantRepository, "set_customer_id", AsyncMock(side_effect=_db_down())):
                with pytest.raises(InconsistentStateError) as exc_info:
                    await service.create_customer("tenant-1", email="a@b.test", name="A")

        assert "cus_new" in str(exc_info.value)
        assert exc_info.value.status_code == 500
        assert any("INCONSISTENT STATE" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_subscription_persist_failure(self, seed_tenant, session_factory, mock_gateway, test_settings):
        await seed_tenant()
        async with session_factory() as session:
            service = ProvisioningService(session, mock_gateway, test_settings)
            with patch.object(SubscriptionRepository, "add", AsyncMock(side_effect=_db_down())):
                with pytest.raises(InconsistentStateError, match="sub_new"):
                    await service.create_subscription(
                        "tenant-1",
                        plan_type=PlanType.STANDARD,
                        billing_cycle=BillingCycle.MONTHLY,
                    )

        async with session_factory() as session:
            assert await SubscriptionRepository(session).list_for_tenant("tenant-1") == []


class TestValidation:
    @pytest.mark.asyncio
    async def test_blank_tenant_id(self, session_factory, mock_gateway, test_settings):
        async with session_factory() as session:
            service = ProvisioningService(session, mock_gateway, test_settings)
            with pytest.raises(MissingParametersError):
                await service.create_customer("  ", email="a@b.test", name="A")

    @pytest.mark.asyncio
    async def test_negative_trial_days(self, session_factory, mock_gateway, test_settings):
        async with session_factory() as session:
            service = ProvisioningService(session, mock_gateway, test_settings)
            with pytest.raises(MissingParametersError):
                await service.create_subscription(
                    "tenant-1",
                    plan_type=PlanType.STANDARD,
                    billing_cycle=BillingCycle.MONTHLY,
                    trial_days=-1,
                )
        mock_gateway.create_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gateway_error_leaves_no_local_row(self, seed_tenant, session_factory, mock_gateway, test_settings):
        await seed_tenant()
        mock_gateway.create_subscription.side_effect = GatewayError("card_declined")
        async with session_factory() as session:
            service = ProvisioningService(session, mock_gateway, test_settings)
            with pytest.raises(GatewayError):
                await service.create_subscription(
                    "tenant-1",
                    plan_type=PlanType.PREMIUM,
                    billing_cycle=BillingCycle.YEARLY,
                )

        async with session_factory() as session:
            assert await SubscriptionRepository(session).list_for_tenant("tenant-1") == []

    @pytest.mark.asyncio
    async def test_blank_portal_parameters(self, session_factory, mock_gateway, test_settings):
        async with session_factory() as session:
            service = ProvisioningService(session, mock_gateway, test_settings)
            with pytest.raises(MissingParametersError):
                await service.open_portal("cus_1", "")
        mock_gateway.create_portal_session.assert_not_awaited()
