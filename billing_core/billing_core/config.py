"""Billing engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from billing_core.billing.errors import BillingConfigurationError
from billing_core.billing.models import BillingCycle, PlanType

logger = logging.getLogger(__name__)


class PlatformEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class StripeMode(str, Enum):
    TEST = "test"
    LIVE = "live"


class BillingSettings(BaseSettings):
    """Engine settings loaded from environment variables with ``BILLING_`` prefix.

    Stripe credentials and price ids exist once per mode.  ``stripe_mode``
    selects which set is active so that a deployment can be flipped from
    test to live without editing every variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: PlatformEnv = PlatformEnv.DEV

    # Database (asyncpg in production, aiosqlite for local mode).
    database_url: str = "sqlite+aiosqlite:///.billing/state.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    structured_logging: bool = False

    # Stripe
    stripe_mode: StripeMode = StripeMode.TEST
    stripe_secret_key_test: SecretStr = SecretStr("")
    stripe_secret_key_live: SecretStr = SecretStr("")
    stripe_webhook_secret_test: SecretStr = SecretStr("")
    stripe_webhook_secret_live: SecretStr = SecretStr("")
    webhook_tolerance_seconds: int = 300

    # Price ids: one per plan and cycle, plus the extra-seat add-on.
    stripe_price_standard_monthly_test: str = ""
    stripe_price_standard_yearly_test: str = ""
    stripe_price_premium_monthly_test: str = ""
    stripe_price_premium_yearly_test: str = ""
    stripe_price_extra_user_monthly_test: str = ""
    stripe_price_extra_user_yearly_test: str = ""
    stripe_price_standard_monthly_live: str = ""
    stripe_price_standard_yearly_live: str = ""
    stripe_price_premium_monthly_live: str = ""
    stripe_price_premium_yearly_live: str = ""
    stripe_price_extra_user_monthly_live: str = ""
    stripe_price_extra_user_yearly_live: str = ""

    @property
    def is_test_mode(self) -> bool:
        return self.stripe_mode == StripeMode.TEST

    def secret_key(self) -> str:
        """Return the Stripe API key for the active mode."""
        return self._require_secret("stripe_secret_key")

    def webhook_secret(self) -> str:
        """Return the webhook signing secret for the active mode."""
        return self._require_secret("stripe_webhook_secret")

    def plan_price_id(self, plan_type: PlanType, billing_cycle: BillingCycle) -> str:
        """Return the configured price id for *plan_type* billed per *billing_cycle*."""
        return self._require_price(f"stripe_price_{plan_type.value}_{billing_cycle.value}")

    def extra_seat_price_id(self, billing_cycle: BillingCycle) -> str:
        """Return the configured extra-seat add-on price id for *billing_cycle*."""
        return self._require_price(f"stripe_price_extra_user_{billing_cycle.value}")

    def price_or_none(self, billing_cycle: BillingCycle, plan_type: PlanType | None = None) -> str | None:
        """Return the configured price id, or ``None`` when it is unset.

        With ``plan_type=None`` the extra-seat add-on price is returned.
        """
        try:
            if plan_type is None:
                return self.extra_seat_price_id(billing_cycle)
            return self.plan_price_id(plan_type, billing_cycle)
        except BillingConfigurationError:
            return None

    def seat_price_ids(self) -> frozenset[str]:
        """Every configured extra-seat price id across modes and cycles."""
        ids = {
            self.stripe_price_extra_user_monthly_test,
            self.stripe_price_extra_user_yearly_test,
            self.stripe_price_extra_user_monthly_live,
            self.stripe_price_extra_user_yearly_live,
        }
        return frozenset(i for i in ids if i)

    def _require_secret(self, prefix: str) -> str:
        name = f"{prefix}_{self.stripe_mode.value}"
        value: SecretStr = getattr(self, name)
        if not value.get_secret_value():
            raise BillingConfigurationError(
                f"Missing Stripe setting BILLING_{name.upper()} for {self.stripe_mode.value} mode"
            )
        return value.get_secret_value()

    def _require_price(self, prefix: str) -> str:
        name = f"{prefix}_{self.stripe_mode.value}"
        value: str = getattr(self, name)
        if not value:
            raise BillingConfigurationError(f"Missing Stripe price id BILLING_{name.upper()}")
        return value


def load_settings() -> BillingSettings:
    """Construct settings from the environment / ``.env`` file."""
    return BillingSettings()
