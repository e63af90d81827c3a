"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import SettingsConfigDict

from billing_core.config import BillingSettings, PlatformEnv


class APISettings(BillingSettings):
    """FastAPI application settings.

    Extends the engine settings with HTTP concerns.  All values can be
    overridden via environment variables prefixed with ``BILLING_`` (e.g.
    ``BILLING_PORT=9000``) or through a ``.env`` file in the working
    directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    # Shared bearer token for the provisioning endpoints.
    service_token: SecretStr = SecretStr("")

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers silently reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present.  Fail fast at
        startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    @model_validator(mode="after")
    def _validate_service_token_outside_dev(self) -> Self:
        if self.env != PlatformEnv.DEV and not self.service_token.get_secret_value():
            raise ValueError(f"BILLING_SERVICE_TOKEN is required in {self.env.value} mode")
        return self


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
