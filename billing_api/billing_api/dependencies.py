"""FastAPI dependency injection for settings, database sessions and the gateway."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from billing_api.config import APISettings, load_api_settings
from billing_core.billing.gateway import PaymentGateway, StripeGateway
from billing_core.billing.notifier import BillingNotifier, LoggingBillingNotifier
from billing_core.state.database import get_engine

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the process-wide async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the async session factory.

    The webhook endpoint takes the factory rather than a session because it
    owns its transaction boundaries explicitly.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


async def get_db_session(factory: SessionFactoryDep) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` that commits on clean exit and rolls back on exception."""
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Payment gateway and notifier
# ---------------------------------------------------------------------------

_gateways: dict[str, StripeGateway] = {}


def get_gateway(settings: SettingsDep) -> PaymentGateway:
    """Return the Stripe gateway for the active mode.

    Raises :class:`~billing_core.billing.errors.BillingConfigurationError`
    when the key for the active mode is not configured.
    """
    api_key = settings.secret_key()
    gateway = _gateways.get(api_key)
    if gateway is None:
        gateway = StripeGateway(api_key)
        _gateways[api_key] = gateway
        logger.info("Stripe gateway initialised (%s mode)", settings.stripe_mode.value)
    return gateway


GatewayDep = Annotated[PaymentGateway, Depends(get_gateway)]

_notifier = LoggingBillingNotifier()


def get_notifier() -> BillingNotifier:
    return _notifier


NotifierDep = Annotated[BillingNotifier, Depends(get_notifier)]
