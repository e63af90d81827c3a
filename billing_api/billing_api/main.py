"""FastAPI application entry-point for the billing state reconciliation engine."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from billing_api import __version__
from billing_api.config import APISettings
from billing_api.dependencies import dispose_engine, get_settings, init_engine
from billing_api.middleware.auth import ServiceTokenMiddleware
from billing_api.middleware.json_formatter import JSONFormatter
from billing_api.middleware.logging import RequestLoggingMiddleware
from billing_api.middleware.prometheus import PrometheusMiddleware
from billing_api.routers import health, stripe, tenants, webhooks
from billing_api.routers import metrics as metrics_router
from billing_core.billing.errors import BillingError
from billing_core.config import PlatformEnv
from billing_core.state.database import create_tables

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup the async engine is created and, in dev or against a local
    SQLite file, tables are created if missing (other environments run
    Alembic migrations).  On shutdown the connection pool is disposed.
    """
    settings: APISettings = get_settings()

    if settings.structured_logging:
        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        logger.info("Structured JSON logging enabled")

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s, %s)",
        settings.database_url.split("@")[-1][:60],
        "local" if is_local else "postgres",
    )

    if settings.env == PlatformEnv.DEV or is_local:
        await create_tables(engine)
        logger.info("Database tables ensured (%s)", "local SQLite" if is_local else "dev auto-create")

    logger.info("Billing API started (env=%s, stripe_mode=%s)", settings.env.value, settings.stripe_mode.value)

    yield

    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Billing State Reconciliation Engine",
        description="Stripe webhook reconciliation and tenant access gate.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (last added is outermost) --------------------------------

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "Accept"],
    )
    app.add_middleware(ServiceTokenMiddleware, service_token=settings.service_token.get_secret_value())
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")
    app.include_router(stripe.router, prefix="/api/v1")
    app.include_router(tenants.router, prefix="/api/v1")

    app.include_router(metrics_router.router)
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        else:
            logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({".".join(str(part) for part in err["loc"][1:]) for err in exc.errors() if err.get("loc")})
        logger.warning("Invalid request on %s: %s", request.url.path, fields)
        return JSONResponse(
            status_code=400,
            content={"error": f"Missing or invalid parameters: {', '.join(fields)}", "code": "invalid_request"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"error": "Invalid request", "code": "invalid_request"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal database error", "code": "database_error"})

    return app


# Module-level application instance used by ``uvicorn billing_api.main:app``.
app = create_app()
