"""billing-engine CLI -- Typer-based operator interface.

Provides commands to initialise the state store, register tenants, record
entry-fee payments, inspect a tenant's access gate and manually reconcile a
subscription against Stripe.  Human-readable output goes to *stderr* via
Rich; ``--json`` output goes to *stdout* so that scripts can compose
cleanly.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console
from sqlalchemy.ext.asyncio import AsyncSession

from billing_cli.display import (
    display_plans,
    display_reconcile_result,
    display_tenant_list,
    display_tenant_status,
)
from billing_core.billing.errors import BillingError, ReconciliationIncompleteError
from billing_core.billing.gateway import PaymentGateway, StripeGateway
from billing_core.billing.models import (
    PLAN_CONFIGS,
    PLAN_LABELS,
    AccessStatus,
    BillingCycle,
    PlanType,
    has_valid_access,
    included_users,
)
from billing_core.billing.reconciler import SubscriptionReconciler, resolve_access
from billing_core.billing.status_mapper import grants_access
from billing_core.config import BillingSettings, load_settings
from billing_core.state.database import create_tables, get_engine, get_session_factory
from billing_core.state.repository import SubscriptionRepository, TenantRepository
from billing_core.state.tables import TenantTable

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="billing-engine",
    help="Billing state reconciliation engine - operator commands",
    no_args_is_help=True,
)
console = Console(stderr=True)

tenants_app = typer.Typer(
    name="tenants",
    help="Register tenants and record entry-fee payments.",
    no_args_is_help=True,
)
app.add_typer(tenants_app, name="tenants")

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_database_url: str | None = None


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="State store URL (overrides BILLING_DATABASE_URL).",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _database_url  # noqa: PLW0603
    _json_output = json_mode
    _database_url = database_url


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings() -> BillingSettings:
    settings = load_settings()
    if _database_url:
        settings = settings.model_copy(update={"database_url": _database_url})
    return settings


def _make_gateway(settings: BillingSettings) -> PaymentGateway:
    return StripeGateway(settings.secret_key())


def _run_in_session(settings: BillingSettings, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run *work* in one session against the configured store.

    The session is committed when *work* returns and rolled back if it
    raises.  The engine is disposed either way.
    """

    async def _main() -> T:
        engine = get_engine(settings.database_url)
        try:
            async with get_session_factory(engine)() as session:
                try:
                    result = await work(session)
                    await session.commit()
                    return result
                except Exception:
                    await session.rollback()
                    raise
        finally:
            await engine.dispose()

    return asyncio.run(_main())


def _emit_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


def _fail(message: str, code: int = 1) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(code=code)


def _tenant_summary(tenant: TenantTable) -> dict[str, Any]:
    return {
        "tenant_id": tenant.id,
        "name": tenant.name,
        "access_status": tenant.access_status,
        "has_paid_entry_fee": tenant.has_paid_entry_fee,
        "has_valid_access": has_valid_access(tenant),
        "stripe_customer_id": tenant.stripe_customer_id,
    }


async def _tenant_view(session: AsyncSession, tenant_id: str) -> dict[str, Any] | None:
    tenant = await TenantRepository(session).get(tenant_id)
    if tenant is None:
        return None

    view = _tenant_summary(tenant)
    view["subscription"] = None
    row = await SubscriptionRepository(session).get_latest_for_tenant(tenant_id)
    if row is not None:
        plan_type = PlanType(row.plan_type)
        view["subscription"] = {
            "subscription_id": row.stripe_subscription_id,
            "plan_type": plan_type.value,
            "plan_label": PLAN_LABELS[plan_type],
            "billing_cycle": row.billing_cycle,
            "status": row.status,
            "extra_users_count": row.extra_users_count,
            "included_users": included_users(plan_type, row.extra_users_count),
            "activated_at": row.activated_at.isoformat() if row.activated_at else None,
            "current_period_end": row.current_period_end.isoformat() if row.current_period_end else None,
        }
    return view


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create the billing tables (local SQLite or dev databases).

    Production PostgreSQL databases are migrated with Alembic instead.
    """
    settings = _settings()

    async def _main() -> None:
        engine = get_engine(settings.database_url)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_main())
    console.print(f"[green]Tables ready[/green] at {settings.database_url.split('@')[-1]}")


# ---------------------------------------------------------------------------
# tenants
# ---------------------------------------------------------------------------


@tenants_app.command("add")
def tenants_add(
    tenant_id: str = typer.Argument(..., help="Tenant identifier (the id stored in Stripe metadata)."),
    name: str = typer.Option(..., "--name", "-n", help="Display name of the tenant."),
    email: str | None = typer.Option(None, "--email", "-e", help="Billing contact email."),
    entry_fee_paid: bool = typer.Option(
        False,
        "--entry-fee-paid/--entry-fee-unpaid",
        help="Whether the one-time entry fee has already been paid.",
    ),
) -> None:
    """Register a tenant in ``pending_payment``."""

    async def _work(session: AsyncSession) -> dict[str, Any]:
        tenant = await TenantRepository(session).create(
            tenant_id,
            name=name,
            email=email,
            has_paid_entry_fee=entry_fee_paid,
        )
        return _tenant_summary(tenant)

    try:
        summary = _run_in_session(_settings(), _work)
    except ValueError as exc:
        raise _fail(str(exc)) from exc

    if _json_output:
        _emit_json(summary)
    else:
        console.print(f"[green]Registered[/green] tenant [bold]{tenant_id}[/bold] ({summary['access_status']})")


@tenants_app.command("entry-fee")
def tenants_entry_fee(
    tenant_id: str = typer.Argument(..., help="Tenant identifier."),
    paid: bool = typer.Option(True, "--paid/--unpaid", help="Record the entry fee as paid or unpaid."),
) -> None:
    """Record the entry-fee flag and re-apply the access gate.

    A tenant whose current subscription grants access becomes ``active``
    once the fee is paid, and drops back to ``pending_payment`` when the
    flag is cleared.
    """

    async def _work(session: AsyncSession) -> dict[str, Any] | None:
        tenants = TenantRepository(session)
        tenant = await tenants.get(tenant_id, for_update=True)
        if tenant is None:
            return None
        await tenants.set_entry_fee_paid(tenant, paid)

        current = await SubscriptionRepository(session).get_current_for_tenant(tenant_id)
        if current is not None and grants_access(current.status):
            await tenants.set_access_status(tenant, resolve_access(AccessStatus.ACTIVE, paid).value)
        return _tenant_summary(tenant)

    summary = _run_in_session(_settings(), _work)
    if summary is None:
        raise _fail(f"Tenant not found: {tenant_id}")

    if _json_output:
        _emit_json(summary)
    else:
        console.print(
            f"Entry fee for [bold]{tenant_id}[/bold] recorded as "
            f"{'[green]paid[/green]' if paid else '[yellow]unpaid[/yellow]'}; access {summary['access_status']}"
        )


@tenants_app.command("list")
def tenants_list() -> None:
    """List registered tenants and their access gate."""

    async def _work(session: AsyncSession) -> list[dict[str, Any]]:
        return [_tenant_summary(t) for t in await TenantRepository(session).list_all()]

    tenants = _run_in_session(_settings(), _work)
    if _json_output:
        _emit_json(tenants)
    else:
        display_tenant_list(console, tenants)


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@app.command()
def status(
    tenant_id: str = typer.Argument(..., help="Tenant identifier."),
) -> None:
    """Show a tenant's access gate and current (or most recent) subscription."""

    async def _work(session: AsyncSession) -> dict[str, Any] | None:
        return await _tenant_view(session, tenant_id)

    view = _run_in_session(_settings(), _work)
    if view is None:
        raise _fail(f"Tenant not found: {tenant_id}")

    if _json_output:
        _emit_json(view)
    else:
        display_tenant_status(console, view)


# ---------------------------------------------------------------------------
# resync
# ---------------------------------------------------------------------------


@app.command()
def resync(
    stripe_subscription_id: str = typer.Argument(..., help="Stripe subscription id (sub_...)."),
) -> None:
    """Re-fetch a subscription from Stripe and reconcile local state.

    Use after an ``INCONSISTENT STATE`` alert, or whenever local state is
    suspected to have drifted from the gateway.
    """
    settings = _settings()
    try:
        gateway = _make_gateway(settings)
        subscription = asyncio.run(gateway.retrieve_subscription(stripe_subscription_id))
    except BillingError as exc:
        raise _fail(f"Could not retrieve {stripe_subscription_id}: {exc}") from exc

    incomplete: list[ReconciliationIncompleteError] = []

    async def _work(session: AsyncSession):
        reconciler = SubscriptionReconciler(session, settings.seat_price_ids())
        try:
            return await reconciler.reconcile(subscription)
        except ReconciliationIncompleteError as exc:
            # The access write still happened; keep it.
            incomplete.append(exc)
            return None

    result = _run_in_session(settings, _work)
    if incomplete:
        raise _fail(f"Reconciliation incomplete: {incomplete[0]}")

    if _json_output:
        _emit_json(
            {
                "subscription_id": stripe_subscription_id,
                "outcome": result.outcome.value,
                "tenant_id": result.tenant_id,
                "status": result.status.value if result.status else None,
                "access_status": result.access_status.value if result.access_status else None,
            }
        )
    else:
        display_reconcile_result(console, stripe_subscription_id, result)


# ---------------------------------------------------------------------------
# plans
# ---------------------------------------------------------------------------


@app.command()
def plans() -> None:
    """Print the plan catalogue and the price ids of the active Stripe mode."""
    settings = _settings()
    catalogue = {
        "stripe_mode": settings.stripe_mode.value,
        "plans": [
            {
                "plan_type": plan_type.value,
                "label": PLAN_LABELS[plan_type],
                "max_users": config.max_users,
                "features": list(config.features),
                "prices": {
                    cycle.value: settings.price_or_none(cycle, plan_type) for cycle in BillingCycle
                },
            }
            for plan_type, config in PLAN_CONFIGS.items()
        ],
        "extra_user_prices": {cycle.value: settings.price_or_none(cycle) for cycle in BillingCycle},
    }

    if _json_output:
        _emit_json(catalogue)
    else:
        display_plans(console, catalogue)
