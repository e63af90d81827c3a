"""Rich output formatting for the billing-engine CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from billing_core.billing.reconciler import ReconcileResult


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    # Access gate
    "active": "green",
    "pending_payment": "yellow",
    "suspended": "red",
    # Subscription
    "trial": "cyan",
    "past_due": "red",
    "canceled": "dim red",
    "inactive": "dim",
}


def _coloured_status(status: str | None) -> str:
    """Return a Rich markup string with the status colour-coded."""
    if not status:
        return "-"
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


def display_tenant_status(console: Console, view: dict[str, Any]) -> None:
    """Render the access gate and subscription of one tenant.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    view:
        Tenant view as built by the ``status`` command; the same dict is
        emitted verbatim in ``--json`` mode.
    """
    access_line = _coloured_status(view["access_status"])
    if view["has_valid_access"]:
        access_line += "  [green](access granted)[/green]"
    else:
        access_line += "  [red](no access)[/red]"

    header_lines = [
        f"[bold]Tenant:[/bold]       {view['tenant_id']}",
        f"[bold]Name:[/bold]         {view['name']}",
        f"[bold]Access:[/bold]       {access_line}",
        f"[bold]Entry fee:[/bold]    {'paid' if view['has_paid_entry_fee'] else '[yellow]unpaid[/yellow]'}",
        f"[bold]Customer:[/bold]     {view['stripe_customer_id'] or '(none)'}",
    ]
    console.print(Panel("\n".join(header_lines), title="Tenant Billing", border_style="blue"))

    sub = view.get("subscription")
    if sub is None:
        console.print("[dim]No subscription on record.[/dim]")
        return

    table = Table(title="Subscription", show_header=False, pad_edge=True, expand=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Stripe id", sub["subscription_id"] or "-")
    table.add_row("Plan", f"{sub['plan_label']} ({sub['billing_cycle']})")
    table.add_row("Status", _coloured_status(sub["status"]))
    table.add_row("Users", f"{sub['included_users']} ({sub['extra_users_count']} extra)")
    table.add_row("Activated", sub["activated_at"] or "-")
    table.add_row("Period end", sub["current_period_end"] or "-")
    console.print(table)


def display_tenant_list(console: Console, tenants: list[dict[str, Any]]) -> None:
    if not tenants:
        console.print("[dim]No tenants registered.[/dim]")
        return

    table = Table(title=f"Tenants ({len(tenants)})", pad_edge=True, expand=False)
    table.add_column("Tenant", style="bold")
    table.add_column("Name")
    table.add_column("Access")
    table.add_column("Entry Fee", justify="center")
    table.add_column("Customer", style="dim")

    for t in tenants:
        table.add_row(
            t["tenant_id"],
            t["name"],
            _coloured_status(t["access_status"]),
            "yes" if t["has_paid_entry_fee"] else "[yellow]no[/yellow]",
            t["stripe_customer_id"] or "-",
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def display_plans(console: Console, catalogue: dict[str, Any]) -> None:
    """Render the plan catalogue with the price ids of the active mode."""
    table = Table(title=f"Plans (Stripe {catalogue['stripe_mode']} mode)", pad_edge=True, expand=False)
    table.add_column("Plan", style="bold")
    table.add_column("Users", justify="right")
    table.add_column("Monthly Price")
    table.add_column("Yearly Price")
    table.add_column("Features")

    for plan in catalogue["plans"]:
        table.add_row(
            plan["label"],
            str(plan["max_users"]),
            plan["prices"]["monthly"] or "[red]unset[/red]",
            plan["prices"]["yearly"] or "[red]unset[/red]",
            ", ".join(plan["features"]),
        )

    seats = catalogue["extra_user_prices"]
    table.add_row(
        "Extra user",
        "+1",
        seats["monthly"] or "[red]unset[/red]",
        seats["yearly"] or "[red]unset[/red]",
        "-",
    )
    console.print(table)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def display_reconcile_result(console: Console, external_id: str, result: ReconcileResult) -> None:
    if result.tenant_id is None or result.status is None:
        console.print(f"[yellow]Subscription {external_id} matched no tenant; nothing changed.[/yellow]")
        return
    console.print(
        f"[green]Reconciled[/green] {external_id} for tenant [bold]{result.tenant_id}[/bold]: "
        f"subscription {_coloured_status(result.status.value)}, "
        f"access {_coloured_status(result.access_status.value if result.access_status else None)}"
    )
