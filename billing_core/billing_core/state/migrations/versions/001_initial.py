"""Initial billing schema: tenants, subscriptions, processed_events.

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("has_paid_entry_fee", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("access_status", sa.String(32), nullable=False, server_default="pending_payment"),
        sa.Column("stripe_customer_id", sa.String(256), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "access_status IN ('pending_payment', 'active', 'suspended')",
            name="ck_tenants_access_status",
        ),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.String(64), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("stripe_customer_id", sa.String(256), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(256), nullable=True, unique=True),
        sa.Column("plan_type", sa.String(32), nullable=False, server_default="standard"),
        sa.Column("billing_cycle", sa.String(32), nullable=False, server_default="monthly"),
        sa.Column("extra_users_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="inactive"),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("extra_users_count >= 0", name="ck_subscriptions_extra_users_nonneg"),
        sa.CheckConstraint(
            "status IN ('inactive', 'trial', 'active', 'past_due', 'canceled')",
            name="ck_subscriptions_status",
        ),
        sa.CheckConstraint("plan_type IN ('standard', 'premium')", name="ck_subscriptions_plan_type"),
        sa.CheckConstraint("billing_cycle IN ('monthly', 'yearly')", name="ck_subscriptions_billing_cycle"),
    )
    op.create_index(
        "uq_subscriptions_tenant_current",
        "subscriptions",
        ["tenant_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'canceled'"),
        sqlite_where=sa.text("status <> 'canceled'"),
    )
    op.create_index("ix_subscriptions_stripe_customer", "subscriptions", ["stripe_customer_id"])

    op.create_table(
        "processed_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("stripe_event_id", sa.String(256), nullable=False, unique=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB().with_variant(sa.JSON(), "sqlite"),
            nullable=True,
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_processed_events_type", "processed_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_processed_events_type", table_name="processed_events")
    op.drop_table("processed_events")
    op.drop_index("ix_subscriptions_stripe_customer", table_name="subscriptions")
    op.drop_index("uq_subscriptions_tenant_current", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("tenants")
