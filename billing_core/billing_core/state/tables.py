"""SQLAlchemy 2.0 ORM table definitions for the billing state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON (TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all billing tables."""


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TenantTable(Base):
    """A customer organization: the unit of billing and access control.

    ``access_status`` is the only column the rest of the application reads
    to decide whether the tenant's users may sign in.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    has_paid_entry_fee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    access_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending_payment")
    stripe_customer_id: Mapped[str | None] = mapped_column(String(256), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "access_status IN ('pending_payment', 'active', 'suspended')",
            name="ck_tenants_access_status",
        ),
    )


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class SubscriptionTable(Base):
    """Local mirror of a Stripe subscription.

    At most one non-canceled row exists per tenant (partial unique index).
    Rows are never deleted; cancellation is a status transition.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), ForeignKey("tenants.id"), nullable=False)
    stripe_customer_id: Mapped[str] = mapped_column(String(256), nullable=False)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(256), nullable=True, unique=True)
    plan_type: Mapped[str] = mapped_column(String(32), nullable=False, default="standard")
    billing_cycle: Mapped[str] = mapped_column(String(32), nullable=False, default="monthly")
    extra_users_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="inactive")
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("extra_users_count >= 0", name="ck_subscriptions_extra_users_nonneg"),
        CheckConstraint(
            "status IN ('inactive', 'trial', 'active', 'past_due', 'canceled')",
            name="ck_subscriptions_status",
        ),
        CheckConstraint("plan_type IN ('standard', 'premium')", name="ck_subscriptions_plan_type"),
        CheckConstraint("billing_cycle IN ('monthly', 'yearly')", name="ck_subscriptions_billing_cycle"),
        Index(
            "uq_subscriptions_tenant_current",
            "tenant_id",
            unique=True,
            postgresql_where=text("status <> 'canceled'"),
            sqlite_where=text("status <> 'canceled'"),
        ),
        Index("ix_subscriptions_stripe_customer", "stripe_customer_id"),
    )


# ---------------------------------------------------------------------------
# Idempotency ledger
# ---------------------------------------------------------------------------


class ProcessedEventTable(Base):
    """Append-only ledger of applied Stripe events.

    The unique constraint on ``stripe_event_id`` is the mutual-exclusion
    primitive for concurrent deliveries of the same event.
    """

    __tablename__ = "processed_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stripe_event_id: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_processed_events_type", "event_type"),)
