"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from billing_core.state.database import create_tables, get_engine, get_session, get_session_factory
from billing_core.state.repository import (
    ProcessedEventRepository,
    SubscriptionRepository,
    TenantRepository,
)

__all__ = [
    "ProcessedEventRepository",
    "SubscriptionRepository",
    "TenantRepository",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
]
