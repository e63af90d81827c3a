"""Billing state reconciliation engine: persistence and domain logic."""

__version__ = "0.4.0"
