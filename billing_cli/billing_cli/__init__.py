"""Operator CLI for the billing state reconciliation engine."""

__version__ = "0.4.0"
