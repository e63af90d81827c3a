"""HTTP surface of the billing state reconciliation engine."""

__version__ = "0.4.0"
