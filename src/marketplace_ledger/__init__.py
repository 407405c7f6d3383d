"""Marketplace fee, ledger and payment reconciliation engine."""

__version__ = "0.1.0"
