"""Ledger access and mutation events."""

from finance_engine.ledger.gateway import LedgerGateway, LedgerListener

__all__ = ["LedgerGateway", "LedgerListener"]
