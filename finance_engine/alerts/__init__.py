"""Notification creation and lifecycle."""

from finance_engine.alerts.dispatcher import AlertDispatcher

__all__ = ["AlertDispatcher"]
