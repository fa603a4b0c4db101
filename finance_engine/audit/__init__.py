"""Audit logging package."""

from finance_engine.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
