"""
Storage Services Package

Abstract interfaces plus two backends: versioned in-memory stores for
tests and embedded use, and Google Sheets for the ledger and audit log.
"""

from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    EntityMissingError,
    GoalStorageInterface,
    LedgerStorageInterface,
    NotificationStorageInterface,
    StorageConnectionError,
    StorageError,
    VersionConflictError,
)
from finance_engine.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryLedgerStorage,
    InMemoryNotificationStorage,
)
from finance_engine.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "GoalStorageInterface",
    "LedgerStorageInterface",
    "NotificationStorageInterface",
    # Exceptions
    "DuplicateError",
    "EntityMissingError",
    "StorageConnectionError",
    "StorageError",
    "VersionConflictError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "InMemoryGoalStorage",
    "InMemoryLedgerStorage",
    "InMemoryNotificationStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
]
