"""Services package."""

from finance_engine.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    LedgerStorageInterface,
    NotificationStorageInterface,
    StorageError,
    VersionConflictError,
)

__all__ = [
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "GoalStorageInterface",
    "LedgerStorageInterface",
    "NotificationStorageInterface",
    "StorageError",
    "VersionConflictError",
]
