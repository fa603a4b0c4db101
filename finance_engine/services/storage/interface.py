"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the ledger and notification stores as external collaborators
2. Use in-memory storage for testing and embedded use
3. Swap in Google Sheets (or a real database) without touching engine logic

CONCURRENCY CONTRACT:
Every `update_*` method takes the entity as the caller last read it.
If the stored version differs from `entity.version`, the store raises
VersionConflictError and writes nothing. On success the store returns a
copy with `version + 1`. This is what makes read-modify-write of
`spent`, `current_amount`, `last_alert_sent_at` and `next_due_at` atomic
per entity.

All reads are owner-scoped. Passing the wrong owner returns None exactly
like a missing id.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from finance_engine.models.audit import AuditEvent
from finance_engine.models.budget import Budget
from finance_engine.models.common import Period
from finance_engine.models.goal import Goal, GoalPriority, GoalStatus, GoalType
from finance_engine.models.ledger import LedgerEntry, LedgerQuery
from finance_engine.models.notification import (
    Notification,
    NotificationPriority,
    NotificationType,
)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the ledger collaborator.
    """

    @abstractmethod
    async def create_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Persist a new ledger entry.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_entry(self, owner_id: str, entry_id: UUID) -> Optional[LedgerEntry]:
        pass

    @abstractmethod
    async def update_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Replace an existing entry (version checked).

        Raises:
            VersionConflictError: If the entry changed since it was read
            StorageError: If the entry does not exist or the write fails
        """
        pass

    @abstractmethod
    async def delete_entry(self, owner_id: str, entry_id: UUID) -> bool:
        pass

    @abstractmethod
    async def query(self, query: LedgerQuery) -> list[LedgerEntry]:
        """
        Return entries matching the filter, oldest first.
        """
        pass


class BudgetStorageInterface(ABC):
    """Abstract interface for budget storage."""

    @abstractmethod
    async def save_budget(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def get_budget(self, owner_id: str, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> Budget:
        """Version-checked replace. See module docstring."""
        pass

    @abstractmethod
    async def delete_budget(self, owner_id: str, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budgets(
        self,
        owner_id: str,
        period: Optional[Period] = None,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Budget]:
        """
        List an owner's budgets, newest first.
        """
        pass

    @abstractmethod
    async def find_overlapping(
        self,
        owner_id: str,
        category: str,
        start_date: datetime,
        end_date: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Budget]:
        """
        Find an ACTIVE budget of the same owner + category whose
        [start, end] range intersects the given one (inclusive).
        """
        pass


class GoalStorageInterface(ABC):
    """Abstract interface for goal storage."""

    @abstractmethod
    async def save_goal(self, goal: Goal) -> Goal:
        pass

    @abstractmethod
    async def get_goal(self, owner_id: str, goal_id: UUID) -> Optional[Goal]:
        pass

    @abstractmethod
    async def update_goal(self, goal: Goal) -> Goal:
        """Version-checked replace. See module docstring."""
        pass

    @abstractmethod
    async def delete_goal(self, owner_id: str, goal_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_goals(
        self,
        owner_id: str,
        goal_type: Optional[GoalType] = None,
        status: Optional[GoalStatus] = None,
        priority: Optional[GoalPriority] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Goal]:
        pass

    @abstractmethod
    async def list_due_recurring(self, now: datetime) -> list[Goal]:
        """
        Active goals of ANY owner whose recurring contribution is due
        (`next_due_at <= now`). Used only by the scheduled sweep.
        """
        pass


class NotificationStorageInterface(ABC):
    """Abstract interface for notification storage."""

    @abstractmethod
    async def save_notification(self, notification: Notification) -> Notification:
        pass

    @abstractmethod
    async def get_notification(
        self,
        owner_id: str,
        notification_id: UUID,
    ) -> Optional[Notification]:
        pass

    @abstractmethod
    async def update_notification(self, notification: Notification) -> Notification:
        """Version-checked replace. See module docstring."""
        pass

    @abstractmethod
    async def delete_notification(self, owner_id: str, notification_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_notifications(
        self,
        owner_id: str,
        notification_type: Optional[NotificationType] = None,
        priority: Optional[NotificationPriority] = None,
        is_read: Optional[bool] = None,
        is_archived: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Notification]:
        """
        List an owner's notifications, newest first.
        """
        pass

    @abstractmethod
    async def count_unread(self, owner_id: str, now: datetime) -> int:
        """Unread, unarchived, unexpired notifications."""
        pass

    @abstractmethod
    async def mark_all_read(self, owner_id: str, read_at: datetime) -> int:
        """Mark every unread notification of the owner as read. Returns count."""
        pass

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        """Remove notifications whose expiry has passed. Returns count."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class EntityMissingError(StorageError):
    """Update target no longer exists in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class VersionConflictError(StorageError):
    """Entity was modified by someone else since it was read."""

    def __init__(self, entity_type: str, entity_id: UUID, expected: int, actual: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity_type} {entity_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
