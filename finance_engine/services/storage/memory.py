"""
In-Memory Storage Implementation

Backs the test suite and embedded single-process use.

Every store keeps private deep copies: callers can mutate what they get
back without touching stored state, which is what lets the version
check catch lost updates. Each store serializes its own writes with an
asyncio lock; the check-and-replace inside `update_*` is therefore
atomic with respect to other coroutines.
"""

import asyncio
from datetime import datetime
from typing import Callable, Generic, Optional, TypeVar
from uuid import UUID

from finance_engine.models.audit import AuditEvent
from finance_engine.models.budget import Budget
from finance_engine.models.common import OwnedEntity, Period
from finance_engine.models.goal import Goal, GoalPriority, GoalStatus, GoalType
from finance_engine.models.ledger import LedgerEntry, LedgerQuery
from finance_engine.models.notification import (
    Notification,
    NotificationPriority,
    NotificationType,
)
from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    EntityMissingError,
    GoalStorageInterface,
    LedgerStorageInterface,
    NotificationStorageInterface,
    VersionConflictError,
)

EntityT = TypeVar("EntityT", bound=OwnedEntity)


class VersionedCollection(Generic[EntityT]):
    """Owner-scoped, version-checked dictionary of entities."""

    def __init__(self, entity_type: str):
        self._entity_type = entity_type
        self._items: dict[UUID, EntityT] = {}
        self._lock = asyncio.Lock()

    async def insert(self, item: EntityT) -> EntityT:
        async with self._lock:
            if item.id in self._items:
                raise DuplicateError(f"{self._entity_type} already exists: {item.id}")
            self._items[item.id] = item.model_copy(deep=True)
            return item.model_copy(deep=True)

    async def get(self, owner_id: str, item_id: UUID) -> Optional[EntityT]:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or item.owner_id != owner_id:
                return None
            return item.model_copy(deep=True)

    async def replace(self, item: EntityT) -> EntityT:
        async with self._lock:
            stored = self._items.get(item.id)
            if stored is None or stored.owner_id != item.owner_id:
                raise EntityMissingError(f"{self._entity_type} not found: {item.id}")
            if stored.version != item.version:
                raise VersionConflictError(
                    self._entity_type, item.id, item.version, stored.version
                )
            saved = item.model_copy(deep=True, update={"version": item.version + 1})
            self._items[item.id] = saved
            return saved.model_copy(deep=True)

    async def remove(self, owner_id: str, item_id: UUID) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or item.owner_id != owner_id:
                return False
            del self._items[item_id]
            return True

    async def select(self, predicate: Callable[[EntityT], bool]) -> list[EntityT]:
        async with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._items.values()
                if predicate(item)
            ]

    async def remove_where(self, predicate: Callable[[EntityT], bool]) -> int:
        async with self._lock:
            doomed = [item_id for item_id, item in self._items.items() if predicate(item)]
            for item_id in doomed:
                del self._items[item_id]
            return len(doomed)

    async def apply_where(
        self,
        predicate: Callable[[EntityT], bool],
        changes: dict,
    ) -> int:
        """Bulk field update; bumps the version of every touched entity."""
        async with self._lock:
            count = 0
            for item_id, item in list(self._items.items()):
                if predicate(item):
                    update = dict(changes, version=item.version + 1)
                    self._items[item_id] = item.model_copy(update=update)
                    count += 1
            return count


def _page(items: list, limit: Optional[int], offset: int) -> list:
    if limit is None:
        return items[offset:]
    return items[offset:offset + limit]


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger kept in process memory."""

    def __init__(self):
        self._entries: VersionedCollection[LedgerEntry] = VersionedCollection("ledger_entry")

    async def create_entry(self, entry: LedgerEntry) -> LedgerEntry:
        return await self._entries.insert(entry)

    async def get_entry(self, owner_id: str, entry_id: UUID) -> Optional[LedgerEntry]:
        return await self._entries.get(owner_id, entry_id)

    async def update_entry(self, entry: LedgerEntry) -> LedgerEntry:
        return await self._entries.replace(entry)

    async def delete_entry(self, owner_id: str, entry_id: UUID) -> bool:
        return await self._entries.remove(owner_id, entry_id)

    async def query(self, query: LedgerQuery) -> list[LedgerEntry]:
        entries = await self._entries.select(query.matches)
        entries.sort(key=lambda e: (e.date, e.created_at))
        return _page(entries, query.limit, 0)


class InMemoryBudgetStorage(BudgetStorageInterface):
    """Budgets kept in process memory."""

    def __init__(self):
        self._budgets: VersionedCollection[Budget] = VersionedCollection("budget")

    async def save_budget(self, budget: Budget) -> Budget:
        return await self._budgets.insert(budget)

    async def get_budget(self, owner_id: str, budget_id: UUID) -> Optional[Budget]:
        return await self._budgets.get(owner_id, budget_id)

    async def update_budget(self, budget: Budget) -> Budget:
        return await self._budgets.replace(budget)

    async def delete_budget(self, owner_id: str, budget_id: UUID) -> bool:
        return await self._budgets.remove(owner_id, budget_id)

    async def list_budgets(
        self,
        owner_id: str,
        period: Optional[Period] = None,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Budget]:
        def matches(budget: Budget) -> bool:
            if budget.owner_id != owner_id:
                return False
            if period is not None and budget.period != period:
                return False
            if is_active is not None and budget.is_active != is_active:
                return False
            if category is not None and budget.category != category:
                return False
            return True

        budgets = await self._budgets.select(matches)
        budgets.sort(key=lambda b: b.created_at, reverse=True)
        return _page(budgets, limit, offset)

    async def find_overlapping(
        self,
        owner_id: str,
        category: str,
        start_date: datetime,
        end_date: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Budget]:
        def matches(budget: Budget) -> bool:
            return (
                budget.owner_id == owner_id
                and budget.category == category
                and budget.is_active
                and budget.id != exclude_id
                and budget.overlaps(start_date, end_date)
            )

        found = await self._budgets.select(matches)
        if not found:
            return None
        found.sort(key=lambda b: b.start_date)
        return found[0]


class InMemoryGoalStorage(GoalStorageInterface):
    """Goals kept in process memory."""

    def __init__(self):
        self._goals: VersionedCollection[Goal] = VersionedCollection("goal")

    async def save_goal(self, goal: Goal) -> Goal:
        return await self._goals.insert(goal)

    async def get_goal(self, owner_id: str, goal_id: UUID) -> Optional[Goal]:
        return await self._goals.get(owner_id, goal_id)

    async def update_goal(self, goal: Goal) -> Goal:
        return await self._goals.replace(goal)

    async def delete_goal(self, owner_id: str, goal_id: UUID) -> bool:
        return await self._goals.remove(owner_id, goal_id)

    async def list_goals(
        self,
        owner_id: str,
        goal_type: Optional[GoalType] = None,
        status: Optional[GoalStatus] = None,
        priority: Optional[GoalPriority] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Goal]:
        def matches(goal: Goal) -> bool:
            if goal.owner_id != owner_id:
                return False
            if goal_type is not None and goal.type != goal_type:
                return False
            if status is not None and goal.status != status:
                return False
            if priority is not None and goal.priority != priority:
                return False
            return True

        goals = await self._goals.select(matches)
        goals.sort(key=lambda g: g.created_at, reverse=True)
        return _page(goals, limit, offset)

    async def list_due_recurring(self, now: datetime) -> list[Goal]:
        def is_due(goal: Goal) -> bool:
            due_at = goal.recurring_contribution.next_due_at
            return (
                goal.status == GoalStatus.ACTIVE
                and due_at is not None
                and due_at <= now
            )

        goals = await self._goals.select(is_due)
        goals.sort(key=lambda g: g.recurring_contribution.next_due_at)
        return goals


class InMemoryNotificationStorage(NotificationStorageInterface):
    """Notifications kept in process memory."""

    def __init__(self):
        self._notifications: VersionedCollection[Notification] = VersionedCollection(
            "notification"
        )

    async def save_notification(self, notification: Notification) -> Notification:
        return await self._notifications.insert(notification)

    async def get_notification(
        self,
        owner_id: str,
        notification_id: UUID,
    ) -> Optional[Notification]:
        return await self._notifications.get(owner_id, notification_id)

    async def update_notification(self, notification: Notification) -> Notification:
        return await self._notifications.replace(notification)

    async def delete_notification(self, owner_id: str, notification_id: UUID) -> bool:
        return await self._notifications.remove(owner_id, notification_id)

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
        def matches(notification: Notification) -> bool:
            if notification.owner_id != owner_id:
                return False
            if notification_type is not None and notification.type != notification_type:
                return False
            if priority is not None and notification.priority != priority:
                return False
            if is_read is not None and notification.is_read != is_read:
                return False
            if is_archived is not None and notification.is_archived != is_archived:
                return False
            return True

        notifications = await self._notifications.select(matches)
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return _page(notifications, limit, offset)

    async def count_unread(self, owner_id: str, now: datetime) -> int:
        unread = await self._notifications.select(
            lambda n: n.owner_id == owner_id and n.counts_as_unread(now)
        )
        return len(unread)

    async def mark_all_read(self, owner_id: str, read_at: datetime) -> int:
        return await self._notifications.apply_where(
            lambda n: n.owner_id == owner_id and not n.is_read,
            {"is_read": True, "read_at": read_at, "updated_at": read_at},
        )

    async def delete_expired(self, now: datetime) -> int:
        return await self._notifications.remove_where(lambda n: n.is_expired(now))


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []
        self._lock = asyncio.Lock()

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._lock:
            self._events.append(event.model_copy(deep=True))
            return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        async with self._lock:
            events = [
                e for e in self._events
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        async with self._lock:
            events = list(self._events)
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
