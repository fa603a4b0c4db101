"""
Finance Engine Orchestrator

Ties the components together and exposes the owner-scoped operations
callers use. The owner id always comes from the caller's (external)
authentication layer.

Wiring:
    LedgerGateway --(mutation events)--> BudgetAggregator --> AlertDispatcher
    GoalAccountingEngine --> AlertDispatcher
                         --> LedgerGateway (contribution entries)

DESIGN DECISION: The orchestrator adds no business rules of its own.
Every invariant lives in the component that owns the entity, so the
same guarantees hold whether a caller uses this facade or a component
directly.
"""

from datetime import datetime
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finance_engine.alerts import AlertDispatcher
from finance_engine.audit import AuditLogger, configure_logging
from finance_engine.budgets import BudgetAggregator
from finance_engine.config import EngineSettings, get_settings
from finance_engine.goals import ContributionOutcome, GoalAccountingEngine
from finance_engine.ledger import LedgerGateway
from finance_engine.models import (
    Budget,
    BudgetCreate,
    BudgetPerformance,
    BudgetSummary,
    BudgetUpdate,
    ContributionPoint,
    EntryKind,
    Goal,
    GoalCreate,
    GoalPriority,
    GoalStatus,
    GoalSummary,
    GoalType,
    GoalUpdate,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    Notification,
    NotificationPriority,
    NotificationSummary,
    NotificationType,
    Period,
    utc_now,
)
from finance_engine.queries import SummaryQueries
from finance_engine.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryLedgerStorage,
    InMemoryNotificationStorage,
    LedgerStorageInterface,
    NotificationStorageInterface,
)

logger = structlog.get_logger(__name__)


class FinanceEngine:
    """
    Facade over the accounting and alerting components.

    Components are public attributes for callers that need the full
    surface; the methods below cover the everyday operations.
    """

    def __init__(
        self,
        ledger_storage: LedgerStorageInterface,
        budget_storage: BudgetStorageInterface,
        goal_storage: GoalStorageInterface,
        notification_storage: NotificationStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        settings = settings or get_settings().engine
        audit_logger = audit_logger or AuditLogger()

        self.alerts = AlertDispatcher(
            notification_storage, audit_logger=audit_logger, settings=settings, clock=clock
        )
        self.ledger = LedgerGateway(
            ledger_storage,
            dispatcher=self.alerts,
            audit_logger=audit_logger,
            settings=settings,
            clock=clock,
        )
        self.budgets = BudgetAggregator(
            budget_storage,
            self.ledger,
            self.alerts,
            audit_logger=audit_logger,
            settings=settings,
            clock=clock,
        )
        self.goals = GoalAccountingEngine(
            goal_storage,
            self.ledger,
            self.alerts,
            audit_logger=audit_logger,
            settings=settings,
            clock=clock,
        )
        self.summaries = SummaryQueries(budget_storage, goal_storage, self.ledger, clock=clock)
        self.audit_logger = audit_logger

        # Every ledger mutation drives budget recomputation
        self.ledger.add_listener(self.budgets.on_ledger_mutation)

    # =========================================================================
    # LEDGER
    # =========================================================================

    async def record_entry(
        self,
        owner_id: str,
        data: Union[LedgerEntryCreate, dict[str, Any]],
    ) -> LedgerEntry:
        return await self.ledger.record_entry(owner_id, data)

    async def edit_entry(
        self,
        owner_id: str,
        entry_id: UUID,
        patch: Union[LedgerEntryUpdate, dict[str, Any]],
    ) -> LedgerEntry:
        return await self.ledger.edit_entry(owner_id, entry_id, patch)

    async def remove_entry(self, owner_id: str, entry_id: UUID) -> None:
        await self.ledger.remove_entry(owner_id, entry_id)

    async def get_entry(self, owner_id: str, entry_id: UUID) -> LedgerEntry:
        return await self.ledger.get_entry(owner_id, entry_id)

    async def query_entries(
        self,
        owner_id: str,
        kind: Optional[EntryKind] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        description_contains: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[LedgerEntry]:
        return await self.ledger.query(
            owner_id,
            kind=kind,
            category=category,
            date_from=date_from,
            date_to=date_to,
            description_contains=description_contains,
            limit=limit,
        )

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def create_budget(
        self,
        owner_id: str,
        data: Union[BudgetCreate, dict[str, Any]],
    ) -> Budget:
        return await self.budgets.create_budget(owner_id, data)

    async def get_budget(self, owner_id: str, budget_id: UUID) -> Budget:
        return await self.budgets.get_budget(owner_id, budget_id)

    async def list_budgets(
        self,
        owner_id: str,
        period: Optional[Period] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Budget]:
        return await self.budgets.list_budgets(
            owner_id, period=period, is_active=is_active, limit=limit, offset=offset
        )

    async def update_budget(
        self,
        owner_id: str,
        budget_id: UUID,
        patch: Union[BudgetUpdate, dict[str, Any]],
    ) -> Budget:
        return await self.budgets.update_budget(owner_id, budget_id, patch)

    async def delete_budget(self, owner_id: str, budget_id: UUID) -> None:
        await self.budgets.delete_budget(owner_id, budget_id)

    async def toggle_budget(self, owner_id: str, budget_id: UUID) -> Budget:
        return await self.budgets.toggle_active(owner_id, budget_id)

    async def update_budget_alerts(
        self,
        owner_id: str,
        budget_id: UUID,
        enabled: Optional[bool] = None,
        threshold_percent: Optional[float] = None,
    ) -> Budget:
        return await self.budgets.update_alert_config(
            owner_id, budget_id, enabled=enabled, threshold_percent=threshold_percent
        )

    async def recompute_budgets(self, owner_id: str) -> list[Budget]:
        return await self.budgets.recompute_all(owner_id)

    async def budget_summary(
        self,
        owner_id: str,
        period: Period = Period.MONTHLY,
    ) -> BudgetSummary:
        return await self.summaries.budget_summary(owner_id, period)

    async def budget_performance(
        self,
        owner_id: str,
        budget_id: UUID,
        months: int = 6,
    ) -> BudgetPerformance:
        return await self.summaries.budget_performance(owner_id, budget_id, months)

    # =========================================================================
    # GOALS
    # =========================================================================

    async def create_goal(
        self,
        owner_id: str,
        data: Union[GoalCreate, dict[str, Any]],
    ) -> Goal:
        return await self.goals.create_goal(owner_id, data)

    async def get_goal(self, owner_id: str, goal_id: UUID) -> Goal:
        return await self.goals.get_goal(owner_id, goal_id)

    async def list_goals(
        self,
        owner_id: str,
        goal_type: Optional[GoalType] = None,
        status: Optional[GoalStatus] = None,
        priority: Optional[GoalPriority] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Goal]:
        return await self.goals.list_goals(
            owner_id,
            goal_type=goal_type,
            status=status,
            priority=priority,
            limit=limit,
            offset=offset,
        )

    async def update_goal(
        self,
        owner_id: str,
        goal_id: UUID,
        patch: Union[GoalUpdate, dict[str, Any]],
    ) -> Goal:
        return await self.goals.update_goal(owner_id, goal_id, patch)

    async def delete_goal(self, owner_id: str, goal_id: UUID) -> None:
        await self.goals.delete_goal(owner_id, goal_id)

    async def contribute(
        self,
        owner_id: str,
        goal_id: UUID,
        amount: Any,
        description: str = "",
    ) -> ContributionOutcome:
        return await self.goals.add_contribution(owner_id, goal_id, amount, description)

    async def set_goal_status(
        self,
        owner_id: str,
        goal_id: UUID,
        status: Union[GoalStatus, str],
    ) -> Goal:
        return await self.goals.set_status(owner_id, goal_id, status)

    async def add_milestone(
        self,
        owner_id: str,
        goal_id: UUID,
        name: str,
        target_amount: Any,
        deadline: Optional[datetime] = None,
    ) -> Goal:
        return await self.goals.add_milestone(owner_id, goal_id, name, target_amount, deadline)

    async def process_due_recurring(self, now: Optional[datetime] = None) -> int:
        """Scheduled job, not per-user."""
        return await self.goals.process_due_recurring(now)

    async def goal_summary(self, owner_id: str) -> GoalSummary:
        return await self.summaries.goal_summary(owner_id)

    async def contribution_history(
        self,
        owner_id: str,
        goal_id: UUID,
    ) -> list[ContributionPoint]:
        return await self.goals.contribution_history(owner_id, goal_id)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def list_notifications(
        self,
        owner_id: str,
        notification_type: Optional[NotificationType] = None,
        priority: Optional[NotificationPriority] = None,
        is_read: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Notification]:
        return await self.alerts.list_notifications(
            owner_id,
            notification_type=notification_type,
            priority=priority,
            is_read=is_read,
            limit=limit,
            offset=offset,
        )

    async def get_notification(self, owner_id: str, notification_id: UUID) -> Notification:
        return await self.alerts.get(owner_id, notification_id)

    async def mark_notification_read(
        self,
        owner_id: str,
        notification_id: UUID,
    ) -> Notification:
        return await self.alerts.mark_read(owner_id, notification_id)

    async def mark_all_notifications_read(self, owner_id: str) -> int:
        return await self.alerts.mark_all_read(owner_id)

    async def archive_notification(
        self,
        owner_id: str,
        notification_id: UUID,
    ) -> Notification:
        return await self.alerts.archive(owner_id, notification_id)

    async def delete_notification(self, owner_id: str, notification_id: UUID) -> None:
        await self.alerts.delete(owner_id, notification_id)

    async def unread_count(self, owner_id: str) -> int:
        return await self.alerts.unread_count(owner_id)

    async def notification_summary(self, owner_id: str) -> NotificationSummary:
        return await self.alerts.summary(owner_id)

    async def purge_expired_notifications(self, now: Optional[datetime] = None) -> int:
        """Scheduled job, not per-user."""
        return await self.alerts.purge_expired(now)


def create_engine_components(
    use_google_sheets: Optional[bool] = None,
    settings: Optional[EngineSettings] = None,
    clock: Callable[[], datetime] = utc_now,
) -> tuple[FinanceEngine, Optional[GoogleSheetsClient]]:
    """
    Factory function to create a fully wired engine.

    Args:
        use_google_sheets: Persist the ledger and audit log to Google
                    Sheets. Defaults to the `use_google_sheets` app setting.
                    Falls back to in-memory storage if Sheets is not
                    configured.

    Returns:
        (engine, sheets_client)
    """
    app_settings = get_settings().app
    configure_logging(app_settings.log_level)
    if use_google_sheets is None:
        use_google_sheets = app_settings.use_google_sheets

    sheets_client = None
    ledger_storage: LedgerStorageInterface = InMemoryLedgerStorage()
    audit_storage: Optional[AuditStorageInterface] = None

    if use_google_sheets:
        try:
            sheets_client = GoogleSheetsClient()
            ledger_storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("google_sheets_unavailable", error=str(e))
            sheets_client = None
            ledger_storage = InMemoryLedgerStorage()
            audit_storage = None

    engine = FinanceEngine(
        ledger_storage=ledger_storage,
        budget_storage=InMemoryBudgetStorage(),
        goal_storage=InMemoryGoalStorage(),
        notification_storage=InMemoryNotificationStorage(),
        audit_logger=AuditLogger(audit_storage),
        settings=settings,
        clock=clock,
    )
    return engine, sheets_client
