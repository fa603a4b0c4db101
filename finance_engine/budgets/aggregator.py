"""
Budget Aggregator

Owns budgets and keeps their cached `spent` consistent with the ledger.

CRITICAL INVARIANTS:
1. `spent` is always a FULL recompute from the ledger, never an
   increment. Recomputing twice gives the same answer, so replays and
   retries are harmless.
2. No two active budgets of one owner share a category over
   intersecting date ranges. Checked before every write that could
   break it (create, category/date edits, activation).
3. A budget alert goes out only after this process won the
   version-checked write of `last_alert_sent_at`. Concurrent
   evaluators see each other's claim and stay quiet, so a burst of
   transactions produces one alert per window.
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finance_engine.alerts import AlertDispatcher
from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings
from finance_engine.concurrency import retry_on_conflict, run_with_conflict_retry
from finance_engine.errors import NotFoundError, OverlapConflict, ValidationError
from finance_engine.ledger import LedgerGateway
from finance_engine.models.audit import AuditEventType
from finance_engine.models.budget import (
    AlertConfig,
    Budget,
    BudgetCreate,
    BudgetUpdate,
)
from finance_engine.models.common import Period, utc_now
from finance_engine.models.ledger import EntryKind, LedgerEntry
from finance_engine.models.notification import (
    Notification,
    NotificationPriority,
    NotificationType,
)
from finance_engine.models.validation import ValidationIssue
from finance_engine.services.storage import BudgetStorageInterface
from finance_engine.validation import BudgetValidator, ensure_valid, parse_input

logger = structlog.get_logger(__name__)

# Changing any of these can create an overlap
_STRUCTURAL_FIELDS = ("category", "start_date", "end_date")

# Fields a patch may explicitly clear
_CLEARABLE_FIELDS = {"description", "subcategory"}


class BudgetAggregator:
    """Budget CRUD, spent recomputation and threshold alerts."""

    def __init__(
        self,
        storage: BudgetStorageInterface,
        ledger: LedgerGateway,
        dispatcher: AlertDispatcher,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or EngineSettings()
        self._clock = clock
        self._validator = BudgetValidator()
        self._max_update_attempts = self._settings.max_update_attempts
        # Serializes overlap-check-then-write per owner within this process.
        # An entry lives only while some task holds or waits on the lock.
        self._owner_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_budget(
        self,
        owner_id: str,
        data: Union[BudgetCreate, dict[str, Any]],
    ) -> Budget:
        """
        Create a budget and compute its initial spending.

        Raises:
            ValidationError: malformed input, empty name/category, bad range
            OverlapConflict: an active budget already covers part of the range
        """
        budget_input = parse_input(BudgetCreate, data, "budget")
        alert_input = budget_input.alert_config
        threshold = (
            alert_input.threshold_percent
            if alert_input and alert_input.threshold_percent is not None
            else self._settings.default_alert_threshold
        )

        ensure_valid(self._validator.validate(
            name=budget_input.name,
            category=budget_input.category,
            amount=budget_input.amount,
            start_date=budget_input.start_date,
            end_date=budget_input.end_date,
            threshold_percent=threshold,
        ))

        async with self._owner_lock(owner_id):
            if budget_input.is_active:
                await self._ensure_no_overlap(
                    owner_id,
                    budget_input.category,
                    budget_input.start_date,
                    budget_input.end_date,
                )

            now = self._clock()
            budget = Budget(
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
                name=budget_input.name,
                description=budget_input.description,
                category=budget_input.category,
                subcategory=budget_input.subcategory,
                amount=budget_input.amount,
                spent=Decimal("0"),
                period=budget_input.period,
                start_date=budget_input.start_date,
                end_date=budget_input.end_date,
                currency=budget_input.currency or self._settings.default_currency,
                is_active=budget_input.is_active,
                alert_config=AlertConfig(
                    enabled=alert_input.enabled if alert_input else True,
                    threshold_percent=threshold,
                ),
                tags=budget_input.tags,
            )
            saved = await self._storage.save_budget(budget)

        logger.info(
            "budget_created",
            owner_id=owner_id,
            budget_id=str(saved.id),
            category=saved.category,
        )
        await self._audit.log_budget_change(
            AuditEventType.BUDGET_CREATED,
            saved.id,
            owner_id,
            saved.name,
            {"category": saved.category, "amount": str(saved.amount)},
        )
        return await self._refresh(saved)

    async def get_budget(self, owner_id: str, budget_id: UUID) -> Budget:
        budget = await self._storage.get_budget(owner_id, budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)
        return budget

    async def list_budgets(
        self,
        owner_id: str,
        period: Optional[Period] = None,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Budget]:
        return await self._storage.list_budgets(
            owner_id,
            period=period,
            is_active=is_active,
            category=category,
            limit=limit or self._settings.default_page_size,
            offset=offset,
        )

    async def update_budget(
        self,
        owner_id: str,
        budget_id: UUID,
        patch: Union[BudgetUpdate, dict[str, Any]],
    ) -> Budget:
        """
        Merge a partial edit, re-validate the merged budget and recompute.

        Raises:
            NotFoundError, ValidationError, OverlapConflict
        """
        budget_patch = parse_input(BudgetUpdate, patch, "budget")
        changes = {
            key: value
            for key, value in budget_patch.model_dump(exclude_unset=True).items()
            if value is not None or key in _CLEARABLE_FIELDS
        }
        structural = any(field in changes for field in _STRUCTURAL_FIELDS)

        async def step() -> Budget:
            current = await self.get_budget(owner_id, budget_id)
            merged = current.model_copy(
                deep=True,
                update=dict(changes, updated_at=self._clock()),
            )
            ensure_valid(self._validator.validate(
                name=merged.name,
                category=merged.category,
                amount=merged.amount,
                start_date=merged.start_date,
                end_date=merged.end_date,
            ))
            if merged.is_active and structural:
                await self._ensure_no_overlap(
                    owner_id,
                    merged.category,
                    merged.start_date,
                    merged.end_date,
                    exclude_id=budget_id,
                )
            return await self._storage.update_budget(merged)

        async with self._owner_lock(owner_id):
            saved = await run_with_conflict_retry(step, self._max_update_attempts)

        await self._audit.log_budget_change(
            AuditEventType.BUDGET_UPDATED,
            saved.id,
            owner_id,
            saved.name,
            {"fields": sorted(changes)},
        )
        return await self._refresh(saved)

    async def delete_budget(self, owner_id: str, budget_id: UUID) -> None:
        """Remove the budget. Ledger entries are untouched."""
        budget = await self.get_budget(owner_id, budget_id)
        if not await self._storage.delete_budget(owner_id, budget_id):
            raise NotFoundError("budget", budget_id)

        logger.info("budget_deleted", owner_id=owner_id, budget_id=str(budget_id))
        await self._audit.log_budget_change(
            AuditEventType.BUDGET_DELETED, budget_id, owner_id, budget.name
        )

    async def toggle_active(self, owner_id: str, budget_id: UUID) -> Budget:
        """
        Flip `is_active`. Re-activation is overlap-checked and recomputes,
        since the budget missed ledger events while inactive.

        Raises:
            NotFoundError, OverlapConflict
        """

        async def step() -> Budget:
            budget = await self.get_budget(owner_id, budget_id)
            budget.is_active = not budget.is_active
            if budget.is_active:
                await self._ensure_no_overlap(
                    owner_id,
                    budget.category,
                    budget.start_date,
                    budget.end_date,
                    exclude_id=budget_id,
                )
            budget.updated_at = self._clock()
            return await self._storage.update_budget(budget)

        async with self._owner_lock(owner_id):
            saved = await run_with_conflict_retry(step, self._max_update_attempts)

        await self._audit.log_budget_change(
            AuditEventType.BUDGET_TOGGLED,
            saved.id,
            owner_id,
            saved.name,
            {"is_active": saved.is_active},
        )
        if saved.is_active:
            return await self._refresh(saved)
        return saved

    async def update_alert_config(
        self,
        owner_id: str,
        budget_id: UUID,
        enabled: Optional[bool] = None,
        threshold_percent: Optional[float] = None,
    ) -> Budget:
        """
        Raises:
            NotFoundError
            ValidationError: threshold outside (0, 100]
        """
        if threshold_percent is not None and not 0 < threshold_percent <= 100:
            raise ValidationError(
                [ValidationIssue(
                    field="threshold_percent",
                    issue_type="invalid_value",
                    message="Alert threshold must be between 0 (exclusive) and 100",
                )],
                subject="alert_config",
            )

        async def step() -> Budget:
            budget = await self.get_budget(owner_id, budget_id)
            if enabled is not None:
                budget.alert_config.enabled = enabled
            if threshold_percent is not None:
                budget.alert_config.threshold_percent = threshold_percent
            budget.updated_at = self._clock()
            return await self._storage.update_budget(budget)

        saved = await run_with_conflict_retry(step, self._max_update_attempts)
        await self._audit.log_budget_change(
            AuditEventType.BUDGET_UPDATED,
            saved.id,
            owner_id,
            saved.name,
            {"alert_config": saved.alert_config.model_dump(mode="json")},
        )
        return saved

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    async def recompute_spent(self, budget: Budget) -> Budget:
        """
        Recompute `spent` from the ledger and persist it.

        Idempotent. Retried on version conflicts, re-reading both the
        budget and the ledger each time.
        """
        return await self._recompute(budget.owner_id, budget.id)

    @retry_on_conflict
    async def _recompute(self, owner_id: str, budget_id: UUID) -> Budget:
        budget = await self.get_budget(owner_id, budget_id)
        entries = await self._ledger.query(
            owner_id,
            kind=EntryKind.EXPENSE,
            category=budget.category,
            date_from=budget.start_date,
            date_to=budget.end_date,
        )
        spent = sum((entry.amount for entry in entries), Decimal("0"))
        previous = budget.spent
        changed = spent != previous

        # Always written. The version bump makes a concurrent recompute
        # holding an older ledger total conflict and re-read.
        budget.spent = spent
        if changed:
            budget.updated_at = self._clock()
        saved = await self._storage.update_budget(budget)

        if changed:
            await self._audit.log_budget_recomputed(
                saved.id, owner_id, str(previous), str(spent)
            )
        return saved

    async def recompute_all(self, owner_id: str) -> list[Budget]:
        """Recompute and re-evaluate every active budget of an owner."""
        budgets = await self._storage.list_budgets(owner_id, is_active=True)
        refreshed = []
        for budget in budgets:
            updated = await self.recompute_spent(budget)
            await self.evaluate_alert(updated)
            refreshed.append(updated)
        logger.info("budgets_recomputed", owner_id=owner_id, count=len(refreshed))
        return refreshed

    async def on_ledger_mutation(
        self,
        owner_id: str,
        before: Optional[LedgerEntry],
        after: Optional[LedgerEntry],
    ) -> list[Budget]:
        """
        Ledger listener.

        Recomputes every active budget whose window contains either side
        of the mutation. Per-budget failures are logged and swallowed.
        """
        expenses = [
            entry for entry in (before, after)
            if entry is not None and entry.kind == EntryKind.EXPENSE
        ]
        if not expenses:
            return []

        budgets = await self._storage.list_budgets(owner_id, is_active=True)
        affected = [
            budget for budget in budgets
            if any(budget.covers(entry) for entry in expenses)
        ]

        refreshed = []
        for budget in affected:
            try:
                updated = await self.recompute_spent(budget)
                await self.evaluate_alert(updated)
                refreshed.append(updated)
            except Exception as e:
                logger.error(
                    "budget_recompute_failed",
                    owner_id=owner_id,
                    budget_id=str(budget.id),
                    error=str(e),
                    exc_info=True,
                )
                await self._audit.log_secondary_failure(
                    step="budget_recompute",
                    error_message=str(e),
                    owner_id=owner_id,
                    entity_type="budget",
                    entity_id=budget.id,
                )
        return refreshed

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def evaluate_alert(self, budget: Budget) -> Optional[Notification]:
        """
        Send a budget alert if the threshold is reached and the last one
        is at least one dedup window old.

        Returns the notification, or None when nothing was sent.
        """
        claimed = await self._claim_alert(budget.owner_id, budget.id)
        if claimed is None:
            return None

        percentage = claimed.percentage_spent
        notification = await self._dispatcher.dispatch(
            claimed.owner_id,
            NotificationType.BUDGET_ALERT,
            title="Budget Alert",
            message=f"You've spent {percentage:.1f}% of your {claimed.name} budget.",
            priority=(
                NotificationPriority.HIGH if percentage >= 100
                else NotificationPriority.MEDIUM
            ),
            metadata={"budgetId": str(claimed.id), "percentage": percentage},
        )
        if notification is not None:
            await self._audit.log_budget_alert_sent(claimed.id, claimed.owner_id, percentage)
        return notification

    def _alert_due(self, budget: Budget, now: datetime) -> bool:
        config = budget.alert_config
        if not config.enabled or budget.percentage_spent < config.threshold_percent:
            return False
        if config.last_alert_sent_at is None:
            return True
        window = timedelta(hours=self._settings.alert_dedup_window_hours)
        return now - config.last_alert_sent_at >= window

    @retry_on_conflict
    async def _claim_alert(self, owner_id: str, budget_id: UUID) -> Optional[Budget]:
        """Stamp `last_alert_sent_at`; None if no alert is due or another writer claimed it."""
        budget = await self.get_budget(owner_id, budget_id)
        now = self._clock()
        if not self._alert_due(budget, now):
            return None
        budget.alert_config.last_alert_sent_at = now
        budget.updated_at = now
        return await self._storage.update_budget(budget)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _owner_lock(self, owner_id: str) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[owner_id] = lock
        return lock

    async def _ensure_no_overlap(
        self,
        owner_id: str,
        category: str,
        start_date: datetime,
        end_date: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> None:
        conflict = await self._storage.find_overlapping(
            owner_id, category, start_date, end_date, exclude_id=exclude_id
        )
        if conflict is None:
            return

        logger.warning(
            "budget_overlap_rejected",
            owner_id=owner_id,
            category=category,
            conflicting_budget_id=str(conflict.id),
        )
        await self._audit.log_overlap_rejected(owner_id, category, conflict.id)
        raise OverlapConflict(
            conflict.id, conflict.name, conflict.start_date, conflict.end_date
        )

    async def _refresh(self, budget: Budget) -> Budget:
        """Best-effort recompute + alert after a budget write."""
        try:
            refreshed = await self.recompute_spent(budget)
            await self.evaluate_alert(refreshed)
        except Exception as e:
            logger.error(
                "budget_refresh_failed",
                owner_id=budget.owner_id,
                budget_id=str(budget.id),
                error=str(e),
                exc_info=True,
            )
            await self._audit.log_secondary_failure(
                step="budget_refresh",
                error_message=str(e),
                owner_id=budget.owner_id,
                entity_type="budget",
                entity_id=budget.id,
            )
        latest = await self._storage.get_budget(budget.owner_id, budget.id)
        return latest or budget
