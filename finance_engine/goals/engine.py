"""
Goal Accounting Engine

Applies contributions to savings goals and drives the goal lifecycle.

A contribution is a single version-checked write that:
1. adds the amount to `current_amount`
2. marks every newly crossed milestone achieved (ascending by target)
3. flips an active goal to COMPLETED once the target is reached

Only after that write commits do the side effects run: achievement
notifications, then the contribution's ledger entry. Side effects are
best-effort; a failed notification or ledger write is logged and
audited, never rolled back into the goal.

Because milestone and completion transitions are computed inside the
retried write, a contribution that loses a race re-reads the goal and
sees what the winner already achieved. Each transition is therefore
reported (and notified) by exactly one contribution.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finance_engine.alerts import AlertDispatcher
from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings
from finance_engine.concurrency import retry_on_conflict, run_with_conflict_retry
from finance_engine.errors import NotFoundError, StateError, ValidationError
from finance_engine.ledger import LedgerGateway
from finance_engine.models.audit import AuditEventType
from finance_engine.models.common import add_period, ensure_utc, utc_now
from finance_engine.models.goal import (
    Goal,
    GoalCreate,
    GoalPriority,
    GoalStatus,
    GoalType,
    GoalUpdate,
    Milestone,
    MilestoneCreate,
    RecurringContribution,
)
from finance_engine.models.ledger import EntryKind, LedgerEntry, LedgerEntryCreate
from finance_engine.models.notification import (
    Notification,
    NotificationPriority,
    NotificationType,
)
from finance_engine.models.summary import ContributionPoint
from finance_engine.models.validation import ValidationIssue
from finance_engine.services.storage import GoalStorageInterface
from finance_engine.validation import GoalValidator, ensure_valid, parse_input

logger = structlog.get_logger(__name__)

_CLEARABLE_FIELDS = {"description", "notes"}
_LEDGER_DESCRIPTION_LIMIT = 500


@dataclass
class ContributionOutcome:
    """What a single contribution changed."""

    goal: Goal
    amount: Decimal
    achieved_milestones: list[Milestone] = field(default_factory=list)
    completed: bool = False
    notifications: list[Notification] = field(default_factory=list)
    ledger_entry: Optional[LedgerEntry] = None


class GoalAccountingEngine:
    """Goal CRUD, contributions, milestones and recurring reminders."""

    def __init__(
        self,
        storage: GoalStorageInterface,
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
        self._validator = GoalValidator(clock)
        self._max_update_attempts = self._settings.max_update_attempts

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_goal(
        self,
        owner_id: str,
        data: Union[GoalCreate, dict[str, Any]],
    ) -> Goal:
        """
        Raises:
            ValidationError: malformed input or target date not in the future
        """
        goal_input = parse_input(GoalCreate, data, "goal")
        ensure_valid(self._validator.validate_target_date(goal_input.target_date))

        now = self._clock()
        recurring = goal_input.recurring_contribution
        goal = Goal(
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
            start_date=now,
            title=goal_input.title,
            description=goal_input.description,
            type=goal_input.type,
            target_amount=goal_input.target_amount,
            target_date=goal_input.target_date,
            priority=goal_input.priority,
            currency=goal_input.currency or self._settings.default_currency,
            recurring_contribution=(
                RecurringContribution(amount=recurring.amount, frequency=recurring.frequency)
                if recurring else RecurringContribution()
            ),
            notes=goal_input.notes,
            tags=goal_input.tags,
        )
        saved = await self._storage.save_goal(goal)

        logger.info("goal_created", owner_id=owner_id, goal_id=str(saved.id))
        await self._audit.log_goal_change(
            AuditEventType.GOAL_CREATED,
            saved.id,
            owner_id,
            saved.title,
            {"target_amount": str(saved.target_amount), "type": saved.type.value},
        )

        if saved.recurring_contribution.amount > 0:
            saved = await self.setup_recurring(saved)
        return saved

    async def get_goal(self, owner_id: str, goal_id: UUID) -> Goal:
        goal = await self._storage.get_goal(owner_id, goal_id)
        if goal is None:
            raise NotFoundError("goal", goal_id)
        return goal

    async def list_goals(
        self,
        owner_id: str,
        goal_type: Optional[GoalType] = None,
        status: Optional[GoalStatus] = None,
        priority: Optional[GoalPriority] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Goal]:
        return await self._storage.list_goals(
            owner_id,
            goal_type=goal_type,
            status=status,
            priority=priority,
            limit=limit or self._settings.default_page_size,
            offset=offset,
        )

    async def update_goal(
        self,
        owner_id: str,
        goal_id: UUID,
        patch: Union[GoalUpdate, dict[str, Any]],
    ) -> Goal:
        """
        Merge a partial edit. The target date is only re-checked when the
        patch moves it. Touching the recurring contribution reschedules it.
        """
        goal_patch = parse_input(GoalUpdate, patch, "goal")
        changes = {
            key: value
            for key, value in goal_patch.model_dump(exclude_unset=True).items()
            if value is not None or key in _CLEARABLE_FIELDS
        }
        if "target_date" in changes:
            ensure_valid(self._validator.validate_target_date(changes["target_date"]))
        recurring_patch = changes.pop("recurring_contribution", None)

        async def step() -> Goal:
            current = await self.get_goal(owner_id, goal_id)
            merged = current.model_copy(
                deep=True,
                update=dict(changes, updated_at=self._clock()),
            )
            if recurring_patch is not None:
                # Fields the patch leaves out keep their stored values
                merged.recurring_contribution = merged.recurring_contribution.model_copy(
                    update=recurring_patch
                )
            return await self._storage.update_goal(merged)

        saved = await run_with_conflict_retry(step, self._max_update_attempts)
        fields = sorted(changes)
        if recurring_patch is not None:
            fields.append("recurring_contribution")
        await self._audit.log_goal_change(
            AuditEventType.GOAL_UPDATED, saved.id, owner_id, saved.title, {"fields": fields}
        )

        if recurring_patch is not None:
            saved = await self.setup_recurring(saved)
        return saved

    async def delete_goal(self, owner_id: str, goal_id: UUID) -> None:
        goal = await self.get_goal(owner_id, goal_id)
        if not await self._storage.delete_goal(owner_id, goal_id):
            raise NotFoundError("goal", goal_id)

        logger.info("goal_deleted", owner_id=owner_id, goal_id=str(goal_id))
        await self._audit.log_goal_change(
            AuditEventType.GOAL_DELETED, goal_id, owner_id, goal.title
        )

    async def set_status(
        self,
        owner_id: str,
        goal_id: UUID,
        status: Union[GoalStatus, str],
    ) -> Goal:
        """
        Set the lifecycle state directly. Any state can move to any other.
        """
        try:
            new_status = GoalStatus(status)
        except ValueError as e:
            raise ValidationError(
                [ValidationIssue(
                    field="status",
                    issue_type="invalid_value",
                    message="Invalid status",
                )],
                subject="goal",
            ) from e

        async def step() -> tuple[GoalStatus, Goal]:
            goal = await self.get_goal(owner_id, goal_id)
            previous = goal.status
            goal.status = new_status
            goal.updated_at = self._clock()
            return previous, await self._storage.update_goal(goal)

        previous, saved = await run_with_conflict_retry(step, self._max_update_attempts)
        await self._audit.log_goal_change(
            AuditEventType.GOAL_STATUS_CHANGED,
            saved.id,
            owner_id,
            saved.title,
            {"from": previous.value, "to": new_status.value},
        )
        return saved

    async def add_milestone(
        self,
        owner_id: str,
        goal_id: UUID,
        name: str,
        target_amount: Union[Decimal, float, str],
        deadline: Optional[datetime] = None,
    ) -> Goal:
        """
        Append an unachieved milestone. It is only evaluated on the next
        contribution, even if the goal has already passed its target.
        """
        milestone_input = parse_input(
            MilestoneCreate,
            {"name": name, "target_amount": target_amount, "deadline": deadline},
            "milestone",
        )

        async def step() -> Goal:
            goal = await self.get_goal(owner_id, goal_id)
            check = self._validator.validate_milestone(
                milestone_input.target_amount, goal.target_amount
            )
            for warning in check.warnings:
                logger.warning("milestone_warning", goal_id=str(goal_id), message=warning)
            goal.milestones.append(Milestone(**milestone_input.model_dump()))
            goal.updated_at = self._clock()
            return await self._storage.update_goal(goal)

        saved = await run_with_conflict_retry(step, self._max_update_attempts)
        await self._audit.log_goal_change(
            AuditEventType.MILESTONE_ADDED,
            saved.id,
            owner_id,
            saved.title,
            {"name": milestone_input.name, "target_amount": str(milestone_input.target_amount)},
        )
        return saved

    # =========================================================================
    # CONTRIBUTIONS
    # =========================================================================

    async def add_contribution(
        self,
        owner_id: str,
        goal_id: UUID,
        amount: Any,
        description: str = "",
    ) -> ContributionOutcome:
        """
        Apply a contribution and run its side effects.

        Raises:
            ValidationError: amount missing, non-numeric or <= 0
            NotFoundError: goal missing or not owned by the caller
            StateError: goal is not active
        """
        value = self._validator.parse_contribution_amount(amount)
        outcome = await self._apply_contribution(owner_id, goal_id, value)
        goal = outcome.goal

        logger.info(
            "contribution_applied",
            owner_id=owner_id,
            goal_id=str(goal.id),
            amount=str(value),
            current_amount=str(goal.current_amount),
        )
        await self._audit.log_contribution(
            goal.id, owner_id, str(value), str(goal.current_amount)
        )

        for milestone in outcome.achieved_milestones:
            await self._audit.log_goal_change(
                AuditEventType.MILESTONE_ACHIEVED,
                goal.id,
                owner_id,
                goal.title,
                {"milestone_id": str(milestone.id), "name": milestone.name},
            )
            notification = await self._dispatcher.dispatch(
                owner_id,
                NotificationType.ACHIEVEMENT,
                title="Milestone Achieved!",
                message=(
                    f"Congratulations! You've reached the \"{milestone.name}\" "
                    f"milestone for your goal \"{goal.title}\"."
                ),
                priority=NotificationPriority.MEDIUM,
                metadata={"goalId": str(goal.id), "milestoneId": str(milestone.id)},
            )
            if notification is not None:
                outcome.notifications.append(notification)

        if outcome.completed:
            await self._audit.log_goal_change(
                AuditEventType.GOAL_COMPLETED, goal.id, owner_id, goal.title
            )
            notification = await self._dispatcher.dispatch(
                owner_id,
                NotificationType.ACHIEVEMENT,
                title="Goal Completed!",
                message=(
                    "Congratulations! You've successfully completed "
                    f"your goal \"{goal.title}\"."
                ),
                priority=NotificationPriority.HIGH,
                metadata={"goalId": str(goal.id)},
            )
            if notification is not None:
                outcome.notifications.append(notification)

        outcome.ledger_entry = await self._record_contribution(goal, value, description)
        return outcome

    @retry_on_conflict
    async def _apply_contribution(
        self,
        owner_id: str,
        goal_id: UUID,
        amount: Decimal,
    ) -> ContributionOutcome:
        goal = await self.get_goal(owner_id, goal_id)
        if goal.status != GoalStatus.ACTIVE:
            raise StateError("Cannot contribute to inactive goal")

        now = self._clock()
        goal.current_amount += amount

        achieved = []
        for milestone in sorted(goal.milestones, key=lambda m: m.target_amount):
            if not milestone.is_achieved and goal.current_amount >= milestone.target_amount:
                milestone.is_achieved = True
                milestone.achieved_at = now
                achieved.append(milestone.id)

        completed = goal.current_amount >= goal.target_amount
        if completed:
            goal.status = GoalStatus.COMPLETED

        goal.updated_at = now
        saved = await self._storage.update_goal(goal)

        by_id = {m.id: m for m in saved.milestones}
        return ContributionOutcome(
            goal=saved,
            amount=amount,
            achieved_milestones=[by_id[milestone_id] for milestone_id in achieved],
            completed=completed,
        )

    async def _record_contribution(
        self,
        goal: Goal,
        amount: Decimal,
        note: str,
    ) -> Optional[LedgerEntry]:
        """Mirror the contribution in the ledger as a negative savings expense."""
        description = f"Contribution to goal: {goal.title}"
        if note:
            description = f"{description} - {note}"
        if len(description) > _LEDGER_DESCRIPTION_LIMIT:
            logger.warning(
                "contribution_description_truncated",
                owner_id=goal.owner_id,
                goal_id=str(goal.id),
                length=len(description),
                limit=_LEDGER_DESCRIPTION_LIMIT,
            )
            description = description[:_LEDGER_DESCRIPTION_LIMIT]

        try:
            return await self._ledger.record_entry(
                goal.owner_id,
                LedgerEntryCreate(
                    amount=-amount,
                    kind=EntryKind.EXPENSE,
                    category=self._settings.savings_category,
                    subcategory=self._settings.contribution_subcategory,
                    description=description,
                    date=self._clock(),
                    currency=goal.currency,
                    reference_id=goal.id,
                ),
                alert_large=False,
            )
        except Exception as e:
            logger.error(
                "contribution_ledger_write_failed",
                owner_id=goal.owner_id,
                goal_id=str(goal.id),
                error=str(e),
                exc_info=True,
            )
            await self._audit.log_secondary_failure(
                step="contribution_ledger_entry",
                error_message=str(e),
                owner_id=goal.owner_id,
                entity_type="goal",
                entity_id=goal.id,
            )
            return None

    async def contribution_history(
        self,
        owner_id: str,
        goal_id: UUID,
    ) -> list[ContributionPoint]:
        """Cumulative contribution series rebuilt from the ledger, oldest first."""
        goal = await self.get_goal(owner_id, goal_id)
        entries = await self._ledger.query(
            owner_id,
            category=self._settings.savings_category,
            subcategory=self._settings.contribution_subcategory,
            reference_id=goal.id,
        )

        points = []
        cumulative = Decimal("0")
        for entry in entries:
            contributed = abs(entry.amount)
            cumulative += contributed
            points.append(ContributionPoint(
                date=entry.date,
                amount=contributed,
                cumulative_amount=cumulative,
                percentage=float(cumulative / goal.target_amount * 100),
            ))
        return points

    # =========================================================================
    # RECURRING REMINDERS
    # =========================================================================

    async def setup_recurring(self, goal: Goal) -> Goal:
        """
        Schedule the next reminder one period from now and send a reminder
        that expires when the next one is due.

        A zero recurring amount clears any existing schedule.
        """
        saved, scheduled = await self._schedule(goal.owner_id, goal.id)
        if scheduled:
            await self._audit.log_goal_change(
                AuditEventType.RECURRING_SCHEDULED,
                saved.id,
                saved.owner_id,
                saved.title,
                {"next_due_at": saved.recurring_contribution.next_due_at.isoformat()},
            )
            await self._send_reminder(saved)
        return saved

    @retry_on_conflict
    async def _schedule(self, owner_id: str, goal_id: UUID) -> tuple[Goal, bool]:
        goal = await self.get_goal(owner_id, goal_id)
        recurring = goal.recurring_contribution
        now = self._clock()

        if recurring.amount <= 0:
            if recurring.next_due_at is None:
                return goal, False
            recurring.next_due_at = None
            goal.updated_at = now
            return await self._storage.update_goal(goal), False

        recurring.next_due_at = add_period(now, recurring.frequency)
        goal.updated_at = now
        return await self._storage.update_goal(goal), True

    async def process_due_recurring(self, now: Optional[datetime] = None) -> int:
        """
        Scheduled sweep across all owners.

        Each due goal's `next_due_at` is advanced by one period from its
        stored value before its reminder is sent. Returns the number of
        reminders sent.
        """
        now = ensure_utc(now or self._clock())
        due = await self._storage.list_due_recurring(now)

        sent = 0
        for goal in due:
            try:
                advanced = await self._advance_schedule(goal.owner_id, goal.id, now)
            except Exception as e:
                logger.error(
                    "recurring_advance_failed",
                    goal_id=str(goal.id),
                    error=str(e),
                    exc_info=True,
                )
                await self._audit.log_secondary_failure(
                    step="recurring_advance",
                    error_message=str(e),
                    owner_id=goal.owner_id,
                    entity_type="goal",
                    entity_id=goal.id,
                )
                continue

            if advanced is None:
                continue

            await self._audit.log_goal_change(
                AuditEventType.RECURRING_ADVANCED,
                advanced.id,
                advanced.owner_id,
                advanced.title,
                {"next_due_at": advanced.recurring_contribution.next_due_at.isoformat()},
            )
            if await self._send_reminder(advanced) is not None:
                sent += 1

        logger.info("recurring_sweep_finished", due=len(due), reminders_sent=sent)
        return sent

    @retry_on_conflict
    async def _advance_schedule(
        self,
        owner_id: str,
        goal_id: UUID,
        now: datetime,
    ) -> Optional[Goal]:
        """Move `next_due_at` forward one period; None if no longer due."""
        goal = await self._storage.get_goal(owner_id, goal_id)
        if goal is None or goal.status != GoalStatus.ACTIVE:
            return None

        recurring = goal.recurring_contribution
        if recurring.next_due_at is None or recurring.next_due_at > now:
            return None

        recurring.next_due_at = add_period(recurring.next_due_at, recurring.frequency)
        goal.updated_at = self._clock()
        return await self._storage.update_goal(goal)

    async def _send_reminder(self, goal: Goal) -> Optional[Notification]:
        recurring = goal.recurring_contribution
        return await self._dispatcher.dispatch(
            goal.owner_id,
            NotificationType.GOAL_REMINDER,
            title="Recurring Contribution Due",
            message=(
                f"It's time to make your recurring contribution of {recurring.amount} "
                f"to your goal \"{goal.title}\"."
            ),
            priority=NotificationPriority.MEDIUM,
            metadata={"goalId": str(goal.id), "amount": str(recurring.amount)},
            expires_at=recurring.next_due_at,
        )
