"""
Tests for the goal accounting engine.
"""

import asyncio
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from structlog.testing import CapturingLogger

import finance_engine.goals.engine as goal_engine_module
from finance_engine.errors import NotFoundError, StateError, ValidationError
from finance_engine.models import (
    AuditEventType,
    Goal,
    GoalStatus,
    GoalType,
    NotificationPriority,
    NotificationType,
    Period,
    RecurringContribution,
    add_period,
)
from finance_engine.orchestrator import FinanceEngine
from finance_engine.services.storage import (
    InMemoryBudgetStorage,
    InMemoryLedgerStorage,
    InMemoryNotificationStorage,
    StorageError,
)

from conftest import ALICE, BOB, T0, YieldingGoalStorage, goal_data


class FailingLedgerStorage(InMemoryLedgerStorage):
    async def create_entry(self, entry):
        raise StorageError("ledger offline")


def stored_goal(**overrides) -> Goal:
    fields = {
        "owner_id": ALICE,
        "title": "Emergency Fund",
        "type": GoalType.EMERGENCY_FUND,
        "target_amount": Decimal("5000"),
        "target_date": T0 + timedelta(days=365),
        "start_date": T0,
        "created_at": T0,
        "updated_at": T0,
    }
    fields.update(overrides)
    return Goal(**fields)


async def achievements(engine, owner_id=ALICE):
    return await engine.list_notifications(
        owner_id, notification_type=NotificationType.ACHIEVEMENT, limit=100
    )


async def reminders(engine, owner_id=ALICE):
    return await engine.list_notifications(
        owner_id, notification_type=NotificationType.GOAL_REMINDER, limit=100
    )


@pytest.fixture
def yielding_goal_storage():
    return YieldingGoalStorage()


@pytest.fixture
def racing_engine(yielding_goal_storage, audit_logger, settings, clock):
    """Engine whose goal reads yield to the event loop."""
    return FinanceEngine(
        ledger_storage=InMemoryLedgerStorage(),
        budget_storage=InMemoryBudgetStorage(),
        goal_storage=yielding_goal_storage,
        notification_storage=InMemoryNotificationStorage(),
        audit_logger=audit_logger,
        settings=settings,
        clock=clock,
    )


class TestGoalCrud:
    """Tests for goal creation and edits."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())

        assert goal.owner_id == ALICE
        assert goal.current_amount == Decimal("0")
        assert goal.status == GoalStatus.ACTIVE
        assert goal.start_date == T0
        assert goal.milestones == []
        assert goal.recurring_contribution.next_due_at is None

    @pytest.mark.asyncio
    async def test_target_date_must_be_future(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.create_goal(ALICE, goal_data(target_date=T0))
        assert exc_info.value.fields == ["target_date"]
        assert await engine.list_goals(ALICE) == []

    @pytest.mark.asyncio
    async def test_schema_errors(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.create_goal(ALICE, goal_data(target_amount="0", type="lottery"))
        assert set(exc_info.value.fields) == {"target_amount", "type"}

    @pytest.mark.asyncio
    async def test_update_only_checks_target_date_when_moved(self, engine, goal_storage):
        """Test an overdue goal can still be renamed."""
        overdue = await goal_storage.save_goal(
            stored_goal(target_date=T0 - timedelta(days=10))
        )

        renamed = await engine.update_goal(ALICE, overdue.id, {"title": "Rainy Day"})
        assert renamed.title == "Rainy Day"

        with pytest.raises(ValidationError):
            await engine.update_goal(
                ALICE, overdue.id, {"target_date": T0 - timedelta(days=1)}
            )

    @pytest.mark.asyncio
    async def test_update_cannot_touch_progress(self, engine):
        """Test current_amount and status are ignored by the generic patch."""
        goal = await engine.create_goal(ALICE, goal_data())
        updated = await engine.update_goal(
            ALICE,
            goal.id,
            {"current_amount": "4999", "status": "completed", "priority": "high"},
        )
        assert updated.current_amount == Decimal("0")
        assert updated.status == GoalStatus.ACTIVE
        assert updated.priority.value == "high"

    @pytest.mark.asyncio
    async def test_foreign_goal_is_not_found(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())

        with pytest.raises(NotFoundError, match="Goal not found"):
            await engine.get_goal(BOB, goal.id)
        with pytest.raises(NotFoundError):
            await engine.contribute(BOB, goal.id, 100)
        with pytest.raises(NotFoundError):
            await engine.delete_goal(BOB, goal.id)

        assert (await engine.get_goal(ALICE, goal.id)).current_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_delete(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())
        await engine.delete_goal(ALICE, goal.id)
        with pytest.raises(NotFoundError):
            await engine.get_goal(ALICE, goal.id)


class TestContributions:
    """Tests for applying contributions."""

    @pytest.mark.asyncio
    async def test_completing_contribution(self, engine, goal_storage):
        """Test 4800 + 300 completes the goal and mirrors it in the ledger."""
        goal = await goal_storage.save_goal(stored_goal(current_amount=Decimal("4800")))

        outcome = await engine.contribute(ALICE, goal.id, 300)

        assert outcome.goal.current_amount == Decimal("5100")
        assert outcome.goal.status == GoalStatus.COMPLETED
        assert outcome.completed

        notifications = await engine.list_notifications(ALICE)
        assert len(notifications) == 1
        assert notifications[0].title == "Goal Completed!"
        assert notifications[0].priority == NotificationPriority.HIGH
        assert notifications[0].metadata == {"goalId": str(goal.id)}

        entries = await engine.query_entries(ALICE)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.amount == Decimal("-300")
        assert entry.category == "savings"
        assert entry.subcategory == "goal_contribution"
        assert entry.description == "Contribution to goal: Emergency Fund"
        assert entry.reference_id == goal.id
        assert outcome.ledger_entry.id == entry.id

    @pytest.mark.asyncio
    async def test_partial_contribution(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())
        outcome = await engine.contribute(ALICE, goal.id, "250.75", "birthday money")

        assert outcome.goal.current_amount == Decimal("250.75")
        assert outcome.goal.status == GoalStatus.ACTIVE
        assert not outcome.completed
        assert outcome.notifications == []
        assert outcome.ledger_entry.description == (
            "Contribution to goal: Emergency Fund - birthday money"
        )

    @pytest.mark.asyncio
    async def test_overshoot_is_allowed(self, engine):
        goal = await engine.create_goal(ALICE, goal_data(target_amount="100"))
        outcome = await engine.contribute(ALICE, goal.id, 250)
        assert outcome.goal.current_amount == Decimal("250")
        assert outcome.goal.progress_percentage == pytest.approx(250.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -50, "fifty", None])
    async def test_invalid_amounts_change_nothing(self, engine, amount):
        goal = await engine.create_goal(ALICE, goal_data())

        with pytest.raises(ValidationError):
            await engine.contribute(ALICE, goal.id, amount)

        stored = await engine.get_goal(ALICE, goal.id)
        assert stored.current_amount == Decimal("0")
        assert stored.version == goal.version
        assert await engine.query_entries(ALICE) == []

    @pytest.mark.asyncio
    async def test_long_note_is_truncated_with_warning(self, engine, monkeypatch):
        captured = CapturingLogger()
        monkeypatch.setattr(goal_engine_module, "logger", captured)
        goal = await engine.create_goal(ALICE, goal_data())

        outcome = await engine.contribute(ALICE, goal.id, 100, "x" * 600)

        description = outcome.ledger_entry.description
        assert len(description) == 500
        assert description.startswith("Contribution to goal: Emergency Fund - xxx")
        assert any(
            call.method_name == "warning"
            and call.args[0] == "contribution_description_truncated"
            for call in captured.calls
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["paused", "completed", "cancelled"])
    async def test_inactive_goal_rejects_contributions(self, engine, status):
        goal = await engine.create_goal(ALICE, goal_data())
        await engine.set_goal_status(ALICE, goal.id, status)

        with pytest.raises(StateError, match="Cannot contribute to inactive goal"):
            await engine.contribute(ALICE, goal.id, 100)

        assert (await engine.get_goal(ALICE, goal.id)).current_amount == Decimal("0")
        assert await engine.query_entries(ALICE) == []

    @pytest.mark.asyncio
    async def test_ledger_failure_keeps_contribution(
        self, audit_logger, audit_storage, settings, clock
    ):
        """Test a failed ledger write is audited and the goal keeps the money."""
        engine = FinanceEngine(
            ledger_storage=FailingLedgerStorage(),
            budget_storage=InMemoryBudgetStorage(),
            goal_storage=YieldingGoalStorage(),
            notification_storage=InMemoryNotificationStorage(),
            audit_logger=audit_logger,
            settings=settings,
            clock=clock,
        )
        goal = await engine.create_goal(ALICE, goal_data())

        outcome = await engine.contribute(ALICE, goal.id, 100)

        assert outcome.ledger_entry is None
        assert (await engine.get_goal(ALICE, goal.id)).current_amount == Decimal("100")
        failures = [
            e for e in await audit_storage.get_recent_events()
            if e.event_type == AuditEventType.SECONDARY_STEP_FAILED
        ]
        assert [e.details["step"] for e in failures] == ["contribution_ledger_entry"]

    @pytest.mark.asyncio
    async def test_concurrent_contributions(self, audit_logger, settings, clock):
        """Test racing contributions lose no money and complete the goal once."""
        engine = FinanceEngine(
            ledger_storage=InMemoryLedgerStorage(),
            budget_storage=InMemoryBudgetStorage(),
            goal_storage=YieldingGoalStorage(),
            notification_storage=InMemoryNotificationStorage(),
            audit_logger=audit_logger,
            settings=settings,
            clock=clock,
        )
        goal = await engine.create_goal(ALICE, goal_data(target_amount="1000"))

        results = await asyncio.gather(
            *(engine.contribute(ALICE, goal.id, 300) for _ in range(5)),
            return_exceptions=True,
        )

        applied = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(applied) == 4
        assert len(rejected) == 1
        assert isinstance(rejected[0], StateError)
        assert sum(1 for r in applied if r.completed) == 1

        stored = await engine.get_goal(ALICE, goal.id)
        assert stored.current_amount == Decimal("1200")
        assert stored.status == GoalStatus.COMPLETED
        assert len(await achievements(engine)) == 1
        assert len(await engine.query_entries(ALICE, category="savings")) == 4


class TestMilestones:
    """Tests for milestone achievement."""

    @pytest.mark.asyncio
    async def test_milestones_achieved_in_order(self, engine, clock):
        goal = await engine.create_goal(ALICE, goal_data())
        await engine.add_milestone(ALICE, goal.id, "Half", 2500)
        await engine.add_milestone(ALICE, goal.id, "First grand", 1000)

        clock.advance(days=1)
        outcome = await engine.contribute(ALICE, goal.id, 3000)

        assert [m.name for m in outcome.achieved_milestones] == ["First grand", "Half"]
        assert all(m.achieved_at == T0 + timedelta(days=1) for m in outcome.achieved_milestones)
        titles = [n.title for n in await achievements(engine)]
        assert titles == ["Milestone Achieved!", "Milestone Achieved!"]

    @pytest.mark.asyncio
    async def test_achievement_is_permanent(self, engine, clock):
        """Test a later contribution neither re-reports nor re-stamps a milestone."""
        goal = await engine.create_goal(ALICE, goal_data())
        await engine.add_milestone(ALICE, goal.id, "Start", 100)
        await engine.contribute(ALICE, goal.id, 150)

        clock.advance(days=3)
        outcome = await engine.contribute(ALICE, goal.id, 150)

        assert outcome.achieved_milestones == []
        milestone = outcome.goal.milestones[0]
        assert milestone.is_achieved
        assert milestone.achieved_at == T0
        assert len(await achievements(engine)) == 1

    @pytest.mark.asyncio
    async def test_milestone_below_current_waits_for_next_contribution(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())
        await engine.contribute(ALICE, goal.id, 600)

        updated = await engine.add_milestone(ALICE, goal.id, "Already there", 100)
        assert updated.milestones[0].is_achieved is False

        outcome = await engine.contribute(ALICE, goal.id, 1)
        assert [m.name for m in outcome.achieved_milestones] == ["Already there"]

    @pytest.mark.asyncio
    async def test_milestone_above_target_is_accepted(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())
        updated = await engine.add_milestone(ALICE, goal.id, "Stretch", 6000)
        assert updated.milestones[0].target_amount == Decimal("6000")

    @pytest.mark.asyncio
    async def test_invalid_milestone(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())
        with pytest.raises(ValidationError):
            await engine.add_milestone(ALICE, goal.id, "", 100)
        with pytest.raises(ValidationError):
            await engine.add_milestone(ALICE, goal.id, "Nothing", 0)
        assert (await engine.get_goal(ALICE, goal.id)).milestones == []

    @pytest.mark.asyncio
    async def test_completion_and_milestone_in_one_contribution(self, engine):
        goal = await engine.create_goal(ALICE, goal_data(target_amount="1000"))
        await engine.add_milestone(ALICE, goal.id, "Halfway", 500)

        outcome = await engine.contribute(ALICE, goal.id, 1000)

        assert outcome.completed
        assert [n.title for n in outcome.notifications] == [
            "Milestone Achieved!",
            "Goal Completed!",
        ]


class TestStatus:
    """Tests for direct lifecycle changes."""

    @pytest.mark.asyncio
    async def test_any_transition_is_allowed(self, engine, audit_storage):
        goal = await engine.create_goal(ALICE, goal_data())

        await engine.set_goal_status(ALICE, goal.id, GoalStatus.COMPLETED)
        reopened = await engine.set_goal_status(ALICE, goal.id, "active")
        assert reopened.status == GoalStatus.ACTIVE

        cancelled = await engine.set_goal_status(ALICE, goal.id, "cancelled")
        assert cancelled.status == GoalStatus.CANCELLED

        events = await audit_storage.get_events_by_entity("goal", goal.id)
        changes = [e.details for e in events if e.event_type == AuditEventType.GOAL_STATUS_CHANGED]
        assert changes[-1] == {"from": "active", "to": "cancelled"}

    @pytest.mark.asyncio
    async def test_unknown_status(self, engine):
        goal = await engine.create_goal(ALICE, goal_data())
        with pytest.raises(ValidationError):
            await engine.set_goal_status(ALICE, goal.id, "archived")


class TestRecurringReminders:
    """Tests for the recurring contribution schedule."""

    @pytest.mark.asyncio
    async def test_create_with_recurring_schedules_and_reminds(self, engine):
        goal = await engine.create_goal(
            ALICE,
            goal_data(recurring_contribution={"amount": "200", "frequency": "weekly"}),
        )

        assert goal.recurring_contribution.next_due_at == T0 + timedelta(days=7)
        reminders = await engine.list_notifications(
            ALICE, notification_type=NotificationType.GOAL_REMINDER
        )
        assert len(reminders) == 1
        assert reminders[0].title == "Recurring Contribution Due"
        assert reminders[0].expires_at == T0 + timedelta(days=7)
        assert reminders[0].message == (
            'It\'s time to make your recurring contribution of 200 '
            'to your goal "Emergency Fund".'
        )

    @pytest.mark.asyncio
    async def test_zero_amount_clears_schedule(self, engine):
        goal = await engine.create_goal(
            ALICE, goal_data(recurring_contribution={"amount": "200"})
        )
        updated = await engine.update_goal(
            ALICE, goal.id, {"recurring_contribution": {"amount": "0"}}
        )
        assert updated.recurring_contribution.next_due_at is None
        assert updated.recurring_contribution.amount == Decimal("0")
        assert updated.recurring_contribution.frequency == Period.MONTHLY

    @pytest.mark.asyncio
    async def test_frequency_only_patch_keeps_amount(self, engine):
        goal = await engine.create_goal(
            ALICE, goal_data(recurring_contribution={"amount": "200"})
        )
        updated = await engine.update_goal(
            ALICE, goal.id, {"recurring_contribution": {"frequency": "weekly"}}
        )

        assert updated.recurring_contribution.amount == Decimal("200")
        assert updated.recurring_contribution.frequency == Period.WEEKLY
        assert updated.recurring_contribution.next_due_at == T0 + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_sweep_accepts_naive_time_as_utc(self, engine, goal_storage):
        await goal_storage.save_goal(stored_goal(
            recurring_contribution=RecurringContribution(
                amount=Decimal("250"), next_due_at=T0
            ),
        ))
        assert await engine.process_due_recurring(datetime(2025, 1, 16)) == 1

    @pytest.mark.asyncio
    async def test_sweep_advances_from_stored_due_date(self, engine, goal_storage):
        """Test one reminder per due date, advanced from the stored value."""
        goal = await goal_storage.save_goal(stored_goal(
            recurring_contribution=RecurringContribution(
                amount=Decimal("250"),
                frequency=Period.MONTHLY,
                next_due_at=T0,
            ),
        ))

        assert await engine.process_due_recurring(T0 + timedelta(seconds=1)) == 1
        advanced = await engine.get_goal(ALICE, goal.id)
        assert advanced.recurring_contribution.next_due_at == add_period(T0, Period.MONTHLY)

        assert await engine.process_due_recurring(T0 + timedelta(seconds=2)) == 0

        reminders = await engine.list_notifications(
            ALICE, notification_type=NotificationType.GOAL_REMINDER
        )
        assert len(reminders) == 1
        assert reminders[0].metadata == {"goalId": str(goal.id), "amount": "250"}

    @pytest.mark.asyncio
    async def test_sweep_skips_paused_goals(self, engine, goal_storage):
        await goal_storage.save_goal(stored_goal(
            status=GoalStatus.PAUSED,
            recurring_contribution=RecurringContribution(
                amount=Decimal("250"), next_due_at=T0
            ),
        ))
        assert await engine.process_due_recurring(T0 + timedelta(days=1)) == 0

    @pytest.mark.asyncio
    async def test_sweep_covers_every_owner(self, engine, goal_storage):
        for owner in (ALICE, BOB):
            await goal_storage.save_goal(stored_goal(
                owner_id=owner,
                recurring_contribution=RecurringContribution(
                    amount=Decimal("50"), next_due_at=T0
                ),
            ))
        assert await engine.process_due_recurring(T0) == 2


class TestContributionHistory:
    @pytest.mark.asyncio
    async def test_history_is_cumulative(self, engine, clock):
        goal = await engine.create_goal(ALICE, goal_data())
        other = await engine.create_goal(ALICE, goal_data(title="Car"))

        await engine.contribute(ALICE, goal.id, 1000)
        clock.advance(days=1)
        await engine.contribute(ALICE, other.id, 999)
        await engine.contribute(ALICE, goal.id, 500)

        history = await engine.contribution_history(ALICE, goal.id)

        assert [p.amount for p in history] == [Decimal("1000"), Decimal("500")]
        assert [p.cumulative_amount for p in history] == [Decimal("1000"), Decimal("1500")]
        assert [p.percentage for p in history] == [pytest.approx(20.0), pytest.approx(30.0)]
        assert history[1].date == T0 + timedelta(days=1)


class TestRecurringConcurrency:
    """Tests for sweeps that overlap each other or a contribution."""

    @pytest.mark.asyncio
    async def test_overlapping_sweeps_send_one_reminder(
        self, racing_engine, yielding_goal_storage
    ):
        goal = await yielding_goal_storage.save_goal(stored_goal(
            recurring_contribution=RecurringContribution(
                amount=Decimal("250"), next_due_at=T0
            ),
        ))

        sent = await asyncio.gather(
            *(racing_engine.process_due_recurring(T0 + timedelta(seconds=1)) for _ in range(3))
        )

        assert sum(sent) == 1
        stored = await racing_engine.get_goal(ALICE, goal.id)
        assert stored.recurring_contribution.next_due_at == add_period(T0, Period.MONTHLY)
        assert len(await reminders(racing_engine)) == 1

    @pytest.mark.asyncio
    async def test_sweep_racing_a_contribution(self, racing_engine, yielding_goal_storage):
        """Test neither the money nor the schedule advance is lost."""
        goal = await yielding_goal_storage.save_goal(stored_goal(
            recurring_contribution=RecurringContribution(
                amount=Decimal("250"), next_due_at=T0
            ),
        ))

        sent, outcome = await asyncio.gather(
            racing_engine.process_due_recurring(T0 + timedelta(seconds=1)),
            racing_engine.contribute(ALICE, goal.id, 100),
        )

        assert sent == 1
        assert outcome.goal.current_amount == Decimal("100")
        stored = await racing_engine.get_goal(ALICE, goal.id)
        assert stored.current_amount == Decimal("100")
        assert stored.recurring_contribution.next_due_at == add_period(T0, Period.MONTHLY)
        assert len(await reminders(racing_engine)) == 1
