"""
Summary Queries

Read-only statistics over stored budgets, goals and the ledger.

Like every read in the engine these are owner-scoped and computed on
demand from current state. Nothing here writes, and nothing here
reconstructs past aggregates.
"""

from collections import Counter, defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

from dateutil.relativedelta import relativedelta

from finance_engine.errors import NotFoundError
from finance_engine.ledger import LedgerGateway
from finance_engine.models.common import Period, utc_now
from finance_engine.models.goal import GoalStatus
from finance_engine.models.ledger import EntryKind
from finance_engine.models.summary import (
    BudgetPerformance,
    BudgetStat,
    BudgetSummary,
    GoalSummary,
    MonthlySpending,
)
from finance_engine.services.storage import (
    BudgetStorageInterface,
    GoalStorageInterface,
)


class SummaryQueries:
    """
    Aggregate views for dashboards and reports.

    GUARANTEES:
    - Only reads real stored data
    - Empty input gives zeroed summaries, never an error
    """

    def __init__(
        self,
        budget_storage: BudgetStorageInterface,
        goal_storage: GoalStorageInterface,
        ledger: LedgerGateway,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._budgets = budget_storage
        self._goals = goal_storage
        self._ledger = ledger
        self._clock = clock

    async def budget_summary(
        self,
        owner_id: str,
        period: Period = Period.MONTHLY,
    ) -> BudgetSummary:
        """Totals across the owner's ACTIVE budgets of one period type."""
        budgets = await self._budgets.list_budgets(owner_id, period=period, is_active=True)
        if not budgets:
            return BudgetSummary()

        total_budgeted = sum((b.amount for b in budgets), Decimal("0"))
        total_spent = sum((b.spent for b in budgets), Decimal("0"))

        return BudgetSummary(
            total_budgeted=total_budgeted,
            total_spent=total_spent,
            total_remaining=total_budgeted - total_spent,
            average_spent=total_spent / len(budgets),
            budget_count=len(budgets),
            budgets=[
                BudgetStat(
                    id=b.id,
                    name=b.name,
                    category=b.category,
                    budgeted=b.amount,
                    spent=b.spent,
                    remaining=b.remaining,
                    percentage=b.percentage_spent,
                    status=b.status,
                )
                for b in budgets
            ],
        )

    async def budget_performance(
        self,
        owner_id: str,
        budget_id: UUID,
        months: int = 6,
    ) -> BudgetPerformance:
        """
        Monthly expense totals for the budget's category over the last
        `months` months, regardless of the budget's own window.
        """
        budget = await self._budgets.get_budget(owner_id, budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)

        now = self._clock()
        entries = await self._ledger.query(
            owner_id,
            kind=EntryKind.EXPENSE,
            category=budget.category,
            date_from=now - relativedelta(months=months),
            date_to=now,
        )

        totals: defaultdict[tuple[int, int], Decimal] = defaultdict(Decimal)
        counts: Counter = Counter()
        for entry in entries:
            key = (entry.date.year, entry.date.month)
            totals[key] += entry.amount
            counts[key] += 1

        return BudgetPerformance(
            budget_id=budget.id,
            name=budget.name,
            category=budget.category,
            amount=budget.amount,
            months=[
                MonthlySpending(
                    year=year,
                    month=month,
                    total_spent=totals[(year, month)],
                    transaction_count=counts[(year, month)],
                )
                for year, month in sorted(totals)
            ],
        )

    async def goal_summary(self, owner_id: str) -> GoalSummary:
        """
        Counts cover every goal; amounts and progress cover active goals only.
        """
        goals = await self._goals.list_goals(owner_id)
        active = [g for g in goals if g.status == GoalStatus.ACTIVE]
        completed = [g for g in goals if g.status == GoalStatus.COMPLETED]

        total_target = sum((g.target_amount for g in active), Decimal("0"))
        total_current = sum((g.current_amount for g in active), Decimal("0"))
        total_progress = float(total_current / total_target * 100) if total_target else 0.0
        average_progress = (
            sum(g.progress_percentage for g in active) / len(active) if active else 0.0
        )

        return GoalSummary(
            total_goals=len(goals),
            active_goals=len(active),
            completed_goals=len(completed),
            total_target_amount=total_target,
            total_current_amount=total_current,
            total_progress=total_progress,
            average_progress=average_progress,
            goals_by_type=dict(Counter(g.type.value for g in goals)),
            goals_by_priority=dict(Counter(g.priority.value for g in goals)),
        )
