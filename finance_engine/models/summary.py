"""
Summary Models

Read-only aggregates computed on demand from stored entities.
Nothing here is persisted.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from finance_engine.models.budget import BudgetStatus


class BudgetStat(BaseModel):
    id: UUID
    name: str
    category: str
    budgeted: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: float
    status: BudgetStatus


class BudgetSummary(BaseModel):
    """Totals across a user's active budgets for one period type."""

    total_budgeted: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    total_remaining: Decimal = Decimal("0")
    average_spent: Decimal = Decimal("0")
    budget_count: int = 0
    budgets: list[BudgetStat] = Field(default_factory=list)


class GoalSummary(BaseModel):
    """Totals across a user's goals."""

    total_goals: int = 0
    active_goals: int = 0
    completed_goals: int = 0
    total_target_amount: Decimal = Decimal("0")
    total_current_amount: Decimal = Decimal("0")
    total_progress: float = 0.0
    average_progress: float = 0.0
    goals_by_type: dict[str, int] = Field(default_factory=dict)
    goals_by_priority: dict[str, int] = Field(default_factory=dict)


class ContributionPoint(BaseModel):
    """One step in a goal's cumulative contribution history."""

    date: datetime
    amount: Decimal
    cumulative_amount: Decimal
    percentage: float


class NotificationSummary(BaseModel):
    total: int = 0
    unread: int = 0
    read: int = 0
    archived: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)


class MonthlySpending(BaseModel):
    """Expense total for one calendar month of a budget's category."""

    year: int
    month: int
    total_spent: Decimal
    transaction_count: int


class BudgetPerformance(BaseModel):
    budget_id: UUID
    name: str
    category: str
    amount: Decimal
    months: list[MonthlySpending] = Field(default_factory=list)
