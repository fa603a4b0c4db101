"""
Financial Goal Models

A goal is a savings target that grows through contributions.

Stored `status` and derived `completion_status` are different things:
- `status` is the lifecycle state the engine acts on
- `completion_status` is a presentation bucket computed from progress
  and time left
"""

import math
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from finance_engine.models.common import (
    OwnedEntity,
    Period,
    UTCDateTime,
    utc_now,
)


SECONDS_PER_DAY = 86400


class GoalType(str, Enum):
    SAVINGS = "savings"
    DEBT_PAYMENT = "debt_payment"
    INVESTMENT = "investment"
    PURCHASE = "purchase"
    EMERGENCY_FUND = "emergency_fund"
    RETIREMENT = "retirement"
    EDUCATION = "education"
    OTHER = "other"


class GoalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GoalStatus(str, Enum):
    """
    Lifecycle state.

    ACTIVE -> COMPLETED happens automatically when the target is reached.
    PAUSED and CANCELLED are only ever set by the user.
    """
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    OVERDUE = "overdue"
    ALMOST_THERE = "almost_there"
    ON_TRACK = "on_track"
    GETTING_STARTED = "getting_started"
    JUST_STARTED = "just_started"


class Milestone(BaseModel):
    """
    A sub-target inside a goal.

    Once achieved, `is_achieved` and `achieved_at` are frozen.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., gt=0)
    deadline: Optional[UTCDateTime] = None
    is_achieved: bool = False
    achieved_at: Optional[UTCDateTime] = None


class RecurringContribution(BaseModel):
    """
    Reminder-only contribution schedule. Nothing is auto-debited.

    `next_due_at` is persisted so the sweep can advance it from its own
    previous value instead of wall-clock time.
    """

    amount: Decimal = Field(default=Decimal("0"), ge=0)
    frequency: Period = Period.MONTHLY
    next_due_at: Optional[UTCDateTime] = None


class Goal(OwnedEntity):
    """A savings target owned by one user."""

    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: GoalType
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    target_date: UTCDateTime
    start_date: UTCDateTime = Field(default_factory=utc_now)
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.ACTIVE
    currency: str = Field(default="USD", max_length=3)
    recurring_contribution: RecurringContribution = Field(
        default_factory=RecurringContribution
    )
    milestones: list[Milestone] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: list[str] = Field(default_factory=list)

    @property
    def progress_percentage(self) -> float:
        if self.target_amount <= 0:
            return 0.0
        return float(self.current_amount / self.target_amount * 100)

    @property
    def remaining_amount(self) -> Decimal:
        return max(Decimal("0"), self.target_amount - self.current_amount)

    def days_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole days until the target date, rounded up. Negative when overdue."""
        now = now or utc_now()
        seconds = (self.target_date - now).total_seconds()
        return math.ceil(seconds / SECONDS_PER_DAY)

    def completion_status(self, now: Optional[datetime] = None) -> CompletionStatus:
        progress = self.progress_percentage
        if progress >= 100:
            return CompletionStatus.COMPLETED
        if self.days_remaining(now) < 0:
            return CompletionStatus.OVERDUE
        if progress >= 80:
            return CompletionStatus.ALMOST_THERE
        if progress >= 50:
            return CompletionStatus.ON_TRACK
        if progress >= 25:
            return CompletionStatus.GETTING_STARTED
        return CompletionStatus.JUST_STARTED


class RecurringContributionInput(BaseModel):
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    frequency: Period = Period.MONTHLY


class GoalCreate(BaseModel):
    """Input for creating a goal."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: GoalType
    target_amount: Decimal = Field(..., gt=0)
    target_date: UTCDateTime
    priority: GoalPriority = GoalPriority.MEDIUM
    currency: Optional[str] = Field(default=None, max_length=3)
    recurring_contribution: Optional[RecurringContributionInput] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: list[str] = Field(default_factory=list)


class GoalUpdate(BaseModel):
    """
    Partial goal edit.

    `current_amount`, `status` and milestones are deliberately absent:
    they change only through contributions, set_status and add_milestone.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: Optional[GoalType] = None
    target_amount: Optional[Decimal] = Field(default=None, gt=0)
    target_date: Optional[UTCDateTime] = None
    priority: Optional[GoalPriority] = None
    recurring_contribution: Optional[RecurringContributionInput] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[list[str]] = None


class MilestoneCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., gt=0)
    deadline: Optional[UTCDateTime] = None
