"""
Budget Models

A budget is a spending cap for one category over a closed date window.

CRITICAL: `spent` is a CACHE. The source of truth is the ledger.
The aggregator recomputes it from scratch on every qualifying ledger
change; nothing else is allowed to write it.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from finance_engine.models.common import OwnedEntity, Period, UTCDateTime
from finance_engine.models.ledger import EntryKind, LedgerEntry, within


# Status bands, in percent of the cap
EXCEEDED_PERCENT = 100.0
CRITICAL_PERCENT = 90.0
WARNING_PERCENT = 80.0


class BudgetStatus(str, Enum):
    """Spending health derived from percentage spent."""
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


class AlertConfig(BaseModel):
    """
    Threshold alert settings for a budget.

    `last_alert_sent_at` is persisted on the budget itself so the 24h
    suppression window survives restarts and works across processes.
    """

    enabled: bool = True
    threshold_percent: float = Field(
        default=80.0,
        gt=0,
        le=100,
        description="Alert once spending reaches this percentage of the cap"
    )
    last_alert_sent_at: Optional[UTCDateTime] = None


class Budget(OwnedEntity):
    """A spending cap for one owner + category + date window."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=100
    )
    description: Optional[str] = Field(default=None, max_length=500)
    category: str = Field(
        ...,
        min_length=1,
        max_length=50
    )
    subcategory: Optional[str] = Field(default=None, max_length=50)
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Spending cap"
    )
    spent: Decimal = Field(
        default=Decimal("0"),
        description="Cached sum of matching expense entries"
    )
    period: Period = Period.MONTHLY
    start_date: UTCDateTime
    end_date: UTCDateTime
    currency: str = Field(default="USD", max_length=3)
    is_active: bool = True
    alert_config: AlertConfig = Field(default_factory=AlertConfig)
    tags: list[str] = Field(default_factory=list)

    @property
    def remaining(self) -> Decimal:
        """Amount left before hitting the cap (never negative)."""
        return max(Decimal("0"), self.amount - self.spent)

    @property
    def percentage_spent(self) -> float:
        """Spent as a percentage of the cap."""
        if self.amount == 0:
            return 0.0
        return float(self.spent / self.amount * 100)

    @property
    def status(self) -> BudgetStatus:
        percentage = self.percentage_spent
        if percentage >= EXCEEDED_PERCENT:
            return BudgetStatus.EXCEEDED
        if percentage >= CRITICAL_PERCENT:
            return BudgetStatus.CRITICAL
        if percentage >= WARNING_PERCENT:
            return BudgetStatus.WARNING
        return BudgetStatus.GOOD

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Inclusive range intersection; touching endpoints overlap."""
        return self.start_date <= end and self.end_date >= start

    def covers(self, entry: LedgerEntry) -> bool:
        """Does this ledger entry count towards this budget's spending?"""
        return (
            entry.owner_id == self.owner_id
            and entry.kind == EntryKind.EXPENSE
            and entry.category == self.category
            and within(entry.date, self.start_date, self.end_date)
        )


class AlertConfigInput(BaseModel):
    """Alert settings supplied when creating a budget."""

    enabled: bool = True
    threshold_percent: Optional[float] = Field(default=None, gt=0, le=100)


class BudgetCreate(BaseModel):
    """Input for creating a budget."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: str = Field(..., min_length=1, max_length=50)
    subcategory: Optional[str] = Field(default=None, max_length=50)
    amount: Decimal = Field(..., gt=0)
    period: Period = Period.MONTHLY
    start_date: UTCDateTime
    end_date: UTCDateTime
    currency: Optional[str] = Field(default=None, max_length=3)
    is_active: bool = True
    alert_config: Optional[AlertConfigInput] = None
    tags: list[str] = Field(default_factory=list)


class BudgetUpdate(BaseModel):
    """
    Partial budget edit.

    Activity and alert settings have their own operations
    (toggle / update_alert_config) and are not patchable here.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    subcategory: Optional[str] = Field(default=None, max_length=50)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    period: Optional[Period] = None
    start_date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None
    tags: Optional[list[str]] = None
