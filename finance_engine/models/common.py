"""
Shared Model Building Blocks

Every persisted entity in the engine is owned by exactly one user and
carries a version counter for optimistic concurrency control.

DESIGN DECISION: All timestamps are timezone-aware UTC.
Naive datetimes coming from callers are interpreted as UTC rather than
local time, so comparisons between ledger dates and budget windows are
never ambiguous.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated
from uuid import UUID, uuid4

from dateutil.relativedelta import relativedelta
from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]


class Period(str, Enum):
    """
    Calendar periods shared by budgets and recurring contributions.
    """
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


_PERIOD_STEPS = {
    Period.WEEKLY: relativedelta(days=7),
    Period.MONTHLY: relativedelta(months=1),
    Period.QUARTERLY: relativedelta(months=3),
    Period.YEARLY: relativedelta(years=1),
}


def add_period(moment: datetime, period: Period, steps: int = 1) -> datetime:
    """
    Move a moment forward by whole calendar periods.

    Month arithmetic clamps to the end of shorter months
    (Jan 31 + 1 month = Feb 28/29).
    """
    return moment + _PERIOD_STEPS[Period(period)] * steps


class OwnedEntity(BaseModel):
    """
    Base for every persisted, owner-scoped entity.

    `version` is bumped by the storage layer on each successful update.
    Writers must send back the version they read; a mismatch means
    someone else won the race and the write is rejected.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entity ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Identity of the owning user"
    )
    created_at: UTCDateTime = Field(default_factory=utc_now)
    updated_at: UTCDateTime = Field(default_factory=utc_now)
    version: int = Field(
        default=0,
        ge=0,
        description="Optimistic concurrency counter"
    )
