"""
Ledger Models

The ledger is owned by an external collaborator. These models describe
the shape the engine reads and writes; they are not a bookkeeping schema.

A ledger entry is a single signed monetary movement. Expense amounts are
normally positive; goal contributions are recorded as negative expenses
in the savings category so they show up in spending history.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from finance_engine.models.common import OwnedEntity, UTCDateTime, utc_now


class EntryKind(str, Enum):
    """Direction of a ledger movement."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class LedgerEntry(OwnedEntity):
    """A single recorded monetary movement."""

    amount: Decimal = Field(
        ...,
        description="Signed amount"
    )
    kind: EntryKind
    category: str = Field(
        ...,
        min_length=1,
        max_length=50
    )
    subcategory: Optional[str] = Field(default=None, max_length=50)
    date: UTCDateTime = Field(default_factory=utc_now)
    description: str = Field(
        ...,
        min_length=1,
        max_length=500
    )
    account: Optional[str] = Field(default=None, max_length=100)
    currency: str = Field(default="USD", max_length=3)
    tags: list[str] = Field(default_factory=list)

    # Link back to whatever produced the entry (e.g. a goal for contributions)
    reference_id: Optional[UUID] = None


class LedgerEntryCreate(BaseModel):
    """Input for recording a new ledger entry."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal
    kind: EntryKind
    category: str = Field(..., min_length=1, max_length=50)
    subcategory: Optional[str] = Field(default=None, max_length=50)
    date: Optional[UTCDateTime] = None
    description: str = Field(..., min_length=1, max_length=500)
    account: Optional[str] = Field(default=None, max_length=100)
    currency: Optional[str] = Field(default=None, max_length=3)
    tags: list[str] = Field(default_factory=list)
    reference_id: Optional[UUID] = None


class LedgerEntryUpdate(BaseModel):
    """Partial edit of a ledger entry. Unset fields are left alone."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    kind: Optional[EntryKind] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    subcategory: Optional[str] = Field(default=None, max_length=50)
    date: Optional[UTCDateTime] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    account: Optional[str] = Field(default=None, max_length=100)
    tags: Optional[list[str]] = None


class LedgerQuery(BaseModel):
    """
    Filter for ledger lookups.

    Date bounds are inclusive on both ends.
    """

    owner_id: str = Field(..., min_length=1)
    kind: Optional[EntryKind] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    date_from: Optional[UTCDateTime] = None
    date_to: Optional[UTCDateTime] = None
    reference_id: Optional[UUID] = None
    description_contains: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)

    def matches(self, entry: LedgerEntry) -> bool:
        """Check a single entry against this filter."""
        if entry.owner_id != self.owner_id:
            return False
        if self.kind is not None and entry.kind != self.kind:
            return False
        if self.category is not None and entry.category != self.category:
            return False
        if self.subcategory is not None and entry.subcategory != self.subcategory:
            return False
        if self.date_from is not None and entry.date < self.date_from:
            return False
        if self.date_to is not None and entry.date > self.date_to:
            return False
        if self.reference_id is not None and entry.reference_id != self.reference_id:
            return False
        if (
            self.description_contains
            and self.description_contains.lower() not in entry.description.lower()
        ):
            return False
        return True


def within(moment: datetime, start: datetime, end: datetime) -> bool:
    """Closed-interval membership test."""
    return start <= moment <= end
