"""
Notification Models

Notifications are created only by the alert dispatcher, on behalf of the
budget aggregator, the goal engine, the ledger gateway, or an external
broadcast. Users then read, archive or delete them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from finance_engine.models.common import OwnedEntity, UTCDateTime


class NotificationType(str, Enum):
    BUDGET_ALERT = "budget_alert"
    GOAL_REMINDER = "goal_reminder"
    TRANSACTION_ALERT = "transaction_alert"
    INVESTMENT_ALERT = "investment_alert"
    BILL_REMINDER = "bill_reminder"
    SECURITY_ALERT = "security_alert"
    SYSTEM_UPDATE = "system_update"
    ACHIEVEMENT = "achievement"
    AI_INSIGHT = "ai_insight"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Notification(OwnedEntity):
    """A user-facing notification."""

    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    is_read: bool = False
    read_at: Optional[UTCDateTime] = None
    is_archived: bool = False
    expires_at: Optional[UTCDateTime] = None
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def counts_as_unread(self, now: datetime) -> bool:
        """Unread, not archived, and not expired."""
        return not self.is_read and not self.is_archived and not self.is_expired(now)


class NotificationCreate(BaseModel):
    """Input for creating a notification."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    expires_at: Optional[UTCDateTime] = None
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
