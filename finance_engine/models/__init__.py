"""
Data Models Package

This package contains all Pydantic models used by the finance engine.
All data flowing through the engine must conform to these schemas.
"""

from finance_engine.models.common import (
    OwnedEntity,
    Period,
    add_period,
    ensure_utc,
    utc_now,
)
from finance_engine.models.ledger import (
    EntryKind,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    LedgerQuery,
)
from finance_engine.models.budget import (
    AlertConfig,
    AlertConfigInput,
    Budget,
    BudgetCreate,
    BudgetStatus,
    BudgetUpdate,
)
from finance_engine.models.goal import (
    CompletionStatus,
    Goal,
    GoalCreate,
    GoalPriority,
    GoalStatus,
    GoalType,
    GoalUpdate,
    Milestone,
    MilestoneCreate,
    RecurringContribution,
    RecurringContributionInput,
)
from finance_engine.models.notification import (
    Notification,
    NotificationCreate,
    NotificationPriority,
    NotificationType,
)
from finance_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_engine.models.validation import ValidationIssue, ValidationResult
from finance_engine.models.summary import (
    BudgetPerformance,
    BudgetStat,
    BudgetSummary,
    ContributionPoint,
    GoalSummary,
    MonthlySpending,
    NotificationSummary,
)

__all__ = [
    # Common
    "OwnedEntity",
    "Period",
    "add_period",
    "ensure_utc",
    "utc_now",
    # Ledger
    "EntryKind",
    "LedgerEntry",
    "LedgerEntryCreate",
    "LedgerEntryUpdate",
    "LedgerQuery",
    # Budgets
    "AlertConfig",
    "AlertConfigInput",
    "Budget",
    "BudgetCreate",
    "BudgetStatus",
    "BudgetUpdate",
    # Goals
    "CompletionStatus",
    "Goal",
    "GoalCreate",
    "GoalPriority",
    "GoalStatus",
    "GoalType",
    "GoalUpdate",
    "Milestone",
    "MilestoneCreate",
    "RecurringContribution",
    "RecurringContributionInput",
    # Notifications
    "Notification",
    "NotificationCreate",
    "NotificationPriority",
    "NotificationType",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Summaries
    "BudgetPerformance",
    "BudgetStat",
    "BudgetSummary",
    "ContributionPoint",
    "GoalSummary",
    "MonthlySpending",
    "NotificationSummary",
]
