"""
Audit Models for the Finance Engine

Every state change the engine makes is logged for audit purposes.
This provides:
1. Traceability of every aggregate change (why is `spent` what it is?)
2. A record of every alert decision (sent, suppressed, failed)
3. Visibility into swallowed secondary-step failures

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finance_engine.models.common import UTCDateTime, utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    BUDGET_TOGGLED = "budget_toggled"
    BUDGET_OVERLAP_REJECTED = "budget_overlap_rejected"
    BUDGET_RECOMPUTED = "budget_recomputed"
    BUDGET_ALERT_SENT = "budget_alert_sent"

    # Goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"
    GOAL_STATUS_CHANGED = "goal_status_changed"
    CONTRIBUTION_APPLIED = "contribution_applied"
    MILESTONE_ADDED = "milestone_added"
    MILESTONE_ACHIEVED = "milestone_achieved"
    GOAL_COMPLETED = "goal_completed"
    RECURRING_SCHEDULED = "recurring_scheduled"
    RECURRING_ADVANCED = "recurring_advanced"

    # Ledger
    LEDGER_ENTRY_RECORDED = "ledger_entry_recorded"
    LEDGER_ENTRY_UPDATED = "ledger_entry_updated"
    LEDGER_ENTRY_DELETED = "ledger_entry_deleted"

    # Failures in best-effort steps
    SECONDARY_STEP_FAILED = "secondary_step_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: UTCDateTime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - whose data, and which entity?
    owner_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'goal', 'ledger_entry')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.budget_recomputed(budget_id, owner_id, "120", "850")
        event = AuditEventBuilder.goal_completed(goal_id, owner_id, "Vacation")
    """

    @staticmethod
    def budget_changed(
        event_type: AuditEventType,
        budget_id: UUID,
        owner_id: str,
        name: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget {event_type.value.split('_', 1)[1]}: {name}",
            details=details or {},
        )

    @staticmethod
    def overlap_rejected(
        owner_id: str,
        category: str,
        conflicting_budget_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_OVERLAP_REJECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="budget",
            entity_id=conflicting_budget_id,
            description=f"Rejected overlapping budget for category '{category}'",
            details={"category": category},
        )

    @staticmethod
    def budget_recomputed(
        budget_id: UUID,
        owner_id: str,
        previous_spent: str,
        spent: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget spent recomputed: {previous_spent} -> {spent}",
            details={"previous_spent": previous_spent, "spent": spent},
        )

    @staticmethod
    def budget_alert_sent(
        budget_id: UUID,
        owner_id: str,
        percentage: float,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALERT_SENT,
            owner_id=owner_id,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget alert sent at {percentage:.1f}%",
            details={"percentage": percentage},
        )

    @staticmethod
    def goal_changed(
        event_type: AuditEventType,
        goal_id: UUID,
        owner_id: str,
        title: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="goal",
            entity_id=goal_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {title}",
            details=details or {},
        )

    @staticmethod
    def contribution_applied(
        goal_id: UUID,
        owner_id: str,
        amount: str,
        current_amount: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTRIBUTION_APPLIED,
            owner_id=owner_id,
            entity_type="goal",
            entity_id=goal_id,
            description=f"Contribution of {amount} applied",
            details={"amount": amount, "current_amount": current_amount},
        )

    @staticmethod
    def ledger_changed(
        event_type: AuditEventType,
        entry_id: UUID,
        owner_id: str,
        kind: str,
        amount: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="ledger_entry",
            entity_id=entry_id,
            description=f"Ledger {kind} of {amount} {event_type.value.rsplit('_', 1)[1]}",
            details={"kind": kind, "amount": amount},
        )

    @staticmethod
    def secondary_step_failed(
        step: str,
        error_message: str,
        owner_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SECONDARY_STEP_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Best-effort step failed: {step}",
            error_message=error_message,
            details={"step": step},
        )
