"""
Audit Logger

Every state change the engine makes, and every best-effort step that
failed, is recorded as an AuditEvent.

The audit logger:
- Always writes a structured local log line
- Persists to an audit store when one is configured
- Never raises: a broken audit store must not break accounting
"""

import logging
from typing import Optional
from uuid import UUID

import structlog

from finance_engine.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finance_engine.services.storage import AuditStorageInterface


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store, if configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_budget_change(
        self,
        event_type: AuditEventType,
        budget_id: UUID,
        owner_id: str,
        name: str,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_changed(
            event_type=event_type,
            budget_id=budget_id,
            owner_id=owner_id,
            name=name,
            details=details,
        ))

    async def log_overlap_rejected(
        self,
        owner_id: str,
        category: str,
        conflicting_budget_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.overlap_rejected(
            owner_id=owner_id,
            category=category,
            conflicting_budget_id=conflicting_budget_id,
        ))

    async def log_budget_recomputed(
        self,
        budget_id: UUID,
        owner_id: str,
        previous_spent: str,
        spent: str,
    ) -> None:
        await self.log(AuditEventBuilder.budget_recomputed(
            budget_id=budget_id,
            owner_id=owner_id,
            previous_spent=previous_spent,
            spent=spent,
        ))

    async def log_budget_alert_sent(
        self,
        budget_id: UUID,
        owner_id: str,
        percentage: float,
    ) -> None:
        await self.log(AuditEventBuilder.budget_alert_sent(
            budget_id=budget_id,
            owner_id=owner_id,
            percentage=percentage,
        ))

    async def log_goal_change(
        self,
        event_type: AuditEventType,
        goal_id: UUID,
        owner_id: str,
        title: str,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.goal_changed(
            event_type=event_type,
            goal_id=goal_id,
            owner_id=owner_id,
            title=title,
            details=details,
        ))

    async def log_contribution(
        self,
        goal_id: UUID,
        owner_id: str,
        amount: str,
        current_amount: str,
    ) -> None:
        await self.log(AuditEventBuilder.contribution_applied(
            goal_id=goal_id,
            owner_id=owner_id,
            amount=amount,
            current_amount=current_amount,
        ))

    async def log_ledger_change(
        self,
        event_type: AuditEventType,
        entry_id: UUID,
        owner_id: str,
        kind: str,
        amount: str,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_changed(
            event_type=event_type,
            entry_id=entry_id,
            owner_id=owner_id,
            kind=kind,
            amount=amount,
        ))

    async def log_secondary_failure(
        self,
        step: str,
        error_message: str,
        owner_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
    ) -> None:
        """Record a swallowed failure of a best-effort step."""
        await self.log(AuditEventBuilder.secondary_step_failed(
            step=step,
            error_message=error_message,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
        ))
