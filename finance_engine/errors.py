"""
Engine Error Taxonomy

DESIGN DECISION: Errors are split by what the caller can do about them.

- ValidationError / OverlapConflict / StateError: the request is wrong for
  the current data. Raised before any mutation, returned to the caller.
- NotFoundError: the entity does not exist OR belongs to someone else.
  Both cases produce the same message so existence never leaks.
- TransientDependencyError: a collaborator (ledger, notification store)
  failed during a secondary step. The engine logs and swallows these;
  the primary state change is never rolled back.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from finance_engine.models.validation import ValidationIssue


class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class ValidationError(EngineError):
    """Input is malformed or out of range."""

    def __init__(self, issues: list[ValidationIssue], subject: str = "input"):
        self.issues = issues
        self.subject = subject
        fields = ", ".join(sorted({issue.field for issue in issues})) or "unknown"
        super().__init__(f"Invalid {subject}: {fields}")

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


class OverlapConflict(EngineError):
    """An active budget for the same category already covers part of the range."""

    def __init__(
        self,
        conflicting_budget_id: UUID,
        name: str,
        start_date: datetime,
        end_date: datetime,
    ):
        self.conflicting_budget_id = conflicting_budget_id
        self.name = name
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            "A budget already exists for this category in the specified period: "
            f"'{name}' ({start_date.isoformat()} - {end_date.isoformat()})"
        )


class NotFoundError(EngineError):
    """Entity is missing or not owned by the caller."""

    def __init__(self, entity_type: str, entity_id: Optional[UUID] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.replace('_', ' ').capitalize()} not found")


class StateError(EngineError):
    """Operation is not valid for the entity's current state."""
    pass


class TransientDependencyError(EngineError):
    """A collaborator write failed during a best-effort step."""

    def __init__(self, dependency: str, cause: Optional[BaseException] = None):
        self.dependency = dependency
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{dependency} unavailable{detail}")
