"""Input validation package."""

from finance_engine.validation.validator import (
    BudgetValidator,
    GoalValidator,
    ensure_valid,
    issues_from_schema_error,
    parse_input,
)

__all__ = [
    "BudgetValidator",
    "GoalValidator",
    "ensure_valid",
    "issues_from_schema_error",
    "parse_input",
]
