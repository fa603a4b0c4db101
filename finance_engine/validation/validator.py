"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking, required field presence, numeric ranges
- Delegated to the pydantic input models
- pydantic errors are translated into ValidationIssue objects

STAGE 2 - SEMANTIC VALIDATION:
- Cross-field checks (start before end)
- Time-dependent checks (target date in the future)
- These need a clock and sometimes the existing entity

WHY TWO STAGES:
1. Field-level detail for malformed input
2. Stage 2 only runs on well-typed data
3. Semantic rules can be re-run on merged (patched) entities

IMPORTANT: Validation NEVER silently fixes issues.
Any error-level issue aborts the operation before mutation.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from finance_engine.errors import ValidationError
from finance_engine.models.common import utc_now
from finance_engine.models.validation import ValidationIssue, ValidationResult

ModelT = TypeVar("ModelT", bound=BaseModel)


def issues_from_schema_error(exc: SchemaValidationError) -> list[ValidationIssue]:
    """Translate pydantic errors into field-level issues."""
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "input"
        issues.append(ValidationIssue(
            field=location,
            issue_type=error.get("type", "invalid_value"),
            message=error.get("msg", "Invalid value"),
            severity="error",
        ))
    return issues


def parse_input(
    model_cls: type[ModelT],
    data: Union[ModelT, dict[str, Any]],
    subject: str,
) -> ModelT:
    """
    Stage 1: coerce raw input into its pydantic input model.

    Raises:
        ValidationError: with one issue per failing field
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except SchemaValidationError as e:
        raise ValidationError(issues_from_schema_error(e), subject=subject) from e


def ensure_valid(result: ValidationResult) -> None:
    """Raise if a validation result carries any error-level issue."""
    if result.has_errors:
        errors = [issue for issue in result.issues if issue.severity == "error"]
        raise ValidationError(errors, subject=result.subject)


def _result(subject: str, issues: list[ValidationIssue]) -> ValidationResult:
    semantic_valid = not any(issue.severity == "error" for issue in issues)
    return ValidationResult(
        subject=subject,
        schema_valid=True,
        semantic_valid=semantic_valid,
        issues=issues,
    )


class BudgetValidator:
    """
    Semantic checks for budgets.

    Applied to the merged state on update, so a patch that only moves the
    end date is still checked against the stored start date.
    """

    def validate(
        self,
        name: str,
        category: str,
        amount: Decimal,
        start_date: datetime,
        end_date: datetime,
        threshold_percent: Optional[float] = None,
    ) -> ValidationResult:
        issues = []

        if not name or not name.strip():
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Budget name is required",
            ))

        if not category or not category.strip():
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
            ))

        if amount is None or amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than 0",
            ))

        if start_date >= end_date:
            issues.append(ValidationIssue(
                field="end_date",
                issue_type="inconsistent",
                message="End date must be after start date",
                suggested_fix="Pick an end date later than the start date",
            ))

        if threshold_percent is not None and not 0 < threshold_percent <= 100:
            issues.append(ValidationIssue(
                field="alert_config.threshold_percent",
                issue_type="invalid_value",
                message="Alert threshold must be between 0 (exclusive) and 100",
            ))

        return _result("budget", issues)


class GoalValidator:
    """Semantic checks for goals, milestones and contributions."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def validate_target_date(self, target_date: datetime) -> ValidationResult:
        issues = []
        if target_date <= self._clock():
            issues.append(ValidationIssue(
                field="target_date",
                issue_type="past_date",
                message="Target date must be in the future",
            ))
        return _result("goal", issues)

    def validate_milestone(
        self,
        target_amount: Decimal,
        goal_target_amount: Decimal,
    ) -> ValidationResult:
        issues = []
        if target_amount > goal_target_amount:
            # Reachable only by over-contributing, which is allowed
            issues.append(ValidationIssue(
                field="target_amount",
                issue_type="suspicious_value",
                message="Milestone target is above the goal target",
                severity="warning",
            ))
        return _result("milestone", issues)

    def parse_contribution_amount(self, amount: Any) -> Decimal:
        """
        Coerce and check a contribution amount.

        Raises:
            ValidationError: if the amount is not a number greater than zero
        """
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            value = None

        if value is None or not value.is_finite() or value <= 0:
            raise ValidationError(
                [ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Valid contribution amount is required",
                )],
                subject="contribution",
            )
        return value
