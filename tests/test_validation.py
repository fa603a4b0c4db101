"""
Tests for the two-stage validation pipeline.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from finance_engine.errors import ValidationError
from finance_engine.models import BudgetCreate, ValidationIssue, ValidationResult
from finance_engine.validation import (
    BudgetValidator,
    GoalValidator,
    ensure_valid,
    parse_input,
)

from conftest import T0, FakeClock, budget_data


class TestParseInput:
    """Tests for stage 1 (schema) validation."""

    def test_valid_dict_is_coerced(self):
        parsed = parse_input(BudgetCreate, budget_data(), "budget")
        assert isinstance(parsed, BudgetCreate)
        assert parsed.amount == Decimal("1000")

    def test_model_instance_passes_through(self):
        """Test an already-parsed model is returned unchanged."""
        parsed = BudgetCreate.model_validate(budget_data())
        assert parse_input(BudgetCreate, parsed, "budget") is parsed

    def test_field_level_issues(self):
        """Test each bad field is reported by name."""
        with pytest.raises(ValidationError) as exc_info:
            parse_input(BudgetCreate, budget_data(amount="-5", name=""), "budget")

        assert set(exc_info.value.fields) == {"amount", "name"}
        assert exc_info.value.subject == "budget"

    def test_missing_required_field(self):
        data = budget_data()
        del data["category"]
        with pytest.raises(ValidationError) as exc_info:
            parse_input(BudgetCreate, data, "budget")
        assert exc_info.value.fields == ["category"]


class TestBudgetValidator:
    """Tests for stage 2 budget checks."""

    def test_valid_budget(self):
        result = BudgetValidator().validate(
            "Groceries", "food", Decimal("100"), T0, T0 + timedelta(days=1), 80.0
        )
        assert result.is_valid
        assert result.issues == []

    def test_end_before_start(self):
        """Test end_date must be strictly after start_date."""
        result = BudgetValidator().validate(
            "Groceries", "food", Decimal("100"), T0, T0
        )
        assert not result.is_valid
        assert [issue.field for issue in result.issues] == ["end_date"]

    def test_threshold_out_of_range(self):
        result = BudgetValidator().validate(
            "Groceries", "food", Decimal("100"), T0, T0 + timedelta(days=1), 150.0
        )
        assert result.issues[0].field == "alert_config.threshold_percent"

    def test_ensure_valid_raises_with_errors_only(self):
        """Test warnings are not promoted to errors."""
        result = ValidationResult(
            subject="budget",
            schema_valid=True,
            semantic_valid=False,
            issues=[
                ValidationIssue(field="amount", issue_type="invalid_value", message="bad"),
                ValidationIssue(
                    field="name", issue_type="odd", message="hm", severity="warning"
                ),
            ],
        )
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid(result)
        assert exc_info.value.fields == ["amount"]


class TestGoalValidator:
    """Tests for stage 2 goal checks."""

    def test_target_date_must_be_future(self):
        validator = GoalValidator(clock=FakeClock())
        assert not validator.validate_target_date(T0).is_valid
        assert validator.validate_target_date(T0 + timedelta(seconds=1)).is_valid

    def test_milestone_above_target_is_warning(self):
        result = GoalValidator().validate_milestone(Decimal("600"), Decimal("500"))
        assert result.is_valid
        assert result.warnings == ["Milestone target is above the goal target"]

    @pytest.mark.parametrize("amount", [0, -10, "abc", None, "NaN", "Infinity"])
    def test_invalid_contribution_amounts(self, amount):
        """Test non-positive, non-numeric and non-finite amounts are rejected."""
        with pytest.raises(ValidationError, match="amount"):
            GoalValidator().parse_contribution_amount(amount)

    def test_contribution_amount_coerced(self):
        assert GoalValidator().parse_contribution_amount("12.50") == Decimal("12.50")
        assert GoalValidator().parse_contribution_amount(3) == Decimal("3")
