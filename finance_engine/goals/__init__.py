"""Goal accounting: contributions, milestones, completion, reminders."""

from finance_engine.goals.engine import ContributionOutcome, GoalAccountingEngine

__all__ = ["ContributionOutcome", "GoalAccountingEngine"]
