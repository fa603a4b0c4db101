"""Budget aggregation and threshold alerts."""

from finance_engine.budgets.aggregator import BudgetAggregator

__all__ = ["BudgetAggregator"]
