"""Read-only summary queries."""

from finance_engine.queries.summaries import SummaryQueries

__all__ = ["SummaryQueries"]
