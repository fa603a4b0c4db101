"""
Finance Engine

Accounting and alerting core for a personal finance app: keeps budget
and goal aggregates consistent with the transaction ledger and raises
rate-limited alerts.

DESIGN PRINCIPLES:
1. The ledger is the source of truth; aggregates are recomputed caches
2. Reject bad input before any mutation
3. Alerts go out only after the state change that justifies them commits
4. Best-effort side effects never undo a committed change
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Engine Team"
