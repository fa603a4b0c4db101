"""
Shared fixtures.

Everything runs on the in-memory stores with a hand-driven clock, so
time-window behaviour (alert suppression, recurring reminders, expiry)
is tested by moving the clock instead of sleeping.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings
from finance_engine.orchestrator import FinanceEngine
from finance_engine.services.storage import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryLedgerStorage,
    InMemoryNotificationStorage,
)


T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

ALICE = "alice"
BOB = "bob"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class YieldingGoalStorage(InMemoryGoalStorage):
    """Hands control back to the event loop after every read to force interleaving."""

    async def get_goal(self, owner_id, goal_id):
        goal = await super().get_goal(owner_id, goal_id)
        await asyncio.sleep(0)
        return goal


class YieldingBudgetStorage(InMemoryBudgetStorage):
    async def get_budget(self, owner_id, budget_id):
        budget = await super().get_budget(owner_id, budget_id)
        await asyncio.sleep(0)
        return budget

    async def find_overlapping(self, *args, **kwargs):
        conflict = await super().find_overlapping(*args, **kwargs)
        await asyncio.sleep(0)
        return conflict


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    # Generous attempt budget so contention tests never exhaust retries
    return EngineSettings(max_update_attempts=25)


@pytest.fixture
def ledger_storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def budget_storage():
    return InMemoryBudgetStorage()


@pytest.fixture
def goal_storage():
    return InMemoryGoalStorage()


@pytest.fixture
def notification_storage():
    return InMemoryNotificationStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(
    ledger_storage,
    budget_storage,
    goal_storage,
    notification_storage,
    audit_logger,
    settings,
    clock,
):
    return FinanceEngine(
        ledger_storage=ledger_storage,
        budget_storage=budget_storage,
        goal_storage=goal_storage,
        notification_storage=notification_storage,
        audit_logger=audit_logger,
        settings=settings,
        clock=clock,
    )


def budget_data(**overrides) -> dict:
    """A monthly groceries budget around T0."""
    data = {
        "name": "Groceries",
        "category": "food",
        "amount": "1000",
        "period": "monthly",
        "start_date": T0 - timedelta(days=14),
        "end_date": T0 + timedelta(days=16),
    }
    data.update(overrides)
    return data


def expense(amount, category="food", **overrides) -> dict:
    data = {
        "amount": str(amount),
        "kind": "expense",
        "category": category,
        "description": f"Spent {amount}",
    }
    data.update(overrides)
    return data


def goal_data(**overrides) -> dict:
    data = {
        "title": "Emergency Fund",
        "type": "emergency_fund",
        "target_amount": "5000",
        "target_date": T0 + timedelta(days=365),
    }
    data.update(overrides)
    return data
