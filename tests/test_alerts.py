"""
Tests for the alert dispatcher.
"""

import pytest
from datetime import datetime, timedelta

from finance_engine.alerts import AlertDispatcher
from finance_engine.config import EngineSettings
from finance_engine.errors import NotFoundError, TransientDependencyError, ValidationError
from finance_engine.models import (
    AuditEventType,
    NotificationPriority,
    NotificationType,
)
from finance_engine.services.storage import InMemoryNotificationStorage, StorageError

from conftest import ALICE, BOB, T0


class FailingNotificationStorage(InMemoryNotificationStorage):
    async def save_notification(self, notification):
        raise StorageError("notification store offline")


def notification_data(**overrides) -> dict:
    data = {
        "type": "system_update",
        "title": "Maintenance",
        "message": "Scheduled maintenance tonight",
    }
    data.update(overrides)
    return data


@pytest.fixture
def dispatcher(notification_storage, audit_logger, settings, clock):
    return AlertDispatcher(notification_storage, audit_logger, settings, clock)


class TestCreate:
    """Tests for the strict creation path."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, dispatcher):
        """Test a created notification is unread, unarchived and medium priority."""
        notification = await dispatcher.create(ALICE, notification_data())

        assert notification.owner_id == ALICE
        assert notification.priority == NotificationPriority.MEDIUM
        assert not notification.is_read
        assert not notification.is_archived
        assert notification.created_at == T0

    @pytest.mark.asyncio
    async def test_create_rejects_bad_input(self, dispatcher):
        with pytest.raises(ValidationError) as exc_info:
            await dispatcher.create(ALICE, notification_data(type="carrier_pigeon", title=""))
        assert set(exc_info.value.fields) == {"type", "title"}

    @pytest.mark.asyncio
    async def test_store_failure_is_transient(self, audit_logger, settings, clock):
        dispatcher = AlertDispatcher(FailingNotificationStorage(), audit_logger, settings, clock)
        with pytest.raises(TransientDependencyError):
            await dispatcher.create(ALICE, notification_data())

    @pytest.mark.asyncio
    async def test_dispatch_swallows_store_failure(
        self, audit_logger, audit_storage, settings, clock
    ):
        """Test the fire-and-forget path returns None and audits the failure."""
        dispatcher = AlertDispatcher(FailingNotificationStorage(), audit_logger, settings, clock)

        result = await dispatcher.dispatch(
            ALICE, NotificationType.BUDGET_ALERT, "Budget Alert", "Over threshold"
        )

        assert result is None
        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.SECONDARY_STEP_FAILED
        assert events[0].details["step"] == "dispatch_budget_alert"


class TestReadState:
    """Tests for read / archive / delete."""

    @pytest.mark.asyncio
    async def test_list_is_newest_first_and_owner_scoped(self, dispatcher, clock):
        first = await dispatcher.create(ALICE, notification_data(title="first"))
        clock.advance(minutes=1)
        second = await dispatcher.create(ALICE, notification_data(title="second"))
        await dispatcher.create(BOB, notification_data(title="bob"))

        listed = await dispatcher.list_notifications(ALICE)
        assert [n.id for n in listed] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_default_page_size(self, notification_storage, audit_logger, clock):
        dispatcher = AlertDispatcher(
            notification_storage, audit_logger, EngineSettings(default_page_size=2), clock
        )
        for _ in range(3):
            await dispatcher.create(ALICE, notification_data())

        assert len(await dispatcher.list_notifications(ALICE)) == 2
        assert len(await dispatcher.list_notifications(ALICE, limit=10)) == 3

    @pytest.mark.asyncio
    async def test_unread_count_excludes_archived_and_expired(self, dispatcher, clock):
        await dispatcher.create(ALICE, notification_data())
        archived = await dispatcher.create(ALICE, notification_data())
        await dispatcher.archive(ALICE, archived.id)
        await dispatcher.create(
            ALICE, notification_data(expires_at=T0 + timedelta(hours=1))
        )

        assert await dispatcher.unread_count(ALICE) == 2
        clock.advance(hours=1)
        assert await dispatcher.unread_count(ALICE) == 1

    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent(self, dispatcher, clock):
        """Test the first read timestamp survives a second mark_read."""
        notification = await dispatcher.create(ALICE, notification_data())

        clock.advance(minutes=5)
        first = await dispatcher.mark_read(ALICE, notification.id)
        clock.advance(minutes=5)
        second = await dispatcher.mark_read(ALICE, notification.id)

        assert first.read_at == T0 + timedelta(minutes=5)
        assert second.read_at == first.read_at
        assert second.version == first.version

    @pytest.mark.asyncio
    async def test_mark_all_read(self, dispatcher):
        await dispatcher.create(ALICE, notification_data())
        await dispatcher.create(ALICE, notification_data())
        await dispatcher.create(BOB, notification_data())

        assert await dispatcher.mark_all_read(ALICE) == 2
        assert await dispatcher.unread_count(ALICE) == 0
        assert await dispatcher.unread_count(BOB) == 1

    @pytest.mark.asyncio
    async def test_foreign_notifications_are_not_found(self, dispatcher):
        notification = await dispatcher.create(ALICE, notification_data())

        with pytest.raises(NotFoundError, match="Notification not found"):
            await dispatcher.mark_read(BOB, notification.id)
        with pytest.raises(NotFoundError):
            await dispatcher.archive(BOB, notification.id)
        with pytest.raises(NotFoundError):
            await dispatcher.delete(BOB, notification.id)

        assert (await dispatcher.get(ALICE, notification.id)).is_read is False

    @pytest.mark.asyncio
    async def test_delete(self, dispatcher):
        notification = await dispatcher.create(ALICE, notification_data())
        await dispatcher.delete(ALICE, notification.id)
        with pytest.raises(NotFoundError):
            await dispatcher.get(ALICE, notification.id)


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_purge_expired(self, dispatcher, clock):
        await dispatcher.create(ALICE, notification_data(expires_at=T0 + timedelta(hours=1)))
        await dispatcher.create(BOB, notification_data(expires_at=T0 + timedelta(hours=2)))
        keep = await dispatcher.create(ALICE, notification_data())

        assert await dispatcher.purge_expired(T0 + timedelta(hours=3)) == 2
        assert [n.id for n in await dispatcher.list_notifications(ALICE)] == [keep.id]
        assert await dispatcher.list_notifications(BOB) == []

    @pytest.mark.asyncio
    async def test_purge_accepts_naive_time_as_utc(self, dispatcher):
        await dispatcher.create(ALICE, notification_data(expires_at=T0 + timedelta(hours=1)))
        assert await dispatcher.purge_expired(datetime(2025, 1, 16)) == 1

    @pytest.mark.asyncio
    async def test_summary(self, dispatcher):
        read = await dispatcher.create(ALICE, notification_data())
        await dispatcher.mark_read(ALICE, read.id)
        archived = await dispatcher.create(
            ALICE, notification_data(type="budget_alert", priority="high")
        )
        await dispatcher.archive(ALICE, archived.id)
        await dispatcher.create(ALICE, notification_data(type="budget_alert"))

        summary = await dispatcher.summary(ALICE)

        assert summary.total == 3
        assert summary.unread == 2
        assert summary.read == 1
        assert summary.archived == 1
        assert summary.by_type == {"system_update": 1, "budget_alert": 2}
        assert summary.by_priority == {"medium": 2, "high": 1}
