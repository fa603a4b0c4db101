"""
Alert Dispatcher

Creates notifications and manages their read / archive / delete
lifecycle.

Two creation paths:
- `create` is the strict path. A store failure is raised as
  TransientDependencyError.
- `dispatch` is the fire-and-forget path used by the budget aggregator,
  the goal engine and the ledger gateway once their own write has
  committed. A store failure is logged, audited and turned into None so
  the committed change is never undone by a lost alert.

The dispatcher never deduplicates. Rate limiting is the caller's job and
is decided on the caller's entity (e.g. a budget's last_alert_sent_at).
"""

from collections import Counter
from datetime import datetime
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings
from finance_engine.concurrency import run_with_conflict_retry
from finance_engine.errors import NotFoundError, TransientDependencyError
from finance_engine.models.common import ensure_utc, utc_now
from finance_engine.models.notification import (
    Notification,
    NotificationCreate,
    NotificationPriority,
    NotificationType,
)
from finance_engine.models.summary import NotificationSummary
from finance_engine.services.storage import (
    NotificationStorageInterface,
    StorageError,
)
from finance_engine.validation import parse_input

logger = structlog.get_logger(__name__)


class AlertDispatcher:
    """Owner-scoped notification service."""

    def __init__(
        self,
        storage: NotificationStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or EngineSettings()
        self._clock = clock
        self._max_update_attempts = self._settings.max_update_attempts

    async def create(
        self,
        owner_id: str,
        data: Union[NotificationCreate, dict[str, Any]],
    ) -> Notification:
        """
        Create a notification unconditionally.

        Raises:
            ValidationError: if the input is malformed
            TransientDependencyError: if the notification store write fails
        """
        notification_input = parse_input(NotificationCreate, data, "notification")
        now = self._clock()
        notification = Notification(
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
            **notification_input.model_dump(),
        )

        try:
            saved = await self._storage.save_notification(notification)
        except StorageError as e:
            raise TransientDependencyError("notification store", e) from e

        logger.info(
            "notification_created",
            owner_id=owner_id,
            notification_id=str(saved.id),
            type=saved.type.value,
            priority=saved.priority.value,
        )
        return saved

    async def dispatch(
        self,
        owner_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        action_url: Optional[str] = None,
        action_text: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        Best-effort create. Returns None instead of raising.
        """
        try:
            return await self.create(owner_id, NotificationCreate(
                type=notification_type,
                title=title,
                message=message,
                priority=priority,
                metadata=metadata or {},
                expires_at=expires_at,
                action_url=action_url,
                action_text=action_text,
            ))
        except Exception as e:
            logger.error(
                "notification_dispatch_failed",
                owner_id=owner_id,
                type=notification_type.value,
                error=str(e),
                exc_info=True,
            )
            await self._audit.log_secondary_failure(
                step=f"dispatch_{notification_type.value}",
                error_message=str(e),
                owner_id=owner_id,
                entity_type="notification",
            )
            return None

    async def get(self, owner_id: str, notification_id: UUID) -> Notification:
        notification = await self._storage.get_notification(owner_id, notification_id)
        if notification is None:
            raise NotFoundError("notification", notification_id)
        return notification

    async def list_notifications(
        self,
        owner_id: str,
        notification_type: Optional[NotificationType] = None,
        priority: Optional[NotificationPriority] = None,
        is_read: Optional[bool] = None,
        is_archived: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Notification]:
        """Newest first; one page of `default_page_size` unless a limit is given."""
        return await self._storage.list_notifications(
            owner_id,
            notification_type=notification_type,
            priority=priority,
            is_read=is_read,
            is_archived=is_archived,
            limit=limit or self._settings.default_page_size,
            offset=offset,
        )

    async def unread_count(self, owner_id: str) -> int:
        """Unread, unarchived and unexpired notifications."""
        return await self._storage.count_unread(owner_id, self._clock())

    async def mark_read(self, owner_id: str, notification_id: UUID) -> Notification:
        """Idempotent. The first read time is kept."""

        async def step() -> Notification:
            notification = await self.get(owner_id, notification_id)
            if notification.is_read:
                return notification
            now = self._clock()
            notification.is_read = True
            notification.read_at = now
            notification.updated_at = now
            return await self._storage.update_notification(notification)

        return await run_with_conflict_retry(step, self._max_update_attempts)

    async def mark_all_read(self, owner_id: str) -> int:
        count = await self._storage.mark_all_read(owner_id, self._clock())
        logger.info("notifications_marked_read", owner_id=owner_id, count=count)
        return count

    async def archive(self, owner_id: str, notification_id: UUID) -> Notification:
        """Idempotent."""

        async def step() -> Notification:
            notification = await self.get(owner_id, notification_id)
            if notification.is_archived:
                return notification
            notification.is_archived = True
            notification.updated_at = self._clock()
            return await self._storage.update_notification(notification)

        return await run_with_conflict_retry(step, self._max_update_attempts)

    async def delete(self, owner_id: str, notification_id: UUID) -> None:
        deleted = await self._storage.delete_notification(owner_id, notification_id)
        if not deleted:
            raise NotFoundError("notification", notification_id)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every notification whose expiry has passed, for all owners."""
        count = await self._storage.delete_expired(ensure_utc(now or self._clock()))
        if count:
            logger.info("notifications_purged", count=count)
        return count

    async def summary(self, owner_id: str) -> NotificationSummary:
        notifications = await self._storage.list_notifications(owner_id)
        total = len(notifications)
        unread = sum(1 for n in notifications if not n.is_read)
        return NotificationSummary(
            total=total,
            unread=unread,
            read=total - unread,
            archived=sum(1 for n in notifications if n.is_archived),
            by_type=dict(Counter(n.type.value for n in notifications)),
            by_priority=dict(Counter(n.priority.value for n in notifications)),
        )
