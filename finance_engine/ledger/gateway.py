"""
Ledger Gateway

The ledger itself is an external collaborator behind
LedgerStorageInterface. Every mutation the engine cares about goes
through this gateway so that listeners (the budget aggregator) see each
create, edit and delete as a `(owner_id, before, after)` pair:

    create: (owner, None, entry)
    edit:   (owner, old, new)
    delete: (owner, old, None)

Listeners run after the ledger write has committed. A failing listener
is logged and audited; the ledger operation itself still succeeds.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog

from finance_engine.alerts import AlertDispatcher
from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings
from finance_engine.concurrency import run_with_conflict_retry
from finance_engine.errors import NotFoundError, TransientDependencyError
from finance_engine.models.audit import AuditEventType
from finance_engine.models.common import utc_now
from finance_engine.models.ledger import (
    EntryKind,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    LedgerQuery,
)
from finance_engine.models.notification import NotificationPriority, NotificationType
from finance_engine.services.storage import LedgerStorageInterface, StorageError
from finance_engine.validation import parse_input

logger = structlog.get_logger(__name__)

LedgerListener = Callable[
    [str, Optional[LedgerEntry], Optional[LedgerEntry]],
    Awaitable[None],
]

# Fields a patch may explicitly clear
_CLEARABLE_FIELDS = {"subcategory", "account"}


class LedgerGateway:
    """Owner-scoped access to the ledger plus mutation fan-out."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        dispatcher: Optional[AlertDispatcher] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._dispatcher = dispatcher
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or EngineSettings()
        self._clock = clock
        self._max_update_attempts = self._settings.max_update_attempts
        self._listeners: list[LedgerListener] = []

    def add_listener(self, listener: LedgerListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: LedgerListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def record_entry(
        self,
        owner_id: str,
        data: Union[LedgerEntryCreate, dict[str, Any]],
        alert_large: bool = True,
    ) -> LedgerEntry:
        """
        Append a new entry to the ledger.

        Raises:
            ValidationError: if the input is malformed
            TransientDependencyError: if the ledger write fails
        """
        entry_input = parse_input(LedgerEntryCreate, data, "ledger_entry")
        now = self._clock()
        fields = entry_input.model_dump(exclude_none=True)
        fields.setdefault("date", now)
        fields.setdefault("currency", self._settings.default_currency)
        entry = LedgerEntry(owner_id=owner_id, created_at=now, updated_at=now, **fields)

        try:
            saved = await self._storage.create_entry(entry)
        except StorageError as e:
            raise TransientDependencyError("ledger", e) from e

        logger.info(
            "ledger_entry_recorded",
            owner_id=owner_id,
            entry_id=str(saved.id),
            kind=saved.kind.value,
            category=saved.category,
        )
        await self._audit.log_ledger_change(
            AuditEventType.LEDGER_ENTRY_RECORDED,
            saved.id,
            owner_id,
            saved.kind.value,
            str(saved.amount),
        )

        await self._notify(owner_id, None, saved)

        if alert_large:
            await self._alert_if_large(saved)

        return saved

    async def edit_entry(
        self,
        owner_id: str,
        entry_id: UUID,
        patch: Union[LedgerEntryUpdate, dict[str, Any]],
    ) -> LedgerEntry:
        """
        Apply a partial edit.

        Raises:
            NotFoundError: if the entry is missing or not owned by the caller
            ValidationError: if the patch is malformed
            TransientDependencyError: if the ledger write fails
        """
        entry_patch = parse_input(LedgerEntryUpdate, patch, "ledger_entry")
        changes = {
            key: value
            for key, value in entry_patch.model_dump(exclude_unset=True).items()
            if value is not None or key in _CLEARABLE_FIELDS
        }

        async def step() -> tuple[LedgerEntry, LedgerEntry]:
            before = await self.get_entry(owner_id, entry_id)
            edited = before.model_copy(
                deep=True,
                update=dict(changes, updated_at=self._clock()),
            )
            after = await self._storage.update_entry(edited)
            return before, after

        try:
            before, after = await run_with_conflict_retry(step, self._max_update_attempts)
        except StorageError as e:
            raise TransientDependencyError("ledger", e) from e

        await self._audit.log_ledger_change(
            AuditEventType.LEDGER_ENTRY_UPDATED,
            after.id,
            owner_id,
            after.kind.value,
            str(after.amount),
        )
        await self._notify(owner_id, before, after)
        return after

    async def remove_entry(self, owner_id: str, entry_id: UUID) -> None:
        """
        Raises:
            NotFoundError: if the entry is missing or not owned by the caller
        """
        before = await self.get_entry(owner_id, entry_id)
        try:
            deleted = await self._storage.delete_entry(owner_id, entry_id)
        except StorageError as e:
            raise TransientDependencyError("ledger", e) from e
        if not deleted:
            raise NotFoundError("ledger_entry", entry_id)

        await self._audit.log_ledger_change(
            AuditEventType.LEDGER_ENTRY_DELETED,
            before.id,
            owner_id,
            before.kind.value,
            str(before.amount),
        )
        await self._notify(owner_id, before, None)

    async def get_entry(self, owner_id: str, entry_id: UUID) -> LedgerEntry:
        entry = await self._storage.get_entry(owner_id, entry_id)
        if entry is None:
            raise NotFoundError("ledger_entry", entry_id)
        return entry

    async def query(
        self,
        owner_id: str,
        kind: Optional[EntryKind] = None,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        reference_id: Optional[UUID] = None,
        description_contains: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[LedgerEntry]:
        """Matching entries, oldest first. Date bounds are inclusive."""
        return await self._storage.query(LedgerQuery(
            owner_id=owner_id,
            kind=kind,
            category=category,
            subcategory=subcategory,
            date_from=date_from,
            date_to=date_to,
            reference_id=reference_id,
            description_contains=description_contains,
            limit=limit,
        ))

    async def _notify(
        self,
        owner_id: str,
        before: Optional[LedgerEntry],
        after: Optional[LedgerEntry],
    ) -> None:
        for listener in list(self._listeners):
            try:
                await listener(owner_id, before, after)
            except Exception as e:
                entry = after or before
                logger.error(
                    "ledger_listener_failed",
                    owner_id=owner_id,
                    entry_id=str(entry.id) if entry else None,
                    error=str(e),
                    exc_info=True,
                )
                await self._audit.log_secondary_failure(
                    step="ledger_listener",
                    error_message=str(e),
                    owner_id=owner_id,
                    entity_type="ledger_entry",
                    entity_id=entry.id if entry else None,
                )

    async def _alert_if_large(self, entry: LedgerEntry) -> None:
        threshold = Decimal(str(self._settings.large_transaction_threshold))
        if self._dispatcher is None or abs(entry.amount) <= threshold:
            return
        await self._dispatcher.dispatch(
            entry.owner_id,
            NotificationType.TRANSACTION_ALERT,
            title="Large Transaction",
            message=(
                f"A new {entry.kind.value} of {abs(entry.amount):,.2f} "
                f"{entry.currency} has been recorded."
            ),
            priority=NotificationPriority.MEDIUM,
            metadata={"transactionId": str(entry.id)},
        )
