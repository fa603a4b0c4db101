"""
Google Sheets Storage Implementation

The ledger and the audit log can live in a spreadsheet so a user can
inspect their own transactions and the engine's decisions directly.

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal ledger)
- No transactions: the version check is a read-then-write, so two
  processes racing on the same row can still interleave. Single-writer
  deployments only.
- Limited query capabilities (we filter in Python)

Budgets, goals and notifications are engine-owned and stay on the
in-memory backend; only the external collaborators are sheet-backed.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_engine.config import GoogleSheetsSettings, get_settings
from finance_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_engine.models.ledger import EntryKind, LedgerEntry, LedgerQuery
from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EntityMissingError,
    LedgerStorageInterface,
    StorageConnectionError,
    StorageError,
    VersionConflictError,
)

logger = structlog.get_logger(__name__)


LEDGER_COLUMNS = [
    "id",
    "owner_id",
    "created_at",
    "updated_at",
    "version",
    "date",
    "kind",
    "amount",
    "category",
    "subcategory",
    "description",
    "account",
    "currency",
    "tags_json",
    "reference_id",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authenticate with the service account credentials."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError as e:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise StorageConnectionError(
                    f"Failed to connect to Google Sheets: {e}"
                ) from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound as e:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def _worksheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self) -> gspread.Worksheet:
        """Get or create the ledger worksheet."""
        return self._worksheet(self._settings.ledger_sheet_name, LEDGER_COLUMNS, 2000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the audit worksheet."""
        return self._worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


def _cell(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Ledger entries stored one per row.

    Rows are matched on both id and owner so a foreign entry is
    indistinguishable from a missing one.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _entry_to_row(self, entry: LedgerEntry) -> list:
        return [
            str(entry.id),
            entry.owner_id,
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
            str(entry.version),
            entry.date.isoformat(),
            entry.kind.value,
            str(entry.amount),
            entry.category,
            entry.subcategory or "",
            entry.description,
            entry.account or "",
            entry.currency,
            json.dumps(entry.tags),
            str(entry.reference_id) if entry.reference_id else "",
        ]

    def _row_to_entry(self, row: list) -> LedgerEntry:
        tags_json = _cell(row, 13)
        return LedgerEntry(
            id=UUID(_cell(row, 0)),
            owner_id=_cell(row, 1),
            created_at=datetime.fromisoformat(_cell(row, 2)),
            updated_at=datetime.fromisoformat(_cell(row, 3)),
            version=int(_cell(row, 4, "0")),
            date=datetime.fromisoformat(_cell(row, 5)),
            kind=EntryKind(_cell(row, 6)),
            amount=Decimal(_cell(row, 7)),
            category=_cell(row, 8),
            subcategory=_cell(row, 9) or None,
            description=_cell(row, 10),
            account=_cell(row, 11) or None,
            currency=_cell(row, 12, "USD"),
            tags=json.loads(tags_json) if tags_json else [],
            reference_id=UUID(_cell(row, 14)) if _cell(row, 14) else None,
        )

    def _find_row(self, rows: list, owner_id: str, entry_id: UUID) -> Optional[int]:
        """Sheet row number (1-based, header is row 1) of the entry."""
        for idx, row in enumerate(rows[1:], start=2):
            if row and row[0] == str(entry_id) and _cell(row, 1) == owner_id:
                return idx
        return None

    def _load_entries(self) -> list[LedgerEntry]:
        sheet = self._client.get_ledger_sheet()
        entries = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                entries.append(self._row_to_entry(row))
            except (ValueError, ArithmeticError) as e:
                logger.warning("ledger_row_skipped", row_id=row[0], error=str(e))
        return entries

    @retry(
        retry=retry_if_not_exception_type(DuplicateError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_entry(self, entry: LedgerEntry) -> LedgerEntry:
        try:
            sheet = self._client.get_ledger_sheet()
            ids = sheet.col_values(1)[1:]
            if str(entry.id) in ids:
                raise DuplicateError(f"Ledger entry already exists: {entry.id}")
            sheet.append_row(self._entry_to_row(entry), value_input_option="RAW")
            return entry.model_copy(deep=True)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save ledger entry: {e}") from e

    async def get_entry(self, owner_id: str, entry_id: UUID) -> Optional[LedgerEntry]:
        try:
            sheet = self._client.get_ledger_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(entry_id) and _cell(row, 1) == owner_id:
                    return self._row_to_entry(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get ledger entry: {e}") from e

    async def update_entry(self, entry: LedgerEntry) -> LedgerEntry:
        try:
            sheet = self._client.get_ledger_sheet()
            rows = sheet.get_all_values()
            idx = self._find_row(rows, entry.owner_id, entry.id)
            if idx is None:
                raise EntityMissingError(f"Ledger entry not found: {entry.id}")

            stored_version = int(_cell(rows[idx - 1], 4, "0"))
            if stored_version != entry.version:
                raise VersionConflictError(
                    "ledger_entry", entry.id, entry.version, stored_version
                )

            saved = entry.model_copy(deep=True, update={"version": entry.version + 1})
            sheet.update(
                values=[self._entry_to_row(saved)],
                range_name=f"A{idx}",
                value_input_option="RAW",
            )
            return saved
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update ledger entry: {e}") from e

    async def delete_entry(self, owner_id: str, entry_id: UUID) -> bool:
        try:
            sheet = self._client.get_ledger_sheet()
            idx = self._find_row(sheet.get_all_values(), owner_id, entry_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete ledger entry: {e}") from e

    async def query(self, query: LedgerQuery) -> list[LedgerEntry]:
        try:
            entries = [e for e in self._load_entries() if query.matches(e)]
        except Exception as e:
            raise StorageError(f"Failed to query ledger: {e}") from e

        entries.sort(key=lambda e: (e.date, e.created_at))
        if query.limit is not None:
            return entries[:query.limit]
        return entries


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        details_json = _cell(row, 9)
        return AuditEvent(
            event_id=UUID(_cell(row, 0)),
            timestamp=datetime.fromisoformat(_cell(row, 1)),
            event_type=AuditEventType(_cell(row, 2)),
            severity=AuditSeverity(_cell(row, 3)),
            owner_id=_cell(row, 4) or None,
            entity_type=_cell(row, 5) or None,
            entity_id=UUID(_cell(row, 6)) if _cell(row, 6) else None,
            correlation_id=UUID(_cell(row, 7)) if _cell(row, 7) else None,
            description=_cell(row, 8),
            details=json.loads(details_json) if details_json else {},
            error_message=_cell(row, 10) or None,
        )

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}") from e

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._load_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

        # Newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
