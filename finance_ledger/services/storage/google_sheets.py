"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the remote backend because:
1. Users can look at their own ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions across worksheets (the coordinator rolls back instead)
- Limited query capabilities (we filter in Python)

Each record kind lives in its own worksheet, one record per row. Column
order follows the pydantic model's field order; list fields are stored
as JSON.
"""

import json
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_ledger.config import get_settings
from finance_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_ledger.models.ledger import ENTITY_MODELS, EntityKind, utcnow
from finance_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    StorageConnectionError,
)
from finance_ledger.services.storage.memory import sort_records


# Column mappings, one worksheet per record kind
RECORD_COLUMNS: dict[EntityKind, list[str]] = {
    kind: list(model.model_fields) for kind, model in ENTITY_MODELS.items()
}

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Fields holding lists, stored as JSON text
JSON_FIELDS = {"tags"}

# Only transient API failures are worth retrying
_api_retry = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
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
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _sheet_name(self, kind: EntityKind) -> str:
        return {
            EntityKind.TRANSACTION: self._settings.transactions_sheet_name,
            EntityKind.ACCOUNT: self._settings.accounts_sheet_name,
            EntityKind.BUDGET: self._settings.budgets_sheet_name,
            EntityKind.GOAL: self._settings.goals_sheet_name,
        }[kind]

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_records_sheet(self, kind: EntityKind) -> gspread.Worksheet:
        """Get or create the worksheet for one record kind."""
        return self._get_or_create(self._sheet_name(kind), RECORD_COLUMNS[kind], rows=1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)

    @_api_retry
    def read_rows(self, sheet: gspread.Worksheet) -> list[list[str]]:
        """All data rows (header excluded)."""
        return sheet.get_all_values()[1:]

    @_api_retry
    def append_row(self, sheet: gspread.Worksheet, row: list[str]) -> None:
        sheet.append_row(row, value_input_option="RAW")

    @_api_retry
    def update_row(self, sheet: gspread.Worksheet, row_number: int, row: list[str]) -> None:
        for col_idx, value in enumerate(row, start=1):
            sheet.update_cell(row_number, col_idx, value)

    @_api_retry
    def delete_row(self, sheet: gspread.Worksheet, row_number: int) -> None:
        sheet.delete_rows(row_number)


def _to_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return json.dumps(value)
    return str(value)


def record_to_row(kind: EntityKind, record: BaseModel) -> list[str]:
    """Convert a ledger record to a spreadsheet row."""
    data = record.model_dump(mode="json")
    return [_to_cell(data.get(column)) for column in RECORD_COLUMNS[kind]]


def row_to_record(kind: EntityKind, row: list[str]) -> BaseModel:
    """
    Convert a spreadsheet row to a ledger record.

    Empty cells are left out so the model's defaults apply.
    """
    data: dict[str, Any] = {}
    for index, column in enumerate(RECORD_COLUMNS[kind]):
        value = row[index] if index < len(row) else ""
        if value == "":
            continue
        data[column] = json.loads(value) if column in JSON_FIELDS else value
    return ENTITY_MODELS[kind].model_validate(data)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    The first column of every worksheet is the record ID.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._logger = structlog.get_logger()

    def _find_row(
        self,
        rows: list[list[str]],
        record_id: UUID,
    ) -> tuple[Optional[int], Optional[list[str]]]:
        """Return (sheet row number, row) for a record ID."""
        for idx, row in enumerate(rows, start=2):  # Row 1 is the header
            if row and row[0] == str(record_id):
                return idx, row
        return None, None

    async def list_records(
        self,
        kind: EntityKind,
        user_id: Optional[str] = None,
    ) -> list[BaseModel]:
        try:
            sheet = self._client.get_records_sheet(kind)
            rows = self._client.read_rows(sheet)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to list {kind.value} records: {e}")

        records = []
        for row in rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                record = row_to_record(kind, row)
            except Exception as e:
                self._logger.warning(
                    "malformed_row_skipped",
                    kind=kind.value,
                    record_id=row[0],
                    error=str(e),
                )
                continue
            if user_id is not None and record.user_id != user_id:
                continue
            records.append(record)

        return sort_records(kind, records)

    async def get_record(
        self,
        kind: EntityKind,
        record_id: UUID,
    ) -> Optional[BaseModel]:
        try:
            sheet = self._client.get_records_sheet(kind)
            _, row = self._find_row(self._client.read_rows(sheet), record_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get {kind.value}: {e}")
        return row_to_record(kind, row) if row else None

    async def insert_record(
        self,
        kind: EntityKind,
        record: BaseModel,
    ) -> BaseModel:
        try:
            sheet = self._client.get_records_sheet(kind)
            row_number, _ = self._find_row(self._client.read_rows(sheet), record.id)
            if row_number is not None:
                raise DuplicateError(f"{kind.value.capitalize()} already exists: {record.id}")
            self._client.append_row(sheet, record_to_row(kind, record))
            return record
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save {kind.value}: {e}")

    async def update_record(
        self,
        kind: EntityKind,
        record_id: UUID,
        changes: dict[str, Any],
    ) -> bool:
        try:
            sheet = self._client.get_records_sheet(kind)
            row_number, row = self._find_row(self._client.read_rows(sheet), record_id)
            if row_number is None:
                raise NotFoundError(kind, record_id)

            existing = row_to_record(kind, row)
            merged = {**existing.model_dump(), **changes, "updated_at": utcnow()}
            updated = ENTITY_MODELS[kind].model_validate(merged)
            self._client.update_row(sheet, row_number, record_to_row(kind, updated))
            return True
        except (NotFoundError, PersistenceError):
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update {kind.value}: {e}")

    async def delete_record(
        self,
        kind: EntityKind,
        record_id: UUID,
    ) -> bool:
        try:
            sheet = self._client.get_records_sheet(kind)
            row_number, _ = self._find_row(self._client.read_rows(sheet), record_id)
            if row_number is None:
                return False
            self._client.delete_row(sheet, row_number)
            return True
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to delete {kind.value}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._logger = structlog.get_logger()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            rows = self._client.read_rows(sheet)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get audit events: {e}")

        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            self._client.append_row(sheet, event.to_sheets_row())
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            self._logger.warning(
                "audit_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._read_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
