"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. The owner can view and hand-edit the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. The debt ledger already lives in the same spreadsheet

TRADEOFFS:
- Not suitable for high-volume data (fine for a handful of companies)
- No transactions: every update rewrites one whole row in a single ranged
  write, so a record is never left half-updated
- Limited query capabilities (we filter in Python)

gspread is blocking, so every call runs in a worker thread. That keeps the
event loop free and lets the engine's per-call timeout apply to storage too.
"""

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Type, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from finsync.config import GoogleSheetsSettings, get_settings
from finsync.errors import (
    CorruptRecordError,
    DuplicateKeyError,
    NotFoundError,
    PersistenceError,
    StorageConnectionError,
)
from finsync.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finsync.models.ledger import (
    Account,
    Company,
    CompanyName,
    Debt,
    DebtSnapshot,
    DebtSource,
    NormalizedTransaction,
    Provider,
    Transaction,
    TransactionFilter,
    default_companies,
    utc_now,
)
from finsync.models.sync import DailySummary, OAuthToken
from finsync.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    SummaryStorageInterface,
    TokenStorageInterface,
)


logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)


# Column layouts follow the model fields so a sheet header reads like the model
ACCOUNT_COLUMNS = list(Account.model_fields)
TRANSACTION_COLUMNS = list(Transaction.model_fields)
DEBT_COLUMNS = list(Debt.model_fields)
COMPANY_COLUMNS = list(Company.model_fields)
TOKEN_COLUMNS = list(OAuthToken.model_fields)
SUMMARY_COLUMNS = list(DailySummary.model_fields)

# Columns holding nested data, stored as JSON text
JSON_COLUMNS = {
    "metadata",
    "split_allocations",
    "location",
    "tags",
    "payment_history",
    "address",
    "categories",
    "account_ids",
    "default_expense_categories",
}

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


def model_to_row(model: BaseModel, columns: list[str]) -> list:
    """Convert a model to a spreadsheet row in column order."""
    data = model.model_dump(mode="json")
    row = []
    for column in columns:
        value = data.get(column)
        if value is None:
            row.append("")
        elif column in JSON_COLUMNS:
            row.append(json.dumps(value))
        elif isinstance(value, bool):
            row.append(str(value).lower())
        else:
            row.append(str(value))
    return row


def row_to_model(model_cls: Type[ModelT], row: list, columns: list[str]) -> ModelT:
    """Convert a spreadsheet row back into a model. Empty cells fall back to defaults."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    data: dict[str, Any] = {}
    for index, column in enumerate(columns):
        value = safe_get(index)
        if value == "":
            continue
        data[column] = json.loads(value) if column in JSON_COLUMNS else value
    return model_cls.model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

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

    def get_worksheet(
        self,
        title: str,
        columns: Optional[list[str]] = None,
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """
        Get a worksheet by title.

        When `columns` is given, a missing worksheet is created with that
        header row. Without it, a missing worksheet raises NotFoundError.
        """
        spreadsheet = self.get_spreadsheet()
        try:
            return spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            if columns is None:
                raise NotFoundError("worksheet", title)
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
            return sheet


class SheetTable:
    """
    One worksheet used as a table of models.

    All methods are blocking; callers run them in a worker thread.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        title: str,
        model_cls: Type[ModelT],
        columns: list[str],
        rows: int = 1000,
    ):
        self._client = client
        self._title = title
        self._model_cls = model_cls
        self._columns = columns
        self._rows = rows

    def sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._title, self._columns, self._rows)

    def records(self) -> list[tuple[int, BaseModel]]:
        """All parseable records with their 1-based sheet row index."""
        all_rows = self.sheet().get_all_values()
        records = []
        for idx, row in enumerate(all_rows[1:], start=2):  # row 1 is the header
            if not row or not row[0]:
                continue
            try:
                records.append((idx, row_to_model(self._model_cls, row, self._columns)))
            except (ValueError, TypeError) as e:
                logger.error("sheet_row_unreadable", sheet=self._title, row=idx, error=str(e))
        return records

    def find_key(
        self,
        column: str,
        value: str,
        predicate: Optional[Callable[[Any], bool]] = None,
    ) -> Optional[tuple[int, Any]]:
        """
        Find the row whose `column` cell holds `value` (and matches `predicate`).

        Only rows carrying the key are parsed. A keyed row that cannot be
        parsed raises instead of being skipped, so a write never appends a
        second row for the same key.

        Raises:
            CorruptRecordError: A row with this key is unreadable
        """
        position = self._columns.index(column)
        all_rows = self.sheet().get_all_values()
        for idx, row in enumerate(all_rows[1:], start=2):
            if len(row) <= position or row[position] != value:
                continue
            try:
                model = row_to_model(self._model_cls, row, self._columns)
            except (ValueError, TypeError) as e:
                logger.error("sheet_row_unreadable", sheet=self._title, row=idx, key=value, error=str(e))
                raise CorruptRecordError(
                    f"Row {idx} of {self._title} holds {column}={value} but cannot be read: {e}"
                )
            if predicate is None or predicate(model):
                return idx, model
        return None

    def find(self, predicate: Callable[[Any], bool]) -> Optional[tuple[int, Any]]:
        for idx, model in self.records():
            if predicate(model):
                return idx, model
        return None

    def append(self, model: BaseModel) -> None:
        self.sheet().append_row(model_to_row(model, self._columns), value_input_option="RAW")

    def replace(self, idx: int, model: BaseModel) -> None:
        """Rewrite one whole row in a single ranged update."""
        self.sheet().update(
            values=[model_to_row(model, self._columns)],
            range_name=f"A{idx}",
            value_input_option="RAW",
        )

    def delete(self, idx: int) -> None:
        self.sheet().delete_rows(idx)


async def _run(func: Callable, *args) -> Any:
    return await asyncio.to_thread(func, *args)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of the ledger.

    One worksheet per entity, one record per row. Nested fields are
    JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        names = self._client.settings
        self._accounts = SheetTable(self._client, names.accounts_sheet_name, Account, ACCOUNT_COLUMNS)
        self._transactions = SheetTable(
            self._client, names.transactions_sheet_name, Transaction, TRANSACTION_COLUMNS, rows=5000
        )
        self._debts = SheetTable(self._client, names.debts_sheet_name, Debt, DEBT_COLUMNS)
        self._companies = SheetTable(self._client, names.companies_sheet_name, Company, COMPANY_COLUMNS)

    # ---- Accounts ------------------------------------------------------------

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        try:
            found = await _run(self._accounts.find, lambda a: a.id == account_id)
            return found[1] if found else None
        except Exception as e:
            raise PersistenceError(f"Failed to get account: {e}")

    async def get_account_by_provider_id(self, provider_account_id: str) -> Optional[Account]:
        try:
            found = await _run(
                self._accounts.find, lambda a: a.provider_account_id == provider_account_id
            )
            return found[1] if found else None
        except Exception as e:
            raise PersistenceError(f"Failed to get account: {e}")

    async def find_accounts_by_provider(
        self,
        provider: Provider,
        active_only: bool = True,
    ) -> list[Account]:
        accounts = await self.list_accounts(active_only=active_only)
        return [a for a in accounts if a.provider == provider]

    async def list_accounts(self, active_only: bool = True) -> list[Account]:
        try:
            records = await _run(self._accounts.records)
        except Exception as e:
            raise PersistenceError(f"Failed to list accounts: {e}")
        return [a for _, a in records if a.is_active or not active_only]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(CorruptRecordError),
        reraise=True,
    )
    async def upsert_account(self, account: Account) -> Account:
        try:
            found = await _run(
                self._accounts.find_key, "provider_account_id", account.provider_account_id
            )
            if found:
                idx, existing = found
                stored = account.model_copy(
                    update={"id": existing.id, "created_at": existing.created_at, "updated_at": utc_now()}
                )
                await _run(self._accounts.replace, idx, stored)
            else:
                stored = account
                await _run(self._accounts.append, stored)
            return stored
        except CorruptRecordError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to upsert account: {e}")

    async def _modify_account(
        self,
        provider_account_id: str,
        change: Callable[[Account], Account],
    ) -> Account:
        try:
            found = await _run(
                self._accounts.find, lambda a: a.provider_account_id == provider_account_id
            )
            if not found:
                raise NotFoundError("account", provider_account_id)
            idx, account = found
            updated = change(account)
            await _run(self._accounts.replace, idx, updated)
            return updated
        except NotFoundError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update account: {e}")

    async def update_account_balance(
        self,
        provider_account_id: str,
        current: Decimal,
        available: Optional[Decimal] = None,
    ) -> Account:
        return await self._modify_account(
            provider_account_id, lambda a: a.update_balance(current, available)
        )

    async def mark_account_sync_error(self, provider_account_id: str, message: str) -> Account:
        return await self._modify_account(
            provider_account_id, lambda a: a.mark_sync_error(message)
        )

    async def deactivate_account(self, provider_account_id: str) -> Account:
        return await self._modify_account(provider_account_id, lambda a: a.deactivate())

    # ---- Transactions ----------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(CorruptRecordError),
        reraise=True,
    )
    async def upsert_transaction(self, normalized: NormalizedTransaction) -> Transaction:
        key = normalized.provider_transaction_id
        try:
            found = await _run(self._transactions.find_key, "provider_transaction_id", key)
            if found:
                idx, existing = found
                stored = existing.apply_provider_update(normalized)
                await _run(self._transactions.replace, idx, stored)
            else:
                stored = Transaction.from_normalized(normalized)
                await _run(self._transactions.append, stored)
            return stored
        except CorruptRecordError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to upsert transaction {key}: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            found = await _run(self._transactions.find, lambda t: t.id == transaction_id)
            return found[1] if found else None
        except Exception as e:
            raise PersistenceError(f"Failed to get transaction: {e}")

    async def get_transaction_by_provider_id(
        self,
        provider_transaction_id: str,
    ) -> Optional[Transaction]:
        try:
            found = await _run(
                self._transactions.find,
                lambda t: t.provider_transaction_id == provider_transaction_id,
            )
            return found[1] if found else None
        except Exception as e:
            raise PersistenceError(f"Failed to get transaction: {e}")

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        key = transaction.provider_transaction_id
        try:
            found = await _run(self._transactions.find_key, "provider_transaction_id", key)
            if found:
                raise DuplicateKeyError(f"Transaction already exists: {key}")
            await _run(self._transactions.append, transaction)
            return transaction
        except (DuplicateKeyError, CorruptRecordError):
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to create transaction: {e}")

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        try:
            found = await _run(self._transactions.find, lambda t: t.id == transaction.id)
            if not found:
                raise NotFoundError("transaction", str(transaction.id))
            await _run(self._transactions.replace, found[0], transaction)
            return transaction
        except NotFoundError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save transaction: {e}")

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            found = await _run(self._transactions.find, lambda t: t.id == transaction_id)
            if not found:
                return False
            await _run(self._transactions.delete, found[0])
            return True
        except Exception as e:
            raise PersistenceError(f"Failed to delete transaction: {e}")

    async def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> tuple[list[Transaction], int]:
        filters = filters or TransactionFilter()
        try:
            records = await _run(self._transactions.records)
        except Exception as e:
            raise PersistenceError(f"Failed to list transactions: {e}")

        matching = [t for _, t in records if filters.matches(t)]
        # Sort by date descending (newest first)
        matching.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)
        return matching[filters.offset:filters.offset + filters.limit], len(matching)

    # ---- Debts -------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(CorruptRecordError),
        reraise=True,
    )
    async def upsert_debt(self, snapshot: DebtSnapshot) -> Debt:
        try:
            found = await _run(
                self._debts.find_key, "name", snapshot.name, lambda d: d.source == snapshot.source
            )
            if found:
                idx, existing = found
                stored = existing.apply_snapshot(snapshot)
                await _run(self._debts.replace, idx, stored)
            else:
                stored = Debt.from_snapshot(snapshot)
                await _run(self._debts.append, stored)
            return stored
        except CorruptRecordError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to upsert debt {snapshot.name}: {e}")

    async def get_debt(self, debt_id: UUID) -> Optional[Debt]:
        try:
            found = await _run(self._debts.find, lambda d: d.id == debt_id)
            return found[1] if found else None
        except Exception as e:
            raise PersistenceError(f"Failed to get debt: {e}")

    async def get_debt_by_key(self, name: str, source: DebtSource) -> Optional[Debt]:
        source = DebtSource(source)
        try:
            found = await _run(self._debts.find_key, "name", name, lambda d: d.source == source)
        except CorruptRecordError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get debt {name}: {e}")
        return found[1] if found else None

    async def save_debt(self, debt: Debt) -> Debt:
        try:
            found = await _run(self._debts.find, lambda d: d.id == debt.id)
            if not found:
                raise NotFoundError("debt", str(debt.id))
            await _run(self._debts.replace, found[0], debt)
            return debt
        except NotFoundError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save debt: {e}")

    async def list_debts(self, active_only: bool = True) -> list[Debt]:
        try:
            records = await _run(self._debts.records)
        except Exception as e:
            raise PersistenceError(f"Failed to list debts: {e}")
        debts = [d for _, d in records if d.is_active or not active_only]
        return sorted(debts, key=lambda d: d.current_balance, reverse=True)

    # ---- Companies -----------------------------------------------------------

    async def get_company(self, name: CompanyName) -> Optional[Company]:
        name = CompanyName(name)
        for company in await self.list_companies():
            if company.name == name:
                return company
        return None

    async def save_company(self, company: Company) -> Company:
        try:
            found = await _run(self._companies.find, lambda c: c.name == company.name)
            if found:
                await _run(self._companies.replace, found[0], company)
            else:
                await _run(self._companies.append, company)
            return company
        except Exception as e:
            raise PersistenceError(f"Failed to save company: {e}")

    async def list_companies(self) -> list[Company]:
        """List companies, seeding the sheet with the default set on first use."""
        try:
            records = await _run(self._companies.records)
            if not records:
                for company in default_companies():
                    await _run(self._companies.append, company)
                return default_companies()
            return [c for _, c in records]
        except Exception as e:
            raise PersistenceError(f"Failed to list companies: {e}")


class GoogleSheetsTokenStorage(TokenStorageInterface):
    """OAuth tokens persisted in their own worksheet, one realm per row."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._tokens = SheetTable(
            self._client, self._client.settings.tokens_sheet_name, OAuthToken, TOKEN_COLUMNS
        )

    async def save_token(self, token: OAuthToken) -> OAuthToken:
        try:
            found = await _run(self._tokens.find_key, "realm_id", token.realm_id)
            stored = token.model_copy(update={"updated_at": utc_now()})
            if found:
                idx, existing = found
                stored.created_at = existing.created_at
                await _run(self._tokens.replace, idx, stored)
            else:
                await _run(self._tokens.append, stored)
            return stored
        except CorruptRecordError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save token: {e}")

    async def get_token(self, realm_id: str) -> Optional[OAuthToken]:
        try:
            found = await _run(self._tokens.find, lambda t: t.realm_id == realm_id)
            return found[1] if found else None
        except Exception as e:
            raise PersistenceError(f"Failed to get token: {e}")

    async def delete_token(self, realm_id: str) -> bool:
        try:
            found = await _run(self._tokens.find, lambda t: t.realm_id == realm_id)
            if not found:
                return False
            await _run(self._tokens.delete, found[0])
            return True
        except Exception as e:
            raise PersistenceError(f"Failed to delete token: {e}")

    async def list_tokens(self) -> list[OAuthToken]:
        try:
            return [t for _, t in await _run(self._tokens.records)]
        except Exception as e:
            raise PersistenceError(f"Failed to list tokens: {e}")


class GoogleSheetsSummaryStorage(SummaryStorageInterface):
    """Daily summaries appended to their own worksheet."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._summaries = SheetTable(
            self._client, self._client.settings.summary_sheet_name, DailySummary, SUMMARY_COLUMNS
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_daily_summary(self, summary: DailySummary) -> bool:
        try:
            await _run(self._summaries.append, summary)
            return True
        except Exception as e:
            raise PersistenceError(f"Failed to save daily summary: {e}")

    async def list_daily_summaries(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[DailySummary]:
        try:
            records = await _run(self._summaries.records)
        except Exception as e:
            raise PersistenceError(f"Failed to list daily summaries: {e}")
        summaries = [
            s for _, s in records
            if (date_from is None or s.summary_date >= date_from)
            and (date_to is None or s.summary_date <= date_to)
        ]
        return sorted(summaries, key=lambda s: s.summary_date)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, TypeError) as e:
                logger.warning("audit_row_skipped", error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Failures propagate to AuditLogger, which absorbs them."""
        try:
            sheet = await _run(self._sheet)
            await asyncio.to_thread(
                sheet.append_row, event.to_sheets_row(), value_input_option="RAW"
            )
            return True
        except Exception as e:
            raise PersistenceError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = await _run(self._read_events)
        except Exception as e:
            raise PersistenceError(f"Failed to get audit events: {e}")
        related = [e for e in events if e.correlation_id == correlation_id]
        related.sort(key=lambda e: e.timestamp)
        return related

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = await _run(self._read_events)
        except Exception as e:
            raise PersistenceError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
