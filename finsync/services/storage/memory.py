"""
In-Memory Storage Implementation

Dict-backed storage used for tests and for running without Google Sheets.

DESIGN DECISION: Records are copied on the way in and on the way out.
A caller mutating a model it got from storage never changes the stored
record until it explicitly saves it, and each save is a single dict
assignment of the whole record.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from finsync.errors import DuplicateKeyError, NotFoundError
from finsync.models.audit import AuditEvent
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


def _copy(model):
    return model.model_copy(deep=True)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger kept in process memory, keyed by natural keys."""

    def __init__(self, seed_companies: bool = True):
        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, Transaction] = {}
        self._debts: dict[tuple[str, str], Debt] = {}
        self._companies: dict[CompanyName, Company] = {}
        if seed_companies:
            for company in default_companies():
                self._companies[company.name] = company

    # ---- Accounts ------------------------------------------------------------

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        for account in self._accounts.values():
            if account.id == account_id:
                return _copy(account)
        return None

    async def get_account_by_provider_id(self, provider_account_id: str) -> Optional[Account]:
        account = self._accounts.get(provider_account_id)
        return _copy(account) if account else None

    async def find_accounts_by_provider(
        self,
        provider: Provider,
        active_only: bool = True,
    ) -> list[Account]:
        return [
            _copy(a) for a in self._accounts.values()
            if a.provider == provider and (a.is_active or not active_only)
        ]

    async def list_accounts(self, active_only: bool = True) -> list[Account]:
        return [
            _copy(a) for a in self._accounts.values()
            if a.is_active or not active_only
        ]

    async def upsert_account(self, account: Account) -> Account:
        stored = _copy(account)
        existing = self._accounts.get(account.provider_account_id)
        if existing:
            stored.id = existing.id
            stored.created_at = existing.created_at
            stored.updated_at = utc_now()
        self._accounts[stored.provider_account_id] = stored
        return _copy(stored)

    def _require_account(self, provider_account_id: str) -> Account:
        account = self._accounts.get(provider_account_id)
        if account is None:
            raise NotFoundError("account", provider_account_id)
        return _copy(account)

    async def update_account_balance(
        self,
        provider_account_id: str,
        current: Decimal,
        available: Optional[Decimal] = None,
    ) -> Account:
        updated = self._require_account(provider_account_id).update_balance(current, available)
        self._accounts[provider_account_id] = updated
        return _copy(updated)

    async def mark_account_sync_error(self, provider_account_id: str, message: str) -> Account:
        updated = self._require_account(provider_account_id).mark_sync_error(message)
        self._accounts[provider_account_id] = updated
        return _copy(updated)

    async def deactivate_account(self, provider_account_id: str) -> Account:
        updated = self._require_account(provider_account_id).deactivate()
        self._accounts[provider_account_id] = updated
        return _copy(updated)

    # ---- Transactions ----------------------------------------------------------

    async def upsert_transaction(self, normalized: NormalizedTransaction) -> Transaction:
        key = normalized.provider_transaction_id
        existing = self._transactions.get(key)
        if existing is None:
            stored = Transaction.from_normalized(normalized)
        else:
            stored = _copy(existing).apply_provider_update(normalized)
        self._transactions[key] = stored
        return _copy(stored)

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        for transaction in self._transactions.values():
            if transaction.id == transaction_id:
                return _copy(transaction)
        return None

    async def get_transaction_by_provider_id(
        self,
        provider_transaction_id: str,
    ) -> Optional[Transaction]:
        transaction = self._transactions.get(provider_transaction_id)
        return _copy(transaction) if transaction else None

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        key = transaction.provider_transaction_id
        if key in self._transactions:
            raise DuplicateKeyError(f"Transaction already exists: {key}")
        self._transactions[key] = _copy(transaction)
        return _copy(transaction)

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        key = transaction.provider_transaction_id
        existing = self._transactions.get(key)
        if existing is None or existing.id != transaction.id:
            raise NotFoundError("transaction", str(transaction.id))
        self._transactions[key] = _copy(transaction)
        return _copy(transaction)

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        for key, transaction in list(self._transactions.items()):
            if transaction.id == transaction_id:
                del self._transactions[key]
                return True
        return False

    async def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> tuple[list[Transaction], int]:
        filters = filters or TransactionFilter()
        matching = [t for t in self._transactions.values() if filters.matches(t)]
        matching.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)
        page = matching[filters.offset:filters.offset + filters.limit]
        return [_copy(t) for t in page], len(matching)

    # ---- Debts -------------------------------------------------------------

    async def upsert_debt(self, snapshot: DebtSnapshot) -> Debt:
        key = (snapshot.name, snapshot.source.value)
        existing = self._debts.get(key)
        if existing is None:
            stored = Debt.from_snapshot(snapshot)
        else:
            stored = _copy(existing).apply_snapshot(snapshot)
        self._debts[key] = stored
        return _copy(stored)

    async def get_debt(self, debt_id: UUID) -> Optional[Debt]:
        for debt in self._debts.values():
            if debt.id == debt_id:
                return _copy(debt)
        return None

    async def get_debt_by_key(self, name: str, source: DebtSource) -> Optional[Debt]:
        debt = self._debts.get((name, DebtSource(source).value))
        return _copy(debt) if debt else None

    async def save_debt(self, debt: Debt) -> Debt:
        key = (debt.name, debt.source.value)
        existing = self._debts.get(key)
        if existing is None or existing.id != debt.id:
            raise NotFoundError("debt", str(debt.id))
        self._debts[key] = _copy(debt)
        return _copy(debt)

    async def list_debts(self, active_only: bool = True) -> list[Debt]:
        debts = [
            _copy(d) for d in self._debts.values()
            if d.is_active or not active_only
        ]
        return sorted(debts, key=lambda d: d.current_balance, reverse=True)

    # ---- Companies -----------------------------------------------------------

    async def get_company(self, name: CompanyName) -> Optional[Company]:
        company = self._companies.get(CompanyName(name))
        return _copy(company) if company else None

    async def save_company(self, company: Company) -> Company:
        self._companies[company.name] = _copy(company)
        return _copy(company)

    async def list_companies(self) -> list[Company]:
        return [_copy(c) for c in self._companies.values()]


class InMemoryTokenStorage(TokenStorageInterface):
    """OAuth tokens kept in process memory."""

    def __init__(self):
        self._tokens: dict[str, OAuthToken] = {}

    async def save_token(self, token: OAuthToken) -> OAuthToken:
        existing = self._tokens.get(token.realm_id)
        stored = _copy(token)
        if existing:
            stored.created_at = existing.created_at
        stored.updated_at = utc_now()
        self._tokens[token.realm_id] = stored
        return _copy(stored)

    async def get_token(self, realm_id: str) -> Optional[OAuthToken]:
        token = self._tokens.get(realm_id)
        return _copy(token) if token else None

    async def delete_token(self, realm_id: str) -> bool:
        return self._tokens.pop(realm_id, None) is not None

    async def list_tokens(self) -> list[OAuthToken]:
        return [_copy(t) for t in self._tokens.values()]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]


class InMemorySummaryStorage(SummaryStorageInterface):
    """Daily summaries kept in process memory."""

    def __init__(self):
        self._summaries: list[DailySummary] = []

    async def append_daily_summary(self, summary: DailySummary) -> bool:
        self._summaries.append(summary)
        logger.debug("daily_summary_stored", summary_date=summary.summary_date.isoformat())
        return True

    async def list_daily_summaries(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[DailySummary]:
        summaries = [
            s for s in self._summaries
            if (date_from is None or s.summary_date >= date_from)
            and (date_to is None or s.summary_date <= date_to)
        ]
        return sorted(summaries, key=lambda s: s.summary_date)
