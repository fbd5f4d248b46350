"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the ledger in Google Sheets or swap it for a real database
2. Use in-memory storage for testing
3. Keep the reconciliation engine decoupled from storage implementation

Every write replaces one whole record keyed by its natural key
(provider_account_id, provider_transaction_id, debt name + source). That makes
a single record update atomic and every upsert last-write-wins.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

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
)
from finsync.models.sync import DailySummary, OAuthToken


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the financial ledger.

    Any storage implementation (in-memory, Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    # ---- Accounts ------------------------------------------------------------

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """Retrieve an account by internal id, or None."""
        pass

    @abstractmethod
    async def get_account_by_provider_id(self, provider_account_id: str) -> Optional[Account]:
        """Retrieve an account by its provider-native id, or None."""
        pass

    @abstractmethod
    async def find_accounts_by_provider(
        self,
        provider: Provider,
        active_only: bool = True,
    ) -> list[Account]:
        """
        List the accounts linked through one provider.

        Args:
            provider: The provider to filter on
            active_only: Skip soft-deleted accounts

        Returns:
            Matching accounts
        """
        pass

    @abstractmethod
    async def list_accounts(self, active_only: bool = True) -> list[Account]:
        pass

    @abstractmethod
    async def upsert_account(self, account: Account) -> Account:
        """
        Insert or replace an account keyed by provider_account_id.

        An existing record keeps its id and created_at.

        Returns:
            The stored account
        """
        pass

    @abstractmethod
    async def update_account_balance(
        self,
        provider_account_id: str,
        current: Decimal,
        available: Optional[Decimal] = None,
    ) -> Account:
        """
        Apply fresh balance figures in a single record write.

        Also stamps last_synced and clears sync_error.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def mark_account_sync_error(self, provider_account_id: str, message: str) -> Account:
        """
        Record why the latest sync of an account failed.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def deactivate_account(self, provider_account_id: str) -> Account:
        """
        Soft-delete an account. Accounts are never hard-deleted.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    # ---- Transactions ----------------------------------------------------------

    @abstractmethod
    async def upsert_transaction(self, normalized: NormalizedTransaction) -> Transaction:
        """
        Idempotent ingest keyed by provider_transaction_id.

        A new key is inserted as Unallocated at 100%. An existing key has its
        provider-owned fields overwritten while its allocation is preserved.

        Returns:
            The stored transaction

        Raises:
            DuplicateKeyError: If a concurrent insert of the same key won
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_transaction_by_provider_id(
        self,
        provider_transaction_id: str,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction (manual entry).

        Raises:
            DuplicateKeyError: If provider_transaction_id already exists
        """
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace an existing transaction as one record write.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by ID.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> tuple[list[Transaction], int]:
        """
        List transactions newest first.

        Args:
            filters: Filters and pagination. None means the first page of everything.

        Returns:
            (page of transactions, total matching count)
        """
        pass

    async def all_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        """Every transaction matching `filters`, walking all pages."""
        filters = (filters or TransactionFilter()).model_copy(update={"page": 1, "limit": 1000})
        collected: list[Transaction] = []
        while True:
            page, total = await self.list_transactions(filters)
            collected.extend(page)
            if not page or len(collected) >= total:
                return collected
            filters = filters.model_copy(update={"page": filters.page + 1})

    # ---- Debts -------------------------------------------------------------

    @abstractmethod
    async def upsert_debt(self, snapshot: DebtSnapshot) -> Debt:
        """
        Insert or refresh a debt keyed by (name, source).

        Payment history of an existing debt is preserved.
        """
        pass

    @abstractmethod
    async def get_debt(self, debt_id: UUID) -> Optional[Debt]:
        pass

    @abstractmethod
    async def get_debt_by_key(self, name: str, source: DebtSource) -> Optional[Debt]:
        pass

    @abstractmethod
    async def save_debt(self, debt: Debt) -> Debt:
        """
        Replace an existing debt as one record write.

        Raises:
            NotFoundError: If the debt doesn't exist
        """
        pass

    @abstractmethod
    async def list_debts(self, active_only: bool = True) -> list[Debt]:
        pass

    # ---- Companies -----------------------------------------------------------

    @abstractmethod
    async def get_company(self, name: CompanyName) -> Optional[Company]:
        pass

    @abstractmethod
    async def save_company(self, company: Company) -> Company:
        pass

    @abstractmethod
    async def list_companies(self) -> list[Company]:
        pass


class TokenStorageInterface(ABC):
    """
    Abstract interface for persisted OAuth tokens, keyed by realm id.
    """

    @abstractmethod
    async def save_token(self, token: OAuthToken) -> OAuthToken:
        pass

    @abstractmethod
    async def get_token(self, realm_id: str) -> Optional[OAuthToken]:
        pass

    @abstractmethod
    async def delete_token(self, realm_id: str) -> bool:
        """
        Delete a token.

        Returns:
            True if a token was removed
        """
        pass

    @abstractmethod
    async def list_tokens(self) -> list[OAuthToken]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one sync run).

        Args:
            correlation_id: The correlation identifier

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events (newest first)
        """
        pass


class SummaryStorageInterface(ABC):
    """Abstract interface for daily spend summaries."""

    @abstractmethod
    async def append_daily_summary(self, summary: DailySummary) -> bool:
        pass

    @abstractmethod
    async def list_daily_summaries(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[DailySummary]:
        """
        List stored summaries in date order.

        Args:
            date_from: First day to include
            date_to: Last day to include
        """
        pass
