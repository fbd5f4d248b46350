"""
Reconciliation Engine

Pulls every configured provider, normalizes what comes back, upserts it
idempotently and reconciles account balances.

DESIGN DECISION: Failures are isolated at two levels.
- Per account: a failing account records its sync_error and the provider
  moves on to its next account.
- Per provider: whatever goes wrong inside one provider becomes that
  provider's ProviderSyncResult; the next provider still runs.

A synchronize() call therefore never raises. Its SyncResult always has an
entry for every configured provider.

Ordering: within one account, the balance is only updated after every
transaction upsert has been attempted.
"""

import asyncio
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog

from finsync.audit.logger import AuditLogger, create_correlation_id
from finsync.config import SyncSettings, get_settings
from finsync.errors import (
    DuplicateKeyError,
    PersistenceError,
    ProviderNotSupportedError,
    ProviderTimeoutError,
)
from finsync.models.ledger import (
    Account,
    NormalizedTransaction,
    Provider,
    Transaction,
    utc_now,
)
from finsync.models.sync import ProviderSyncResult, SyncMode, SyncResult
from finsync.providers.base import ProviderAdapter
from finsync.providers.registry import ProviderRegistry
from finsync.services.storage.interface import LedgerStorageInterface


logger = structlog.get_logger()

T = TypeVar("T")


class ReconciliationEngine:
    """
    Multi-provider sync.

    Providers run one after another; accounts of one provider run one after
    another. There is no parallelism inside a sync run.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[SyncSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize the engine.

        Args:
            registry: Provider -> adapter lookup
            storage: Ledger storage
            audit_logger: Audit trail (defaults to local-only logging)
            settings: Sync settings (window, timeout)
            today: Clock for the sync window, injectable for tests
        """
        self._registry = registry
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().sync
        self._today = today or date.today

    @property
    def timeout_seconds(self) -> float:
        return self._settings.provider_timeout_seconds

    async def synchronize(self, providers: Optional[list[Provider]] = None) -> SyncResult:
        """
        Sync every configured provider (or the given subset).

        Returns:
            SyncResult with one ProviderSyncResult per provider
        """
        correlation_id = create_correlation_id()
        result = SyncResult(correlation_id=correlation_id)
        targets = [Provider(p) for p in providers] if providers else self._registry.providers

        await self._audit.log_sync_started(correlation_id, [p.value for p in targets])
        logger.info("sync_started", correlation_id=str(correlation_id), providers=[p.value for p in targets])

        for provider in targets:
            try:
                outcome = await self.sync_provider(provider, correlation_id)
            except Exception as e:
                logger.error(
                    "provider_sync_crashed",
                    provider=provider.value,
                    error=str(e),
                    exc_info=True,
                )
                outcome = ProviderSyncResult(
                    provider=provider.value,
                    succeeded=False,
                    error=str(e),
                )
                await self._audit.log_provider_sync_failed(provider.value, str(e), correlation_id)
            result.providers[provider.value] = outcome

        result.finished_at = utc_now()
        await self._audit.log_sync_completed(
            correlation_id,
            total_records=result.total_records,
            failed_providers=result.failed_providers,
        )
        logger.info(
            "sync_completed",
            correlation_id=str(correlation_id),
            total_records=result.total_records,
            failed_providers=result.failed_providers,
        )
        return result

    async def sync_provider(
        self,
        provider: Provider,
        correlation_id: Optional[UUID] = None,
    ) -> ProviderSyncResult:
        """
        Sync all active accounts of one provider, then its debts.

        A failing account does not stop the others; the provider outcome is
        marked failed and lists the accounts that failed.

        Raises:
            ProviderNotSupportedError: If the provider is not configured
        """
        adapter = self._registry.find(provider)
        if adapter is None:
            raise ProviderNotSupportedError(Provider(provider).value, "provider is not configured")

        name = adapter.provider.value
        accounts = await self._storage.find_accounts_by_provider(adapter.provider, active_only=True)

        records = 0
        errors: list[str] = []
        accounts_failed: list[str] = []

        if adapter.supports_transactions:
            for account in accounts:
                try:
                    records += await self.sync_account(adapter, account, correlation_id)
                except Exception as e:
                    accounts_failed.append(account.provider_account_id)
                    errors.append(f"{account.provider_account_id}: {e}")

        debts = 0
        try:
            snapshots = await self._call_provider(adapter, adapter.fetch_debts(accounts))
            for snapshot in snapshots:
                debt = await self._storage.upsert_debt(snapshot)
                await self._audit.log_debt_upserted(
                    str(debt.id), debt.name, str(debt.current_balance), correlation_id
                )
                debts += 1
        except Exception as e:
            errors.append(f"debts: {e}")

        outcome = ProviderSyncResult(
            provider=name,
            succeeded=not errors,
            records_processed=records + debts,
            debts_processed=debts,
            error="; ".join(errors) if errors else None,
            accounts_failed=accounts_failed,
        )

        if outcome.succeeded:
            await self._audit.log_provider_sync_succeeded(name, outcome.records_processed, correlation_id)
        else:
            await self._audit.log_provider_sync_failed(
                name, outcome.error, correlation_id, accounts_failed=accounts_failed
            )
        return outcome

    def _window(self, adapter: ProviderAdapter) -> tuple[date, date]:
        end = self._today()
        if adapter.sync_mode == SyncMode.WINDOW:
            return end - timedelta(days=self._settings.window_days), end
        # Cursor and ledger providers ignore the window
        return end, end

    async def sync_account(
        self,
        adapter: ProviderAdapter,
        account: Account,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Sync one account: fetch, upsert every record, then update the balance.

        On failure the account's sync_error is recorded and the error
        re-raised to the provider loop.

        Returns:
            Number of transactions upserted
        """
        try:
            start, end = self._window(adapter)
            normalized = await self._call_provider(
                adapter, adapter.fetch_transactions(account, start, end)
            )

            count = 0
            for record in normalized:
                if await self.upsert_transaction(record, correlation_id) is not None:
                    count += 1

            balance = await self._call_provider(adapter, adapter.fetch_balance(account))
            if balance is not None:
                current, available = balance.current, balance.available
            else:
                current, available = account.current_balance, account.available_balance
            await self._storage.update_account_balance(
                account.provider_account_id, current, available
            )
            await self._audit.log_balance_updated(
                account.provider_account_id,
                str(current),
                str(available if available is not None else current),
                correlation_id,
            )
            logger.info(
                "account_synced",
                provider=adapter.provider.value,
                account_id=account.provider_account_id,
                records=count,
            )
            return count

        except Exception as e:
            logger.warning(
                "account_sync_failed",
                provider=adapter.provider.value,
                account_id=account.provider_account_id,
                error=str(e),
            )
            try:
                await self._storage.mark_account_sync_error(account.provider_account_id, str(e))
            except PersistenceError as mark_error:
                logger.error(
                    "mark_sync_error_failed",
                    account_id=account.provider_account_id,
                    error=str(mark_error),
                )
            await self._audit.log_account_sync_failed(
                account.provider_account_id,
                adapter.provider.value,
                str(e),
                correlation_id,
            )
            raise

    async def upsert_transaction(
        self,
        normalized: NormalizedTransaction,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Idempotent ingest of one normalized record.

        A DuplicateKeyError means a concurrent insert of the same key won the
        race. The record already exists, so it is skipped.

        Returns:
            The stored transaction, or None when skipped as a duplicate
        """
        try:
            transaction = await self._storage.upsert_transaction(normalized)
        except DuplicateKeyError:
            logger.warning(
                "duplicate_key_ignored",
                provider_transaction_id=normalized.provider_transaction_id,
            )
            await self._audit.log_duplicate_key_ignored(
                normalized.provider_transaction_id, correlation_id
            )
            return None

        await self._audit.log_transaction_upserted(
            normalized.provider_transaction_id, str(transaction.id), correlation_id
        )
        return transaction

    async def _call_provider(self, adapter: ProviderAdapter, call: Awaitable[T]) -> T:
        """
        Await one adapter call under the configured timeout.

        Raises:
            ProviderTimeoutError: If the call does not finish in time
        """
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(
                adapter.provider.value,
                f"no response within {self.timeout_seconds:g}s",
            )
