"""
Shared test fixtures.

No test reaches a real provider: adapters are replaced by FakeAdapter and
HTTP adapters run against httpx.MockTransport.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient

from finsync.api import create_api
from finsync.audit import AuditLogger
from finsync.config import Settings, SyncSettings
from finsync.models.ledger import (
    Account,
    AccountKind,
    DebtSnapshot,
    NormalizedTransaction,
    Provider,
    TransactionType,
)
from finsync.models.sync import ProviderBalance, SyncMode
from finsync.orchestrator import create_app_components
from finsync.providers.base import ProviderAdapter
from finsync.providers.registry import ProviderRegistry
from finsync.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemorySummaryStorage,
    InMemoryTokenStorage,
)


class FakeAdapter(ProviderAdapter):
    """Scriptable adapter: returns whatever the test put in it."""

    def __init__(
        self,
        provider: Provider,
        transactions: Optional[list[NormalizedTransaction]] = None,
        balance: Optional[ProviderBalance] = None,
        debts: Optional[list[DebtSnapshot]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        sync_mode: SyncMode = SyncMode.WINDOW,
        supports_transactions: bool = True,
    ):
        self.provider = provider
        self.sync_mode = sync_mode
        self.supports_transactions = supports_transactions
        self.transactions = transactions or []
        self.balance = balance
        self.debts = debts or []
        self.error = error
        self.delay = delay
        self.windows: list[tuple[date, date]] = []
        self.removed_credentials: list[Optional[str]] = []

    async def fetch_transactions(self, account, start, end):
        self.windows.append((start, end))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return [t for t in self.transactions if t.account_id == account.provider_account_id]

    async def fetch_balance(self, account):
        return self.balance

    async def fetch_debts(self, accounts):
        return list(self.debts)

    async def remove_link(self, credential):
        self.removed_credentials.append(credential)


def normalized(
    provider_transaction_id: str,
    amount: str = "42.50",
    account_id: str = "acct_1",
    provider: Provider = Provider.PAYPAL,
    type_: TransactionType = TransactionType.DEBIT,
    transaction_date: Optional[date] = None,
    category: str = "Shopping",
    pending: bool = False,
    description: str = "Office supplies",
) -> NormalizedTransaction:
    return NormalizedTransaction(
        provider=provider,
        provider_transaction_id=provider_transaction_id,
        account_id=account_id,
        transaction_date=transaction_date or date(2024, 3, 15),
        amount=Decimal(amount),
        type=type_,
        description=description,
        category=category,
        pending=pending,
    )


def account(
    provider_account_id: str = "acct_1",
    provider: Provider = Provider.PAYPAL,
    kind: AccountKind = AccountKind.PAYMENT_WALLET,
    credential: Optional[str] = None,
) -> Account:
    return Account(
        provider=provider,
        provider_account_id=provider_account_id,
        credential=credential,
        institution_name=provider.value.title(),
        name=f"{provider.value} {provider_account_id}",
        kind=kind,
    )


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def token_storage():
    return InMemoryTokenStorage()


@pytest.fixture
def summary_storage():
    return InMemorySummaryStorage()


@pytest.fixture
def sync_settings():
    return SyncSettings(window_days=30, provider_timeout_seconds=1.0, sync_interval_minutes=30)


@pytest.fixture
def registry():
    return ProviderRegistry()


@pytest.fixture
def components(registry):
    """Fully wired in-memory components around the test registry."""
    return create_app_components(settings=Settings(), use_storage=False, registry=registry)


@pytest.fixture
async def client(components):
    """Async test client for the FastAPI app."""
    async with AsyncClient(
        transport=ASGITransport(app=create_api(components)),
        base_url="http://test",
    ) as ac:
        yield ac
