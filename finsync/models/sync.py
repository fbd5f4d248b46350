"""
Sync Models for FinSync

Results and intermediate shapes produced by a reconciliation run, plus the
token records providers need between runs.

DESIGN DECISION: A sync run never raises to its caller. Every configured
provider gets a ProviderSyncResult, successful or not, so the caller always
sees the full picture.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finsync.models.ledger import utc_now


class SyncMode(str, Enum):
    """How a provider's feed is walked."""
    WINDOW = "window"   # trailing N-day window
    CURSOR = "cursor"   # paginated full sync from an empty cursor
    LEDGER = "ledger"   # whole-sheet snapshot


class ProviderBalance(BaseModel):
    """Balance figures reported by a provider for one account."""

    current: Decimal
    available: Optional[Decimal] = None
    currency: str = "USD"


class ProviderSyncResult(BaseModel):
    """Outcome of syncing one provider."""

    provider: str
    succeeded: bool = True
    records_processed: int = Field(default=0, description="Transactions plus debts upserted")
    debts_processed: int = Field(default=0, description="Debts upserted, included in records_processed")
    error: Optional[str] = None
    accounts_failed: list[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    """Outcome of a full synchronize() run, one entry per provider."""

    correlation_id: UUID = Field(default_factory=uuid4)
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    providers: dict[str, ProviderSyncResult] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(r.succeeded for r in self.providers.values())

    @property
    def total_records(self) -> int:
        return sum(r.records_processed for r in self.providers.values())

    @property
    def failed_providers(self) -> list[str]:
        return [name for name, r in self.providers.items() if not r.succeeded]


class DailySummary(BaseModel):
    """Spend snapshot for one calendar day."""

    summary_date: date
    total_spent: Decimal = Decimal("0.00")
    transaction_count: int = 0
    top_category: Optional[str] = None
    top_category_amount: Decimal = Decimal("0.00")
    average_transaction: Decimal = Decimal("0.00")
    generated_at: datetime = Field(default_factory=utc_now)


class BulkAllocationResult(BaseModel):
    requested: int
    modified: int
    missing_ids: list[str] = Field(default_factory=list)


class StatementImportResult(BaseModel):
    """Outcome of importing one card statement CSV."""

    account_id: str
    total: int = Field(default=0, description="Data rows in the file")
    imported: int = 0
    skipped_rows: list[int] = Field(default_factory=list, description="1-based line numbers that could not be read")


class OAuthToken(BaseModel):
    """
    Persisted OAuth2 tokens for one accounting company (realm).

    Stored through TokenStorageInterface so a restart does not force the
    user to reconnect.
    """

    realm_id: str = Field(..., min_length=1)
    access_token: str
    refresh_token: str
    expires_at: datetime
    refresh_expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_access_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at


class CachedToken(BaseModel):
    """
    An in-process client-credentials token.

    Considered valid until `margin_seconds` before it actually expires, so a
    request never goes out with a token about to lapse.
    """

    token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.token or not self.expires_at:
            return False
        return (now or utc_now()) < self.expires_at

    def store(
        self,
        token: str,
        expires_in: int,
        margin_seconds: int = 60,
        now: Optional[datetime] = None,
    ) -> str:
        self.token = token
        self.expires_at = (now or utc_now()) + timedelta(seconds=expires_in - margin_seconds)
        return token

    def clear(self) -> None:
        self.token = None
        self.expires_at = None
