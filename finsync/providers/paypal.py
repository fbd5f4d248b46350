"""
PayPal Payment Processor Adapter

PayPal exposes one wallet per set of REST credentials, read through the
Transaction Search reporting API.

DESIGN DECISION: PayPal reports no usable merchant category, so categories
are derived from keywords in the transaction subject and note. Other
providers keep their own categories.
"""

from datetime import date, datetime
from typing import Any, Optional

import httpx
import structlog

from finsync.config import PayPalSettings
from finsync.errors import ProviderAuthError, ProviderError
from finsync.models.ledger import (
    Account,
    AccountKind,
    NormalizedTransaction,
    Provider,
    TransactionType,
    to_money,
)
from finsync.models.sync import CachedToken, ProviderBalance, SyncMode
from finsync.providers.base import DEFAULT_HTTP_TIMEOUT, HttpProviderAdapter


logger = structlog.get_logger()

PAGE_SIZE = 100
TOKEN_SAFETY_MARGIN_SECONDS = 60

# Checked in order; first match wins
CATEGORY_KEYWORDS = [
    ("Food & Dining", ("food", "restaurant", "coffee")),
    ("Transportation", ("uber", "lyft", "gas")),
    ("Shopping", ("amazon", "ebay", "shop")),
    ("Entertainment", ("netflix", "spotify", "game")),
    ("Bills & Utilities", ("electric", "water", "internet")),
]


def categorize_paypal_transaction(subject: Optional[str], note: Optional[str]) -> str:
    text = f"{subject or ''} {note or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return "Other"


def _parse_paypal_date(value: str) -> date:
    # PayPal sends e.g. 2024-03-01T10:15:00+0000
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z").date()
    except ValueError:
        return date.fromisoformat(value[:10])


def normalize_paypal_transaction(
    raw: dict[str, Any],
    account_id: str,
) -> Optional[NormalizedTransaction]:
    """Translate one PayPal transaction_details entry. Returns None if it has no id."""
    info = raw.get("transaction_info") or {}
    payer = raw.get("payer_info") or {}

    transaction_id = info.get("transaction_id")
    if not transaction_id:
        return None

    amount_info = info.get("transaction_amount") or {}
    value = to_money(amount_info.get("value") or 0)
    subject = info.get("transaction_subject")
    note = info.get("transaction_note")
    payer_name = (payer.get("payer_name") or {}).get("alternate_full_name")

    return NormalizedTransaction(
        provider=Provider.PAYPAL,
        provider_transaction_id=transaction_id,
        account_id=account_id,
        transaction_date=_parse_paypal_date(info["transaction_initiation_date"]),
        amount=abs(value),
        currency=amount_info.get("currency_code") or "USD",
        type=TransactionType.DEBIT if value < 0 else TransactionType.CREDIT,
        description=subject or note or "PayPal Transaction",
        merchant=payer_name or payer.get("email_address"),
        category=categorize_paypal_transaction(subject, note),
        # P = pending, S = success
        pending=info.get("transaction_status") == "P",
        metadata={
            "paypal_status": info.get("transaction_status"),
            "paypal_event_code": info.get("transaction_event_code"),
        },
    )


class PayPalAdapter(HttpProviderAdapter):
    """Payment feed backed by the PayPal REST API."""

    provider = Provider.PAYPAL
    sync_mode = SyncMode.WINDOW

    def __init__(
        self,
        settings: PayPalSettings,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings.base_url, timeout=timeout, transport=transport)
        self._settings = settings
        self._token = CachedToken()

    async def get_access_token(self) -> str:
        """Client-credentials token, cached until shortly before it expires."""
        if self._token.is_valid():
            return self._token.token

        data = await self._request(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self._settings.client_id, self._settings.client_secret),
            headers={"Accept": "application/json"},
        )
        if "access_token" not in data:
            raise ProviderAuthError(self.provider.value, "token response had no access_token")
        return self._token.store(
            data["access_token"],
            int(data.get("expires_in", 0)),
            margin_seconds=TOKEN_SAFETY_MARGIN_SECONDS,
        )

    async def _get(self, path: str, params: Optional[dict] = None) -> dict[str, Any]:
        token = await self.get_access_token()
        try:
            return await self._request(
                "GET",
                path,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except ProviderAuthError:
            self._token.clear()
            raise

    def to_account(self, name: str) -> Account:
        """The wallet behind the configured credentials; one per client id."""
        return Account(
            provider=Provider.PAYPAL,
            provider_account_id=f"paypal_{self._settings.client_id}",
            institution_name="PayPal",
            name=name,
            kind=AccountKind.PAYMENT_WALLET,
            subtype=self._settings.mode,
        )

    async def fetch_transactions(
        self,
        account: Account,
        start: date,
        end: date,
    ) -> list[NormalizedTransaction]:
        normalized: list[NormalizedTransaction] = []
        page = 1
        total_pages = 1

        while page <= total_pages:
            data = await self._get("/v1/reporting/transactions", params={
                "start_date": f"{start.isoformat()}T00:00:00Z",
                "end_date": f"{end.isoformat()}T23:59:59Z",
                "fields": "all",
                "page_size": PAGE_SIZE,
                "page": page,
            })
            for raw in data.get("transaction_details", []):
                transaction = normalize_paypal_transaction(raw, account.provider_account_id)
                if transaction is None:
                    logger.warning("paypal_transaction_without_id_skipped")
                    continue
                normalized.append(transaction)
            total_pages = int(data.get("total_pages") or 1)
            page += 1

        return normalized

    async def fetch_balance(self, account: Account) -> Optional[ProviderBalance]:
        data = await self._get("/v1/reporting/balances")
        balances = data.get("balances")
        if not balances:
            return None
        try:
            total = sum(
                (to_money((b.get("available_balance") or {}).get("value") or 0) for b in balances),
                to_money(0),
            )
        except ValueError as e:
            raise ProviderError(self.provider.value, f"unreadable balance: {e}")
        return ProviderBalance(current=total, available=total, currency=account.currency)
