"""
Plaid Banking Adapter

Plaid aggregates bank and card accounts. One Plaid "item" (a login at one
institution) holds one access token and one or more accounts.

DESIGN DECISION: Transactions are walked with /transactions/sync from an
empty cursor until has_more is false. Both `added` and `modified` records
are ingested, so a pending charge that later posts simply overwrites itself
through the idempotent upsert.

Plaid amounts are positive for money leaving the account. We store the
magnitude and put the direction in `type`.
"""

from datetime import date
from typing import Any, Optional

import httpx
import structlog

from finsync.config import PlaidSettings
from finsync.errors import ProviderError
from finsync.models.ledger import (
    DEFAULT_CATEGORY,
    Account,
    AccountKind,
    Location,
    NormalizedTransaction,
    Provider,
    TransactionType,
    to_money,
)
from finsync.models.sync import ProviderBalance, SyncMode
from finsync.providers.base import DEFAULT_HTTP_TIMEOUT, HttpProviderAdapter


logger = structlog.get_logger()

SYNC_PAGE_SIZE = 500

PLAID_SUBTYPE_KINDS = {
    "checking": AccountKind.CHECKING,
    "savings": AccountKind.SAVINGS,
    "money market": AccountKind.SAVINGS,
    "cd": AccountKind.SAVINGS,
    "paypal": AccountKind.PAYMENT_WALLET,
}

PLAID_TYPE_KINDS = {
    "credit": AccountKind.CREDIT,
    "loan": AccountKind.LOAN,
    "investment": AccountKind.INVESTMENT,
    "brokerage": AccountKind.INVESTMENT,
}


def map_account_kind(plaid_type: Optional[str], plaid_subtype: Optional[str]) -> AccountKind:
    """Map Plaid's type/subtype pair onto our account kinds."""
    if plaid_type in PLAID_TYPE_KINDS:
        return PLAID_TYPE_KINDS[plaid_type]
    return PLAID_SUBTYPE_KINDS.get(plaid_subtype or "", AccountKind.CHECKING)


def normalize_plaid_transaction(raw: dict[str, Any], account_id: str) -> NormalizedTransaction:
    """Translate one Plaid transaction into the canonical shape."""
    amount = to_money(raw.get("amount") or 0)
    categories = raw.get("category") or []

    location = None
    raw_location = raw.get("location") or {}
    if any(v is not None for v in raw_location.values()):
        location = Location(
            address=raw_location.get("address"),
            city=raw_location.get("city"),
            region=raw_location.get("region"),
            postal_code=raw_location.get("postal_code"),
            country=raw_location.get("country"),
            lat=raw_location.get("lat"),
            lon=raw_location.get("lon"),
        )

    return NormalizedTransaction(
        provider=Provider.PLAID,
        provider_transaction_id=raw["transaction_id"],
        account_id=account_id,
        transaction_date=date.fromisoformat(raw["date"]),
        amount=abs(amount),
        currency=raw.get("iso_currency_code") or "USD",
        type=TransactionType.DEBIT if amount > 0 else TransactionType.CREDIT,
        description=raw.get("name") or "Plaid Transaction",
        merchant=raw.get("merchant_name"),
        category=categories[0] if categories else DEFAULT_CATEGORY,
        subcategory=categories[1] if len(categories) > 1 else None,
        pending=bool(raw.get("pending", False)),
        metadata={
            "plaid_category": categories,
            "payment_channel": raw.get("payment_channel"),
        },
        location=location,
    )


class PlaidAdapter(HttpProviderAdapter):
    """Banking feed backed by the Plaid REST API."""

    provider = Provider.PLAID
    sync_mode = SyncMode.CURSOR

    def __init__(
        self,
        settings: PlaidSettings,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings.base_url, timeout=timeout, transport=transport)
        self._settings = settings

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = {
            "client_id": self._settings.client_id,
            "secret": self._settings.secret,
            **payload,
        }
        return await self._request("POST", path, json=body)

    # ---- Linking -------------------------------------------------------------

    async def create_link_token(self, user_id: str) -> dict[str, Any]:
        """Create a Link token the frontend uses to open Plaid Link."""
        return await self._post("/link/token/create", {
            "client_name": self._settings.client_name,
            "user": {"client_user_id": user_id},
            "products": self._settings.products_list,
            "country_codes": self._settings.country_codes_list,
            "language": "en",
        })

    async def exchange_link_token(self, public_token: str) -> str:
        data = await self._post("/item/public_token/exchange", {"public_token": public_token})
        access_token = data.get("access_token")
        if not access_token:
            raise ProviderError(self.provider.value, "token exchange returned no access token")
        return access_token

    async def get_accounts(self, access_token: str) -> list[dict[str, Any]]:
        data = await self._post("/accounts/get", {"access_token": access_token})
        return data.get("accounts", [])

    def to_account(
        self,
        raw: dict[str, Any],
        access_token: str,
        institution_name: str,
    ) -> Account:
        """Build our Account record from a Plaid account object."""
        balances = raw.get("balances") or {}
        return Account(
            provider=Provider.PLAID,
            provider_account_id=raw["account_id"],
            credential=access_token,
            institution_name=institution_name,
            name=raw.get("name") or raw.get("official_name") or "Plaid Account",
            kind=map_account_kind(raw.get("type"), raw.get("subtype")),
            subtype=raw.get("subtype"),
            mask=raw.get("mask"),
            current_balance=balances.get("current") or 0,
            available_balance=balances.get("available") or balances.get("current") or 0,
            credit_limit=balances.get("limit"),
            currency=balances.get("iso_currency_code") or "USD",
        )

    async def remove_link(self, credential: Optional[str]) -> None:
        if credential:
            await self._post("/item/remove", {"access_token": credential})

    # ---- Sync ----------------------------------------------------------------

    async def fetch_transactions(
        self,
        account: Account,
        start: date,
        end: date,
    ) -> list[NormalizedTransaction]:
        cursor: Optional[str] = None
        records: list[dict[str, Any]] = []
        has_more = True

        while has_more:
            payload: dict[str, Any] = {
                "access_token": account.credential,
                "count": SYNC_PAGE_SIZE,
            }
            if cursor:
                payload["cursor"] = cursor
            data = await self._post("/transactions/sync", payload)
            records.extend(data.get("added", []))
            records.extend(data.get("modified", []))
            has_more = bool(data.get("has_more", False))
            cursor = data.get("next_cursor")

        # One item can hold several accounts; keep only this one's records
        normalized = [
            normalize_plaid_transaction(raw, account.provider_account_id)
            for raw in records
            if raw.get("account_id") in (None, account.provider_account_id)
        ]
        logger.debug(
            "plaid_transactions_fetched",
            account_id=account.provider_account_id,
            count=len(normalized),
        )
        return normalized

    async def fetch_balance(self, account: Account) -> Optional[ProviderBalance]:
        data = await self._post("/accounts/balance/get", {
            "access_token": account.credential,
            "options": {"account_ids": [account.provider_account_id]},
        })
        for raw in data.get("accounts", []):
            if raw.get("account_id") == account.provider_account_id:
                balances = raw.get("balances") or {}
                current = balances.get("current")
                if current is None:
                    return None
                available = balances.get("available")
                return ProviderBalance(
                    current=to_money(current),
                    available=to_money(available) if available is not None else None,
                    currency=balances.get("iso_currency_code") or "USD",
                )
        return None
