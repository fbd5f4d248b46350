"""
QuickBooks Online Adapter

Accounting SaaS reached through OAuth2 (authorization-code flow). Each
connected QuickBooks company is identified by its realm id.

DESIGN DECISION: Tokens are persisted in TokenStorage keyed by realm id, not
kept in process memory, so a restart does not force the owner to reconnect.
Access tokens are refreshed lazily, the first time a call finds them expired.

Purchase and Invoice ids live in separate QuickBooks sequences, so provider
transaction ids are prefixed with the entity type to stay unique.
"""

import secrets
from datetime import date, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog

from finsync.config import QuickBooksSettings
from finsync.errors import ProviderAuthError
from finsync.models.ledger import (
    Account,
    AccountKind,
    NormalizedTransaction,
    Provider,
    TransactionType,
    to_money,
    utc_now,
)
from finsync.models.sync import OAuthToken, ProviderBalance, SyncMode
from finsync.providers.base import DEFAULT_HTTP_TIMEOUT, HttpProviderAdapter
from finsync.services.storage.interface import TokenStorageInterface


logger = structlog.get_logger()

AUTHORIZE_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
SCOPES = "com.intuit.quickbooks.accounting com.intuit.quickbooks.payment"


def normalize_purchase(raw: dict[str, Any], account_id: str) -> NormalizedTransaction:
    lines = raw.get("Line") or [{}]
    return NormalizedTransaction(
        provider=Provider.QUICKBOOKS,
        provider_transaction_id=f"qb_purchase_{raw['Id']}",
        account_id=account_id,
        transaction_date=date.fromisoformat(raw["TxnDate"]),
        amount=abs(to_money(raw.get("TotalAmt") or 0)),
        type=TransactionType.DEBIT,
        description=raw.get("PrivateNote") or lines[0].get("Description") or "QuickBooks Expense",
        merchant=(raw.get("EntityRef") or {}).get("name"),
        category=(raw.get("AccountRef") or {}).get("name") or "Uncategorized",
        metadata={
            "quickbooks_id": raw["Id"],
            "sync_token": raw.get("SyncToken"),
            "entity": "Purchase",
        },
    )


def normalize_invoice(raw: dict[str, Any], account_id: str) -> NormalizedTransaction:
    return NormalizedTransaction(
        provider=Provider.QUICKBOOKS,
        provider_transaction_id=f"qb_invoice_{raw['Id']}",
        account_id=account_id,
        transaction_date=date.fromisoformat(raw["TxnDate"]),
        amount=abs(to_money(raw.get("TotalAmt") or 0)),
        type=TransactionType.CREDIT,
        description=raw.get("PrivateNote") or "QuickBooks Income",
        merchant=(raw.get("CustomerRef") or {}).get("name"),
        category="Income",
        metadata={
            "quickbooks_id": raw["Id"],
            "sync_token": raw.get("SyncToken"),
            "entity": "Invoice",
        },
    )


class QuickBooksAdapter(HttpProviderAdapter):
    """Accounting feed backed by the QuickBooks Online API."""

    provider = Provider.QUICKBOOKS
    sync_mode = SyncMode.WINDOW

    def __init__(
        self,
        settings: QuickBooksSettings,
        token_storage: TokenStorageInterface,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings.api_base_url, timeout=timeout, transport=transport)
        self._settings = settings
        self._tokens = token_storage

    # ---- OAuth ---------------------------------------------------------------

    def authorization_url(self, state: Optional[str] = None) -> str:
        """URL the owner opens to grant access to a QuickBooks company."""
        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": self._settings.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "state": state or secrets.token_urlsafe(16),
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def _token_from_response(self, realm_id: str, data: dict[str, Any]) -> OAuthToken:
        if "access_token" not in data or "refresh_token" not in data:
            raise ProviderAuthError(self.provider.value, "token response was incomplete")
        now = utc_now()
        refresh_expires_in = data.get("x_refresh_token_expires_in")
        return OAuthToken(
            realm_id=realm_id,
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=now + timedelta(seconds=int(data.get("expires_in", 3600))),
            refresh_expires_at=(
                now + timedelta(seconds=int(refresh_expires_in)) if refresh_expires_in else None
            ),
        )

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        return await self._request(
            "POST",
            TOKEN_URL,
            data=form,
            auth=(self._settings.client_id, self._settings.client_secret),
            headers={"Accept": "application/json"},
        )

    async def exchange_code(self, code: str, realm_id: str) -> OAuthToken:
        """Exchange an authorization code and persist the resulting tokens."""
        data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
        })
        token = self._token_from_response(realm_id, data)
        return await self._tokens.save_token(token)

    async def refresh(self, token: OAuthToken) -> OAuthToken:
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
        })
        refreshed = self._token_from_response(token.realm_id, data)
        logger.info("quickbooks_token_refreshed", realm_id=token.realm_id)
        return await self._tokens.save_token(refreshed)

    async def get_valid_token(self, realm_id: str) -> OAuthToken:
        token = await self._tokens.get_token(realm_id)
        if token is None:
            raise ProviderAuthError(self.provider.value, f"company {realm_id} is not connected")
        if token.is_access_expired():
            token = await self.refresh(token)
        return token

    async def remove_link(self, credential: Optional[str]) -> None:
        """Revoke the refresh token at Intuit and forget it locally."""
        if not credential:
            return None
        token = await self._tokens.get_token(credential)
        if token is not None:
            await self._request(
                "POST",
                REVOKE_URL,
                json={"token": token.refresh_token},
                auth=(self._settings.client_id, self._settings.client_secret),
                headers={"Accept": "application/json"},
            )
        await self._tokens.delete_token(credential)

    # ---- API -------------------------------------------------------------------

    async def _get(self, realm_id: str, path: str, params: Optional[dict] = None) -> dict[str, Any]:
        token = await self.get_valid_token(realm_id)
        return await self._request(
            "GET",
            f"/v3/company/{realm_id}{path}",
            params=params,
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "Accept": "application/json",
            },
        )

    async def query(self, realm_id: str, statement: str) -> dict[str, Any]:
        data = await self._get(realm_id, "/query", params={"query": statement})
        return data.get("QueryResponse") or {}

    async def company_info(self, realm_id: str) -> dict[str, Any]:
        data = await self._get(realm_id, f"/companyinfo/{realm_id}")
        return data.get("CompanyInfo") or {}

    async def profit_and_loss(self, realm_id: str, start: date, end: date) -> dict[str, Any]:
        """Profit & Loss report for a date range, as QuickBooks returns it."""
        return await self._get(realm_id, "/reports/ProfitAndLoss", params={
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
        })

    def to_account(self, realm_id: str, company_name: Optional[str] = None) -> Account:
        return Account(
            provider=Provider.QUICKBOOKS,
            provider_account_id=realm_id,
            credential=realm_id,
            institution_name="QuickBooks Online",
            name=company_name or f"QuickBooks {realm_id}",
            kind=AccountKind.CHECKING,
            subtype="accounting",
        )

    # ---- Sync ----------------------------------------------------------------

    async def fetch_transactions(
        self,
        account: Account,
        start: date,
        end: date,
    ) -> list[NormalizedTransaction]:
        realm_id = account.credential or account.provider_account_id
        window = f"TxnDate >= '{start.isoformat()}' and TxnDate <= '{end.isoformat()}'"

        purchases = await self.query(realm_id, f"select * from Purchase where {window}")
        invoices = await self.query(realm_id, f"select * from Invoice where {window}")

        normalized = [
            normalize_purchase(raw, account.provider_account_id)
            for raw in purchases.get("Purchase", [])
        ]
        normalized.extend(
            normalize_invoice(raw, account.provider_account_id)
            for raw in invoices.get("Invoice", [])
        )
        return normalized

    async def fetch_balance(self, account: Account) -> Optional[ProviderBalance]:
        realm_id = account.credential or account.provider_account_id
        result = await self.query(realm_id, "select * from Account where AccountType = 'Bank'")
        bank_accounts = result.get("Account", [])
        if not bank_accounts:
            return None
        total = sum(
            (to_money(a.get("CurrentBalance") or 0) for a in bank_accounts),
            to_money(0),
        )
        return ProviderBalance(current=total, available=total)
