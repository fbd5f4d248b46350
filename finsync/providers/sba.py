"""
SBA Loan Registry Adapter

Reads loan balances and payment history from the SBA lending API. Each
linked SBA loan is one Account (kind=loan) whose provider_account_id is the
10-digit loan number.

Loan payments become debit transactions; the loan itself becomes a Debt.
When the registry is unreachable at link time, a zero-balance manual entry
is recorded so the owner can track the loan by hand.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import httpx
import structlog

from finsync.config import SBASettings
from finsync.errors import ProviderAuthError, ValidationError
from finsync.models.ledger import (
    Account,
    AccountKind,
    DebtKind,
    DebtSnapshot,
    DebtSource,
    NormalizedTransaction,
    Provider,
    TransactionType,
    to_money,
)
from finsync.models.sync import CachedToken, ProviderBalance, SyncMode
from finsync.providers.base import DEFAULT_HTTP_TIMEOUT, HttpProviderAdapter


logger = structlog.get_logger()

LOAN_NUMBER_PATTERN = re.compile(r"^\d{10}$")
TOKEN_SAFETY_MARGIN_SECONDS = 60


def validate_loan_number(loan_number: str) -> str:
    """
    Check an SBA loan number is exactly 10 digits.

    Raises:
        ValidationError: If it is not
    """
    loan_number = (loan_number or "").strip()
    if not LOAN_NUMBER_PATTERN.match(loan_number):
        raise ValidationError(f"Invalid SBA loan number: {loan_number!r} (expected 10 digits)")
    return loan_number


def debt_name(loan_number: str) -> str:
    return f"SBA Loan - {loan_number}"


def _parse_day(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).day
    except ValueError:
        return None


def normalize_sba_payment(
    raw: dict[str, Any],
    account_id: str,
    loan_number: str,
) -> NormalizedTransaction:
    principal = to_money(raw.get("principal_amount") or 0)
    interest = to_money(raw.get("interest_amount") or 0)
    return NormalizedTransaction(
        provider=Provider.SBA,
        provider_transaction_id=f"sba_payment_{raw['payment_id']}",
        account_id=account_id,
        transaction_date=date.fromisoformat(str(raw["payment_date"])[:10]),
        amount=abs(to_money(raw.get("payment_amount") or 0)),
        type=TransactionType.DEBIT,
        description=f"SBA Loan Payment - Principal: ${principal}, Interest: ${interest}",
        merchant="SBA Loan Payment",
        category="Loan Payment",
        subcategory="Business Loan",
        pending=raw.get("status") == "pending",
        metadata={
            "loan_number": loan_number,
            "principal_amount": str(principal),
            "interest_amount": str(interest),
            "balance_after_payment": raw.get("remaining_balance"),
            "payment_method": raw.get("payment_method"),
        },
    )


class SBALoanAdapter(HttpProviderAdapter):
    """Loan feed backed by the SBA lending API."""

    provider = Provider.SBA
    sync_mode = SyncMode.WINDOW

    def __init__(
        self,
        settings: SBASettings,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings.base_url.rstrip("/") + "/", timeout=timeout, transport=transport)
        self._settings = settings
        self._token = CachedToken()

    async def authenticate(self) -> str:
        if self._token.is_valid():
            return self._token.token

        data = await self._request("POST", "oauth/token", data={
            "grant_type": "client_credentials",
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
        })
        if "access_token" not in data:
            raise ProviderAuthError(self.provider.value, "token response had no access_token")
        return self._token.store(
            data["access_token"],
            int(data.get("expires_in", 0)),
            margin_seconds=TOKEN_SAFETY_MARGIN_SECONDS,
        )

    async def _get(self, path: str, params: Optional[dict] = None) -> dict[str, Any]:
        token = await self.authenticate()
        try:
            return await self._request("GET", path, params=params, headers={
                "Authorization": f"Bearer {token}",
                "X-API-Key": self._settings.api_key,
            })
        except ProviderAuthError:
            self._token.clear()
            raise

    @staticmethod
    def loan_number_of(account: Account) -> str:
        return account.metadata.get("loan_number") or account.provider_account_id

    # ---- Registry reads ----------------------------------------------------------

    async def get_loan_details(self, loan_number: str) -> dict[str, Any]:
        return await self._get(f"loans/{validate_loan_number(loan_number)}")

    async def get_loan_balance(self, loan_number: str) -> dict[str, Any]:
        return await self._get(f"loans/{validate_loan_number(loan_number)}/balance")

    async def get_payment_history(
        self,
        loan_number: str,
        start: date,
        end: date,
    ) -> list[dict[str, Any]]:
        data = await self._get(
            f"loans/{validate_loan_number(loan_number)}/payments",
            params={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
        return data.get("payments", [])

    def to_account(self, loan_number: str, company: Optional[str] = None) -> Account:
        return Account(
            provider=Provider.SBA,
            provider_account_id=loan_number,
            institution_name="U.S. Small Business Administration",
            name=debt_name(loan_number),
            kind=AccountKind.LOAN,
            subtype="sba_loan",
            metadata={"loan_number": loan_number, "company": company},
        )

    def debt_snapshot(
        self,
        loan_number: str,
        balance: dict[str, Any],
        company: Optional[str] = None,
    ) -> DebtSnapshot:
        """Build the Debt snapshot for a loan from its /balance payload."""
        next_payment = balance.get("next_payment_date")
        return DebtSnapshot(
            name=debt_name(loan_number),
            kind=DebtKind.SBA_LOAN,
            source=DebtSource.SBA_API,
            account_id=loan_number,
            current_balance=balance.get("outstanding_balance") or 0,
            original_balance=balance.get("original_loan_amount"),
            minimum_payment=balance.get("monthly_payment_amount") or 0,
            apr=Decimal(str(balance["interest_rate"])) if balance.get("interest_rate") is not None else None,
            due_date=next_payment,
            due_date_day=_parse_day(next_payment),
            metadata={
                "loan_number": loan_number,
                "company": company,
                "maturity_date": balance.get("maturity_date"),
                "principal_paid": balance.get("principal_paid"),
                "interest_paid": balance.get("interest_paid"),
            },
        )

    def manual_entry(self, loan_number: str, company: Optional[str] = None) -> DebtSnapshot:
        """Placeholder debt for a loan the registry could not return."""
        return DebtSnapshot(
            name=debt_name(loan_number),
            kind=DebtKind.SBA_LOAN,
            source=DebtSource.SBA_API,
            account_id=loan_number,
            current_balance=Decimal("0.00"),
            original_balance=Decimal("0.00"),
            minimum_payment=Decimal("0.00"),
            metadata={
                "loan_number": loan_number,
                "company": company,
                "manual": True,
                "note": "Manual entry - SBA API not available or loan not found",
            },
        )

    # ---- Sync ----------------------------------------------------------------

    async def fetch_transactions(
        self,
        account: Account,
        start: date,
        end: date,
    ) -> list[NormalizedTransaction]:
        loan_number = self.loan_number_of(account)
        payments = await self.get_payment_history(loan_number, start, end)
        return [
            normalize_sba_payment(raw, account.provider_account_id, loan_number)
            for raw in payments
        ]

    async def fetch_balance(self, account: Account) -> Optional[ProviderBalance]:
        balance = await self.get_loan_balance(self.loan_number_of(account))
        outstanding = balance.get("outstanding_balance")
        if outstanding is None:
            return None
        return ProviderBalance(current=to_money(outstanding))

    async def fetch_debts(self, accounts: list[Account]) -> list[DebtSnapshot]:
        snapshots = []
        for account in accounts:
            loan_number = self.loan_number_of(account)
            balance = await self.get_loan_balance(loan_number)
            snapshots.append(
                self.debt_snapshot(loan_number, balance, account.metadata.get("company"))
            )
        return snapshots
