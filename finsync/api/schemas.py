"""
Request bodies for the HTTP API.

Companies arrive as plain strings so an unknown company is reported with the
same 400 error envelope as every other validation failure.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from finsync.models.ledger import Provider


class SyncRequest(BaseModel):
    providers: Optional[list[Provider]] = Field(
        default=None,
        description="Subset of providers to sync; all configured providers when omitted"
    )


class SplitEntry(BaseModel):
    company: str
    percentage: Decimal


class ManualTransactionRequest(BaseModel):
    amount: Decimal
    description: str
    category: Optional[str] = None
    transaction_date: Optional[date] = None
    company: Optional[str] = None
    split_allocations: Optional[list[SplitEntry]] = None
    merchant: Optional[str] = None
    expense_source: Optional[str] = None
    invoice_number: Optional[str] = None
    business_purpose: Optional[str] = None
    tax_deductible: bool = False
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    def flow_kwargs(self) -> dict:
        """Keyword arguments for ManualEntryFlow.record_expense / record_income."""
        data = self.model_dump(exclude_none=True, exclude={"split_allocations"})
        if self.split_allocations:
            data["split_allocations"] = [s.model_dump() for s in self.split_allocations]
        return data


class TransactionUpdateRequest(BaseModel):
    amount: Optional[Decimal] = None
    transaction_date: Optional[date] = None
    description: Optional[str] = None
    merchant: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    expense_source: Optional[str] = None
    invoice_number: Optional[str] = None
    business_purpose: Optional[str] = None
    tax_deductible: Optional[bool] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None


class AllocationRequest(BaseModel):
    """Either `company` (+ optional `percentage`) or `split_allocations`."""

    company: Optional[str] = None
    percentage: Decimal = Decimal("100")
    split_allocations: Optional[list[SplitEntry]] = None


class BulkAllocateRequest(BaseModel):
    transaction_ids: list[str] = Field(..., min_length=1)
    company: str


class DebtPaymentRequest(BaseModel):
    amount: Decimal
    note: Optional[str] = None


class PlaidExchangeRequest(BaseModel):
    public_token: str = Field(..., min_length=1)
    institution_name: str = "Plaid"


class PayPalConnectRequest(BaseModel):
    name: str = "PayPal Account"


class QuickBooksDisconnectRequest(BaseModel):
    realm_id: str = Field(..., min_length=1)


class SBALoanRequest(BaseModel):
    loan_number: str
    company: Optional[str] = None


class SBALoanUpdateRequest(BaseModel):
    current_balance: Optional[Decimal] = None
    monthly_payment: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    next_payment_date: Optional[date] = None


class DebtUpdateRequest(BaseModel):
    """Figures to overwrite on a hand-maintained debt; omitted fields are kept."""

    current_balance: Optional[Decimal] = None
    original_balance: Optional[Decimal] = None
    credit_limit: Optional[Decimal] = None
    minimum_payment: Optional[Decimal] = None
    apr: Optional[Decimal] = None
    due_date: Optional[str] = None
    due_date_day: Optional[int] = Field(default=None, ge=1, le=31)


class CreditCardConnectRequest(BaseModel):
    institution_name: str = Field(..., min_length=1)
    last_four: str = Field(..., min_length=4, max_length=4)
    credit_limit: Optional[Decimal] = None
    current_balance: Decimal = Decimal("0")
    company: Optional[str] = None
    name: Optional[str] = None


class CardBalanceRequest(BaseModel):
    current_balance: Decimal
    statement_balance: Optional[Decimal] = None


class StatementImportRequest(BaseModel):
    csv_data: str = Field(..., min_length=1)
