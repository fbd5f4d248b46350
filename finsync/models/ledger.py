"""
Core Ledger Models for FinSync

These models define the canonical shape every provider is normalized into:
Account, Transaction, Debt and Company.

DESIGN DECISION: Amounts are Decimal, quantized to cents, and always
non-negative on transactions. The direction of a cash flow lives only in
`type` (debit/credit), never in the sign of `amount`.

DESIGN DECISION: Provider-owned fields and user-owned fields are kept apart.
A re-sync overwrites what the provider knows (amount, pending, category...)
and never touches what a human decided (company allocation, splits).
"""

from datetime import date, datetime, timezone
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MONEY_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")
UNALLOCATED = "Unallocated"
DEFAULT_CATEGORY = "Other"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """
    Convert a provider number (float, str, int, Decimal) to a cent-quantized Decimal.

    Raises:
        ValueError: The value is not a finite number
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Amount must be a finite number, got {value!r}")
    try:
        return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value!r}")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Provider(str, Enum):
    """External data sources, plus manual entry."""
    PLAID = "plaid"
    PAYPAL = "paypal"
    GOOGLE_SHEETS = "google_sheets"
    QUICKBOOKS = "quickbooks"
    SBA = "sba"
    MANUAL = "manual"


# Providers whose accounts cannot be synced without a stored credential
CREDENTIAL_PROVIDERS = {Provider.PLAID, Provider.QUICKBOOKS}


class AccountKind(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    LOAN = "loan"
    INVESTMENT = "investment"
    PAYMENT_WALLET = "payment_wallet"


class TransactionType(str, Enum):
    """Direction of a cash flow."""
    DEBIT = "debit"    # money out
    CREDIT = "credit"  # money in


class CompanyName(str, Enum):
    """
    The closed set of business entities transactions are allocated to.

    `Unallocated` is not a company: it is the default label on freshly
    synced transactions and is never a valid split target.
    """
    CLAY_GENIUS = "ClayGenius"
    RECRUIT_CLOUD = "RecruitCloud"
    DATA_LABS = "DataLabs"
    SWYFT_ADVANCE = "Swyft Advance"
    PERSONAL = "Personal"


ALLOCATION_TARGETS = frozenset([c.value for c in CompanyName] + [UNALLOCATED])


class CompanyType(str, Enum):
    BUSINESS = "business"
    PERSONAL = "personal"


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class DebtKind(str, Enum):
    CREDIT_CARD = "credit_card"
    PERSONAL_LOAN = "personal_loan"
    STUDENT_LOAN = "student_loan"
    MORTGAGE = "mortgage"
    AUTO_LOAN = "auto_loan"
    SBA_LOAN = "sba_loan"
    OTHER = "other"


class DebtSource(str, Enum):
    GOOGLE_SHEETS = "google_sheets"
    PLAID = "plaid"
    SBA_API = "sba_api"
    MANUAL = "manual"


# =============================================================================
# ACCOUNT
# =============================================================================

class Account(BaseModel):
    """
    One financial account at one provider.

    `provider_account_id` is globally unique and is the key every balance
    update is applied against. Accounts are soft-deleted only, so historical
    transactions keep a valid owner.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    provider: Provider
    provider_account_id: str = Field(..., min_length=1, max_length=200)
    credential: Optional[str] = Field(
        default=None,
        description="Opaque provider credential (access token or token-store key)"
    )
    institution_name: str = Field(..., min_length=1, max_length=200)
    name: str = Field(..., min_length=1, max_length=200)
    kind: AccountKind
    subtype: Optional[str] = None
    mask: Optional[str] = Field(default=None, max_length=8)

    current_balance: Decimal = Decimal("0.00")
    available_balance: Decimal = Decimal("0.00")
    credit_limit: Optional[Decimal] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)

    is_active: bool = True
    last_synced: Optional[datetime] = None
    sync_error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("current_balance", "available_balance", "credit_limit", mode="before")
    @classmethod
    def quantize_money(cls, v):
        if v is None or v == "":
            return None
        return to_money(v)

    @model_validator(mode="after")
    def require_credential(self) -> "Account":
        if self.provider in CREDENTIAL_PROVIDERS and not self.credential:
            raise ValueError(
                f"Accounts from {self.provider.value} require a credential"
            )
        return self

    def update_balance(
        self,
        current: Decimal,
        available: Optional[Decimal] = None,
    ) -> "Account":
        """
        Apply the freshest provider balance figures.

        Available falls back to current when the provider does not
        distinguish them. Also clears any previously recorded sync error.
        """
        now = utc_now()
        self.current_balance = to_money(current)
        self.available_balance = to_money(available if available is not None else current)
        self.last_synced = now
        self.sync_error = None
        self.updated_at = now
        return self

    def mark_sync_error(self, message: str) -> "Account":
        now = utc_now()
        self.sync_error = message
        self.last_synced = now
        self.updated_at = now
        return self

    def deactivate(self) -> "Account":
        self.is_active = False
        self.updated_at = utc_now()
        return self


# =============================================================================
# TRANSACTION
# =============================================================================

class Location(BaseModel):
    """Optional geolocation reported by the banking feed."""

    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None


class SplitAllocation(BaseModel):
    """One entry of a split: a company, its share, and the derived amount."""

    company: CompanyName
    percentage: Decimal = Field(..., ge=0, le=100)
    amount: Optional[Decimal] = Field(
        default=None,
        description="Derived: transaction amount * percentage / 100"
    )


def compute_split_amounts(
    total: Decimal,
    allocations: list[SplitAllocation],
) -> list[SplitAllocation]:
    """
    Derive the monetary amount of every split entry (largest remainder).

    Every share is first rounded down to the cent. The cents still missing
    from the total go one at a time to the entries with the largest dropped
    fractions, earlier entries first on ties. Each amount ends up
    non-negative, within one cent of its exact share, and the parts add up
    to the total exactly.
    """
    if not allocations:
        return []

    exact = [total * a.percentage / HUNDRED for a in allocations]
    amounts = [share.quantize(MONEY_QUANTUM, rounding=ROUND_DOWN) for share in exact]

    leftover = int((total - sum(amounts, Decimal("0.00"))) / MONEY_QUANTUM)
    by_remainder = sorted(
        range(len(amounts)),
        key=lambda i: (-(exact[i] - amounts[i]), i),
    )
    for i in by_remainder[:leftover]:
        amounts[i] += MONEY_QUANTUM

    return [
        SplitAllocation(company=a.company, percentage=a.percentage, amount=amount)
        for a, amount in zip(allocations, amounts)
    ]


class NormalizedTransaction(BaseModel):
    """
    A provider record translated into the canonical shape.

    This is what every provider adapter returns. It carries only the fields
    the provider owns; allocation is decided later, by people.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    provider: Provider
    provider_transaction_id: str = Field(..., min_length=1, max_length=200)
    account_id: str = Field(..., min_length=1)
    transaction_date: date
    amount: Decimal = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    type: TransactionType
    description: str = Field(..., min_length=1, max_length=500)
    merchant: Optional[str] = Field(default=None, max_length=200)
    category: str = Field(default=DEFAULT_CATEGORY, min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    pending: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    location: Optional[Location] = None
    card_provider: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v):
        return to_money(v)


# Fields a re-sync is allowed to overwrite
PROVIDER_OWNED_FIELDS = tuple(NormalizedTransaction.model_fields)


class Transaction(BaseModel):
    """
    One financial movement, as stored.

    INVARIANTS:
    - provider_transaction_id is unique (enforced by storage upserts)
    - split percentages, when present, sum to exactly 100
    - amount is a non-negative magnitude
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)

    # Identity at the provider
    provider: Provider
    provider_transaction_id: str = Field(..., min_length=1, max_length=200)
    account_id: str = Field(..., min_length=1)

    # Allocation (user-owned)
    company: str = Field(default=UNALLOCATED)
    allocation_percentage: Decimal = Field(default=HUNDRED, ge=0, le=100)
    split_allocations: list[SplitAllocation] = Field(default_factory=list)

    # Movement (provider-owned)
    transaction_date: date
    amount: Decimal = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    type: TransactionType
    description: str = Field(..., min_length=1, max_length=500)
    merchant: Optional[str] = Field(default=None, max_length=200)
    category: str = Field(default=DEFAULT_CATEGORY, min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    pending: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    location: Optional[Location] = None
    card_provider: Optional[str] = None

    # Bookkeeping extras, mostly filled on manual entry
    expense_source: Optional[str] = None
    invoice_number: Optional[str] = None
    business_purpose: Optional[str] = None
    tax_deductible: bool = False
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v):
        return to_money(v)

    @field_validator("company")
    @classmethod
    def validate_company(cls, v: str) -> str:
        if v not in ALLOCATION_TARGETS:
            raise ValueError(f"Unknown company: {v}")
        return v

    @model_validator(mode="after")
    def validate_splits(self) -> "Transaction":
        if self.split_allocations:
            total = sum((s.percentage for s in self.split_allocations), Decimal("0"))
            if total != HUNDRED:
                raise ValueError(
                    f"Split allocation percentages must sum to 100, got {total}"
                )
        return self

    @classmethod
    def from_normalized(cls, normalized: NormalizedTransaction) -> "Transaction":
        """First sight of a provider id: default allocation is Unallocated at 100%."""
        return cls(**{name: getattr(normalized, name) for name in PROVIDER_OWNED_FIELDS})

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.DEBIT

    @property
    def is_income(self) -> bool:
        return self.type == TransactionType.CREDIT

    @property
    def is_manual(self) -> bool:
        return self.provider == Provider.MANUAL

    def apply_provider_update(self, normalized: NormalizedTransaction) -> "Transaction":
        """
        Overwrite provider-owned fields with freshly normalized data.

        Allocation, identity and creation time are preserved. When the amount
        changes under an existing split, the derived split amounts follow.
        """
        amount_changed = normalized.amount != self.amount
        for name in PROVIDER_OWNED_FIELDS:
            setattr(self, name, getattr(normalized, name))
        if amount_changed and self.split_allocations:
            self.split_allocations = compute_split_amounts(self.amount, self.split_allocations)
        self.updated_at = utc_now()
        return self

    def allocated_amount(self, company: str) -> Decimal:
        """Portion of this transaction attributed to `company`."""
        if self.split_allocations:
            return sum(
                (s.amount or Decimal("0.00") for s in self.split_allocations if s.company.value == company),
                Decimal("0.00"),
            )
        if self.company != company:
            return Decimal("0.00")
        return to_money(self.amount * self.allocation_percentage / HUNDRED)


class TransactionFilter(BaseModel):
    """Filters and pagination for listing stored transactions."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category: Optional[str] = None
    provider: Optional[Provider] = None
    type: Optional[TransactionType] = None
    company: Optional[str] = None
    account_id: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    search: Optional[str] = Field(
        default=None,
        description="Case-insensitive match on description or merchant"
    )
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=1000)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def matches(self, transaction: Transaction) -> bool:
        if self.date_from and transaction.transaction_date < self.date_from:
            return False
        if self.date_to and transaction.transaction_date > self.date_to:
            return False
        if self.category and transaction.category != self.category:
            return False
        if self.provider and transaction.provider != self.provider:
            return False
        if self.type and transaction.type != self.type:
            return False
        if self.company and transaction.company != self.company:
            return False
        if self.account_id and transaction.account_id != self.account_id:
            return False
        if self.min_amount is not None and transaction.amount < self.min_amount:
            return False
        if self.max_amount is not None and transaction.amount > self.max_amount:
            return False
        if self.search:
            needle = self.search.lower()
            haystacks = [transaction.description, transaction.merchant or ""]
            if not any(needle in h.lower() for h in haystacks):
                return False
        return True


# =============================================================================
# DEBT
# =============================================================================

class DebtPayment(BaseModel):
    """One entry in a debt's payment history."""

    date: datetime
    amount: Decimal
    balance: Decimal = Field(..., description="Balance right after this payment")
    note: Optional[str] = None


class DebtSnapshot(BaseModel):
    """What a debt source (spreadsheet, loan registry) reports for one debt."""

    name: str = Field(..., min_length=1, max_length=200)
    kind: DebtKind = DebtKind.OTHER
    source: DebtSource
    account_id: Optional[str] = None
    current_balance: Decimal
    original_balance: Optional[Decimal] = None
    credit_limit: Optional[Decimal] = None
    minimum_payment: Decimal = Decimal("0.00")
    apr: Optional[Decimal] = None
    due_date: Optional[str] = None
    due_date_day: Optional[int] = Field(default=None, ge=1, le=31)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("current_balance", "original_balance", "credit_limit", "minimum_payment", mode="before")
    @classmethod
    def quantize_money(cls, v):
        if v is None or v == "":
            return None
        return to_money(v)


class Debt(BaseModel):
    """
    One liability (credit card balance, loan).

    Keyed by (name, source). Payment history and current balance must stay
    consistent: every payment appends exactly one history entry and moves the
    balance by exactly the payment amount.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    kind: DebtKind
    source: DebtSource = DebtSource.GOOGLE_SHEETS
    account_id: Optional[str] = None

    current_balance: Decimal
    original_balance: Optional[Decimal] = None
    credit_limit: Optional[Decimal] = None
    minimum_payment: Decimal = Decimal("0.00")
    apr: Optional[Decimal] = None
    due_date: Optional[str] = None
    due_date_day: Optional[int] = Field(default=None, ge=1, le=31)

    payment_history: list[DebtPayment] = Field(default_factory=list)
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)

    last_updated: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("current_balance", "original_balance", "credit_limit", "minimum_payment", mode="before")
    @classmethod
    def quantize_money(cls, v):
        if v is None or v == "":
            return None
        return to_money(v)

    @classmethod
    def from_snapshot(cls, snapshot: DebtSnapshot) -> "Debt":
        return cls(**snapshot.model_dump())

    def apply_snapshot(self, snapshot: DebtSnapshot) -> "Debt":
        """Refresh source-reported figures, keeping payment history and identity."""
        self.kind = snapshot.kind
        self.current_balance = snapshot.current_balance
        self.credit_limit = snapshot.credit_limit
        self.minimum_payment = snapshot.minimum_payment
        if snapshot.original_balance is not None:
            self.original_balance = snapshot.original_balance
        if snapshot.apr is not None:
            self.apr = snapshot.apr
        if snapshot.due_date is not None:
            self.due_date = snapshot.due_date
        if snapshot.due_date_day is not None:
            self.due_date_day = snapshot.due_date_day
        if snapshot.account_id is not None:
            self.account_id = snapshot.account_id
        self.metadata = {**self.metadata, **snapshot.metadata}
        self.is_active = True
        self.last_updated = utc_now()
        return self

    def record_payment(self, amount: Decimal, note: Optional[str] = None) -> DebtPayment:
        """
        Apply a payment: decrement the balance and append to history.

        Overpayment is allowed; the balance may go negative.
        """
        amount = to_money(amount)
        now = utc_now()
        self.current_balance = self.current_balance - amount
        entry = DebtPayment(
            date=now,
            amount=amount,
            balance=self.current_balance,
            note=note,
        )
        self.payment_history.append(entry)
        self.last_updated = now
        return entry

    def utilization(self) -> Optional[float]:
        """Balance as a percentage of the credit limit; None when there is no limit."""
        if not self.credit_limit:
            return None
        return float(self.current_balance / self.credit_limit * HUNDRED)

    def payoff_progress(self) -> Optional[float]:
        """Share of the original balance already paid off; None when unknown."""
        if not self.original_balance:
            return None
        paid = self.original_balance - self.current_balance
        return float(paid / self.original_balance * HUNDRED)


# =============================================================================
# COMPANY
# =============================================================================

class CompanyAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "USA"


class BudgetCategory(BaseModel):
    """A spend limit and the running spend for one expense category."""

    name: str = Field(..., min_length=1, max_length=100)
    budget_limit: Decimal = Decimal("0.00")
    current_spend: Decimal = Decimal("0.00")
    period: BudgetPeriod = BudgetPeriod.MONTHLY

    @property
    def remaining(self) -> Decimal:
        return self.budget_limit - self.current_spend


class Company(BaseModel):
    """A business entity transactions are allocated to for reporting."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: CompanyName
    display_name: str
    type: CompanyType = CompanyType.BUSINESS
    tax_id: Optional[str] = None
    address: Optional[CompanyAddress] = None
    categories: list[BudgetCategory] = Field(default_factory=list)
    account_ids: list[str] = Field(default_factory=list)
    default_expense_categories: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def update_budget_spend(self, category: str, amount: Decimal) -> bool:
        """Add spend to a budget category. Returns False if the category is not budgeted."""
        for budget in self.categories:
            if budget.name == category:
                budget.current_spend += to_money(amount)
                self.updated_at = utc_now()
                return True
        return False

    def reset_budgets(self) -> None:
        for budget in self.categories:
            budget.current_spend = Decimal("0.00")
        self.updated_at = utc_now()


def default_companies() -> list[Company]:
    """Seed records for the closed set of companies."""
    return [
        Company(
            name=name,
            display_name=name.value,
            type=CompanyType.PERSONAL if name == CompanyName.PERSONAL else CompanyType.BUSINESS,
        )
        for name in CompanyName
    ]
