"""
Main Orchestrator for FinSync

This module ties together all the components and defines the
user-driven flows that sit beside the automatic sync:
1. Manual entry (record expense/income → validate → allocate → save)
2. Account linking (connect provider → persist credential → upsert account)
3. Manual cards and loans (enter balances, import statements by hand)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Only manually entered transactions can be deleted
- Provider credentials are persisted before the account that uses them
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError as PydanticValidationError

from finsync.allocation import AllocationPolicy, validate_splits
from finsync.audit import AuditLogger
from finsync.cards import parse_statement_csv
from finsync.config import Settings, get_settings
from finsync.debts import DebtTracker
from finsync.errors import NotFoundError, ProviderError, ValidationError
from finsync.models.ledger import (
    ALLOCATION_TARGETS,
    UNALLOCATED,
    Account,
    AccountKind,
    Debt,
    DebtSource,
    Provider,
    Transaction,
    TransactionFilter,
    TransactionType,
    compute_split_amounts,
    to_money,
    utc_now,
)
from finsync.models.sync import StatementImportResult
from finsync.providers import (
    PayPalAdapter,
    PlaidAdapter,
    ProviderRegistry,
    QuickBooksAdapter,
    SBALoanAdapter,
    build_registry,
    validate_loan_number,
)
from finsync.providers.sba import debt_name
from finsync.providers.sheets import normalize_header
from finsync.reporting import ReportingService
from finsync.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSummaryStorage,
    GoogleSheetsTokenStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemorySummaryStorage,
    InMemoryTokenStorage,
    LedgerStorageInterface,
    SummaryStorageInterface,
    TokenStorageInterface,
)
from finsync.sync import DailySummaryJob, ReconciliationEngine, SyncScheduler


logger = structlog.get_logger()

MANUAL_ACCOUNT_ID = "manual_entry"

# Bookkeeping fields a person may edit on any transaction
USER_EDITABLE_FIELDS = frozenset({
    "notes",
    "tags",
    "business_purpose",
    "tax_deductible",
    "expense_source",
    "invoice_number",
})

# Also editable on manual transactions
MANUAL_EDITABLE_FIELDS = USER_EDITABLE_FIELDS | {
    "amount",
    "transaction_date",
    "description",
    "merchant",
    "category",
    "subcategory",
}

CARD_LAST_FOUR = re.compile(r"^\d{4}$")


def _available_credit(limit: Optional[Decimal], balance: Any) -> Optional[Decimal]:
    # Cards without a known limit report the balance as available
    if limit is None:
        return None
    return limit - to_money(balance)


class ManualEntryFlow:
    """
    Orchestrates manual bookkeeping.

    Flow:
    1. Record → build a provider=manual transaction with a fresh key
    2. Allocate → optional company or split, validated before saving
    3. Save → insert into the ledger
    4. Edit/Delete → only user-owned fields, only manual records are deletable
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        allocation_policy: Optional[AllocationPolicy] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._allocation = allocation_policy or AllocationPolicy(storage, self._audit_logger)

    async def _record(
        self,
        type_: TransactionType,
        amount: Any,
        description: str,
        category: str,
        transaction_date: Optional[date] = None,
        company: Optional[str] = None,
        split_allocations: Optional[list[Any]] = None,
        **extras: Any,
    ) -> Transaction:
        try:
            amount = to_money(amount)
        except ValueError:
            raise ValidationError(f"Invalid amount: {amount!r}")
        if amount <= 0:
            raise ValidationError(f"Amount must be positive, got {amount}")

        company = company or UNALLOCATED
        if company not in ALLOCATION_TARGETS:
            raise ValidationError(f"Unknown company: {company}")
        splits = validate_splits(split_allocations) if split_allocations else []

        try:
            transaction = Transaction(
                provider=Provider.MANUAL,
                provider_transaction_id=f"manual_{uuid4().hex}",
                account_id=MANUAL_ACCOUNT_ID,
                transaction_date=transaction_date or date.today(),
                amount=amount,
                type=type_,
                description=description,
                category=category,
                company=company,
                **extras,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid manual transaction: {e.errors()[0]['msg']}")

        if splits:
            transaction.split_allocations = compute_split_amounts(transaction.amount, splits)
            transaction.company = splits[0].company.value
            transaction.allocation_percentage = splits[0].percentage

        saved = await self._storage.create_transaction(transaction)
        await self._audit_logger.log_manual_transaction_created(
            str(saved.id), type_.value, str(saved.amount)
        )
        logger.info(
            "manual_transaction_created",
            transaction_id=str(saved.id),
            type=type_.value,
            amount=str(saved.amount),
            company=saved.company,
        )
        return saved

    async def record_expense(
        self,
        amount: Any,
        description: str,
        category: str = "Other",
        transaction_date: Optional[date] = None,
        company: Optional[str] = None,
        split_allocations: Optional[list[Any]] = None,
        **extras: Any,
    ) -> Transaction:
        """
        Record money out that no provider reports (cash, reimbursements...).

        Extra keyword arguments set bookkeeping fields such as merchant,
        expense_source, business_purpose, tax_deductible, notes and tags.

        Raises:
            ValidationError: Non-positive amount, unknown company or invalid split
        """
        return await self._record(
            TransactionType.DEBIT,
            amount,
            description,
            category,
            transaction_date,
            company,
            split_allocations,
            **extras,
        )

    async def record_income(
        self,
        amount: Any,
        description: str,
        category: str = "Income",
        transaction_date: Optional[date] = None,
        company: Optional[str] = None,
        split_allocations: Optional[list[Any]] = None,
        **extras: Any,
    ) -> Transaction:
        """Record money in. Same rules as record_expense."""
        return await self._record(
            TransactionType.CREDIT,
            amount,
            description,
            category,
            transaction_date,
            company,
            split_allocations,
            **extras,
        )

    async def update_transaction(
        self,
        transaction_id: Union[UUID, str],
        **changes: Any,
    ) -> Transaction:
        """
        Edit a transaction in place.

        Synced transactions accept bookkeeping fields only; manual ones
        also accept their amount, date, description and category.

        Raises:
            ValidationError: A field is not editable or the new value is invalid
            NotFoundError: Transaction does not exist
        """
        transaction = await self._allocation.resolve(transaction_id)
        allowed = MANUAL_EDITABLE_FIELDS if transaction.is_manual else USER_EDITABLE_FIELDS
        rejected = sorted(set(changes) - allowed)
        if rejected:
            raise ValidationError(f"Fields not editable: {', '.join(rejected)}")

        try:
            updated = Transaction.model_validate({**transaction.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid update: {e.errors()[0]['msg']}")
        if "amount" in changes and updated.split_allocations:
            updated.split_allocations = compute_split_amounts(updated.amount, updated.split_allocations)
        updated.updated_at = utc_now()

        return await self._storage.save_transaction(updated)

    async def delete_transaction(self, transaction_id: Union[UUID, str]) -> bool:
        """
        Delete a manually entered transaction.

        Raises:
            ValidationError: The transaction came from a provider
            NotFoundError: Transaction does not exist
        """
        transaction = await self._allocation.resolve(transaction_id)
        if not transaction.is_manual:
            raise ValidationError("Only manual transactions can be deleted")

        deleted = await self._storage.delete_transaction(transaction.id)
        if deleted:
            await self._audit_logger.log_manual_transaction_deleted(str(transaction.id))
        return deleted


class AccountLinkFlow:
    """
    Orchestrates connecting and disconnecting provider accounts.

    Accounts are never hard-deleted: removing one revokes the provider link
    and soft-deletes the record, so its history keeps a valid owner.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        registry: ProviderRegistry,
        audit_logger: Optional[AuditLogger] = None,
        debts: Optional[DebtTracker] = None,
    ):
        self._storage = storage
        self._registry = registry
        self._audit_logger = audit_logger or AuditLogger()
        self._debts = debts or DebtTracker(storage, self._audit_logger)

    def _adapter(self, provider: Provider):
        return self._registry.get(provider)

    async def _save_linked(self, account: Account) -> Account:
        saved = await self._storage.upsert_account(account)
        await self._audit_logger.log_account_linked(
            saved.provider_account_id, saved.provider.value, saved.institution_name
        )
        logger.info(
            "account_linked",
            provider=saved.provider.value,
            account_id=saved.provider_account_id,
        )
        return saved

    # ---- Plaid ---------------------------------------------------------------

    async def create_plaid_link_token(self, user_id: str = "finsync-user") -> dict[str, Any]:
        plaid: PlaidAdapter = self._adapter(Provider.PLAID)
        return await plaid.create_link_token(user_id)

    async def link_plaid(self, public_token: str, institution_name: str) -> list[Account]:
        """
        Exchange a Link public token and store every account behind it.

        Returns:
            The linked accounts
        """
        if not public_token:
            raise ValidationError("public_token is required")
        plaid: PlaidAdapter = self._adapter(Provider.PLAID)

        access_token = await plaid.exchange_link_token(public_token)
        linked = []
        for raw in await plaid.get_accounts(access_token):
            account = plaid.to_account(raw, access_token, institution_name or "Plaid")
            linked.append(await self._save_linked(account))
        return linked

    # ---- PayPal --------------------------------------------------------------

    async def connect_paypal(self, name: str = "PayPal Account") -> Account:
        """Check the configured PayPal credentials and store the wallet account."""
        paypal: PayPalAdapter = self._adapter(Provider.PAYPAL)
        await paypal.get_access_token()
        return await self._save_linked(paypal.to_account(name))

    # ---- QuickBooks ----------------------------------------------------------

    def quickbooks_authorization_url(self, state: Optional[str] = None) -> str:
        quickbooks: QuickBooksAdapter = self._adapter(Provider.QUICKBOOKS)
        return quickbooks.authorization_url(state)

    async def complete_quickbooks_oauth(self, code: str, realm_id: str) -> Account:
        """
        Finish the OAuth callback: persist the token, then the account.

        The company name is looked up best-effort; the realm id stands in
        when QuickBooks cannot return it.
        """
        if not code or not realm_id:
            raise ValidationError("code and realm_id are required")
        quickbooks: QuickBooksAdapter = self._adapter(Provider.QUICKBOOKS)

        await quickbooks.exchange_code(code, realm_id)
        await self._audit_logger.log_oauth_connected(realm_id, Provider.QUICKBOOKS.value)

        company_name = None
        try:
            company_name = (await quickbooks.company_info(realm_id)).get("CompanyName")
        except ProviderError as e:
            logger.warning("quickbooks_company_info_failed", realm_id=realm_id, error=str(e))

        return await self._save_linked(quickbooks.to_account(realm_id, company_name))

    async def disconnect_quickbooks(self, realm_id: str) -> bool:
        """
        Revoke and delete the stored token, then deactivate the company's account.

        Returns:
            True if an account was deactivated
        """
        quickbooks: QuickBooksAdapter = self._adapter(Provider.QUICKBOOKS)
        await quickbooks.remove_link(realm_id)
        await self._audit_logger.log_oauth_disconnected(realm_id, Provider.QUICKBOOKS.value)

        try:
            await self._storage.deactivate_account(realm_id)
        except NotFoundError:
            return False
        await self._audit_logger.log_account_removed(realm_id, Provider.QUICKBOOKS.value)
        return True

    async def quickbooks_profit_and_loss(
        self,
        realm_id: str,
        start: date,
        end: date,
    ) -> dict[str, Any]:
        """
        Fetch a linked company's Profit & Loss report, unmodified.

        Raises:
            ValidationError: Missing realm id or start after end
            ProviderError: QuickBooks is not linked for this realm or the call failed
        """
        if not realm_id:
            raise ValidationError("realm_id is required")
        if start > end:
            raise ValidationError(f"start_date {start} is after end_date {end}")
        quickbooks: QuickBooksAdapter = self._adapter(Provider.QUICKBOOKS)
        return await quickbooks.profit_and_loss(realm_id, start, end)

    # ---- SBA -----------------------------------------------------------------

    async def add_sba_loan(
        self,
        loan_number: str,
        company: Optional[str] = None,
    ) -> tuple[Account, Debt]:
        """
        Track an SBA loan as an account and a debt.

        When the registry cannot return the loan, a zero-balance manual
        placeholder is stored instead so the loan can still be tracked.

        Raises:
            ValidationError: Loan number is not 10 digits, or unknown company
        """
        loan_number = validate_loan_number(loan_number)
        if company is not None and company not in ALLOCATION_TARGETS:
            raise ValidationError(f"Unknown company: {company}")
        sba: SBALoanAdapter = self._adapter(Provider.SBA)

        try:
            balance = await sba.get_loan_balance(loan_number)
            snapshot = sba.debt_snapshot(loan_number, balance, company)
        except ProviderError as e:
            logger.warning("sba_loan_lookup_failed", loan_number=loan_number, error=str(e))
            snapshot = sba.manual_entry(loan_number, company)

        account = sba.to_account(loan_number, company)
        account.current_balance = snapshot.current_balance
        account.available_balance = snapshot.current_balance
        saved = await self._save_linked(account)
        debt = await self._storage.upsert_debt(snapshot)
        return saved, debt

    async def update_sba_loan(
        self,
        loan_number: str,
        current_balance: Any = None,
        monthly_payment: Any = None,
        interest_rate: Any = None,
        next_payment_date: Optional[date] = None,
    ) -> Debt:
        """
        Enter an SBA loan's figures by hand, for loans the registry cannot return.

        The loan's account balance follows the new current balance.

        Raises:
            ValidationError: Bad loan number or figures
            NotFoundError: The loan is not tracked
        """
        loan_number = validate_loan_number(loan_number)
        debt = await self._debts.update_figures(
            debt_name(loan_number),
            DebtSource.SBA_API,
            current_balance=current_balance,
            minimum_payment=monthly_payment,
            apr=interest_rate,
            due_date=next_payment_date.isoformat() if next_payment_date else None,
            due_date_day=next_payment_date.day if next_payment_date else None,
        )
        if current_balance is not None:
            try:
                await self._storage.update_account_balance(loan_number, debt.current_balance)
            except NotFoundError:
                logger.warning("sba_loan_account_missing", loan_number=loan_number)
        return debt

    # ---- Credit cards --------------------------------------------------------

    async def connect_manual_card(
        self,
        institution_name: str,
        last_four: str,
        credit_limit: Any = None,
        current_balance: Any = 0,
        company: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Account:
        """
        Track a credit card that no provider feeds, entered by hand.

        The card is keyed by issuer and last four digits, so connecting the
        same card again updates it in place.

        Raises:
            ValidationError: Bad last four digits, figures or company
        """
        last_four = (last_four or "").strip()
        if not CARD_LAST_FOUR.match(last_four):
            raise ValidationError(f"Invalid last four digits: {last_four!r}")
        if company is not None and company not in ALLOCATION_TARGETS:
            raise ValidationError(f"Unknown company: {company}")
        issuer_key = normalize_header(institution_name or "")
        if not issuer_key:
            raise ValidationError("institution_name is required")

        try:
            account = Account(
                provider=Provider.MANUAL,
                provider_account_id=f"card_{issuer_key}_{last_four}",
                institution_name=institution_name,
                name=name or f"{institution_name.strip()} - ****{last_four}",
                kind=AccountKind.CREDIT,
                subtype="credit_card",
                mask=last_four,
                credit_limit=credit_limit,
                metadata={"company": company, "manual_entry": True},
            )
            account.update_balance(current_balance, _available_credit(account.credit_limit, current_balance))
        except (PydanticValidationError, ValueError) as e:
            raise ValidationError(f"Invalid card details: {e}")
        if account.credit_limit is not None and account.credit_limit < 0:
            raise ValidationError(f"Credit limit cannot be negative, got {account.credit_limit}")
        return await self._save_linked(account)

    async def _manual_card(self, account_id: Union[UUID, str]) -> Account:
        account = await self._find_account(account_id)
        if account.provider != Provider.MANUAL or account.kind != AccountKind.CREDIT:
            raise ValidationError(f"Account {account.provider_account_id} is not a manual credit card")
        return account

    async def update_card_balance(
        self,
        account_id: Union[UUID, str],
        current_balance: Any,
        statement_balance: Any = None,
    ) -> Account:
        """
        Set a manual card's balance from its latest statement or banking app.

        Available credit is the limit minus the balance, when a limit is known.

        Raises:
            ValidationError: Not a manual card, or an unreadable figure
            NotFoundError: Account does not exist
        """
        account = await self._manual_card(account_id)
        try:
            current = to_money(current_balance)
            statement = to_money(statement_balance) if statement_balance is not None else None
        except ValueError as e:
            raise ValidationError(str(e))

        account.update_balance(current, _available_credit(account.credit_limit, current))
        if statement is not None:
            account.metadata = {**account.metadata, "statement_balance": str(statement)}
        saved = await self._storage.upsert_account(account)
        await self._audit_logger.log_balance_updated(
            saved.provider_account_id, str(saved.current_balance), str(saved.available_balance)
        )
        return saved

    async def import_card_statement(
        self,
        account_id: Union[UUID, str],
        csv_text: str,
    ) -> StatementImportResult:
        """
        Import a card statement CSV into a manual card's transactions.

        Rows are upserted by a key derived from their content, so a statement
        imported twice is stored once. Unreadable rows are reported, not fatal.

        Raises:
            ValidationError: Not a manual card, or the file has no usable columns
            NotFoundError: Account does not exist
        """
        account = await self._manual_card(account_id)
        parsed = parse_statement_csv(csv_text, account)

        company = account.metadata.get("company")
        for normalized in parsed.transactions:
            stored = await self._storage.upsert_transaction(normalized)
            if company and company != UNALLOCATED and stored.company == UNALLOCATED:
                stored.company = company
                await self._storage.save_transaction(stored)

        result = StatementImportResult(
            account_id=account.provider_account_id,
            total=parsed.total,
            imported=len(parsed.transactions),
            skipped_rows=parsed.skipped_rows,
        )
        await self._audit_logger.log_statement_imported(
            result.account_id, result.imported, result.total
        )
        logger.info(
            "statement_imported",
            account_id=result.account_id,
            imported=result.imported,
            skipped=len(result.skipped_rows),
        )
        return result

    async def card_transactions(
        self,
        account_id: Union[UUID, str],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 50,
    ) -> tuple[Account, list[Transaction]]:
        """A card's transactions, newest first."""
        account = await self._find_account(account_id)
        try:
            filters = TransactionFilter(
                account_id=account.provider_account_id,
                date_from=date_from,
                date_to=date_to,
                limit=limit,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid filter: {e.errors()[0]['msg']}")
        items, _ = await self._storage.list_transactions(filters)
        return account, items

    # ---- Removal -------------------------------------------------------------

    async def _find_account(self, account_id: Union[UUID, str]) -> Account:
        account = None
        try:
            account = await self._storage.get_account(
                account_id if isinstance(account_id, UUID) else UUID(str(account_id))
            )
        except ValueError:
            pass
        if account is None:
            account = await self._storage.get_account_by_provider_id(str(account_id))
        if account is None:
            raise NotFoundError("account", str(account_id))
        return account

    async def remove_account(self, account_id: Union[UUID, str]) -> Account:
        """
        Unlink an account at its provider and soft-delete it.

        Accepts the internal id or the provider account id.

        Raises:
            NotFoundError: Account does not exist
        """
        account = await self._find_account(account_id)

        adapter = self._registry.find(account.provider)
        if adapter is not None:
            await adapter.remove_link(account.credential)

        removed = await self._storage.deactivate_account(account.provider_account_id)
        await self._audit_logger.log_account_removed(
            removed.provider_account_id, removed.provider.value
        )
        logger.info(
            "account_removed",
            provider=removed.provider.value,
            account_id=removed.provider_account_id,
        )
        return removed


@dataclass
class AppComponents:
    """Everything the API, dashboard and scheduler need, wired together."""

    settings: Settings
    storage: LedgerStorageInterface
    token_storage: TokenStorageInterface
    audit_storage: AuditStorageInterface
    summary_storage: SummaryStorageInterface
    audit_logger: AuditLogger
    registry: ProviderRegistry
    engine: ReconciliationEngine
    allocation: AllocationPolicy
    debts: DebtTracker
    reporting: ReportingService
    summary_job: DailySummaryJob
    scheduler: SyncScheduler
    manual_entry: ManualEntryFlow
    account_links: AccountLinkFlow
    sheets_client: Optional[GoogleSheetsClient] = None


def create_app_components(
    settings: Optional[Settings] = None,
    use_storage: bool = True,
    registry: Optional[ProviderRegistry] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Root settings (defaults to get_settings())
        use_storage: Whether to use the configured storage backend.
                    Set to False for in-memory storage (tests, demos).
        registry: Pre-built provider registry; built from settings when None

    Returns:
        AppComponents
    """
    settings = settings or get_settings()
    sync_settings = settings.sync
    sheets_client = None
    storage = token_storage = audit_storage = summary_storage = None

    if use_storage and sync_settings.storage_backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            storage = GoogleSheetsLedgerStorage(sheets_client)
            token_storage = GoogleSheetsTokenStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
            summary_storage = GoogleSheetsSummaryStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            storage = None

    if storage is None:
        storage = InMemoryLedgerStorage()
        token_storage = InMemoryTokenStorage()
        audit_storage = InMemoryAuditStorage()
        summary_storage = InMemorySummaryStorage()

    audit_logger = AuditLogger(audit_storage)
    if registry is None:
        registry = build_registry(settings, token_storage=token_storage, sheets_client=sheets_client)

    engine = ReconciliationEngine(registry, storage, audit_logger, sync_settings)
    allocation = AllocationPolicy(storage, audit_logger)
    summary_job = DailySummaryJob(storage, summary_storage, audit_logger)
    debts = DebtTracker(storage, audit_logger)

    return AppComponents(
        settings=settings,
        storage=storage,
        token_storage=token_storage,
        audit_storage=audit_storage,
        summary_storage=summary_storage,
        audit_logger=audit_logger,
        registry=registry,
        engine=engine,
        allocation=allocation,
        debts=debts,
        reporting=ReportingService(storage),
        summary_job=summary_job,
        scheduler=SyncScheduler(engine, summary_job, sync_settings),
        manual_entry=ManualEntryFlow(storage, allocation, audit_logger),
        account_links=AccountLinkFlow(storage, registry, audit_logger, debts),
        sheets_client=sheets_client,
    )
