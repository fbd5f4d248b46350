"""
Allocation Policy

Attributes transactions to companies, either wholly (one company, one
percentage) or as a split across several companies.

DESIGN DECISION: Allocation is user-owned data. It is validated in full
before anything is written, so a rejected allocation leaves the stored
transaction exactly as it was. Each accepted allocation is persisted as one
whole-record write.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from finsync.audit.logger import AuditLogger
from finsync.errors import NotFoundError, ValidationError
from finsync.models.ledger import (
    ALLOCATION_TARGETS,
    HUNDRED,
    CompanyName,
    SplitAllocation,
    Transaction,
    compute_split_amounts,
    utc_now,
)
from finsync.models.sync import BulkAllocationResult
from finsync.services.storage.interface import LedgerStorageInterface


logger = structlog.get_logger()

TransactionRef = Union[Transaction, UUID, str]


def _to_percentage(value: Any) -> Decimal:
    try:
        percentage = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid percentage: {value!r}")
    if not percentage.is_finite() or percentage < 0 or percentage > HUNDRED:
        raise ValidationError(f"Percentage must be between 0 and 100, got {value}")
    return percentage


def _company_value(company: Union[CompanyName, str]) -> str:
    return company.value if isinstance(company, CompanyName) else str(company)


def validate_splits(allocations: list[Any]) -> list[SplitAllocation]:
    """
    Check a proposed split and return it as SplitAllocation entries.

    Entries may be SplitAllocation instances or dicts with `company` and
    `percentage`. The list must be non-empty, every company must be a real
    company (not Unallocated) and appear only once, and the percentages must
    sum to exactly 100.

    Raises:
        ValidationError: If any of the above does not hold
    """
    if not allocations:
        raise ValidationError("Split allocation needs at least one entry")

    parsed: list[SplitAllocation] = []
    for entry in allocations:
        if isinstance(entry, SplitAllocation):
            parsed.append(entry)
            continue
        try:
            parsed.append(SplitAllocation.model_validate(entry))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid split entry {entry!r}: {e.errors()[0]['msg']}")

    seen: set[CompanyName] = set()
    for split in parsed:
        if split.company in seen:
            raise ValidationError(f"Company {split.company.value} appears more than once in the split")
        seen.add(split.company)

    total = sum((s.percentage for s in parsed), Decimal("0"))
    if total != HUNDRED:
        raise ValidationError(f"Split allocation percentages must sum to 100, got {total}")
    return parsed


class AllocationPolicy:
    """
    Single, split and bulk allocation of transactions to companies.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def resolve(self, transaction_or_id: TransactionRef) -> Transaction:
        """
        Load a private copy of a transaction.

        Accepts a Transaction, its internal UUID (or UUID string), or its
        provider_transaction_id.

        Raises:
            NotFoundError: If no such transaction is stored
        """
        if isinstance(transaction_or_id, Transaction):
            return transaction_or_id.model_copy(deep=True)

        transaction = None
        if isinstance(transaction_or_id, UUID):
            transaction = await self._storage.get_transaction(transaction_or_id)
        else:
            try:
                transaction = await self._storage.get_transaction(UUID(transaction_or_id))
            except ValueError:
                transaction = await self._storage.get_transaction_by_provider_id(transaction_or_id)

        if transaction is None:
            raise NotFoundError("transaction", str(transaction_or_id))
        return transaction

    async def allocate(
        self,
        transaction_or_id: TransactionRef,
        company: Union[CompanyName, str],
        percentage: Any = 100,
    ) -> Transaction:
        """
        Attribute a transaction to one company.

        Any existing split is replaced.

        Raises:
            ValidationError: Unknown company or percentage outside 0-100
            NotFoundError: Transaction does not exist
        """
        company = _company_value(company)
        if company not in ALLOCATION_TARGETS:
            raise ValidationError(f"Unknown company: {company}")
        percentage = _to_percentage(percentage)

        transaction = await self.resolve(transaction_or_id)
        transaction.company = company
        transaction.allocation_percentage = percentage
        transaction.split_allocations = []
        transaction.updated_at = utc_now()

        saved = await self._storage.save_transaction(transaction)
        await self._audit.log_transaction_allocated(str(saved.id), company, str(percentage))
        logger.info(
            "transaction_allocated",
            transaction_id=str(saved.id),
            company=company,
            percentage=str(percentage),
        )
        return saved

    async def split_allocate(
        self,
        transaction_or_id: TransactionRef,
        allocations: list[Any],
    ) -> Transaction:
        """
        Split a transaction across several companies.

        The derived amounts always add up to the transaction amount, each
        within one cent of its exact share. The first entry becomes the head
        company and percentage.

        Raises:
            ValidationError: Empty split, unknown company, or percentages not summing to 100
            NotFoundError: Transaction does not exist
        """
        splits = validate_splits(allocations)
        transaction = await self.resolve(transaction_or_id)

        transaction.split_allocations = compute_split_amounts(transaction.amount, splits)
        transaction.company = splits[0].company.value
        transaction.allocation_percentage = splits[0].percentage
        transaction.updated_at = utc_now()

        saved = await self._storage.save_transaction(transaction)
        await self._audit.log_transaction_split(
            str(saved.id),
            [
                {"company": s.company.value, "percentage": str(s.percentage), "amount": str(s.amount)}
                for s in saved.split_allocations
            ],
        )
        logger.info(
            "transaction_split",
            transaction_id=str(saved.id),
            companies=[s.company.value for s in saved.split_allocations],
        )
        return saved

    async def bulk_allocate(
        self,
        ids: list[Union[UUID, str]],
        company: Union[CompanyName, str],
    ) -> BulkAllocationResult:
        """
        Allocate many transactions wholly to one company.

        Ids that do not exist are reported in `missing_ids`; they never fail
        the batch.

        Raises:
            ValidationError: Unknown company
        """
        company = _company_value(company)
        if company not in ALLOCATION_TARGETS:
            raise ValidationError(f"Unknown company: {company}")

        modified = 0
        missing: list[str] = []
        for transaction_id in ids:
            try:
                await self.allocate(transaction_id, company, HUNDRED)
            except NotFoundError:
                missing.append(str(transaction_id))
                continue
            modified += 1

        await self._audit.log_bulk_allocation(company, len(ids), modified)
        return BulkAllocationResult(requested=len(ids), modified=modified, missing_ids=missing)

    async def apply_to_budget(
        self,
        company: Union[CompanyName, str],
        transaction: Transaction,
    ) -> bool:
        """
        Add a debit's allocated share to the company's budget for its category.

        Returns:
            True if a budget category was updated
        """
        if not transaction.is_expense:
            return False

        name = _company_value(company)
        share = transaction.allocated_amount(name)
        if share <= 0:
            return False

        try:
            record = await self._storage.get_company(CompanyName(name))
        except ValueError:
            raise ValidationError(f"Unknown company: {name}")
        if record is None:
            raise NotFoundError("company", name)

        if not record.update_budget_spend(transaction.category, share):
            return False
        await self._storage.save_company(record)
        return True
