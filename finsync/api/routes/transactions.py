"""Transaction API routes: listing, manual entry and allocation."""

import math
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from finsync.api.deps import get_components
from finsync.api.schemas import (
    AllocationRequest,
    BulkAllocateRequest,
    ManualTransactionRequest,
    TransactionUpdateRequest,
)
from finsync.errors import ValidationError
from finsync.models.ledger import Provider, TransactionFilter, TransactionType
from finsync.orchestrator import AppComponents

router = APIRouter()


@router.get("")
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category: Optional[str] = None,
    provider: Optional[Provider] = None,
    type: Optional[TransactionType] = None,
    company: Optional[str] = None,
    account_id: Optional[str] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    search: Optional[str] = None,
    components: AppComponents = Depends(get_components),
):
    """List transactions newest first, with filters and pagination."""
    filters = TransactionFilter(
        date_from=date_from,
        date_to=date_to,
        category=category,
        provider=provider,
        type=type,
        company=company,
        account_id=account_id,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        page=page,
        limit=limit,
    )
    items, total = await components.storage.list_transactions(filters)
    return {
        "success": True,
        "transactions": items,
        "pagination": {
            "total": total,
            "page": page,
            "pages": math.ceil(total / limit) if total else 0,
            "limit": limit,
        },
    }


@router.post("/manual-expense", status_code=201)
async def create_manual_expense(
    data: ManualTransactionRequest,
    components: AppComponents = Depends(get_components),
):
    transaction = await components.manual_entry.record_expense(**data.flow_kwargs())
    return {"success": True, "transaction": transaction}


@router.post("/manual-income", status_code=201)
async def create_manual_income(
    data: ManualTransactionRequest,
    components: AppComponents = Depends(get_components),
):
    transaction = await components.manual_entry.record_income(**data.flow_kwargs())
    return {"success": True, "transaction": transaction}


@router.post("/bulk-allocate")
async def bulk_allocate(
    data: BulkAllocateRequest,
    components: AppComponents = Depends(get_components),
):
    """Allocate many transactions to one company; unknown ids are reported, not fatal."""
    result = await components.allocation.bulk_allocate(data.transaction_ids, data.company)
    return {"success": True, **result.model_dump()}


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    components: AppComponents = Depends(get_components),
):
    transaction = await components.allocation.resolve(transaction_id)
    return {"success": True, "transaction": transaction}


@router.put("/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    data: TransactionUpdateRequest,
    components: AppComponents = Depends(get_components),
):
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    transaction = await components.manual_entry.update_transaction(transaction_id, **changes)
    return {"success": True, "transaction": transaction}


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    components: AppComponents = Depends(get_components),
):
    """Delete a manual transaction. Synced transactions cannot be deleted."""
    await components.manual_entry.delete_transaction(transaction_id)
    return {"success": True}


@router.put("/{transaction_id}/allocation")
async def allocate_transaction(
    transaction_id: str,
    data: AllocationRequest,
    components: AppComponents = Depends(get_components),
):
    """Allocate to one company, or split across several when split_allocations is given."""
    if data.split_allocations:
        transaction = await components.allocation.split_allocate(
            transaction_id,
            [s.model_dump() for s in data.split_allocations],
        )
    elif data.company:
        transaction = await components.allocation.allocate(
            transaction_id, data.company, data.percentage
        )
    else:
        raise ValidationError("Either company or split_allocations is required")
    return {"success": True, "transaction": transaction}
