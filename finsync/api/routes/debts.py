"""Debt API routes."""

from fastapi import APIRouter, Depends

from finsync.api.deps import get_components, parse_uuid
from finsync.api.schemas import DebtPaymentRequest, DebtUpdateRequest
from finsync.orchestrator import AppComponents

router = APIRouter()


@router.get("")
async def list_debts(components: AppComponents = Depends(get_components)):
    """Active debts, largest balance first, with utilization and payoff progress."""
    debts = await components.storage.list_debts(active_only=True)
    return {
        "success": True,
        "debts": [
            {
                **debt.model_dump(mode="json"),
                "utilization": components.debts.utilization(debt),
                "payoff_progress": components.debts.payoff_progress(debt),
            }
            for debt in debts
        ],
        "total_debt": await components.debts.total_debt(),
        "by_kind": await components.debts.debt_by_kind(),
    }


@router.post("/{debt_id}/payments")
async def record_payment(
    debt_id: str,
    data: DebtPaymentRequest,
    components: AppComponents = Depends(get_components),
):
    debt, payment = await components.debts.record_payment(
        parse_uuid(debt_id, "debt id"), data.amount, data.note
    )
    return {"success": True, "debt": debt, "payment": payment}


@router.put("/{source}/{name}")
async def update_debt(
    source: str,
    name: str,
    data: DebtUpdateRequest,
    components: AppComponents = Depends(get_components),
):
    """Overwrite a debt's figures by hand. Debts are addressed by source and name."""
    debt = await components.debts.update_figures(name, source, **data.model_dump(exclude_none=True))
    return {"success": True, "debt": debt}
