"""Dashboard API routes."""

from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from finsync.api.deps import get_components
from finsync.orchestrator import AppComponents

router = APIRouter()


@router.get("/summary")
async def dashboard_summary(components: AppComponents = Depends(get_components)):
    """Today's spending, total debt, balances and month-to-date spend."""
    summary = await components.reporting.dashboard_summary(date.today())
    return {"success": True, **summary}


@router.get("/category-breakdown")
async def category_breakdown(
    days: int = Query(30, ge=1, le=730),
    components: AppComponents = Depends(get_components),
):
    end = date.today()
    categories = await components.reporting.category_breakdown(end - timedelta(days=days), end)
    return {"success": True, "categories": categories}


@router.get("/spending-trends")
async def spending_trends(
    days: int = Query(7, ge=1, le=365),
    components: AppComponents = Depends(get_components),
):
    trends = await components.reporting.spending_trends(days, date.today())
    return {"success": True, "trends": trends}


@router.get("/upcoming-payments")
async def upcoming_payments(
    days: int = Query(7, ge=0, le=62),
    components: AppComponents = Depends(get_components),
):
    upcoming = await components.debts.upcoming_payments(days, date.today())
    return {
        "success": True,
        "payments": [{"due_date": due, "debt": debt} for due, debt in upcoming],
    }


@router.get("/stats")
async def transaction_stats(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    components: AppComponents = Depends(get_components),
):
    stats = await components.reporting.transaction_stats(start_date, end_date)
    return {"success": True, **stats}
