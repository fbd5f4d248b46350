"""Company API routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from finsync.api.deps import default_period, get_components, parse_company
from finsync.orchestrator import AppComponents

router = APIRouter()


@router.get("")
async def list_companies(components: AppComponents = Depends(get_components)):
    companies = await components.storage.list_companies()
    return {"success": True, "companies": companies}


@router.get("/{company}/summary")
async def company_summary(
    company: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    components: AppComponents = Depends(get_components),
):
    """Stats, category breakdown and recent transactions; defaults to the last 30 days."""
    name = parse_company(company)
    start, end = default_period(start_date, end_date)
    summary = await components.reporting.company_summary(name, start, end)
    return {"success": True, **summary}


@router.get("/{company}/report")
async def company_report(
    company: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    format: str = "json",
    components: AppComponents = Depends(get_components),
):
    name = parse_company(company)
    start, end = default_period(start_date, end_date)

    if format == "csv":
        content = await components.reporting.company_report_csv(name, start, end)
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{name.value}-report.csv"'},
        )

    summary = await components.reporting.company_summary(name, start, end, recent=1000)
    return {"success": True, **summary}
