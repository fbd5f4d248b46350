"""Sync API routes."""

from typing import Optional

from fastapi import APIRouter, Depends

from finsync.api.deps import get_components
from finsync.api.schemas import SyncRequest
from finsync.orchestrator import AppComponents

router = APIRouter()


@router.post("/sync")
async def run_sync(
    data: Optional[SyncRequest] = None,
    components: AppComponents = Depends(get_components),
):
    """
    Run a sync now.

    Provider failures do not fail the request; they are reported per
    provider in the result.
    """
    result = await components.engine.synchronize(data.providers if data else None)
    return {
        "success": True,
        "all_providers_succeeded": result.succeeded,
        "failed_providers": result.failed_providers,
        "total_records": result.total_records,
        "result": result,
    }


@router.post("/summary/daily")
async def run_daily_summary(components: AppComponents = Depends(get_components)):
    """Generate yesterday's spending summary now."""
    summary = await components.summary_job.generate()
    return {"success": True, "summary": summary}
