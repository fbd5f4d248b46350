"""Reconciliation engine, scheduler and daily summary."""

from finsync.sync.engine import ReconciliationEngine
from finsync.sync.scheduler import SyncScheduler
from finsync.sync.summary import DailySummaryJob

__all__ = [
    "DailySummaryJob",
    "ReconciliationEngine",
    "SyncScheduler",
]
