"""Read-only reporting over the stored ledger."""

from finsync.reporting.aggregates import ReportingService

__all__ = ["ReportingService"]
