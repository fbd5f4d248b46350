"""Services package."""

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

__all__ = [
    # Storage interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "SummaryStorageInterface",
    "TokenStorageInterface",
    # Storage implementations
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsSummaryStorage",
    "GoogleSheetsTokenStorage",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemorySummaryStorage",
    "InMemoryTokenStorage",
]
