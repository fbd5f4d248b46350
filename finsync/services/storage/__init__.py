"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the production backend; the in-memory backend serves tests
and unconfigured setups.
"""

from finsync.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    SummaryStorageInterface,
    TokenStorageInterface,
)
from finsync.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemorySummaryStorage,
    InMemoryTokenStorage,
)
from finsync.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSummaryStorage,
    GoogleSheetsTokenStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "SummaryStorageInterface",
    "TokenStorageInterface",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemorySummaryStorage",
    "InMemoryTokenStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsSummaryStorage",
    "GoogleSheetsTokenStorage",
]
