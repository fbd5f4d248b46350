"""
Data Models Package

This package contains all Pydantic models used in FinSync.
All data flowing through the system must conform to these schemas.
"""

from finsync.models.ledger import (
    ALLOCATION_TARGETS,
    UNALLOCATED,
    Account,
    AccountKind,
    BudgetCategory,
    BudgetPeriod,
    Company,
    CompanyAddress,
    CompanyName,
    CompanyType,
    Debt,
    DebtKind,
    DebtPayment,
    DebtSnapshot,
    DebtSource,
    Location,
    NormalizedTransaction,
    Provider,
    SplitAllocation,
    Transaction,
    TransactionFilter,
    TransactionType,
    compute_split_amounts,
    default_companies,
    to_money,
    utc_now,
)
from finsync.models.sync import (
    BulkAllocationResult,
    CachedToken,
    DailySummary,
    OAuthToken,
    ProviderBalance,
    ProviderSyncResult,
    SyncMode,
    SyncResult,
)
from finsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "ALLOCATION_TARGETS",
    "UNALLOCATED",
    "Account",
    "AccountKind",
    "BudgetCategory",
    "BudgetPeriod",
    "Company",
    "CompanyAddress",
    "CompanyName",
    "CompanyType",
    "Debt",
    "DebtKind",
    "DebtPayment",
    "DebtSnapshot",
    "DebtSource",
    "Location",
    "NormalizedTransaction",
    "Provider",
    "SplitAllocation",
    "Transaction",
    "TransactionFilter",
    "TransactionType",
    "compute_split_amounts",
    "default_companies",
    "to_money",
    "utc_now",
    # Sync models
    "BulkAllocationResult",
    "CachedToken",
    "DailySummary",
    "OAuthToken",
    "ProviderBalance",
    "ProviderSyncResult",
    "SyncMode",
    "SyncResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
