"""
Audit Models for FinSync

Every significant action in the system is logged for audit purposes:
syncs, upserts, allocations, payments, account links.

DESIGN DECISION: The audit trail is append-only; events are written once and
never edited.
All events of one sync run share a correlation id.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finsync.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Reconciliation
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    PROVIDER_SYNC_SUCCEEDED = "provider_sync_succeeded"
    PROVIDER_SYNC_FAILED = "provider_sync_failed"
    ACCOUNT_SYNC_FAILED = "account_sync_failed"
    TRANSACTION_UPSERTED = "transaction_upserted"
    DUPLICATE_KEY_IGNORED = "duplicate_key_ignored"
    BALANCE_UPDATED = "balance_updated"
    DEBT_UPSERTED = "debt_upserted"

    # Allocation
    TRANSACTION_ALLOCATED = "transaction_allocated"
    TRANSACTION_SPLIT = "transaction_split"
    BULK_ALLOCATION = "bulk_allocation"

    # Manual bookkeeping
    MANUAL_TRANSACTION_CREATED = "manual_transaction_created"
    MANUAL_TRANSACTION_DELETED = "manual_transaction_deleted"
    DEBT_PAYMENT_RECORDED = "debt_payment_recorded"
    DEBT_UPDATED = "debt_updated"
    STATEMENT_IMPORTED = "statement_imported"

    # Account linking
    ACCOUNT_LINKED = "account_linked"
    ACCOUNT_REMOVED = "account_removed"
    OAUTH_CONNECTED = "oauth_connected"
    OAUTH_DISCONNECTED = "oauth_disconnected"

    # Jobs
    DAILY_SUMMARY_GENERATED = "daily_summary_generated"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'debt')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one sync run)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.sync_started(correlation_id, ["plaid"])
        event = AuditEventBuilder.transaction_split(txn_id, splits)
    """

    @staticmethod
    def sync_started(correlation_id: UUID, providers: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            entity_type="sync",
            correlation_id=correlation_id,
            description=f"Sync started for {len(providers)} providers",
            details={"providers": providers},
        )

    @staticmethod
    def sync_completed(
        correlation_id: UUID,
        total_records: int,
        failed_providers: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            severity=AuditSeverity.WARNING if failed_providers else AuditSeverity.INFO,
            entity_type="sync",
            correlation_id=correlation_id,
            description=f"Sync completed: {total_records} records",
            details={
                "total_records": total_records,
                "failed_providers": failed_providers,
            },
        )

    @staticmethod
    def provider_sync_succeeded(
        provider: str,
        records: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROVIDER_SYNC_SUCCEEDED,
            entity_type="provider",
            entity_id=provider,
            correlation_id=correlation_id,
            description=f"{provider} synced {records} records",
            details={"records_processed": records},
        )

    @staticmethod
    def provider_sync_failed(
        provider: str,
        error_message: str,
        correlation_id: UUID,
        accounts_failed: Optional[list[str]] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROVIDER_SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="provider",
            entity_id=provider,
            correlation_id=correlation_id,
            description=f"{provider} sync failed",
            error_message=error_message,
            details={"accounts_failed": accounts_failed or []},
        )

    @staticmethod
    def account_sync_failed(
        account_id: str,
        provider: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_SYNC_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account sync failed at {provider}",
            error_message=error_message,
            details={"provider": provider},
        )

    @staticmethod
    def transaction_upserted(
        provider_transaction_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPSERTED,
            severity=AuditSeverity.DEBUG,
            entity_type="transaction",
            entity_id=provider_transaction_id,
            correlation_id=correlation_id,
            description="Transaction upserted",
            details={"transaction_id": transaction_id},
        )

    @staticmethod
    def duplicate_key_ignored(
        provider_transaction_id: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_KEY_IGNORED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=provider_transaction_id,
            correlation_id=correlation_id,
            description="Concurrent insert of an existing key ignored",
        )

    @staticmethod
    def balance_updated(
        account_id: str,
        current: str,
        available: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_UPDATED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance updated: {current}",
            details={"current": current, "available": available},
        )

    @staticmethod
    def debt_upserted(
        debt_id: str,
        name: str,
        balance: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEBT_UPSERTED,
            entity_type="debt",
            entity_id=debt_id,
            correlation_id=correlation_id,
            description=f"Debt upserted: {name}",
            details={"current_balance": balance},
        )

    @staticmethod
    def transaction_allocated(
        transaction_id: str,
        company: str,
        percentage: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ALLOCATED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Allocated to {company} ({percentage}%)",
            details={"company": company, "percentage": percentage},
            is_user_action=True,
        )

    @staticmethod
    def transaction_split(
        transaction_id: str,
        splits: list[dict],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_SPLIT,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Split across {len(splits)} companies",
            details={"splits": splits},
            is_user_action=True,
        )

    @staticmethod
    def bulk_allocation(
        company: str,
        requested: int,
        modified: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BULK_ALLOCATION,
            entity_type="transaction",
            description=f"Bulk allocated {modified}/{requested} transactions to {company}",
            details={"company": company, "requested": requested, "modified": modified},
            is_user_action=True,
        )

    @staticmethod
    def manual_transaction_created(
        transaction_id: str,
        type_: str,
        amount: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Manual {type_} recorded: ${amount}",
            details={"type": type_, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def manual_transaction_deleted(transaction_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Manual transaction deleted",
            is_user_action=True,
        )

    @staticmethod
    def debt_payment_recorded(
        debt_id: str,
        amount: str,
        new_balance: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEBT_PAYMENT_RECORDED,
            entity_type="debt",
            entity_id=debt_id,
            description=f"Payment of ${amount} recorded",
            details={"amount": amount, "new_balance": new_balance},
            is_user_action=True,
        )

    @staticmethod
    def debt_updated(debt_id: str, name: str, fields: dict) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEBT_UPDATED,
            entity_type="debt",
            entity_id=debt_id,
            description=f"Debt figures updated: {name}",
            details=fields,
            is_user_action=True,
        )

    @staticmethod
    def statement_imported(account_id: str, imported: int, total: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_IMPORTED,
            entity_type="account",
            entity_id=account_id,
            description=f"Imported {imported} of {total} statement rows",
            details={"imported": imported, "total": total},
            is_user_action=True,
        )

    @staticmethod
    def account_linked(
        account_id: str,
        provider: str,
        institution_name: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_LINKED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account linked: {institution_name} via {provider}",
            details={"provider": provider},
            is_user_action=True,
        )

    @staticmethod
    def account_removed(account_id: str, provider: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_REMOVED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account removed from {provider}",
            details={"provider": provider},
            is_user_action=True,
        )

    @staticmethod
    def oauth_connected(realm_id: str, provider: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OAUTH_CONNECTED,
            entity_type="oauth_token",
            entity_id=realm_id,
            description=f"{provider} connected",
            is_user_action=True,
        )

    @staticmethod
    def oauth_disconnected(realm_id: str, provider: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OAUTH_DISCONNECTED,
            entity_type="oauth_token",
            entity_id=realm_id,
            description=f"{provider} disconnected",
            is_user_action=True,
        )

    @staticmethod
    def daily_summary_generated(
        summary_date: str,
        total_spent: str,
        transaction_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DAILY_SUMMARY_GENERATED,
            entity_type="daily_summary",
            entity_id=summary_date,
            description=f"Daily summary for {summary_date}: ${total_spent}",
            details={"total_spent": total_spent, "transaction_count": transaction_count},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
