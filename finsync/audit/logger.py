"""
Audit Logger

DESIGN DECISION: Syncs, allocations, payments and account links all leave
an audit trail. The audit logger:
- Logs locally first, then persists to storage when one is configured
- Gracefully handles failures (a failed audit write never fails a sync)
- Supports correlation IDs to trace all events of one sync run
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finsync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finsync.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and operator visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Debug events are too chatty to persist
        if self._storage and event.severity != AuditSeverity.DEBUG:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # ---- Reconciliation ----------------------------------------------------

    async def log_sync_started(self, correlation_id: UUID, providers: list[str]) -> None:
        await self.log(AuditEventBuilder.sync_started(correlation_id, providers))

    async def log_sync_completed(
        self,
        correlation_id: UUID,
        total_records: int,
        failed_providers: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.sync_completed(
            correlation_id=correlation_id,
            total_records=total_records,
            failed_providers=failed_providers,
        ))

    async def log_provider_sync_succeeded(
        self,
        provider: str,
        records: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.provider_sync_succeeded(provider, records, correlation_id))

    async def log_provider_sync_failed(
        self,
        provider: str,
        error_message: str,
        correlation_id: UUID,
        accounts_failed: Optional[list[str]] = None,
    ) -> None:
        """Log a provider-level sync failure."""
        await self.log(AuditEventBuilder.provider_sync_failed(
            provider=provider,
            error_message=error_message,
            correlation_id=correlation_id,
            accounts_failed=accounts_failed,
        ))

    async def log_account_sync_failed(
        self,
        account_id: str,
        provider: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_sync_failed(
            account_id=account_id,
            provider=provider,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_transaction_upserted(
        self,
        provider_transaction_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_upserted(
            provider_transaction_id, transaction_id, correlation_id
        ))

    async def log_duplicate_key_ignored(
        self,
        provider_transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.duplicate_key_ignored(provider_transaction_id, correlation_id))

    async def log_balance_updated(
        self,
        account_id: str,
        current: str,
        available: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_updated(account_id, current, available, correlation_id))

    async def log_debt_upserted(
        self,
        debt_id: str,
        name: str,
        balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.debt_upserted(debt_id, name, balance, correlation_id))

    # ---- Allocation and bookkeeping ------------------------------------------

    async def log_transaction_allocated(
        self,
        transaction_id: str,
        company: str,
        percentage: str,
    ) -> None:
        """Log a single-company allocation."""
        await self.log(AuditEventBuilder.transaction_allocated(transaction_id, company, percentage))

    async def log_transaction_split(self, transaction_id: str, splits: list[dict]) -> None:
        """Log a split allocation."""
        await self.log(AuditEventBuilder.transaction_split(transaction_id, splits))

    async def log_bulk_allocation(self, company: str, requested: int, modified: int) -> None:
        await self.log(AuditEventBuilder.bulk_allocation(company, requested, modified))

    async def log_manual_transaction_created(
        self,
        transaction_id: str,
        type_: str,
        amount: str,
    ) -> None:
        await self.log(AuditEventBuilder.manual_transaction_created(transaction_id, type_, amount))

    async def log_manual_transaction_deleted(self, transaction_id: str) -> None:
        await self.log(AuditEventBuilder.manual_transaction_deleted(transaction_id))

    async def log_debt_payment_recorded(
        self,
        debt_id: str,
        amount: str,
        new_balance: str,
    ) -> None:
        """Log a debt payment."""
        await self.log(AuditEventBuilder.debt_payment_recorded(debt_id, amount, new_balance))

    async def log_debt_updated(self, debt_id: str, name: str, fields: dict) -> None:
        await self.log(AuditEventBuilder.debt_updated(debt_id, name, fields))

    async def log_statement_imported(self, account_id: str, imported: int, total: int) -> None:
        await self.log(AuditEventBuilder.statement_imported(account_id, imported, total))

    # ---- Account linking -----------------------------------------------------

    async def log_account_linked(
        self,
        account_id: str,
        provider: str,
        institution_name: str,
    ) -> None:
        await self.log(AuditEventBuilder.account_linked(account_id, provider, institution_name))

    async def log_account_removed(self, account_id: str, provider: str) -> None:
        await self.log(AuditEventBuilder.account_removed(account_id, provider))

    async def log_oauth_connected(self, realm_id: str, provider: str) -> None:
        await self.log(AuditEventBuilder.oauth_connected(realm_id, provider))

    async def log_oauth_disconnected(self, realm_id: str, provider: str) -> None:
        await self.log(AuditEventBuilder.oauth_disconnected(realm_id, provider))

    # ---- Jobs and errors -----------------------------------------------------

    async def log_daily_summary_generated(
        self,
        summary_date: str,
        total_spent: str,
        transaction_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.daily_summary_generated(
            summary_date, total_spent, transaction_count
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a sync run or user action and pass it through
    all subsequent operations.
    """
    return uuid4()
