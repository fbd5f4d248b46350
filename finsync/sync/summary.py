"""
Daily Summary Job

Once a day, record what was spent: total, count, top category and average.
Only debit transactions count as spending.

The job is read-only with respect to transactions; it only appends to the
summary store.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import structlog

from finsync.audit.logger import AuditLogger
from finsync.models.ledger import TransactionFilter, TransactionType, to_money
from finsync.models.sync import DailySummary
from finsync.services.storage.interface import (
    LedgerStorageInterface,
    SummaryStorageInterface,
)


logger = structlog.get_logger()


class DailySummaryJob:
    def __init__(
        self,
        storage: LedgerStorageInterface,
        summary_storage: SummaryStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._summaries = summary_storage
        self._audit = audit_logger or AuditLogger()

    async def build(self, for_date: date) -> DailySummary:
        """Compute the summary for one day without storing it."""
        spending = await self._storage.all_transactions(TransactionFilter(
            date_from=for_date,
            date_to=for_date,
            type=TransactionType.DEBIT,
        ))

        total = sum((t.amount for t in spending), Decimal("0.00"))
        by_category: dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))
        for transaction in spending:
            by_category[transaction.category] += transaction.amount

        top_category, top_amount = None, Decimal("0.00")
        if by_category:
            top_category, top_amount = max(by_category.items(), key=lambda item: item[1])

        return DailySummary(
            summary_date=for_date,
            total_spent=total,
            transaction_count=len(spending),
            top_category=top_category,
            top_category_amount=top_amount,
            average_transaction=to_money(total / len(spending)) if spending else Decimal("0.00"),
        )

    async def generate(self, for_date: Optional[date] = None) -> DailySummary:
        """Build and store the summary for `for_date` (default: yesterday, the last complete day)."""
        for_date = for_date or (date.today() - timedelta(days=1))
        summary = await self.build(for_date)
        await self._summaries.append_daily_summary(summary)

        await self._audit.log_daily_summary_generated(
            for_date.isoformat(),
            str(summary.total_spent),
            summary.transaction_count,
        )
        logger.info(
            "daily_summary_generated",
            summary_date=for_date.isoformat(),
            total_spent=str(summary.total_spent),
            transactions=summary.transaction_count,
        )
        return summary
