"""
Google Sheets Debt Ledger Adapter

The owner keeps a hand-maintained "Debts" worksheet. It has no transaction
feed; every sync reads the whole sheet as a snapshot of debts.

Headers are free-form ("Current Balance", "Min Payment"...), so they are
normalized to snake_case and a few alternative spellings are accepted.
"""

import asyncio
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import gspread
import structlog

from finsync.errors import NotFoundError, ProviderError
from finsync.models.ledger import (
    Account,
    DebtKind,
    DebtSnapshot,
    DebtSource,
    NormalizedTransaction,
    Provider,
)
from finsync.models.sync import ProviderBalance, SyncMode
from finsync.providers.base import ProviderAdapter
from finsync.services.storage.google_sheets import GoogleSheetsClient


logger = structlog.get_logger()


def normalize_header(header: str) -> str:
    """'Current Balance' -> 'current_balance'"""
    header = re.sub(r"\s+", "_", header.strip().lower())
    return re.sub(r"[^a-z0-9_]", "", header)


def parse_amount(value: Any) -> Decimal:
    """Parse a spreadsheet money cell; blanks and junk read as zero."""
    text = str(value or "").replace("$", "").replace(",", "").replace("%", "").strip()
    if not text:
        return Decimal("0.00")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return Decimal("0.00")
    return amount if amount.is_finite() else Decimal("0.00")


def parse_debt_kind(value: str) -> DebtKind:
    key = normalize_header(value or "credit_card")
    try:
        return DebtKind(key)
    except ValueError:
        return DebtKind.OTHER


def row_to_debt_snapshot(record: dict[str, str]) -> Optional[DebtSnapshot]:
    """Build a snapshot from one normalized row. Rows without a name are skipped."""
    name = (record.get("creditor") or record.get("name") or "").strip()
    if not name:
        return None

    due_date = (record.get("due_date") or "").strip() or None
    due_date_day = None
    if due_date and due_date.isdigit() and 1 <= int(due_date) <= 31:
        due_date_day = int(due_date)

    credit_limit = parse_amount(record.get("credit_limit") or record.get("limit"))
    return DebtSnapshot(
        name=name,
        kind=parse_debt_kind(record.get("type", "")),
        source=DebtSource.GOOGLE_SHEETS,
        current_balance=parse_amount(record.get("current_balance") or record.get("balance")),
        credit_limit=credit_limit if credit_limit > 0 else None,
        minimum_payment=parse_amount(record.get("minimum_payment") or record.get("min_payment")),
        apr=parse_amount(record.get("apr") or record.get("interest_rate")),
        due_date=due_date,
        due_date_day=due_date_day,
    )


class GoogleSheetsLedgerAdapter(ProviderAdapter):
    """Debt snapshots read from the owner's spreadsheet."""

    provider = Provider.GOOGLE_SHEETS
    sync_mode = SyncMode.LEDGER
    supports_transactions = False

    def __init__(self, client: GoogleSheetsClient, sheet_name: Optional[str] = None):
        self._client = client
        self._sheet_name = sheet_name or client.settings.ledger_debts_sheet_name

    async def fetch_transactions(
        self,
        account: Account,
        start: date,
        end: date,
    ) -> list[NormalizedTransaction]:
        return []

    async def fetch_balance(self, account: Account) -> Optional[ProviderBalance]:
        return None

    def _read_rows(self) -> list[list[str]]:
        try:
            sheet = self._client.get_worksheet(self._sheet_name)
        except NotFoundError:
            logger.warning("ledger_sheet_missing", sheet=self._sheet_name)
            return []
        return sheet.get_all_values()

    async def fetch_debts(self, accounts: list[Account]) -> list[DebtSnapshot]:
        try:
            rows = await asyncio.to_thread(self._read_rows)
        except gspread.exceptions.GSpreadException as e:
            raise ProviderError(self.provider.value, f"failed to read {self._sheet_name}: {e}")

        if not rows:
            return []

        headers = [normalize_header(h) for h in rows[0]]
        snapshots = []
        for row in rows[1:]:
            record = {
                header: row[index] if index < len(row) else ""
                for index, header in enumerate(headers)
            }
            snapshot = row_to_debt_snapshot(record)
            if snapshot is not None:
                snapshots.append(snapshot)

        logger.info("ledger_debts_read", sheet=self._sheet_name, count=len(snapshots))
        return snapshots
