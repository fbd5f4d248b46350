"""Tests for the Google Sheets storage backend against an in-memory spreadsheet."""

import pytest
from decimal import Decimal

from conftest import account, normalized
from finsync.config import GoogleSheetsSettings
from finsync.errors import CorruptRecordError, DuplicateKeyError
from finsync.models.ledger import DebtKind, DebtSnapshot, DebtSource, Transaction
from finsync.services.storage import GoogleSheetsClient, GoogleSheetsLedgerStorage
from finsync.services.storage.google_sheets import TRANSACTION_COLUMNS, model_to_row


class MemoryWorksheet:
    """The slice of gspread.Worksheet the storage uses."""

    def __init__(self, columns):
        self.rows = [list(columns)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append(list(row))

    def update(self, values, range_name, value_input_option=None):
        index = int(range_name.lstrip("A")) - 1
        self.rows[index] = list(values[0])

    def delete_rows(self, index):
        del self.rows[index - 1]


class MemorySheetsClient(GoogleSheetsClient):
    def __init__(self):
        super().__init__(GoogleSheetsSettings.model_construct(
            credentials_path="credentials.json", spreadsheet_id="sheet-1",
        ))
        self.worksheets: dict[str, MemoryWorksheet] = {}

    def get_worksheet(self, title, columns=None, rows=1000):
        if title not in self.worksheets:
            self.worksheets[title] = MemoryWorksheet(columns or [])
        return self.worksheets[title]


@pytest.fixture
def client():
    return MemorySheetsClient()


@pytest.fixture
def sheets(client):
    return GoogleSheetsLedgerStorage(client)


def corrupt_transaction_row(key: str) -> list:
    """A transactions row that carries `key` but fails to parse."""
    row = model_to_row(Transaction.from_normalized(normalized(key)), TRANSACTION_COLUMNS)
    row[TRANSACTION_COLUMNS.index("amount")] = "not-a-number"
    return row


class TestSheetUpserts:
    """Tests for keyed writes."""

    async def test_upsert_rewrites_existing_row(self, sheets, client):
        """Test a re-sync replaces the row instead of appending."""
        await sheets.upsert_transaction(normalized("txn_1", amount="42.50"))
        stored = await sheets.upsert_transaction(normalized("txn_1", amount="45.00"))

        rows = client.worksheets["Transactions"].rows
        assert len(rows) == 2
        assert stored.amount == Decimal("45.00")
        assert (await sheets.get_transaction_by_provider_id("txn_1")).amount == Decimal("45.00")

    async def test_unreadable_row_blocks_upsert(self, sheets, client):
        """Test an unparseable row with the same key fails the write instead of duplicating it."""
        await sheets.upsert_transaction(normalized("txn_other"))
        client.worksheets["Transactions"].rows.append(corrupt_transaction_row("txn_1"))

        with pytest.raises(CorruptRecordError, match="txn_1"):
            await sheets.upsert_transaction(normalized("txn_1"))

        keys = [row[TRANSACTION_COLUMNS.index("provider_transaction_id")]
                for row in client.worksheets["Transactions"].rows[1:]]
        assert keys == ["txn_other", "txn_1"]

    async def test_unreadable_row_blocks_create(self, sheets, client):
        """Test manual creation does not add a second row for an unreadable key."""
        client.get_worksheet("Transactions", TRANSACTION_COLUMNS).rows.append(
            corrupt_transaction_row("manual_1")
        )
        transaction = Transaction.from_normalized(normalized("manual_1"))

        with pytest.raises(CorruptRecordError):
            await sheets.create_transaction(transaction)
        assert len(client.worksheets["Transactions"].rows) == 2

    async def test_unrelated_unreadable_row_is_skipped(self, sheets, client):
        """Test a broken row for another key does not block writes or listings."""
        client.get_worksheet("Transactions", TRANSACTION_COLUMNS).rows.append(
            corrupt_transaction_row("txn_broken")
        )

        await sheets.upsert_transaction(normalized("txn_1"))

        items, total = await sheets.list_transactions()
        assert total == 1
        assert items[0].provider_transaction_id == "txn_1"

    async def test_create_duplicate_key(self, sheets):
        """Test creating an existing key raises DuplicateKeyError."""
        transaction = Transaction.from_normalized(normalized("txn_1"))
        await sheets.create_transaction(transaction)
        with pytest.raises(DuplicateKeyError):
            await sheets.create_transaction(Transaction.from_normalized(normalized("txn_1")))

    async def test_debt_keyed_by_name_and_source(self, sheets):
        """Test the same name from two sources is two debts."""
        for source in (DebtSource.GOOGLE_SHEETS, DebtSource.MANUAL):
            await sheets.upsert_debt(DebtSnapshot(
                name="Chase", kind=DebtKind.CREDIT_CARD, source=source, current_balance=Decimal("10"),
            ))
        await sheets.upsert_debt(DebtSnapshot(
            name="Chase", kind=DebtKind.CREDIT_CARD, source=DebtSource.MANUAL, current_balance=Decimal("25"),
        ))

        debts = await sheets.list_debts()
        assert sorted((d.source.value, d.current_balance) for d in debts) == [
            ("google_sheets", Decimal("10.00")),
            ("manual", Decimal("25.00")),
        ]

    async def test_account_upsert_keeps_identity(self, sheets):
        """Test re-linking an account keeps its internal id."""
        first = await sheets.upsert_account(account("paypal_1"))
        second = await sheets.upsert_account(account("paypal_1"))
        assert second.id == first.id
        assert len(await sheets.list_accounts()) == 1
