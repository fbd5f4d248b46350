"""Tests for the manual entry and account linking flows."""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import httpx

from conftest import FakeAdapter, account, normalized
from finsync.config import PlaidSettings, QuickBooksSettings, SBASettings
from finsync.errors import (
    NotFoundError,
    ProviderAuthError,
    ProviderNotSupportedError,
    ValidationError,
)
from finsync.models.audit import AuditEventType
from finsync.models.ledger import AccountKind, DebtSource, Provider, TransactionType
from finsync.models.sync import OAuthToken
from finsync.orchestrator import AccountLinkFlow, ManualEntryFlow
from finsync.providers import PlaidAdapter, ProviderRegistry, QuickBooksAdapter, SBALoanAdapter


@pytest.fixture
def manual(storage, audit_logger):
    return ManualEntryFlow(storage, audit_logger=audit_logger)


class TestManualEntry:
    """Tests for manually recorded transactions."""

    async def test_record_expense(self, manual, storage):
        """Test a manual expense is a debit under the manual provider."""
        transaction = await manual.record_expense(
            "18.40",
            "Parking downtown",
            category="Transportation",
            transaction_date=date(2024, 3, 2),
            company="RecruitCloud",
            tax_deductible=True,
        )

        assert transaction.provider == Provider.MANUAL
        assert transaction.type == TransactionType.DEBIT
        assert transaction.amount == Decimal("18.40")
        assert transaction.provider_transaction_id.startswith("manual_")
        assert transaction.company == "RecruitCloud"
        assert transaction.tax_deductible is True
        assert await storage.get_transaction(transaction.id) is not None

    async def test_record_income_with_split(self, manual):
        """Test income can be split on entry."""
        transaction = await manual.record_income("1000", "Consulting", split_allocations=[
            {"company": "ClayGenius", "percentage": 75},
            {"company": "DataLabs", "percentage": 25},
        ])

        assert transaction.type == TransactionType.CREDIT
        assert transaction.category == "Income"
        assert transaction.company == "ClayGenius"
        assert [s.amount for s in transaction.split_allocations] == [Decimal("750.00"), Decimal("250.00")]

    @pytest.mark.parametrize("amount", [0, "-10", "ten", "Infinity", "NaN", "1e40"])
    async def test_amount_must_be_positive(self, manual, amount):
        """Test non-positive, non-numeric and non-finite amounts are rejected."""
        with pytest.raises(ValidationError):
            await manual.record_expense(amount, "Lunch")

    async def test_bad_split_saves_nothing(self, manual, storage):
        """Test an invalid split rejects the whole entry."""
        with pytest.raises(ValidationError):
            await manual.record_expense("50", "Dinner", split_allocations=[
                {"company": "ClayGenius", "percentage": 50},
            ])
        assert (await storage.list_transactions())[1] == 0

    async def test_unknown_company(self, manual):
        """Test an unknown company is rejected."""
        with pytest.raises(ValidationError, match="Unknown company"):
            await manual.record_expense("50", "Dinner", company="Acme")

    async def test_update_manual_amount_recomputes_split(self, manual):
        """Test editing a manual amount keeps split amounts consistent."""
        transaction = await manual.record_expense("100", "Team lunch", split_allocations=[
            {"company": "DataLabs", "percentage": 50},
            {"company": "Personal", "percentage": 50},
        ])

        updated = await manual.update_transaction(transaction.id, amount="60", notes="Split with the team")

        assert updated.amount == Decimal("60.00")
        assert updated.notes == "Split with the team"
        assert [s.amount for s in updated.split_allocations] == [Decimal("30.00"), Decimal("30.00")]

    @pytest.mark.parametrize("amount", ["Infinity", "abc"])
    async def test_update_rejects_unreadable_amount(self, manual, amount):
        """Test an edit to a non-finite or non-numeric amount is a validation error."""
        transaction = await manual.record_expense("10", "Taxi")
        with pytest.raises(ValidationError):
            await manual.update_transaction(transaction.id, amount=amount)

    async def test_synced_transaction_only_bookkeeping_fields(self, manual, storage):
        """Test provider-owned fields of synced transactions are not editable."""
        synced = await storage.upsert_transaction(normalized("txn_1"))

        updated = await manual.update_transaction(synced.id, business_purpose="Client gift")
        assert updated.business_purpose == "Client gift"

        with pytest.raises(ValidationError, match="not editable"):
            await manual.update_transaction(synced.id, amount="1.00")

    async def test_delete_manual_only(self, manual, storage, audit_storage):
        """Test manual transactions can be deleted and synced ones cannot."""
        entry = await manual.record_expense("12", "Coffee")
        synced = await storage.upsert_transaction(normalized("txn_1"))

        assert await manual.delete_transaction(entry.id) is True
        with pytest.raises(ValidationError, match="Only manual transactions"):
            await manual.delete_transaction(synced.id)

        assert await storage.get_transaction(synced.id) is not None
        types = [e.event_type for e in audit_storage._events]
        assert AuditEventType.MANUAL_TRANSACTION_DELETED in types

    async def test_delete_unknown(self, manual):
        """Test deleting an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await manual.delete_transaction("manual_missing")


def plaid_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/item/public_token/exchange":
        return httpx.Response(200, json={"access_token": "access-sandbox-1", "item_id": "item-1"})
    if request.url.path == "/accounts/get":
        return httpx.Response(200, json={"accounts": [
            {
                "account_id": "acc_chk",
                "name": "Business Checking",
                "type": "depository",
                "subtype": "checking",
                "mask": "0000",
                "balances": {"current": 1500.25, "available": 1400, "iso_currency_code": "USD"},
            },
            {
                "account_id": "acc_cc",
                "name": "Business Card",
                "type": "credit",
                "subtype": "credit card",
                "balances": {"current": 320, "limit": 5000},
            },
        ]})
    return httpx.Response(200, json={})


class TestAccountLinkFlow:
    """Tests for linking and unlinking provider accounts."""

    async def test_link_plaid_stores_every_account(self, storage, audit_storage, audit_logger):
        """Test a public token exchange stores each account with its credential."""
        registry = ProviderRegistry([PlaidAdapter(
            PlaidSettings(client_id="cid", secret="shh"),
            transport=httpx.MockTransport(plaid_handler),
        )])
        flow = AccountLinkFlow(storage, registry, audit_logger)

        linked = await flow.link_plaid("public-sandbox-1", "Chase")

        assert [a.provider_account_id for a in linked] == ["acc_chk", "acc_cc"]
        checking = await storage.get_account_by_provider_id("acc_chk")
        assert checking.credential == "access-sandbox-1"
        assert checking.institution_name == "Chase"
        assert checking.available_balance == Decimal("1400.00")
        card = await storage.get_account_by_provider_id("acc_cc")
        assert card.kind == AccountKind.CREDIT
        assert card.credit_limit == Decimal("5000.00")
        linked_events = [e for e in audit_storage._events if e.event_type == AuditEventType.ACCOUNT_LINKED]
        assert len(linked_events) == 2

    async def test_link_plaid_requires_token(self, storage):
        """Test an empty public token is rejected before any call."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(ValidationError):
            await flow.link_plaid("", "Chase")

    async def test_unconfigured_provider(self, storage):
        """Test linking a provider that is not configured."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(ProviderNotSupportedError):
            await flow.connect_paypal()

    async def test_quickbooks_oauth_callback(self, storage, token_storage):
        """Test the callback persists the token before the account."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/tokens/bearer"):
                return httpx.Response(200, json={"access_token": "a1", "refresh_token": "r1", "expires_in": 3600})
            return httpx.Response(200, json={"CompanyInfo": {"CompanyName": "Clay Genius LLC"}})

        adapter = QuickBooksAdapter(
            QuickBooksSettings(client_id="c", client_secret="s", redirect_uri="http://localhost/cb"),
            token_storage,
            transport=httpx.MockTransport(handler),
        )
        flow = AccountLinkFlow(storage, ProviderRegistry([adapter]))

        linked = await flow.complete_quickbooks_oauth("code-1", "realm-9")

        assert linked.name == "Clay Genius LLC"
        assert linked.credential == "realm-9"
        assert (await token_storage.get_token("realm-9")).access_token == "a1"

    async def test_sba_loan_falls_back_to_manual_entry(self, storage):
        """Test an unreachable registry still tracks the loan with a placeholder."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            return httpx.Response(404)

        adapter = SBALoanAdapter(
            SBASettings(client_id="i", client_secret="s", api_key="k"),
            transport=httpx.MockTransport(handler),
        )
        flow = AccountLinkFlow(storage, ProviderRegistry([adapter]))

        linked, debt = await flow.add_sba_loan("1234567890", company="DataLabs")

        assert linked.provider_account_id == "1234567890"
        assert linked.kind == AccountKind.LOAN
        assert debt.source == DebtSource.SBA_API
        assert debt.current_balance == Decimal("0.00")
        assert debt.metadata["manual"] is True

    async def test_sba_loan_number_validated(self, storage):
        """Test a malformed loan number is rejected."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(ValidationError):
            await flow.add_sba_loan("12-34")

    async def test_remove_account_soft_deletes(self, storage, audit_storage, audit_logger):
        """Test removal revokes the link and keeps history."""
        adapter = FakeAdapter(Provider.PLAID)
        flow = AccountLinkFlow(storage, ProviderRegistry([adapter]), audit_logger)
        stored = await storage.upsert_account(
            account("acc_chk", Provider.PLAID, AccountKind.CHECKING, "access-1")
        )
        await storage.upsert_transaction(normalized("t1", account_id="acc_chk", provider=Provider.PLAID))

        removed = await flow.remove_account(str(stored.id))

        assert removed.is_active is False
        assert adapter.removed_credentials == ["access-1"]
        assert (await storage.list_transactions())[1] == 1
        assert (await storage.list_accounts(active_only=False))[0].is_active is False
        assert any(e.event_type == AuditEventType.ACCOUNT_REMOVED for e in audit_storage._events)

    async def test_remove_by_provider_account_id(self, storage):
        """Test the provider account id is also accepted."""
        await storage.upsert_account(account("paypal_1"))
        flow = AccountLinkFlow(storage, ProviderRegistry())
        removed = await flow.remove_account("paypal_1")
        assert removed.provider_account_id == "paypal_1"

    async def test_remove_unknown_account(self, storage):
        """Test removing an unknown account raises NotFoundError."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(NotFoundError):
            await flow.remove_account("nope")


def connected_quickbooks(handler, token_storage) -> QuickBooksAdapter:
    return QuickBooksAdapter(
        QuickBooksSettings(client_id="c", client_secret="s", redirect_uri="http://localhost/cb"),
        token_storage,
        transport=httpx.MockTransport(handler),
    )


async def save_live_token(token_storage, realm_id="realm-9"):
    await token_storage.save_token(OAuthToken(
        realm_id=realm_id,
        access_token="live",
        refresh_token="r1",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    ))


class TestQuickBooksReports:
    """Tests for the Profit & Loss report."""

    async def test_profit_and_loss_for_period(self, storage, token_storage):
        """Test the report is requested for the company and period and returned as is."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "Header": {"ReportName": "ProfitAndLoss", "StartPeriod": "2024-01-01"},
                "Rows": {"Row": []},
            })

        await save_live_token(token_storage)
        flow = AccountLinkFlow(storage, ProviderRegistry([connected_quickbooks(handler, token_storage)]))

        report = await flow.quickbooks_profit_and_loss("realm-9", date(2024, 1, 1), date(2024, 3, 31))

        assert report["Header"]["ReportName"] == "ProfitAndLoss"
        assert requests[0].url.path == "/v3/company/realm-9/reports/ProfitAndLoss"
        assert requests[0].url.params["start_date"] == "2024-01-01"
        assert requests[0].url.params["end_date"] == "2024-03-31"
        assert requests[0].headers["Authorization"] == "Bearer live"

    async def test_period_must_be_ordered(self, storage, token_storage):
        """Test a start after the end is rejected before any call."""
        flow = AccountLinkFlow(storage, ProviderRegistry([
            connected_quickbooks(lambda request: httpx.Response(500), token_storage)
        ]))
        with pytest.raises(ValidationError):
            await flow.quickbooks_profit_and_loss("realm-9", date(2024, 4, 1), date(2024, 3, 1))

    async def test_unconnected_company(self, storage, token_storage):
        """Test a company without a stored token is an auth error."""
        flow = AccountLinkFlow(storage, ProviderRegistry([
            connected_quickbooks(lambda request: httpx.Response(200, json={}), token_storage)
        ]))
        with pytest.raises(ProviderAuthError):
            await flow.quickbooks_profit_and_loss("realm-0", date(2024, 1, 1), date(2024, 1, 31))


def sba_unreachable(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/oauth/token"):
        return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
    return httpx.Response(404)


class TestSBAManualFigures:
    """Tests for entering SBA loan figures by hand."""

    def make_flow(self, storage, audit_logger=None) -> AccountLinkFlow:
        adapter = SBALoanAdapter(
            SBASettings(client_id="i", client_secret="s", api_key="k"),
            transport=httpx.MockTransport(sba_unreachable),
        )
        return AccountLinkFlow(storage, ProviderRegistry([adapter]), audit_logger)

    async def test_update_placeholder_loan(self, storage, audit_storage, audit_logger):
        """Test figures land on the loan's debt and balance on its account."""
        flow = self.make_flow(storage, audit_logger)
        _, placeholder = await flow.add_sba_loan("1234567890")

        debt = await flow.update_sba_loan(
            "1234567890",
            current_balance="48000",
            monthly_payment="650.25",
            interest_rate="6.5",
            next_payment_date=date(2024, 5, 15),
        )

        assert debt.id == placeholder.id
        assert debt.current_balance == Decimal("48000.00")
        assert debt.minimum_payment == Decimal("650.25")
        assert debt.apr == Decimal("6.5")
        assert debt.due_date == "2024-05-15"
        assert debt.due_date_day == 15
        assert (await storage.get_account_by_provider_id("1234567890")).current_balance == Decimal("48000.00")
        assert any(e.event_type == AuditEventType.DEBT_UPDATED for e in audit_storage._events)

    async def test_partial_update_keeps_other_figures(self, storage):
        """Test omitted figures are left as they were."""
        flow = self.make_flow(storage)
        await flow.add_sba_loan("1234567890")
        await flow.update_sba_loan("1234567890", current_balance="1000", monthly_payment="50")

        debt = await flow.update_sba_loan("1234567890", interest_rate="7.25")

        assert debt.current_balance == Decimal("1000.00")
        assert debt.minimum_payment == Decimal("50.00")
        assert debt.apr == Decimal("7.25")

    async def test_untracked_loan(self, storage):
        """Test updating a loan that was never added raises NotFoundError."""
        flow = self.make_flow(storage)
        with pytest.raises(NotFoundError):
            await flow.update_sba_loan("9999999999", current_balance="10")


STATEMENT = """Transaction Date,Description,Category,Amount
03/02/2024,Delta Air Lines,Travel,412.20
03/05/2024,Payment Thank You,,-250.00
03/07/2024,Blue Bottle Coffee,Food & Drink,6.50
03/07/2024,Blue Bottle Coffee,Food & Drink,6.50
not a date,Mystery,,1.00
"""


class TestManualCards:
    """Tests for hand-maintained credit cards."""

    async def test_connect_card(self, storage, audit_storage, audit_logger):
        """Test a card is stored as a manual credit account keyed by issuer and last four."""
        flow = AccountLinkFlow(storage, ProviderRegistry(), audit_logger)

        card = await flow.connect_manual_card(
            "Barclays", "4821", credit_limit="5000", current_balance="1200", company="DataLabs"
        )

        assert card.provider == Provider.MANUAL
        assert card.kind == AccountKind.CREDIT
        assert card.provider_account_id == "card_barclays_4821"
        assert card.mask == "4821"
        assert card.name == "Barclays - ****4821"
        assert card.current_balance == Decimal("1200.00")
        assert card.available_balance == Decimal("3800.00")
        assert any(e.event_type == AuditEventType.ACCOUNT_LINKED for e in audit_storage._events)

    async def test_reconnect_updates_in_place(self, storage):
        """Test connecting the same card twice keeps one account."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        first = await flow.connect_manual_card("Barclays", "4821", credit_limit="5000")
        second = await flow.connect_manual_card("Barclays", "4821", credit_limit="7500")

        assert second.id == first.id
        assert len(await storage.list_accounts()) == 1
        assert second.credit_limit == Decimal("7500.00")

    @pytest.mark.parametrize("last_four", ["482", "48211", "48a1", ""])
    async def test_last_four_validated(self, storage, last_four):
        """Test the last four must be exactly four digits."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(ValidationError):
            await flow.connect_manual_card("Barclays", last_four)

    async def test_unreadable_limit(self, storage):
        """Test a limit that is not a number is a validation error."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(ValidationError):
            await flow.connect_manual_card("Barclays", "4821", credit_limit="lots")

    async def test_update_balance(self, storage, audit_storage, audit_logger):
        """Test a manual balance moves available credit and records the statement balance."""
        flow = AccountLinkFlow(storage, ProviderRegistry(), audit_logger)
        card = await flow.connect_manual_card("Barclays", "4821", credit_limit="5000")

        updated = await flow.update_card_balance(str(card.id), "950.10", statement_balance="875")

        assert updated.id == card.id
        assert updated.current_balance == Decimal("950.10")
        assert updated.available_balance == Decimal("4049.90")
        assert updated.metadata["statement_balance"] == "875.00"
        assert any(e.event_type == AuditEventType.BALANCE_UPDATED for e in audit_storage._events)

    async def test_update_balance_only_for_manual_cards(self, storage):
        """Test a provider-synced account's balance cannot be set by hand."""
        await storage.upsert_account(account("paypal_1"))
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(ValidationError):
            await flow.update_card_balance("paypal_1", "10")

    @pytest.mark.parametrize("balance", ["Infinity", "ten"])
    async def test_update_balance_rejects_unreadable(self, storage, balance):
        """Test a balance that is not a finite number is rejected."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        card = await flow.connect_manual_card("Barclays", "4821")
        with pytest.raises(ValidationError):
            await flow.update_card_balance(card.provider_account_id, balance)

    async def test_import_statement(self, storage, audit_storage, audit_logger):
        """Test statement rows become card transactions and unreadable rows are reported."""
        flow = AccountLinkFlow(storage, ProviderRegistry(), audit_logger)
        card = await flow.connect_manual_card("Barclays", "4821", company="DataLabs")

        result = await flow.import_card_statement(card.provider_account_id, STATEMENT)

        assert result.total == 5
        assert result.imported == 4
        assert result.skipped_rows == [6]
        _, transactions = await flow.card_transactions(card.provider_account_id)
        assert [t.transaction_date for t in transactions][:2] == [date(2024, 3, 7), date(2024, 3, 7)]
        payment = next(t for t in transactions if t.description == "Payment Thank You")
        assert payment.type == TransactionType.CREDIT
        assert payment.amount == Decimal("250.00")
        assert payment.category == "Other"
        assert {t.company for t in transactions} == {"DataLabs"}
        assert {t.card_provider for t in transactions} == {"Barclays"}
        assert any(e.event_type == AuditEventType.STATEMENT_IMPORTED for e in audit_storage._events)

    async def test_reimport_stores_nothing_new(self, storage):
        """Test importing the same statement twice keeps one copy of each row."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        card = await flow.connect_manual_card("Barclays", "4821")

        await flow.import_card_statement(card.provider_account_id, STATEMENT)
        await flow.import_card_statement(card.provider_account_id, STATEMENT)

        assert (await storage.list_transactions())[1] == 4

    async def test_reimport_keeps_allocation(self, storage, audit_logger):
        """Test a re-import does not undo a person's allocation."""
        flow = AccountLinkFlow(storage, ProviderRegistry(), audit_logger)
        card = await flow.connect_manual_card("Barclays", "4821", company="DataLabs")
        await flow.import_card_statement(card.provider_account_id, STATEMENT)
        _, transactions = await flow.card_transactions(card.provider_account_id)
        flight = next(t for t in transactions if t.description == "Delta Air Lines")
        flight.company = "Personal"
        await storage.save_transaction(flight)

        await flow.import_card_statement(card.provider_account_id, STATEMENT)

        assert (await storage.get_transaction(flight.id)).company == "Personal"

    async def test_import_needs_manual_card(self, storage):
        """Test statements only import into manual card accounts."""
        await storage.upsert_account(account("paypal_1"))
        flow = AccountLinkFlow(storage, ProviderRegistry())
        with pytest.raises(ValidationError):
            await flow.import_card_statement("paypal_1", STATEMENT)

    async def test_card_transactions_period(self, storage):
        """Test the listing honours the date range."""
        flow = AccountLinkFlow(storage, ProviderRegistry())
        card = await flow.connect_manual_card("Barclays", "4821")
        await flow.import_card_statement(card.provider_account_id, STATEMENT)

        _, transactions = await flow.card_transactions(
            card.provider_account_id, date_from=date(2024, 3, 3), date_to=date(2024, 3, 6)
        )

        assert [t.description for t in transactions] == ["Payment Thank You"]
