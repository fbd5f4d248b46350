"""
Tests for FinSync

Test strategy:
1. Unit tests for individual components (models, policies, adapters)
2. Integration tests for flows (with fake providers and in-memory storage)
3. No real API calls in tests (use fakes and httpx.MockTransport)
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4
from pydantic import ValidationError as PydanticValidationError

from finsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finsync.models.ledger import (
    Account,
    AccountKind,
    BudgetCategory,
    Company,
    CompanyName,
    Debt,
    DebtKind,
    DebtSnapshot,
    DebtSource,
    NormalizedTransaction,
    Provider,
    SplitAllocation,
    Transaction,
    TransactionFilter,
    TransactionType,
    UNALLOCATED,
    compute_split_amounts,
    to_money,
)
from finsync.models.sync import CachedToken, OAuthToken, ProviderSyncResult, SyncResult


def make_normalized(**overrides) -> NormalizedTransaction:
    data = dict(
        provider=Provider.PLAID,
        provider_transaction_id="txn_1",
        account_id="acct_1",
        transaction_date=date(2024, 3, 15),
        amount=Decimal("42.50"),
        type=TransactionType.DEBIT,
        description="Coffee",
        category="Food and Drink",
    )
    data.update(overrides)
    return NormalizedTransaction(**data)


class TestMoney:
    """Tests for money conversion."""

    def test_to_money_quantizes_floats(self):
        """Test provider floats become cent-quantized Decimals."""
        assert to_money(12.5) == Decimal("12.50")
        assert to_money("0.105") == Decimal("0.11")
        assert to_money(3) == Decimal("3.00")

    def test_to_money_keeps_decimals_exact(self):
        """Test Decimal input is not routed through float."""
        assert to_money(Decimal("19.999")) == Decimal("20.00")

    @pytest.mark.parametrize("value", ["Infinity", "-inf", "NaN", Decimal("Infinity"), "twelve", "1e40"])
    def test_to_money_rejects_unreadable_values(self, value):
        """Test non-finite, non-numeric and out-of-range values raise ValueError."""
        with pytest.raises(ValueError):
            to_money(value)

    def test_infinite_amount_is_a_model_error(self):
        """Test an infinite amount surfaces as a pydantic validation error."""
        with pytest.raises(PydanticValidationError):
            make_normalized(amount="Infinity")


class TestAccountModel:
    """Tests for the Account model."""

    def test_plaid_account_requires_credential(self):
        """Test that credential providers reject accounts without one."""
        with pytest.raises(ValueError, match="require a credential"):
            Account(
                provider=Provider.PLAID,
                provider_account_id="acc_1",
                institution_name="Chase",
                name="Checking",
                kind=AccountKind.CHECKING,
            )

    def test_update_balance_falls_back_to_current(self):
        """Test available balance defaults to current and clears sync errors."""
        account = Account(
            provider=Provider.PAYPAL,
            provider_account_id="paypal_1",
            institution_name="PayPal",
            name="Wallet",
            kind=AccountKind.PAYMENT_WALLET,
            sync_error="boom",
        )
        account.update_balance(Decimal("100.456"))
        assert account.current_balance == Decimal("100.46")
        assert account.available_balance == Decimal("100.46")
        assert account.sync_error is None
        assert account.last_synced is not None

    def test_deactivate_is_soft(self):
        """Test deactivation only flips the active flag."""
        account = Account(
            provider=Provider.SBA,
            provider_account_id="1234567890",
            institution_name="SBA",
            name="Loan",
            kind=AccountKind.LOAN,
        )
        account.deactivate()
        assert account.is_active is False
        assert account.provider_account_id == "1234567890"


class TestTransactionModel:
    """Tests for the Transaction model and its invariants."""

    def test_from_normalized_defaults_to_unallocated(self):
        """Test first sight of a provider id is Unallocated at 100%."""
        transaction = Transaction.from_normalized(make_normalized())
        assert transaction.company == UNALLOCATED
        assert transaction.allocation_percentage == Decimal("100")
        assert transaction.split_allocations == []

    def test_negative_amount_rejected(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            make_normalized(amount=Decimal("-5"))

    def test_unknown_company_rejected(self):
        """Test companies outside the closed set are rejected."""
        with pytest.raises(ValueError, match="Unknown company"):
            Transaction(**make_normalized().model_dump(), company="Acme")

    def test_split_must_sum_to_hundred(self):
        """Test the split invariant is enforced on the model."""
        with pytest.raises(ValueError, match="must sum to 100"):
            Transaction(
                **make_normalized().model_dump(),
                split_allocations=[
                    SplitAllocation(company=CompanyName.DATA_LABS, percentage=Decimal("60")),
                    SplitAllocation(company=CompanyName.PERSONAL, percentage=Decimal("30")),
                ],
            )

    def test_apply_provider_update_preserves_allocation(self):
        """Test a re-sync overwrites provider fields but keeps the allocation."""
        transaction = Transaction.from_normalized(make_normalized(pending=True))
        transaction.company = CompanyName.CLAY_GENIUS.value
        original_id = transaction.id

        transaction.apply_provider_update(make_normalized(amount=Decimal("45.00"), pending=False))

        assert transaction.id == original_id
        assert transaction.amount == Decimal("45.00")
        assert transaction.pending is False
        assert transaction.company == "ClayGenius"

    def test_apply_provider_update_recomputes_split_amounts(self):
        """Test split amounts follow an amount change."""
        transaction = Transaction.from_normalized(make_normalized(amount=Decimal("100.00")))
        transaction.split_allocations = compute_split_amounts(transaction.amount, [
            SplitAllocation(company=CompanyName.DATA_LABS, percentage=Decimal("50")),
            SplitAllocation(company=CompanyName.PERSONAL, percentage=Decimal("50")),
        ])

        transaction.apply_provider_update(make_normalized(amount=Decimal("80.00")))

        assert [s.amount for s in transaction.split_allocations] == [Decimal("40.00"), Decimal("40.00")]

    def test_allocated_amount_single_company(self):
        """Test allocated share honours the allocation percentage."""
        transaction = Transaction.from_normalized(make_normalized(amount=Decimal("200.00")))
        transaction.company = "Personal"
        transaction.allocation_percentage = Decimal("25")
        assert transaction.allocated_amount("Personal") == Decimal("50.00")
        assert transaction.allocated_amount("DataLabs") == Decimal("0.00")


class TestSplitAmounts:
    """Tests for split amount derivation."""

    COMPANIES = list(CompanyName)

    def split(self, total, percentages):
        return compute_split_amounts(Decimal(total), [
            SplitAllocation(company=self.COMPANIES[i], percentage=Decimal(str(p)))
            for i, p in enumerate(percentages)
        ])

    def test_leftover_cent_goes_to_largest_remainder(self):
        """Test derived amounts always add up to the total."""
        splits = self.split("10.00", ["33.33", "33.33", "33.34"])
        assert [s.amount for s in splits] == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]
        assert sum(s.amount for s in splits) == Decimal("10.00")

    def test_large_share_keeps_its_cents(self):
        """Test the biggest entity is not shortchanged by small siblings."""
        splits = self.split("1.05", [10, 10, 10, 10, 60])
        assert [s.amount for s in splits] == [
            Decimal("0.11"), Decimal("0.11"), Decimal("0.10"), Decimal("0.10"), Decimal("0.63"),
        ]

    @pytest.mark.parametrize("total,percentages", [
        ("1.05", [10, 10, 10, 10, 60]),
        ("0.05", [30, 30, 30, 10]),
        ("0.05", [50, 50, 0]),
        ("0.01", [25, 25, 25, 25]),
        ("0.00", [40, 60]),
        ("10.00", ["33.33", "33.33", "33.34"]),
        ("99.99", ["12.5", "12.5", 25, 50]),
        ("1234.57", [1, 2, 3, 4, 90]),
        ("0.07", ["14.2857", "14.2857", "71.4286"]),
        ("500.00", [100]),
    ])
    def test_split_properties(self, total, percentages):
        """Test every amount is non-negative, within a cent of its share, and the parts sum to the total."""
        splits = self.split(total, percentages)

        assert sum(s.amount for s in splits) == Decimal(total)
        for s in splits:
            exact = Decimal(total) * s.percentage / Decimal("100")
            assert s.amount >= 0
            assert abs(s.amount - exact) < Decimal("0.01")

    def test_empty_split(self):
        """Test an empty split derives nothing."""
        assert compute_split_amounts(Decimal("10.00"), []) == []


class TestTransactionFilter:
    """Tests for transaction filtering."""

    def test_search_matches_description_or_merchant(self):
        """Test search is case-insensitive over description and merchant."""
        transaction = Transaction.from_normalized(make_normalized(merchant="Blue Bottle"))
        assert TransactionFilter(search="bottle").matches(transaction)
        assert TransactionFilter(search="COFFEE").matches(transaction)
        assert not TransactionFilter(search="rent").matches(transaction)

    def test_date_and_amount_bounds(self):
        """Test inclusive date and amount bounds."""
        transaction = Transaction.from_normalized(make_normalized())
        assert TransactionFilter(date_from=date(2024, 3, 15), date_to=date(2024, 3, 15)).matches(transaction)
        assert not TransactionFilter(date_from=date(2024, 3, 16)).matches(transaction)
        assert not TransactionFilter(min_amount=Decimal("50")).matches(transaction)

    def test_offset(self):
        """Test page offset."""
        assert TransactionFilter(page=3, limit=20).offset == 40


class TestDebtModel:
    """Tests for the Debt model."""

    def make_debt(self, **overrides) -> Debt:
        data = dict(
            name="Chase Sapphire",
            kind=DebtKind.CREDIT_CARD,
            current_balance=Decimal("500.00"),
        )
        data.update(overrides)
        return Debt(**data)

    def test_record_payment_moves_balance_and_history(self):
        """Test a payment decrements the balance and appends one entry."""
        debt = self.make_debt()
        entry = debt.record_payment(Decimal("100"), note="March")
        assert debt.current_balance == Decimal("400.00")
        assert len(debt.payment_history) == 1
        assert entry.balance == Decimal("400.00")
        assert entry.note == "March"

    def test_overpayment_goes_negative(self):
        """Test overpayment is allowed."""
        debt = self.make_debt(current_balance=Decimal("100.00"))
        debt.record_payment(Decimal("150.00"))
        assert debt.current_balance == Decimal("-50.00")

    def test_utilization(self):
        """Test utilization against the credit limit."""
        debt = self.make_debt(current_balance=Decimal("2500"), credit_limit=Decimal("5000"))
        assert debt.utilization() == 50.0
        assert self.make_debt(credit_limit=None).utilization() is None

    def test_apply_snapshot_keeps_history(self):
        """Test a source refresh keeps identity and payment history."""
        debt = self.make_debt()
        debt.record_payment(Decimal("100"))
        debt_id = debt.id

        debt.apply_snapshot(DebtSnapshot(
            name="Chase Sapphire",
            kind=DebtKind.CREDIT_CARD,
            source=DebtSource.GOOGLE_SHEETS,
            current_balance=Decimal("380.00"),
        ))

        assert debt.id == debt_id
        assert debt.current_balance == Decimal("380.00")
        assert len(debt.payment_history) == 1


class TestCompanyModel:
    """Tests for company budgets."""

    def test_update_budget_spend(self):
        """Test spend is added to a budgeted category only."""
        company = Company(
            name=CompanyName.DATA_LABS,
            display_name="DataLabs",
            categories=[BudgetCategory(name="Software", budget_limit=Decimal("300"))],
        )
        assert company.update_budget_spend("Software", Decimal("120")) is True
        assert company.update_budget_spend("Travel", Decimal("10")) is False
        assert company.categories[0].remaining == Decimal("180.00")


class TestSyncModels:
    """Tests for sync results and tokens."""

    def test_sync_result_aggregates(self):
        """Test succeeded, total_records and failed_providers."""
        result = SyncResult(providers={
            "plaid": ProviderSyncResult(provider="plaid", records_processed=3),
            "paypal": ProviderSyncResult(provider="paypal", succeeded=False, error="down"),
        })
        assert result.succeeded is False
        assert result.total_records == 3
        assert result.failed_providers == ["paypal"]

    def test_cached_token_margin(self):
        """Test a cached token lapses `margin_seconds` before expiry."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        token = CachedToken()
        token.store("abc", expires_in=3600, margin_seconds=60, now=now)
        assert token.is_valid(now + timedelta(seconds=3539))
        assert not token.is_valid(now + timedelta(seconds=3540))

    def test_oauth_token_expiry(self):
        """Test access token expiry check."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        token = OAuthToken(
            realm_id="123",
            access_token="a",
            refresh_token="r",
            expires_at=now,
        )
        assert token.is_access_expired(now) is True
        assert token.is_access_expired(now - timedelta(seconds=1)) is False


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            description="Sync started",
        )
        assert event.event_type == AuditEventType.SYNC_STARTED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEventBuilder.debt_payment_recorded(str(uuid4()), "100.00", "400.00")
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "debt_payment_recorded"  # event_type
        assert row[10] == "True"  # is_user_action

    def test_provider_sync_failed_is_error(self):
        """Test failed provider syncs are logged at error severity."""
        correlation_id = uuid4()
        event = AuditEventBuilder.provider_sync_failed("paypal", "timeout", correlation_id)
        assert event.severity == AuditSeverity.ERROR
        assert event.correlation_id == correlation_id
        assert event.error_message == "timeout"

    def test_transaction_upserted_is_debug(self):
        """Test per-record upserts are debug-level."""
        event = AuditEventBuilder.transaction_upserted("txn_1", str(uuid4()), None)
        assert event.severity == AuditSeverity.DEBUG


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
