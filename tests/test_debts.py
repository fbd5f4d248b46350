"""Tests for debt tracking."""

import pytest
from datetime import date
from decimal import Decimal

from finsync.debts import DebtTracker, next_due_date
from finsync.errors import NotFoundError, ValidationError
from finsync.models.audit import AuditEventType
from finsync.models.ledger import Debt, DebtKind, DebtSnapshot, DebtSource


@pytest.fixture
def tracker(storage, audit_logger):
    return DebtTracker(storage, audit_logger)


async def add_debt(storage, name="Chase Sapphire", balance="500", **extra):
    return await storage.upsert_debt(DebtSnapshot(
        name=name,
        kind=extra.pop("kind", DebtKind.CREDIT_CARD),
        source=DebtSource.GOOGLE_SHEETS,
        current_balance=Decimal(balance),
        **extra,
    ))


class TestRecordPayment:
    """Tests for recording debt payments."""

    async def test_payment_reduces_balance(self, tracker, storage, audit_storage):
        """Test 500 - 100 leaves 400 and one history entry."""
        debt = await add_debt(storage)

        saved, entry = await tracker.record_payment(debt.id, Decimal("100"), "March")

        assert saved.current_balance == Decimal("400.00")
        assert entry.amount == Decimal("100.00")
        stored = await storage.get_debt(debt.id)
        assert stored.current_balance == Decimal("400.00")
        assert len(stored.payment_history) == 1
        assert any(e.event_type == AuditEventType.DEBT_PAYMENT_RECORDED for e in audit_storage._events)

    async def test_overpayment_goes_negative(self, tracker, storage):
        """Test paying more than the balance is allowed."""
        debt = await add_debt(storage, balance="100")
        saved, _ = await tracker.record_payment(str(debt.id), "150.00")
        assert saved.current_balance == Decimal("-50.00")

    @pytest.mark.parametrize("amount", [0, "-5", "abc"])
    async def test_invalid_amount(self, tracker, storage, amount):
        """Test zero, negative and non-numeric amounts are rejected."""
        debt = await add_debt(storage)
        with pytest.raises(ValidationError):
            await tracker.record_payment(debt.id, amount)
        assert (await storage.get_debt(debt.id)).current_balance == Decimal("500.00")

    @pytest.mark.parametrize("debt_id", ["not-a-uuid", "6f1c2f9e-8d7a-4c1b-9e55-0a1b2c3d4e5f"])
    async def test_unknown_debt(self, tracker, debt_id):
        """Test unknown or malformed ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await tracker.record_payment(debt_id, "10")


class TestUpdateFigures:
    """Tests for overwriting debt figures by hand."""

    async def test_update_by_name_and_source(self, tracker, storage, audit_storage):
        """Test figures change and payment history survives."""
        debt = await add_debt(storage)
        await tracker.record_payment(debt.id, "100")

        updated = await tracker.update_figures(
            "Chase Sapphire", "google_sheets", current_balance="320.40", apr="19.99", due_date_day=12
        )

        assert updated.id == debt.id
        assert updated.current_balance == Decimal("320.40")
        assert updated.apr == Decimal("19.99")
        assert updated.due_date_day == 12
        assert len(updated.payment_history) == 1
        assert (await storage.get_debt(debt.id)).current_balance == Decimal("320.40")
        assert any(e.event_type == AuditEventType.DEBT_UPDATED for e in audit_storage._events)

    async def test_same_name_other_source_untouched(self, tracker, storage):
        """Test only the debt with the given source changes."""
        sheet_debt = await add_debt(storage, balance="500")
        await storage.upsert_debt(DebtSnapshot(
            name="Chase Sapphire",
            kind=DebtKind.CREDIT_CARD,
            source=DebtSource.MANUAL,
            current_balance=Decimal("80"),
        ))

        updated = await tracker.update_figures("Chase Sapphire", DebtSource.MANUAL, current_balance="60")

        assert updated.source == DebtSource.MANUAL
        assert updated.current_balance == Decimal("60.00")
        assert (await storage.get_debt(sheet_debt.id)).current_balance == Decimal("500.00")

    async def test_unknown_debt(self, tracker):
        """Test a missing (name, source) raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await tracker.update_figures("Nobody", "manual", current_balance="1")

    @pytest.mark.parametrize("source, figures", [
        ("bank", {"current_balance": "1"}),
        ("google_sheets", {}),
        ("google_sheets", {"payment_history": []}),
        ("google_sheets", {"current_balance": "-5"}),
        ("google_sheets", {"minimum_payment": "abc"}),
        ("google_sheets", {"current_balance": "Infinity"}),
        ("google_sheets", {"due_date_day": 40}),
    ])
    async def test_rejected_updates_change_nothing(self, tracker, storage, source, figures):
        """Test unknown sources, fields and unreadable figures are rejected."""
        debt = await add_debt(storage)
        with pytest.raises(ValidationError):
            await tracker.update_figures("Chase Sapphire", source, **figures)
        assert (await storage.get_debt(debt.id)).current_balance == Decimal("500.00")


class TestDebtFigures:
    """Tests for utilization, totals and breakdowns."""

    def test_utilization(self, tracker):
        """Test 2500 of 5000 is 50% utilized."""
        debt = Debt(
            name="Card",
            kind=DebtKind.CREDIT_CARD,
            current_balance=Decimal("2500"),
            credit_limit=Decimal("5000"),
        )
        assert tracker.utilization(debt) == 50.0

    def test_utilization_without_limit(self, tracker):
        """Test utilization is None without a credit limit."""
        debt = Debt(name="Loan", kind=DebtKind.PERSONAL_LOAN, current_balance=Decimal("2500"))
        assert tracker.utilization(debt) is None

    def test_payoff_progress(self, tracker):
        """Test payoff progress against the original balance."""
        debt = Debt(
            name="SBA",
            kind=DebtKind.SBA_LOAN,
            current_balance=Decimal("75000"),
            original_balance=Decimal("100000"),
        )
        assert tracker.payoff_progress(debt) == 25.0

    async def test_total_and_by_kind(self, tracker, storage):
        """Test totals over active debts."""
        await add_debt(storage, "Card A", "300")
        await add_debt(storage, "Card B", "200")
        await add_debt(storage, "Car", "1000", kind=DebtKind.AUTO_LOAN)

        assert await tracker.total_debt() == Decimal("1500.00")
        assert await tracker.debt_by_kind() == {
            "credit_card": Decimal("500.00"),
            "auto_loan": Decimal("1000.00"),
        }


class TestUpcomingPayments:
    """Tests for upcoming due dates."""

    async def test_window_wraps_month_end(self, tracker, storage):
        """Test due days are found across a month boundary, soonest first."""
        await add_debt(storage, "Due 5th", due_date_day=5)
        await add_debt(storage, "Due 20th", due_date_day=20)
        await add_debt(storage, "Due 31st", due_date_day=31)
        await add_debt(storage, "No due day")

        upcoming = await tracker.upcoming_payments(7, today=date(2024, 2, 27))

        assert [(due, debt.name) for due, debt in upcoming] == [
            (date(2024, 2, 29), "Due 31st"),
            (date(2024, 3, 5), "Due 5th"),
        ]

    def test_due_today_counts(self):
        """Test a debt due today is included."""
        debt = Debt(name="Card", kind=DebtKind.CREDIT_CARD, current_balance=Decimal("1"), due_date_day=15)
        assert next_due_date(debt, date(2024, 6, 15), 7) == date(2024, 6, 15)

    def test_outside_window(self):
        """Test a due day beyond the window is not returned."""
        debt = Debt(name="Card", kind=DebtKind.CREDIT_CARD, current_balance=Decimal("1"), due_date_day=25)
        assert next_due_date(debt, date(2024, 6, 15), 7) is None
