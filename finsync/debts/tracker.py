"""
Debt Tracker

Payments, utilization and payoff figures for liabilities.

INVARIANT: every recorded payment appends exactly one history entry and
moves the balance by exactly the payment amount, in one record write.
Overpayment is allowed and leaves a negative balance.
"""

import calendar
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from finsync.audit.logger import AuditLogger
from finsync.errors import NotFoundError, ValidationError
from finsync.models.ledger import Debt, DebtPayment, DebtSource, to_money, utc_now
from finsync.services.storage.interface import LedgerStorageInterface


logger = structlog.get_logger()

MONEY_FIGURES = ("current_balance", "original_balance", "credit_limit", "minimum_payment")
MANUAL_FIGURES = MONEY_FIGURES + ("apr", "due_date", "due_date_day")


def _effective_due_day(due_day: int, on: date) -> int:
    # A due day past the end of a short month falls on its last day
    return min(due_day, calendar.monthrange(on.year, on.month)[1])


def next_due_date(debt: Debt, today: date, days: int) -> Optional[date]:
    """First date in [today, today + days] that is the debt's due day, if any."""
    if debt.due_date_day is None:
        return None
    for offset in range(days + 1):
        candidate = today + timedelta(days=offset)
        if candidate.day == _effective_due_day(debt.due_date_day, candidate):
            return candidate
    return None


class DebtTracker:
    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def _resolve(self, debt_or_id: Union[Debt, UUID, str]) -> Debt:
        if isinstance(debt_or_id, Debt):
            return debt_or_id.model_copy(deep=True)
        try:
            debt_id = debt_or_id if isinstance(debt_or_id, UUID) else UUID(str(debt_or_id))
        except ValueError:
            raise NotFoundError("debt", str(debt_or_id))
        debt = await self._storage.get_debt(debt_id)
        if debt is None:
            raise NotFoundError("debt", str(debt_or_id))
        return debt

    async def record_payment(
        self,
        debt_or_id: Union[Debt, UUID, str],
        amount: Any,
        note: Optional[str] = None,
    ) -> tuple[Debt, DebtPayment]:
        """
        Apply a payment to a debt and persist it.

        Returns:
            (updated debt, the appended history entry)

        Raises:
            ValidationError: If the amount is not a positive number
            NotFoundError: If the debt does not exist
        """
        try:
            amount = to_money(amount)
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid payment amount: {amount!r}")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError(f"Payment amount must be positive, got {amount}")

        debt = await self._resolve(debt_or_id)
        entry = debt.record_payment(amount, note)
        saved = await self._storage.save_debt(debt)

        await self._audit.log_debt_payment_recorded(
            str(saved.id), str(amount), str(saved.current_balance)
        )
        logger.info(
            "debt_payment_recorded",
            debt_id=str(saved.id),
            amount=str(amount),
            balance=str(saved.current_balance),
        )
        return saved, entry

    async def update_figures(
        self,
        name: str,
        source: Union[DebtSource, str],
        **figures: Any,
    ) -> Debt:
        """
        Overwrite a debt's figures by hand, for debts no provider keeps current.

        The debt is looked up by its (name, source) key. Only the fields in
        MANUAL_FIGURES may be set; None values are ignored. Payment history is
        left untouched.

        Raises:
            ValidationError: Unknown source or field, or a figure that is not valid
            NotFoundError: No debt with this name and source
        """
        try:
            source = DebtSource(source)
        except ValueError:
            raise ValidationError(f"Unknown debt source: {source}")
        unknown = set(figures) - set(MANUAL_FIGURES)
        if unknown:
            raise ValidationError(f"Cannot update debt fields: {', '.join(sorted(unknown))}")
        changes = {field: value for field, value in figures.items() if value is not None}
        if not changes:
            raise ValidationError("No debt figures to update")

        debt = await self._storage.get_debt_by_key(name, source)
        if debt is None:
            raise NotFoundError("debt", f"{name} ({source.value})")

        try:
            updated = Debt.model_validate({**debt.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid debt figures: {e.errors()[0]['msg']}")
        for field in MONEY_FIGURES:
            value = getattr(updated, field)
            if value is not None and value < 0:
                raise ValidationError(f"{field} cannot be negative, got {value}")
        if updated.apr is not None and not updated.apr.is_finite():
            raise ValidationError(f"Invalid APR: {updated.apr}")
        updated.last_updated = utc_now()

        saved = await self._storage.save_debt(updated)
        await self._audit.log_debt_updated(
            str(saved.id), saved.name, {field: str(value) for field, value in changes.items()}
        )
        logger.info("debt_figures_updated", debt_id=str(saved.id), fields=sorted(changes))
        return saved

    def utilization(self, debt: Debt) -> Optional[float]:
        return debt.utilization()

    def payoff_progress(self, debt: Debt) -> Optional[float]:
        return debt.payoff_progress()

    async def upcoming_payments(
        self,
        days: int = 7,
        today: Optional[date] = None,
    ) -> list[tuple[date, Debt]]:
        """
        Active debts whose due day falls within the next `days` days.

        The window wraps across month ends.

        Returns:
            (due date, debt) pairs, soonest first
        """
        today = today or date.today()
        upcoming = []
        for debt in await self._storage.list_debts(active_only=True):
            due = next_due_date(debt, today, days)
            if due is not None:
                upcoming.append((due, debt))
        upcoming.sort(key=lambda pair: pair[0])
        return upcoming

    async def total_debt(self) -> Decimal:
        debts = await self._storage.list_debts(active_only=True)
        return sum((d.current_balance for d in debts), Decimal("0.00"))

    async def debt_by_kind(self) -> dict[str, Decimal]:
        """Sum of active balances per debt kind."""
        totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))
        for debt in await self._storage.list_debts(active_only=True):
            totals[debt.kind.value] += debt.current_balance
        return dict(totals)
