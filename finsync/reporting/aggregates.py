"""
Reporting Aggregates

DESIGN DECISION: Reporting is READ-ONLY and DETERMINISTIC.
Every figure here is computed from stored transactions, accounts and debts
at the time of the call. Nothing is cached, estimated or written back.

Only debits count as spending. Company figures use the share allocated to
the company, so split transactions contribute their split amounts.
"""

import csv
import io
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional, Union

from finsync.models.ledger import (
    CompanyName,
    Transaction,
    TransactionFilter,
    TransactionType,
    to_money,
)
from finsync.services.storage.interface import LedgerStorageInterface


ZERO = Decimal("0.00")

CSV_COLUMNS = [
    "Date",
    "Description",
    "Merchant",
    "Category",
    "Type",
    "Amount",
    "Allocated Amount",
    "Allocation %",
    "Provider",
    "Pending",
]


def _company_value(company: Union[CompanyName, str]) -> str:
    return company.value if isinstance(company, CompanyName) else str(company)


def _category_totals(pairs: list[tuple[str, Decimal]]) -> list[dict[str, Any]]:
    """Group (category, amount) pairs, largest total first."""
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: dict[str, int] = defaultdict(int)
    for category, amount in pairs:
        totals[category] += amount
        counts[category] += 1

    rows = [
        {
            "category": category,
            "total": totals[category],
            "count": counts[category],
            "average": to_money(totals[category] / counts[category]),
        }
        for category in totals
    ]
    rows.sort(key=lambda row: row["total"], reverse=True)
    return rows


class ReportingService:
    """
    Dashboard, company and trend figures over the stored ledger.

    GUARANTEES:
    - Only returns figures computed from storage
    - Empty periods produce zeros, never errors
    """

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def _transactions(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        type_: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        return await self._storage.all_transactions(
            TransactionFilter(date_from=start, date_to=end, type=type_)
        )

    async def _company_transactions(
        self,
        company: str,
        start: Optional[date],
        end: Optional[date],
    ) -> list[Transaction]:
        transactions = await self._transactions(start, end)
        return [t for t in transactions if t.allocated_amount(company) > 0]

    # ---- Spending ------------------------------------------------------------

    async def daily_total(self, day: date) -> dict[str, Any]:
        """Total and count of debits on one day."""
        spending = await self._transactions(day, day, TransactionType.DEBIT)
        return {
            "date": day,
            "total": sum((t.amount for t in spending), ZERO),
            "count": len(spending),
        }

    async def category_breakdown(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict[str, Any]]:
        """Debit totals per category over a period, largest first."""
        spending = await self._transactions(start, end, TransactionType.DEBIT)
        return _category_totals([(t.category, t.amount) for t in spending])

    async def spending_trends(
        self,
        days: int = 7,
        today: Optional[date] = None,
    ) -> list[dict[str, Any]]:
        """One entry per day from `today - days` through `today`, oldest first."""
        today = today or date.today()
        start = today - timedelta(days=days)
        spending = await self._transactions(start, today, TransactionType.DEBIT)

        totals: dict[date, Decimal] = defaultdict(lambda: ZERO)
        counts: dict[date, int] = defaultdict(int)
        for t in spending:
            totals[t.transaction_date] += t.amount
            counts[t.transaction_date] += 1

        trends = []
        for offset in range(days + 1):
            day = start + timedelta(days=offset)
            trends.append({"date": day, "amount": totals[day], "count": counts[day]})
        return trends

    async def transaction_stats(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[str, Any]:
        """Expenses, income, net flow, top categories and per-provider counts."""
        transactions = await self._transactions(start, end)
        expenses = [t for t in transactions if t.is_expense]
        income = [t for t in transactions if t.is_income]
        expense_total = sum((t.amount for t in expenses), ZERO)
        income_total = sum((t.amount for t in income), ZERO)

        providers: dict[str, int] = defaultdict(int)
        for t in transactions:
            providers[t.provider.value] += 1

        return {
            "expenses": {"total": expense_total, "count": len(expenses)},
            "income": {"total": income_total, "count": len(income)},
            "net_flow": income_total - expense_total,
            "top_categories": _category_totals([(t.category, t.amount) for t in expenses])[:10],
            "providers": dict(providers),
        }

    # ---- Companies -----------------------------------------------------------

    async def company_stats(
        self,
        company: Union[CompanyName, str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[str, Any]:
        """Expenses, income, profit and transaction count for one company."""
        name = _company_value(company)
        expenses, income, count = ZERO, ZERO, 0
        for t in await self._company_transactions(name, start, end):
            share = t.allocated_amount(name)
            if t.is_expense:
                expenses += share
            else:
                income += share
            count += 1

        return {
            "expenses": expenses,
            "income": income,
            "profit": income - expenses,
            "transaction_count": count,
        }

    async def expenses_by_category(
        self,
        company: Union[CompanyName, str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict[str, Any]]:
        name = _company_value(company)
        transactions = await self._company_transactions(name, start, end)
        return _category_totals([
            (t.category, t.allocated_amount(name)) for t in transactions if t.is_expense
        ])

    async def company_summary(
        self,
        company: Union[CompanyName, str],
        start: Optional[date] = None,
        end: Optional[date] = None,
        recent: int = 10,
    ) -> dict[str, Any]:
        """Stats, category breakdown and the most recent transactions of a company."""
        name = _company_value(company)
        transactions = await self._company_transactions(name, start, end)
        return {
            "company": name,
            "period": {"start": start, "end": end},
            "stats": await self.company_stats(name, start, end),
            "expenses_by_category": await self.expenses_by_category(name, start, end),
            "recent_transactions": transactions[:recent],
        }

    async def company_report_csv(
        self,
        company: Union[CompanyName, str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> str:
        """
        Export a company's transactions for a period as CSV.

        One row per transaction, then a blank row and the totals.
        """
        name = _company_value(company)
        transactions = await self._company_transactions(name, start, end)
        stats = await self.company_stats(name, start, end)

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_COLUMNS)
        for t in transactions:
            writer.writerow([
                t.transaction_date.isoformat(),
                t.description,
                t.merchant or "",
                t.category,
                t.type.value,
                str(t.amount),
                str(t.allocated_amount(name)),
                str(t.allocation_percentage),
                t.provider.value,
                "yes" if t.pending else "no",
            ])

        writer.writerow([])
        writer.writerow(["Total Expenses", str(stats["expenses"])])
        writer.writerow(["Total Income", str(stats["income"])])
        writer.writerow(["Profit", str(stats["profit"])])
        writer.writerow(["Transactions", stats["transaction_count"]])
        return buffer.getvalue()

    # ---- Balances and dashboard ----------------------------------------------

    async def balances_by_kind(self) -> dict[str, Decimal]:
        """Available balance of active accounts, summed per account kind, plus `total`."""
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for account in await self._storage.list_accounts(active_only=True):
            totals[account.kind.value] += account.available_balance
        balances = dict(totals)
        balances["total"] = sum(totals.values(), ZERO)
        return balances

    async def dashboard_summary(self, today: Optional[date] = None) -> dict[str, Any]:
        """
        Headline numbers for the dashboard.

        Today's spending is compared against yesterday's; the change is 0
        when nothing was spent yesterday.
        """
        today = today or date.today()
        todays = await self.daily_total(today)
        yesterdays = await self.daily_total(today - timedelta(days=1))

        percent_change = 0.0
        if yesterdays["total"] > 0:
            change = (todays["total"] - yesterdays["total"]) / yesterdays["total"] * 100
            percent_change = round(float(change), 2)

        month_start = today.replace(day=1)
        month_spending = await self._transactions(month_start, today, TransactionType.DEBIT)
        debts = await self._storage.list_debts(active_only=True)

        return {
            "todays_spending": {
                "total": todays["total"],
                "count": todays["count"],
                "percent_change": percent_change,
            },
            "total_debt": sum((d.current_balance for d in debts), ZERO),
            "debt_count": len(debts),
            "balances": await self.balances_by_kind(),
            "month_to_date_spent": sum((t.amount for t in month_spending), ZERO),
        }
