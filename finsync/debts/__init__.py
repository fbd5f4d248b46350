"""Debt payments and payoff tracking."""

from finsync.debts.tracker import DebtTracker, next_due_date

__all__ = [
    "DebtTracker",
    "next_due_date",
]
