"""Shared API dependencies."""

from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from fastapi import Request

from finsync.errors import ValidationError
from finsync.models.ledger import CompanyName
from finsync.orchestrator import AppComponents


DEFAULT_PERIOD_DAYS = 30


def get_components(request: Request) -> AppComponents:
    return request.app.state.components


def parse_company(company: str) -> CompanyName:
    try:
        return CompanyName(company)
    except ValueError:
        raise ValidationError(f"Unknown company: {company}")


def parse_uuid(value: str, label: str = "id") -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}")


def default_period(start: Optional[date], end: Optional[date]) -> tuple[date, date]:
    """Fill in a missing period as the 30 days ending today."""
    end = end or date.today()
    start = start or end - timedelta(days=DEFAULT_PERIOD_DAYS)
    if start > end:
        raise ValidationError("start_date must not be after end_date")
    return start, end
