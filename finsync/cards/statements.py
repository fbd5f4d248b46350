"""
Card Statement Import

Reads a card issuer's CSV export into normalized transactions for one
manual card account.

DESIGN DECISION: Statement rows carry no ids, so a row's key is derived from
its content: the account, date, amount, description and how many identical
rows precede it in the file. Importing the same statement twice rewrites the
same transactions instead of adding copies.

Issuers disagree on columns. Headers are normalized to snake_case and the
common spellings are accepted: one signed `amount` column (negative means a
payment or refund), or separate `debit` and `credit` columns.
"""

import csv
import hashlib
import io
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from finsync.errors import ValidationError
from finsync.models.ledger import (
    DEFAULT_CATEGORY,
    Account,
    NormalizedTransaction,
    Provider,
    TransactionType,
)
from finsync.providers.sheets import normalize_header


logger = structlog.get_logger()

DATE_COLUMNS = ("date", "transaction_date", "trans_date", "posted_date", "post_date")
DESCRIPTION_COLUMNS = ("description", "merchant", "payee", "name")
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%d %b %Y")


@dataclass
class ParsedStatement:
    transactions: list[NormalizedTransaction] = field(default_factory=list)
    total: int = 0
    skipped_rows: list[int] = field(default_factory=list)


def _first(row: dict[str, str], columns: tuple[str, ...]) -> str:
    for column in columns:
        value = (row.get(column) or "").strip()
        if value:
            return value
    return ""


def parse_statement_date(value: str) -> date:
    """
    Raises:
        ValueError: Not a date in any accepted format
    """
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date: {value!r}")


def parse_statement_amount(value: str) -> Optional[Decimal]:
    """
    Signed amount of a statement cell; None when the cell is blank.

    "(12.50)" reads as -12.50.

    Raises:
        ValueError: The cell is not a finite number
    """
    text = (value or "").replace("$", "").replace(",", "").strip()
    if not text:
        return None
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not an amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return -amount if negative else amount


def _signed_amount(row: dict[str, str]) -> Decimal:
    amount = parse_statement_amount(row.get("amount", ""))
    if amount is not None:
        return amount
    debit = parse_statement_amount(row.get("debit", ""))
    if debit is not None:
        return abs(debit)
    credit = parse_statement_amount(row.get("credit", ""))
    if credit is not None:
        return -abs(credit)
    raise ValueError("Row has no amount")


def statement_row_key(
    account_id: str,
    row_date: date,
    amount: Decimal,
    description: str,
    occurrence: int,
) -> str:
    """Deterministic provider_transaction_id for one statement row."""
    content = f"{account_id}|{row_date.isoformat()}|{amount}|{description}|{occurrence}"
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:20]
    return f"card_{digest}"


def parse_statement_csv(text: str, account: Account) -> ParsedStatement:
    """
    Parse a statement export into transactions for `account`.

    Rows without a readable date or amount are skipped and reported by line
    number; they never fail the file.

    Raises:
        ValidationError: The file is empty or has no date or amount columns
    """
    reader = csv.DictReader(io.StringIO((text or "").strip()))
    if not reader.fieldnames:
        raise ValidationError("Statement CSV is empty")
    reader.fieldnames = [normalize_header(h or "") for h in reader.fieldnames]
    headers = set(reader.fieldnames)
    if not headers.intersection(DATE_COLUMNS):
        raise ValidationError("Statement CSV needs a date column")
    if not headers.intersection(("amount", "debit", "credit")):
        raise ValidationError("Statement CSV needs an amount, debit or credit column")

    parsed = ParsedStatement()
    seen: Counter = Counter()
    for row in reader:
        line = reader.line_num
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue
        parsed.total += 1
        try:
            row_date = parse_statement_date(_first(row, DATE_COLUMNS))
            signed = _signed_amount(row)
        except ValueError as e:
            logger.warning("statement_row_skipped", account_id=account.provider_account_id, line=line, error=str(e))
            parsed.skipped_rows.append(line)
            continue

        description = _first(row, DESCRIPTION_COLUMNS) or "Card transaction"
        fingerprint = (row_date, signed, description)
        occurrence = seen[fingerprint]
        seen[fingerprint] += 1

        parsed.transactions.append(NormalizedTransaction(
            provider=Provider.MANUAL,
            provider_transaction_id=statement_row_key(
                account.provider_account_id, row_date, signed, description, occurrence
            ),
            account_id=account.provider_account_id,
            transaction_date=row_date,
            amount=abs(signed),
            type=TransactionType.CREDIT if signed < 0 else TransactionType.DEBIT,
            description=description[:500],
            merchant=(row.get("merchant") or "").strip()[:200] or None,
            category=(row.get("category") or "").strip()[:100] or DEFAULT_CATEGORY,
            card_provider=account.institution_name,
            metadata={"imported_from": "statement_csv", "line": line},
        ))
    return parsed
