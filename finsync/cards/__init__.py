"""Manual credit card accounts and statement import."""

from finsync.cards.statements import ParsedStatement, parse_statement_csv, statement_row_key

__all__ = [
    "ParsedStatement",
    "parse_statement_csv",
    "statement_row_key",
]
