"""
Provider adapters.

One adapter per external data source, all behind ProviderAdapter.
"""

from finsync.providers.base import HttpProviderAdapter, ProviderAdapter
from finsync.providers.paypal import PayPalAdapter
from finsync.providers.plaid import PlaidAdapter
from finsync.providers.quickbooks import QuickBooksAdapter
from finsync.providers.registry import ProviderRegistry, build_registry
from finsync.providers.sba import SBALoanAdapter, validate_loan_number
from finsync.providers.sheets import GoogleSheetsLedgerAdapter

__all__ = [
    # Interface
    "HttpProviderAdapter",
    "ProviderAdapter",
    "ProviderRegistry",
    "build_registry",
    # Adapters
    "GoogleSheetsLedgerAdapter",
    "PayPalAdapter",
    "PlaidAdapter",
    "QuickBooksAdapter",
    "SBALoanAdapter",
    "validate_loan_number",
]
