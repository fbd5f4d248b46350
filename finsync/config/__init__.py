"""Configuration package."""

from finsync.config.settings import (
    GoogleSheetsSettings,
    PayPalSettings,
    PlaidSettings,
    QuickBooksSettings,
    SBASettings,
    Settings,
    SyncSettings,
    get_settings,
    try_load,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "PayPalSettings",
    "PlaidSettings",
    "QuickBooksSettings",
    "SBASettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "try_load",
    "validate_all_settings",
]
