"""
Configuration Management for FinSync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every provider has its own settings class with its own env prefix. A provider
whose required settings are missing is simply not configured, and the rest of
the system keeps working without it.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlaidSettings(BaseSettings):
    """Plaid banking aggregator configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PLAID_",
        extra="ignore"
    )

    client_id: str = Field(
        ...,
        description="Plaid client ID"
    )
    secret: str = Field(
        ...,
        description="Plaid secret for the selected environment"
    )
    environment: str = Field(
        default="sandbox",
        pattern="^(sandbox|development|production)$",
        description="Plaid environment"
    )
    products: str = Field(
        default="transactions",
        description="Comma-separated list of Plaid products"
    )
    country_codes: str = Field(
        default="US",
        description="Comma-separated list of country codes"
    )
    client_name: str = Field(
        default="FinSync",
        description="Client name shown in Plaid Link"
    )

    @property
    def base_url(self) -> str:
        return f"https://{self.environment}.plaid.com"

    @property
    def products_list(self) -> list[str]:
        return [p.strip() for p in self.products.split(",") if p.strip()]

    @property
    def country_codes_list(self) -> list[str]:
        return [c.strip().upper() for c in self.country_codes.split(",") if c.strip()]


class PayPalSettings(BaseSettings):
    """PayPal payment processor configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PAYPAL_",
        extra="ignore"
    )

    client_id: str = Field(
        ...,
        description="PayPal REST client ID"
    )
    client_secret: str = Field(
        ...,
        description="PayPal REST client secret"
    )
    mode: str = Field(
        default="sandbox",
        pattern="^(sandbox|live)$",
        description="PayPal mode"
    )

    @property
    def base_url(self) -> str:
        if self.mode == "live":
            return "https://api.paypal.com"
        return "https://api.sandbox.paypal.com"


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets configuration (storage backend and debt ledger)."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    accounts_sheet_name: str = Field(default="Accounts")
    transactions_sheet_name: str = Field(default="Transactions")
    debts_sheet_name: str = Field(default="DebtRecords")
    companies_sheet_name: str = Field(default="Companies")
    tokens_sheet_name: str = Field(default="OAuthTokens")
    audit_sheet_name: str = Field(default="AuditLog")
    summary_sheet_name: str = Field(default="DailySummary")
    ledger_debts_sheet_name: str = Field(
        default="Debts",
        description="Hand-maintained sheet the debt ledger is read from"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class QuickBooksSettings(BaseSettings):
    """QuickBooks Online configuration."""

    model_config = SettingsConfigDict(
        env_prefix="QUICKBOOKS_",
        extra="ignore"
    )

    client_id: str = Field(
        ...,
        description="Intuit app client ID"
    )
    client_secret: str = Field(
        ...,
        description="Intuit app client secret"
    )
    redirect_uri: str = Field(
        ...,
        description="OAuth redirect URI registered with Intuit"
    )
    environment: str = Field(
        default="sandbox",
        pattern="^(sandbox|production)$",
    )

    @property
    def api_base_url(self) -> str:
        if self.environment == "production":
            return "https://quickbooks.api.intuit.com"
        return "https://sandbox-quickbooks.api.intuit.com"


class SBASettings(BaseSettings):
    """SBA lending API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SBA_",
        extra="ignore"
    )

    client_id: str = Field(
        ...,
        description="SBA API client ID"
    )
    client_secret: str = Field(
        ...,
        description="SBA API client secret"
    )
    api_key: str = Field(
        ...,
        description="SBA API key (sent as X-API-Key)"
    )
    base_url: str = Field(
        default="https://lending.sba.gov/api",
    )


class SyncSettings(BaseSettings):
    """
    Reconciliation and scheduling settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    window_days: int = Field(
        default=30,
        ge=1,
        le=730,
        description="Trailing window requested from period-sync providers"
    )
    provider_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Upper bound on any single outbound provider call"
    )
    sync_interval_minutes: int = Field(
        default=30,
        ge=1,
        description="How often the scheduler runs a full sync"
    )
    daily_summary_hour: int = Field(
        default=0,
        ge=0,
        le=23,
        description="Local hour at which the daily summary is generated"
    )
    enabled_providers: str = Field(
        default="plaid,paypal,google_sheets,quickbooks,sba",
        description="Comma-separated list of providers the engine should sync"
    )
    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    @property
    def enabled_providers_list(self) -> list[str]:
        """Get enabled providers as a list."""
        return [p.strip().lower() for p in self.enabled_providers.split(",") if p.strip()]


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def plaid(self) -> PlaidSettings:
        return PlaidSettings()

    @property
    def paypal(self) -> PayPalSettings:
        return PayPalSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def quickbooks(self) -> QuickBooksSettings:
        return QuickBooksSettings()

    @property
    def sba(self) -> SBASettings:
        return SBASettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def try_load(settings: Settings, name: str) -> Optional[BaseSettings]:
    """Load one sub-settings block, returning None when it is not configured."""
    try:
        return getattr(settings, name)
    except ValidationError:
        return None


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    `{setting_name}_error` entry for every block that failed.
    """
    results = {}

    settings = get_settings()

    for name in ("plaid", "paypal", "google_sheets", "quickbooks", "sba", "sync"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
