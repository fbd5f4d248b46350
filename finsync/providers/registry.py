"""
Provider Registry

Maps each Provider to its one adapter instance. Built once from settings;
a provider whose settings are missing is simply left out.
"""

from typing import Iterator, Optional

import structlog

from finsync.config import Settings, get_settings, try_load
from finsync.errors import ProviderNotSupportedError
from finsync.models.ledger import Provider
from finsync.providers.base import ProviderAdapter
from finsync.providers.paypal import PayPalAdapter
from finsync.providers.plaid import PlaidAdapter
from finsync.providers.quickbooks import QuickBooksAdapter
from finsync.providers.sba import SBALoanAdapter
from finsync.providers.sheets import GoogleSheetsLedgerAdapter
from finsync.services.storage.google_sheets import GoogleSheetsClient
from finsync.services.storage.interface import TokenStorageInterface


logger = structlog.get_logger()


class ProviderRegistry:
    """Capability lookup: Provider -> adapter."""

    def __init__(self, adapters: Optional[list[ProviderAdapter]] = None):
        self._adapters: dict[Provider, ProviderAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider] = adapter

    def get(self, provider: Provider) -> ProviderAdapter:
        """
        Raises:
            ProviderNotSupportedError: If the provider is not configured
        """
        try:
            return self._adapters[Provider(provider)]
        except KeyError:
            raise ProviderNotSupportedError(str(provider), "provider is not configured")

    def find(self, provider: Provider) -> Optional[ProviderAdapter]:
        return self._adapters.get(Provider(provider))

    def __contains__(self, provider: object) -> bool:
        return provider in self._adapters

    def __iter__(self) -> Iterator[ProviderAdapter]:
        return iter(self._adapters.values())

    @property
    def providers(self) -> list[Provider]:
        return list(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_registry(
    settings: Optional[Settings] = None,
    token_storage: Optional[TokenStorageInterface] = None,
    sheets_client: Optional[GoogleSheetsClient] = None,
) -> ProviderRegistry:
    """
    Build the registry from settings.

    Only providers listed in SYNC_ENABLED_PROVIDERS whose own settings load
    are registered.

    Args:
        settings: Root settings (defaults to get_settings())
        token_storage: Where QuickBooks tokens live; required for QuickBooks
        sheets_client: GoogleSheetsClient shared with storage, if any
    """
    settings = settings or get_settings()
    sync = settings.sync
    enabled = set(sync.enabled_providers_list)
    timeout = sync.provider_timeout_seconds
    registry = ProviderRegistry()

    if Provider.PLAID.value in enabled:
        plaid = try_load(settings, "plaid")
        if plaid:
            registry.register(PlaidAdapter(plaid, timeout=timeout))

    if Provider.PAYPAL.value in enabled:
        paypal = try_load(settings, "paypal")
        if paypal:
            registry.register(PayPalAdapter(paypal, timeout=timeout))

    if Provider.GOOGLE_SHEETS.value in enabled:
        sheets = try_load(settings, "google_sheets")
        if sheets:
            client = sheets_client or GoogleSheetsClient(sheets)
            registry.register(GoogleSheetsLedgerAdapter(client))

    if Provider.QUICKBOOKS.value in enabled:
        quickbooks = try_load(settings, "quickbooks")
        if quickbooks and token_storage is not None:
            registry.register(QuickBooksAdapter(quickbooks, token_storage, timeout=timeout))
        elif quickbooks:
            logger.warning("quickbooks_skipped_without_token_storage")

    if Provider.SBA.value in enabled:
        sba = try_load(settings, "sba")
        if sba:
            registry.register(SBALoanAdapter(sba, timeout=timeout))

    logger.info(
        "provider_registry_built",
        providers=[p.value for p in registry.providers],
    )
    return registry
