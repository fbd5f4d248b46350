"""
Provider Adapter Interface

DESIGN DECISION: Every external data source sits behind the same small
capability surface. The reconciliation engine only ever talks to this
interface and never branches on which provider it is dealing with.

Adapters normalize at the boundary: whatever comes out of an adapter is
already a NormalizedTransaction, a ProviderBalance or a DebtSnapshot.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finsync.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderNotSupportedError,
    ProviderTimeoutError,
)
from finsync.models.ledger import (
    Account,
    DebtSnapshot,
    NormalizedTransaction,
    Provider,
)
from finsync.models.sync import ProviderBalance, SyncMode


logger = structlog.get_logger()

DEFAULT_HTTP_TIMEOUT = 30.0


class ProviderAdapter(ABC):
    """
    Abstract interface for one external financial data source.

    Subclasses set `provider`, `sync_mode` and `supports_transactions`.
    """

    provider: Provider
    sync_mode: SyncMode = SyncMode.WINDOW
    supports_transactions: bool = True

    @abstractmethod
    async def fetch_transactions(
        self,
        account: Account,
        start: date,
        end: date,
    ) -> list[NormalizedTransaction]:
        """
        Fetch and normalize the transactions of one account.

        Args:
            account: The linked account to read
            start: First day of the window (ignored by cursor providers)
            end: Last day of the window (ignored by cursor providers)

        Returns:
            Normalized transactions, in provider order

        Raises:
            ProviderError: If the provider call fails
        """
        pass

    @abstractmethod
    async def fetch_balance(self, account: Account) -> Optional[ProviderBalance]:
        """
        Fetch the current balance of one account.

        Returns:
            The balance, or None if the provider reports none for this account

        Raises:
            ProviderError: If the provider call fails
        """
        pass

    async def fetch_debts(self, accounts: list[Account]) -> list[DebtSnapshot]:
        """Debts this provider knows about. Most providers have none."""
        return []

    async def exchange_link_token(self, public_token: str) -> str:
        """Exchange a short-lived link token for a durable credential."""
        raise ProviderNotSupportedError(self.provider.value, "link token exchange not supported")

    async def remove_link(self, credential: Optional[str]) -> None:
        """Revoke a credential at the provider. Default is a no-op."""
        return None

    async def aclose(self) -> None:
        return None


class HttpProviderAdapter(ProviderAdapter):
    """
    Base for adapters that talk to a REST API.

    Owns one httpx.AsyncClient. Transport failures are retried; HTTP error
    statuses are mapped onto the ProviderError family.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        return await self._http.request(method, path, **kwargs)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            ProviderAuthError: On 401/403
            ProviderTimeoutError: If the provider did not answer in time
            ProviderError: On any other failure
        """
        name = self.provider.value
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(name, f"request to {path} timed out: {e}")
        except httpx.TransportError as e:
            raise ProviderError(name, f"request to {path} failed: {e}")

        if response.status_code in (401, 403):
            raise ProviderAuthError(name, "credentials rejected", status_code=response.status_code)
        if response.status_code >= 400:
            logger.warning(
                "provider_http_error",
                provider=name,
                path=path,
                status_code=response.status_code,
            )
            raise ProviderError(
                name,
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()
