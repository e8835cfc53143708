"""Payment/custody provider API client."""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from property_clearinghouse.infrastructure.payment_provider.auth import ProviderAuth
from property_clearinghouse.infrastructure.payment_provider.exceptions import (
    PaymentProviderError,
    ProviderAuthError,
    ProviderConfigurationError,
    ProviderNetworkError,
    ProviderNotFoundError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServerError,
    ProviderValidationError,
)
from property_clearinghouse.logging_config import get_logger

if TYPE_CHECKING:
    from property_clearinghouse.config import Settings

logger = get_logger(__name__)


def extract_deposit_address(payload: dict[str, Any]) -> str | None:
    """Pull the deposit address out of an enrich-account response.

    Single-chain currencies carry ``blockchainDepositAddress`` at the top
    level; multi-chain ones (e.g. USDC) list it per network and the first
    network wins.
    """
    address = payload.get("blockchainDepositAddress")
    if address:
        return address
    networks = payload.get("blockchainNetworks") or []
    if networks:
        return networks[0].get("blockchainDepositAddress") or None
    return None


def parse_rate(rates: dict[str, Any], currency: str, fiat: str = "EUR") -> Decimal | None:
    """Return the sell-side ``<currency><fiat>`` rate, or None if unusable.

    Falls back to ``price`` when ``sell`` is absent. Non-numeric and
    non-positive values are treated as missing.
    """
    entry = rates.get(f"{currency.upper()}{fiat.upper()}")
    if not isinstance(entry, dict):
        return None
    raw = entry.get("sell") or entry.get("price")
    if raw is None:
        return None
    try:
        rate = Decimal(str(raw))
    except InvalidOperation:
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate


def parse_available_balance(payload: dict[str, Any]) -> Decimal:
    """Read ``availableBalance.amount`` from an account response.

    An account with no balance entry holds nothing yet.
    """
    balance = payload.get("availableBalance") or {}
    raw = balance.get("amount") if isinstance(balance, dict) else None
    if raw in (None, ""):
        return Decimal(0)
    try:
        amount = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ProviderResponseError(f"Unreadable account balance: {raw!r}", payload) from exc
    if not amount.is_finite():
        raise ProviderResponseError(f"Unreadable account balance: {raw!r}", payload)
    return amount


class PaymentProviderClient:
    """Async client for the custody/payment provider API.

    Credentials are fixed at construction. To rotate them, build a new client.

    Usage:
        async with PaymentProviderClient.from_settings(settings) as client:
            rates = await client.get_exchange_rates()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        retry_min_wait_seconds: float = 0.5,
        retry_max_wait_seconds: float = 4.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = ProviderAuth(api_key, api_secret)
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.retry_min_wait_seconds = retry_min_wait_seconds
        self.retry_max_wait_seconds = retry_max_wait_seconds
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> PaymentProviderClient:
        return cls(
            base_url=settings.provider_base_url,
            api_key=settings.provider_api_key,
            api_secret=settings.provider_api_secret,
            timeout_seconds=settings.provider_timeout_seconds,
            retry_attempts=settings.provider_retry_attempts,
            retry_min_wait_seconds=settings.provider_retry_min_wait_seconds,
            retry_max_wait_seconds=settings.provider_retry_max_wait_seconds,
        )

    async def __aenter__(self) -> PaymentProviderClient:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with PaymentProviderClient(...) as client:'"
            )
        return self._client

    @property
    def is_configured(self) -> bool:
        return bool(self.auth.api_key and self.auth.api_secret)

    def _handle_error(self, response: httpx.Response) -> None:
        """Raise the exception matching an error response's status code."""
        if response.is_success:
            return

        try:
            details = response.json()
        except ValueError:
            details = response.text

        status = response.status_code
        message = f"HTTP {status}"
        if isinstance(details, dict):
            reason = details.get("message") or details.get("error")
            if reason:
                message = f"{message}: {reason}"

        if status in (401, 403):
            raise ProviderAuthError(message, details, status)
        elif status == 404:
            raise ProviderNotFoundError(message, details, status)
        elif status in (400, 422):
            raise ProviderValidationError(message, details, status)
        elif status == 429:
            raise ProviderRateLimitError(message, details, status)
        elif status >= 500:
            raise ProviderServerError(message, details, status)
        else:
            raise PaymentProviderError(message, details, status)

    def _create_retry_decorator(self):  # noqa: ANN202
        return retry(
            retry=retry_if_exception_type(
                (ProviderServerError, ProviderNetworkError, ProviderRateLimitError)
            ),
            stop=stop_after_attempt(max(1, self.retry_attempts)),
            wait=wait_exponential(
                min=self.retry_min_wait_seconds,
                max=self.retry_max_wait_seconds,
            ),
            reraise=True,
        )

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a signed request and return the decoded JSON object.

        The exact bytes sent are the bytes signed.
        """
        if not self.is_configured:
            raise ProviderConfigurationError("Provider API credentials are not configured")

        content = json.dumps(body if body is not None else {}, separators=(",", ":")).encode(
            "utf-8"
        )

        @self._create_retry_decorator()
        async def _do_request() -> dict[str, Any]:
            headers = self.auth.get_headers(method, path, content)
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    headers=headers,
                    content=content,
                )
            except httpx.TimeoutException as e:
                raise ProviderNetworkError(f"Timeout: {e}") from e
            except httpx.NetworkError as e:
                raise ProviderNetworkError(f"Network error: {e}") from e

            self._handle_error(response)
            try:
                data = response.json()
            except ValueError as e:
                raise ProviderResponseError("Response is not JSON", response.text) from e
            if not isinstance(data, dict):
                raise ProviderResponseError("Unexpected response shape", data)
            return data

        try:
            return await _do_request()
        except PaymentProviderError as e:
            logger.warning(
                "provider.request_failed",
                method=method,
                path=path,
                error_type=type(e).__name__,
                status_code=e.status_code,
                error=e.message,
            )
            raise

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def enrich_wallet(self, provider_user_id: str, provider_wallet_id: str) -> str:
        """Ask the provider to issue a blockchain deposit address.

        Raises:
            ProviderResponseError: If the response carries no address.
        """
        payload = await self._request(
            "POST",
            "/wallets/account/enrich",
            {"userId": provider_user_id, "accountId": provider_wallet_id},
        )
        address = extract_deposit_address(payload)
        if not address:
            raise ProviderResponseError("Provider returned no deposit address", payload)
        logger.info(
            "provider.wallet_enriched",
            provider_wallet_id=provider_wallet_id,
        )
        return address

    async def get_available_balance(
        self, provider_user_id: str, provider_account_id: str
    ) -> Decimal:
        """Return the spendable balance of one currency account.

        Raises:
            ProviderResponseError: If the balance is not a usable number.
        """
        payload = await self._request(
            "POST",
            "/wallets/get/account",
            {"userId": provider_user_id, "accountId": provider_account_id},
        )
        return parse_available_balance(payload)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    async def get_exchange_rates(self) -> dict[str, Any]:
        """Fetch the provider's rate table keyed by pair (e.g. ``BTCEUR``)."""
        return await self._request("POST", "/trade/rates", {})
