"""Payment/custody provider adapter — HMAC-signed httpx client."""

from property_clearinghouse.infrastructure.payment_provider.auth import ProviderAuth
from property_clearinghouse.infrastructure.payment_provider.client import (
    PaymentProviderClient,
    extract_deposit_address,
    parse_available_balance,
    parse_rate,
)
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

__all__ = [
    "ProviderAuth",
    "PaymentProviderClient",
    "extract_deposit_address",
    "parse_available_balance",
    "parse_rate",
    "PaymentProviderError",
    "ProviderAuthError",
    "ProviderConfigurationError",
    "ProviderNetworkError",
    "ProviderNotFoundError",
    "ProviderRateLimitError",
    "ProviderResponseError",
    "ProviderServerError",
    "ProviderValidationError",
]
