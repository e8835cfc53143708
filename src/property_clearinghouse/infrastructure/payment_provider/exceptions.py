"""Exceptions raised by the payment provider client.

These never leave the service layer: FundProtectionService translates them
into ProviderUnavailableError or the documented exchange-rate fallback.
"""

from __future__ import annotations

from typing import Any


class PaymentProviderError(Exception):
    """Base exception for provider API errors."""

    def __init__(
        self,
        message: str,
        details: Any = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.status_code = status_code

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ProviderConfigurationError(PaymentProviderError):
    """API key or secret missing."""

    pass


class ProviderAuthError(PaymentProviderError):
    """Authentication/authorization error (401/403)."""

    pass


class ProviderNotFoundError(PaymentProviderError):
    """Resource not found error (404)."""

    pass


class ProviderValidationError(PaymentProviderError):
    """Request validation error (400/422)."""

    pass


class ProviderRateLimitError(PaymentProviderError):
    """Rate limit exceeded error (429)."""

    pass


class ProviderServerError(PaymentProviderError):
    """Server-side error (5xx)."""

    pass


class ProviderNetworkError(PaymentProviderError):
    """Network connectivity error or timeout."""

    pass


class ProviderResponseError(PaymentProviderError):
    """The provider answered 2xx but without the data we asked for."""

    pass
