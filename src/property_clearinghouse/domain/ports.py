"""Collaborator protocols.

Defines the interfaces the services depend on for external systems. These
are Protocols (structural subtyping) so concrete clients and test fakes
don't need to inherit from a base class — they just need to match the shape.

The domain layer has ZERO imports from httpx, redis, or any provider SDK.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, runtime_checkable

from property_clearinghouse.domain.enums import KycStatus, NotificationType, PlatformRole


@dataclass(frozen=True)
class Actor:
    """The caller, as resolved by the auth/session provider."""

    user_id: uuid.UUID
    role: PlatformRole = PlatformRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == PlatformRole.ADMIN


@dataclass(frozen=True)
class KycSnapshot:
    """Tier statuses for one user as the KYC store reports them."""

    user_id: uuid.UUID
    tier1: KycStatus
    tier2: KycStatus


@dataclass(frozen=True)
class NotificationMessage:
    """Outbound copy of a persisted notification.

    Attributes:
        notification_id: Id of the persisted notifications row.
        user_id: Recipient.
        type: NotificationType.
        title / message: Human-readable content.
        data: Structured context (transaction id, amounts, step numbers).
    """

    notification_id: uuid.UUID
    user_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize for webhook delivery."""
        return {
            "notification_id": str(self.notification_id),
            "user_id": str(self.user_id),
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "data": self.data,
        }


@runtime_checkable
class PaymentProvider(Protocol):
    """Custody/payment provider operations fund protection depends on.

    Concrete implementation:
        - infrastructure/payment_provider/client.py (HTTP, HMAC-signed)
    """

    async def enrich_wallet(self, provider_user_id: str, provider_wallet_id: str) -> str:
        """Return a blockchain deposit address for the wallet.

        Raises:
            PaymentProviderError: If the provider fails or returns no address.
        """
        ...

    async def get_available_balance(
        self, provider_user_id: str, provider_account_id: str
    ) -> Decimal:
        """Return the spendable balance held in one currency account.

        Raises:
            PaymentProviderError: If the provider fails or the balance is unreadable.
        """
        ...

    async def get_exchange_rates(self) -> dict:
        """Return the raw rate table keyed by pair (e.g. ``BTCEUR``)."""
        ...


@runtime_checkable
class KycStatusReader(Protocol):
    """Read-only view of per-user KYC tier statuses."""

    async def get_status(self, user_id: uuid.UUID) -> KycSnapshot:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Delivers a persisted notification to an outbound channel.

    Implementations must not raise for delivery failures; the triggering
    state change has already been committed by the time they run.
    """

    async def dispatch(self, message: NotificationMessage) -> None:
        ...
