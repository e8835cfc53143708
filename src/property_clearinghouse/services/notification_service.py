"""Notification Service — persist in-app notifications and hand them to delivery.

Rows are written through the caller's session, so a notification exists if
and only if the state change that triggered it was committed. Outbound
delivery is deferred: ``dispatch_pending()`` must be called after commit
(the API schedules it as a background task).
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from property_clearinghouse.domain.enums import NotificationType, TransactionStatus
from property_clearinghouse.domain.exceptions import ForbiddenError, NotFoundError
from property_clearinghouse.domain.ports import NotificationMessage
from property_clearinghouse.infrastructure.database.orm_models import Notification
from property_clearinghouse.infrastructure.database.repositories import (
    NotificationRepository,
)
from property_clearinghouse.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from property_clearinghouse.domain.ports import NotificationDispatcher
    from property_clearinghouse.infrastructure.database.orm_models import Transaction

logger = get_logger(__name__)


def format_eur(amount: Decimal | None) -> str:
    if amount is None:
        return "€0.00"
    return f"€{amount:,.2f}"


_STATUS_TITLES = {
    TransactionStatus.AGREEMENT: "Agreement Reached",
    TransactionStatus.KYC2_VERIFICATION: "Documentation Complete",
    TransactionStatus.FUND_PROTECTION: "Fund Protection Started",
    TransactionStatus.ESCROW: "Funds Secured in Escrow",
    TransactionStatus.CLOSING: "Closing Started",
    TransactionStatus.COMPLETED: "Transaction Completed",
    TransactionStatus.CANCELLED: "Transaction Cancelled",
}


class NotificationService:
    """Creates, lists and marks notifications."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self._session = session
        self._repo = NotificationRepository(session)
        self._dispatcher = dispatcher
        self._pending: list[NotificationMessage] = []

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    async def notify(
        self,
        user_id: uuid.UUID,
        type: NotificationType,  # noqa: A002
        title: str,
        message: str,
        data: dict | None = None,
        transaction_id: uuid.UUID | None = None,
        property_id: uuid.UUID | None = None,
    ) -> Notification:
        """Persist a notification and queue it for delivery after commit."""
        notification = await self._repo.create(
            Notification(
                user_id=user_id,
                type=type.value,
                title=title,
                message=message,
                data=data,
                transaction_id=transaction_id,
                property_id=property_id,
            )
        )
        self._pending.append(
            NotificationMessage(
                notification_id=notification.id,
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                data=data or {},
            )
        )
        logger.info(
            "notification.created",
            user_id=str(user_id),
            type=type.value,
            transaction_id=str(transaction_id) if transaction_id else None,
        )
        return notification

    async def dispatch_pending(self) -> int:
        """Deliver queued notifications. Failures are logged, never raised."""
        pending, self._pending = self._pending, []
        if self._dispatcher is None:
            return 0
        delivered = 0
        for message in pending:
            try:
                await self._dispatcher.dispatch(message)
                delivered += 1
            except Exception as exc:  # noqa: BLE001 - delivery must not fail the request
                logger.warning(
                    "notification.dispatch_error",
                    notification_id=str(message.notification_id),
                    error=str(exc),
                )
        return delivered

    def discard_pending(self) -> None:
        """Drop queued deliveries (the triggering transaction rolled back)."""
        self._pending = []

    # --- Transaction triggers ---

    async def new_offer(
        self,
        transaction: Transaction,
        buyer_name: str,
        property_title: str,
    ) -> Notification:
        return await self.notify(
            user_id=transaction.seller_id,
            type=NotificationType.NEW_OFFER,
            title="New Offer Received",
            message=(
                f"{buyer_name} made an offer of {format_eur(transaction.offer_price)} "
                f"on {property_title}"
            ),
            data=_transaction_data(transaction, offer_price=transaction.offer_price),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    async def counter_offer(
        self,
        transaction: Transaction,
        recipient_id: uuid.UUID,
        sender_name: str,
        price: Decimal,
        from_buyer: bool,
    ) -> Notification:
        return await self.notify(
            user_id=recipient_id,
            type=NotificationType.COUNTER_OFFER,
            title="Counter Offer Received",
            message=f"{sender_name} made a counter-offer of {format_eur(price)}",
            data=_transaction_data(transaction, offer_price=price, from_buyer=from_buyer),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    async def offer_accepted(
        self,
        transaction: Transaction,
        recipient_id: uuid.UUID,
        accepter_name: str,
    ) -> Notification:
        return await self.notify(
            user_id=recipient_id,
            type=NotificationType.OFFER_ACCEPTED,
            title="Offer Accepted!",
            message=(
                f"{accepter_name} accepted the offer of "
                f"{format_eur(transaction.agreed_price)}"
            ),
            data=_transaction_data(transaction, offer_price=transaction.agreed_price),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    async def offer_rejected(
        self,
        transaction: Transaction,
        recipient_id: uuid.UUID,
        rejecter_name: str,
        rejected_price: Decimal,
        reason: str | None = None,
    ) -> Notification:
        message = f"{rejecter_name} rejected the offer of {format_eur(rejected_price)}"
        if reason:
            message = f"{message}. Reason: {reason}"
        return await self.notify(
            user_id=recipient_id,
            type=NotificationType.OFFER_REJECTED,
            title="Offer Rejected",
            message=message,
            data=_transaction_data(transaction, offer_price=rejected_price, reason=reason),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    async def status_changed(
        self,
        transaction: Transaction,
        recipient_id: uuid.UUID,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
    ) -> Notification:
        return await self.notify(
            user_id=recipient_id,
            type=NotificationType.TRANSACTION_STATUS_CHANGE,
            title=_STATUS_TITLES.get(to_status, "Transaction Updated"),
            message=f"Transaction moved from {from_status.value} to {to_status.value}",
            data=_transaction_data(transaction, from_status=from_status.value),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    async def stage_update(
        self,
        transaction: Transaction,
        recipient_id: uuid.UUID,
        title: str,
        message: str,
        **extra: object,
    ) -> Notification:
        """Sub-stage progress inside AGREEMENT (signatures, confirmations)."""
        return await self.notify(
            user_id=recipient_id,
            type=NotificationType.TRANSACTION_STATUS_CHANGE,
            title=title,
            message=message,
            data=_transaction_data(transaction, **extra),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    async def document_uploaded(
        self,
        transaction: Transaction,
        recipient_id: uuid.UUID,
        uploader_name: str,
        document_type: str,
    ) -> Notification:
        return await self.notify(
            user_id=recipient_id,
            type=NotificationType.DOCUMENT_UPLOADED,
            title="Document Uploaded",
            message=f"{uploader_name} uploaded a {document_type.replace('_', ' ').lower()}",
            data=_transaction_data(transaction, document_type=document_type),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    async def fund_protection_update(
        self,
        transaction: Transaction,
        recipient_id: uuid.UUID,
        title: str,
        message: str,
        **extra: object,
    ) -> Notification:
        return await self.notify(
            user_id=recipient_id,
            type=NotificationType.FUND_PROTECTION_UPDATE,
            title=title,
            message=message,
            data=_transaction_data(transaction, **extra),
            transaction_id=transaction.id,
            property_id=transaction.property_id,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        return await self._repo.get_for_user(user_id, unread_only=unread_only, limit=limit)

    async def unread_count(self, user_id: uuid.UUID) -> int:
        return await self._repo.unread_count(user_id)

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        notification = await self._repo.get_by_id(notification_id)
        if notification is None:
            raise NotFoundError("notification", str(notification_id))
        if notification.user_id != user_id:
            raise ForbiddenError("You can only mark your own notifications as read")
        return await self._repo.mark_read(notification)

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        count = await self._repo.mark_all_read(user_id)
        logger.info("notification.marked_all_read", user_id=str(user_id), count=count)
        return count


def _transaction_data(transaction: Transaction, **extra: object) -> dict:
    """JSON-safe context block attached to every transaction notification."""
    data: dict = {
        "transaction_id": str(transaction.id),
        "property_id": str(transaction.property_id),
        "status": transaction.status,
    }
    for key, value in extra.items():
        if value is None:
            continue
        data[key] = str(value) if isinstance(value, Decimal) else value
    return data
