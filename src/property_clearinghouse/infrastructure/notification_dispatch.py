"""Outbound notification delivery.

Notifications are persisted by NotificationService inside the triggering
database transaction. Delivery to an outbound channel happens afterwards
through one of these dispatchers; a failed delivery is logged and dropped,
never raised back into the request.
"""

from __future__ import annotations

import httpx

from property_clearinghouse.config import get_settings
from property_clearinghouse.domain.ports import NotificationDispatcher, NotificationMessage
from property_clearinghouse.logging_config import get_logger

logger = get_logger(__name__)


class NullNotificationDispatcher(NotificationDispatcher):
    """No-op dispatcher used when no outbound channel is configured."""

    async def dispatch(self, message: NotificationMessage) -> None:
        logger.debug(
            "notification.dispatch_skipped",
            notification_id=str(message.notification_id),
            type=message.type.value,
        )


class WebhookNotificationDispatcher(NotificationDispatcher):
    """POSTs each notification as JSON to a webhook."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._client = client

    async def dispatch(self, message: NotificationMessage) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(
                    self._url, json=message.to_dict(), timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=message.to_dict())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "notification.dispatch_failed",
                notification_id=str(message.notification_id),
                user_id=str(message.user_id),
                error=str(exc),
            )
            return
        logger.info(
            "notification.dispatched",
            notification_id=str(message.notification_id),
            type=message.type.value,
        )


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Return the cached dispatcher for the configured channel."""
    global _dispatcher
    if _dispatcher is not None:
        return _dispatcher

    settings = get_settings()
    if settings.notification_webhook_url:
        _dispatcher = WebhookNotificationDispatcher(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    else:
        _dispatcher = NullNotificationDispatcher()
    return _dispatcher


def reset_notification_dispatcher() -> None:
    global _dispatcher
    _dispatcher = None
