"""Tests for outbound notification delivery."""

from __future__ import annotations

import json
import uuid

import httpx
import pytest

from property_clearinghouse.config import get_settings
from property_clearinghouse.domain.enums import NotificationType
from property_clearinghouse.domain.ports import NotificationMessage
from property_clearinghouse.infrastructure.notification_dispatch import (
    NullNotificationDispatcher,
    WebhookNotificationDispatcher,
    get_notification_dispatcher,
    reset_notification_dispatcher,
)


def _message() -> NotificationMessage:
    return NotificationMessage(
        notification_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        type=NotificationType.OFFER_ACCEPTED,
        title="Offer Accepted!",
        message="Sam Seller accepted the offer of €300,000.00",
        data={"transaction_id": "t-1"},
    )


class TestWebhookDispatcher:
    @pytest.mark.asyncio
    async def test_posts_json(self) -> None:
        received: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(204)

        message = _message()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = WebhookNotificationDispatcher("https://hooks.test/notify", client=client)
            await dispatcher.dispatch(message)

        assert received == [message.to_dict()]
        assert received[0]["type"] == "OFFER_ACCEPTED"

    @pytest.mark.asyncio
    async def test_failed_delivery_is_swallowed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = WebhookNotificationDispatcher("https://hooks.test/notify", client=client)
            await dispatcher.dispatch(_message())


class TestDispatcherSelection:
    def test_defaults_to_null_dispatcher(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "")
        get_settings.cache_clear()
        reset_notification_dispatcher()
        try:
            assert isinstance(get_notification_dispatcher(), NullNotificationDispatcher)
        finally:
            reset_notification_dispatcher()
            get_settings.cache_clear()

    def test_webhook_when_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "https://hooks.test/notify")
        get_settings.cache_clear()
        reset_notification_dispatcher()
        try:
            dispatcher = get_notification_dispatcher()
            assert isinstance(dispatcher, WebhookNotificationDispatcher)
            assert dispatcher is get_notification_dispatcher()
        finally:
            reset_notification_dispatcher()
            get_settings.cache_clear()
