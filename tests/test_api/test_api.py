"""HTTP-level tests: routing, identity headers, error mapping, background delivery.

The app runs in-process through httpx's ASGI transport. The lifespan does not
run, so the database session, provider, rate cache and dispatcher are
supplied through dependency overrides.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

import httpx
import pytest
import pytest_asyncio

from property_clearinghouse.api.deps import (
    get_db_session,
    get_dispatcher,
    get_notification_service,
    get_payment_provider,
    get_rate_cache,
)
from property_clearinghouse.domain.enums import NotificationType, PaymentMethod, TransactionStatus
from property_clearinghouse.domain.exceptions import ConflictError
from property_clearinghouse.infrastructure.redis_client import ExchangeRateCache
from property_clearinghouse.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession


def _headers(user_id: uuid.UUID, role: str | None = None) -> dict[str, str]:
    headers = {"X-User-Id": str(user_id)}
    if role:
        headers["X-User-Role"] = role
    return headers


@pytest_asyncio.fixture
async def client(
    session_factory, fake_provider, dispatcher
) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_payment_provider] = lambda: fake_provider
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_rate_cache] = lambda: ExchangeRateCache(None, 0)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_offer(client: httpx.AsyncClient, world, **overrides) -> dict:
    body = {
        "property_id": str(world.property.id),
        "offer_price": "300000",
        "payment_method": "FIAT",
    }
    body.update(overrides)
    response = await client.post(
        "/api/v1/transactions", json=body, headers=_headers(world.buyer.id)
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestIdentity:
    @pytest.mark.asyncio
    async def test_missing_user_header(self, client, world) -> None:
        response = await client.get("/api/v1/transactions")

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_malformed_user_header(self, client, world) -> None:
        response = await client.get("/api/v1/transactions", headers={"X-User-Id": "nope"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_role(self, client, world) -> None:
        response = await client.get(
            "/api/v1/transactions", headers=_headers(world.buyer.id, "ROOT")
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client, world) -> None:
        headers = _headers(world.buyer.id) | {"X-Request-ID": "req-42"}
        response = await client.get("/api/v1/transactions", headers=headers)
        assert response.headers["X-Request-ID"] == "req-42"


class TestTransactionRoutes:
    @pytest.mark.asyncio
    async def test_create_offer(self, client, world, dispatcher) -> None:
        created = await _create_offer(client, world, message="Quick close possible")

        assert created["status"] == "OFFER"
        assert created["version"] == 1
        assert created["buyer_id"] == str(world.buyer.id)
        assert created["seller_id"] == str(world.seller.id)
        assert Decimal(created["offer_price"]) == Decimal("300000")

        (message,) = dispatcher.messages
        assert message.user_id == world.seller.id
        assert message.type == "NEW_OFFER"

        listed = await client.get("/api/v1/transactions", headers=_headers(world.seller.id))
        assert [t["id"] for t in listed.json()] == [created["id"]]

    @pytest.mark.asyncio
    async def test_negotiation_round_trip(self, client, world) -> None:
        created = await _create_offer(client, world)
        url = f"/api/v1/transactions/{created['id']}/transition"

        countered = await client.post(
            url,
            json={"action": "COUNTER_OFFER", "price": "315000", "expected_status": "OFFER"},
            headers=_headers(world.seller.id),
        )
        assert countered.status_code == 200, countered.text
        assert countered.json()["status"] == "NEGOTIATION"

        accepted = await client.post(
            url, json={"action": "ACCEPT_OFFER"}, headers=_headers(world.buyer.id)
        )
        assert accepted.json()["status"] == "AGREEMENT"
        assert Decimal(accepted.json()["agreed_price"]) == Decimal("315000")

        rounds = await client.get(
            f"/api/v1/transactions/{created['id']}/counter-offers",
            headers=_headers(world.buyer.id),
        )
        assert [r["round_number"] for r in rounds.json()] == [1]

        history = await client.get(
            f"/api/v1/transactions/{created['id']}/history", headers=_headers(world.buyer.id)
        )
        assert [h["to_status"] for h in history.json()] == ["OFFER", "NEGOTIATION", "AGREEMENT"]

    @pytest.mark.asyncio
    async def test_illegal_transition_is_409(self, client, world) -> None:
        created = await _create_offer(client, world)

        response = await client.post(
            f"/api/v1/transactions/{created['id']}/transition",
            json={"action": "COMPLETE_AGREEMENT"},
            headers=_headers(world.buyer.id),
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "INVALID_STATE_TRANSITION"
        assert body["details"] == {"current_state": "OFFER", "action": "COMPLETE_AGREEMENT"}
        assert set(body) == {"error", "message", "details"}

    @pytest.mark.asyncio
    async def test_stale_expected_status_is_409(self, client, world) -> None:
        created = await _create_offer(client, world)

        response = await client.post(
            f"/api/v1/transactions/{created['id']}/transition",
            json={"action": "ACCEPT_OFFER", "expected_status": "NEGOTIATION"},
            headers=_headers(world.seller.id),
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unmet_precondition_is_412(self, client, world) -> None:
        created = await _create_offer(client, world)
        await client.post(
            f"/api/v1/transactions/{created['id']}/transition",
            json={"action": "ACCEPT_OFFER"},
            headers=_headers(world.seller.id),
        )

        response = await client.post(
            f"/api/v1/transactions/{created['id']}/promissory/sign",
            headers=_headers(world.buyer.id),
        )

        assert response.status_code == 412
        assert response.json()["details"] == {"precondition": "promissory_document_uploaded"}

    @pytest.mark.asyncio
    async def test_outsider_is_403(self, client, world) -> None:
        created = await _create_offer(client, world)

        response = await client.get(
            f"/api/v1/transactions/{created['id']}", headers=_headers(world.outsider.id)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_404(self, client, world) -> None:
        response = await client.get(
            f"/api/v1/transactions/{uuid.uuid4()}", headers=_headers(world.buyer.id)
        )
        assert response.status_code == 404
        assert response.json()["error"] == "TRANSACTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_request_validation_uses_error_body(self, client, world) -> None:
        response = await client.post(
            "/api/v1/transactions",
            json={"property_id": str(world.property.id), "offer_price": "-5"},
            headers=_headers(world.buyer.id),
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "VALIDATION_FAILED"
        fields = {tuple(e["loc"]) for e in body["details"]["errors"]}
        assert ("body", "offer_price") in fields
        assert ("body", "payment_method") in fields

    @pytest.mark.asyncio
    async def test_hybrid_split_must_add_up(self, client, world) -> None:
        response = await client.post(
            "/api/v1/transactions",
            json={
                "property_id": str(world.property.id),
                "offer_price": "300000",
                "payment_method": "HYBRID",
                "crypto_percentage": 40,
                "fiat_percentage": 40,
            },
            headers=_headers(world.buyer.id),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_status_snapshot(self, client, world) -> None:
        created = await _create_offer(client, world)

        response = await client.get(
            f"/api/v1/transactions/{created['id']}/status", headers=_headers(world.seller.id)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OFFER"
        assert body["user_role"] == "SELLER"
        assert body["awaiting_response_from"] == "SELLER"
        assert "ACCEPT_OFFER" in body["available_actions"]
        assert body["fund_protection"]["initialized"] is False


class TestFundProtectionRoutes:
    @pytest.mark.asyncio
    async def test_fiat_steps_complete_to_escrow(self, client, world, drive_to) -> None:
        transaction = await drive_to(TransactionStatus.FUND_PROTECTION)
        base = f"/api/v1/transactions/{transaction.id}/fund-protection"

        status = await client.get(base, headers=_headers(world.buyer.id))
        assert status.status_code == 200
        body = status.json()
        assert body["initialized"] is True
        assert body["progress"] == {"completed": 0, "total": 2, "percentage": 0}
        assert body["needs_user_action"] is True
        upload, confirm = body["steps"]
        assert upload["amount"] == "300000.00"

        out_of_order = await client.post(
            f"/api/v1/fund-protection/steps/{confirm['id']}/complete",
            json={},
            headers=_headers(world.seller.id),
        )
        assert out_of_order.status_code == 409
        assert out_of_order.json()["error"] == "STEP_OUT_OF_ORDER"

        first = await client.post(
            f"/api/v1/fund-protection/steps/{upload['id']}/complete",
            json={"proof_url": "s3://proofs/wire.pdf"},
            headers=_headers(world.buyer.id),
        )
        assert first.status_code == 200, first.text
        assert first.json()["released_to_escrow"] is False

        last = await client.post(
            f"/api/v1/fund-protection/steps/{confirm['id']}/complete",
            json={},
            headers=_headers(world.seller.id),
        )
        assert last.json()["released_to_escrow"] is True
        assert last.json()["transaction_status"] == "ESCROW"

    @pytest.mark.asyncio
    async def test_initialize_crypto_deal(self, client, world, drive_to, fake_provider) -> None:
        transaction = await drive_to(
            TransactionStatus.FUND_PROTECTION, payment_method=PaymentMethod.CRYPTO
        )

        response = await client.post(
            f"/api/v1/transactions/{transaction.id}/fund-protection/initialize",
            json={"currency": "eth"},
            headers=_headers(world.buyer.id),
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["plan"]["currency"] == "ETH"
        assert Decimal(body["plan"]["crypto_amount"]) == Decimal("100")
        assert {s["currency"] for s in body["steps"]} >= {"ETH"}
        assert ("prov-buyer", "b-eth") in fake_provider.enrich_calls

    @pytest.mark.asyncio
    async def test_provider_outage_is_503(self, client, world, drive_to, fake_provider) -> None:
        transaction = await drive_to(
            TransactionStatus.FUND_PROTECTION, payment_method=PaymentMethod.CRYPTO
        )
        fake_provider.fail_enrich = True

        response = await client.post(
            f"/api/v1/transactions/{transaction.id}/fund-protection/initialize",
            json={"currency": "ETH"},
            headers=_headers(world.buyer.id),
        )

        assert response.status_code == 503
        assert response.json()["error"] == "PROVIDER_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_unfunded_deposit_is_412(self, client, world, drive_to, fake_provider) -> None:
        transaction = await drive_to(
            TransactionStatus.FUND_PROTECTION,
            payment_method=PaymentMethod.CRYPTO,
            currency="BTC",
        )
        fake_provider.balances["b-btc"] = Decimal("0.5")
        status = await client.get(
            f"/api/v1/transactions/{transaction.id}/fund-protection",
            headers=_headers(world.buyer.id),
        )
        deposit = status.json()["steps"][0]
        assert deposit["step_type"] == "CRYPTO_DEPOSIT"

        response = await client.post(
            f"/api/v1/fund-protection/steps/{deposit['id']}/complete",
            json={"tx_hash": "0xabc"},
            headers=_headers(world.buyer.id),
        )

        assert response.status_code == 412
        body = response.json()
        assert body["error"] == "PRECONDITION_FAILED"
        assert body["details"] == {"precondition": "deposit_received"}

    @pytest.mark.asyncio
    async def test_admin_fails_a_step(self, client, world, drive_to) -> None:
        transaction = await drive_to(TransactionStatus.FUND_PROTECTION)
        status = await client.get(
            f"/api/v1/transactions/{transaction.id}/fund-protection",
            headers=_headers(world.admin.id, "ADMIN"),
        )
        upload = status.json()["steps"][0]
        url = f"/api/v1/fund-protection/steps/{upload['id']}/fail"

        denied = await client.post(
            url, json={"reason": "bounced"}, headers=_headers(world.buyer.id)
        )
        assert denied.status_code == 403

        failed = await client.post(
            url, json={"reason": "Wire bounced"}, headers=_headers(world.admin.id, "ADMIN")
        )
        assert failed.status_code == 200
        assert failed.json()["status"] == "FAILED"
        assert failed.json()["failure_reason"] == "Wire bounced"


class TestNotificationRoutes:
    @pytest.mark.asyncio
    async def test_inbox(self, client, world) -> None:
        await _create_offer(client, world)
        seller = _headers(world.seller.id)

        count = await client.get("/api/v1/notifications/unread-count", headers=seller)
        assert count.json() == {"count": 1}

        inbox = await client.get("/api/v1/notifications", headers=seller)
        (notice,) = inbox.json()
        assert notice["type"] == "NEW_OFFER"

        read = await client.post(f"/api/v1/notifications/{notice['id']}/read", headers=seller)
        assert read.json()["is_read"] is True

        buyer_read = await client.post(
            f"/api/v1/notifications/{notice['id']}/read", headers=_headers(world.buyer.id)
        )
        assert buyer_read.status_code == 403

    @pytest.mark.asyncio
    async def test_mark_all_read(self, client, world) -> None:
        created = await _create_offer(client, world)
        await client.post(
            f"/api/v1/transactions/{created['id']}/transition",
            json={"action": "COUNTER_OFFER", "price": "310000"},
            headers=_headers(world.seller.id),
        )
        await client.post(
            f"/api/v1/transactions/{created['id']}/transition",
            json={"action": "COUNTER_OFFER", "price": "305000"},
            headers=_headers(world.buyer.id),
        )
        seller = _headers(world.seller.id)

        response = await client.post("/api/v1/notifications/read-all", headers=seller)

        assert response.json() == {"updated": 2}
        count = await client.get("/api/v1/notifications/unread-count", headers=seller)
        assert count.json() == {"count": 0}


class TestOpenApi:
    @pytest.mark.asyncio
    async def test_error_bodies_are_documented(self, client) -> None:
        schema = (await client.get("/openapi.json")).json()

        create = schema["paths"]["/api/v1/transactions"]["post"]["responses"]
        assert create["409"]["content"]["application/json"]["schema"] == {
            "$ref": "#/components/schemas/ErrorResponse"
        }
        assert "ErrorResponse" in schema["components"]["schemas"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_ok_without_redis(self, client, engine, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            "property_clearinghouse.api.routes.health.get_engine", lambda: engine
        )
        monkeypatch.setattr(
            "property_clearinghouse.api.routes.health.get_redis_or_none", lambda: None
        )

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "version": "0.1.0",
            "database": "healthy",
            "redis": "not_configured",
        }


class TestNotificationDependency:
    @pytest.mark.asyncio
    async def test_failed_request_drops_queued_deliveries(
        self, session, world, dispatcher
    ) -> None:
        provider = get_notification_service(session, dispatcher)
        notifications = await anext(provider)
        await notifications.notify(
            world.seller.id, NotificationType.NEW_OFFER, "New offer", "An offer arrived"
        )

        with pytest.raises(ConflictError):
            await provider.athrow(ConflictError("Transaction was modified concurrently"))

        assert await notifications.dispatch_pending() == 0
        assert dispatcher.messages == []

    @pytest.mark.asyncio
    async def test_successful_request_keeps_queued_deliveries(
        self, session, world, dispatcher
    ) -> None:
        provider = get_notification_service(session, dispatcher)
        notifications = await anext(provider)
        await notifications.notify(
            world.seller.id, NotificationType.NEW_OFFER, "New offer", "An offer arrived"
        )
        await provider.aclose()

        assert await notifications.dispatch_pending() == 1
