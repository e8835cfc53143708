"""Shared test fixtures for the Property Clearinghouse test suite.

Provides:
    - A SQLite file database per test (aiosqlite), tables created from the ORM
    - A seeded world: buyer, seller, admin, outsider, an approved property, wallets
    - A fake payment provider and a recording notification dispatcher
    - ``drive_to``: pushes a fresh transaction through the real services to a stage
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from property_clearinghouse.domain.enums import (
    DocumentType,
    KycStatus,
    PaymentMethod,
    PlatformRole,
    TransactionAction,
    TransactionStatus,
)
from property_clearinghouse.domain.ports import Actor
from property_clearinghouse.infrastructure.database.orm_models import (
    Base,
    Property,
    User,
    Wallet,
)
from property_clearinghouse.infrastructure.payment_provider import (
    ProviderNetworkError,
    ProviderServerError,
)
from property_clearinghouse.services import (
    FundProtectionService,
    NotificationService,
    StepGenerator,
    TransactionService,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from property_clearinghouse.domain.ports import NotificationMessage


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeProvider:
    """In-memory stand-in for PaymentProviderClient."""

    def __init__(self) -> None:
        self.rates: dict = {
            "BTCEUR": {"price": "60000", "buy": "60500", "sell": "60000"},
            "ETHEUR": {"price": "3000", "buy": "3010", "sell": "3000"},
        }
        self.fail_rates = False
        self.fail_enrich = False
        self.fail_balance = False
        # Spendable balance per provider account id; unlisted accounts hold plenty
        self.balances: dict[str, Decimal] = {}
        self.enrich_calls: list[tuple[str, str]] = []
        self.balance_calls: list[tuple[str, str]] = []
        self.rate_calls = 0

    async def enrich_wallet(self, provider_user_id: str, provider_wallet_id: str) -> str:
        self.enrich_calls.append((provider_user_id, provider_wallet_id))
        if self.fail_enrich:
            raise ProviderServerError("HTTP 503: maintenance", None, 503)
        return f"addr-{provider_wallet_id}"

    async def get_available_balance(
        self, provider_user_id: str, provider_account_id: str
    ) -> Decimal:
        self.balance_calls.append((provider_user_id, provider_account_id))
        if self.fail_balance:
            raise ProviderNetworkError("Timeout: read timed out")
        return self.balances.get(provider_account_id, Decimal("1000"))

    async def get_exchange_rates(self) -> dict:
        self.rate_calls += 1
        if self.fail_rates:
            raise ProviderNetworkError("Timeout: read timed out")
        return self.rates


class RecordingDispatcher:
    def __init__(self) -> None:
        self.messages: list[NotificationMessage] = []

    async def dispatch(self, message: NotificationMessage) -> None:
        self.messages.append(message)


@dataclass
class World:
    buyer: User
    seller: User
    admin: User
    outsider: User
    property: Property

    @property
    def buyer_actor(self) -> Actor:
        return Actor(user_id=self.buyer.id)

    @property
    def seller_actor(self) -> Actor:
        return Actor(user_id=self.seller.id)

    @property
    def admin_actor(self) -> Actor:
        return Actor(user_id=self.admin.id, role=PlatformRole.ADMIN)

    @property
    def outsider_actor(self) -> Actor:
        return Actor(user_id=self.outsider.id)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clearinghouse.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def world(session_factory) -> World:
    """Seed users, an approved property and BTC/ETH wallets, then commit."""
    async with session_factory() as s:
        buyer = User(
            id=uuid.uuid4(),
            email="buyer@example.com",
            first_name="Bea",
            last_name="Buyer",
            provider_user_id="prov-buyer",
            kyc_status=KycStatus.PASSED.value,
            kyc2_status=KycStatus.PASSED.value,
        )
        seller = User(
            id=uuid.uuid4(),
            email="seller@example.com",
            first_name="Sam",
            last_name="Seller",
            provider_user_id="prov-seller",
            kyc_status=KycStatus.PASSED.value,
            kyc2_status=KycStatus.PASSED.value,
        )
        admin = User(id=uuid.uuid4(), email="admin@example.com", role="ADMIN")
        outsider = User(
            id=uuid.uuid4(),
            email="outsider@example.com",
            kyc_status=KycStatus.PASSED.value,
        )
        s.add_all([buyer, seller, admin, outsider])
        await s.flush()

        prop = Property(
            id=uuid.uuid4(),
            seller_id=seller.id,
            title="Sea-view apartment, Lisbon",
            price=Decimal("320000.00"),
            is_approved=True,
        )
        s.add(prop)
        for user, tag in ((buyer, "b"), (seller, "s")):
            s.add(
                Wallet(
                    user_id=user.id,
                    currency="BTC",
                    provider_wallet_id=f"{tag}-btc",
                    address=f"bc1-{tag}",
                )
            )
            # ETH wallets start without an address: enrichment fills them in
            s.add(Wallet(user_id=user.id, currency="ETH", provider_wallet_id=f"{tag}-eth"))
        await s.commit()

    return World(buyer=buyer, seller=seller, admin=admin, outsider=outsider, property=prop)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_services(fake_provider, dispatcher):
    """Build (TransactionService, FundProtectionService) sharing one session."""

    def _make(
        session: AsyncSession,
        provider: object | None = fake_provider,
        rate_cache: object | None = None,
    ) -> tuple[TransactionService, FundProtectionService]:
        notifications = NotificationService(session, dispatcher=dispatcher)
        generator = StepGenerator(session, provider=provider, rate_cache=rate_cache)
        transactions = TransactionService(
            session, notifications=notifications, step_generator=generator
        )
        fund_protection = FundProtectionService(
            session,
            provider=provider,
            notifications=notifications,
            transactions=transactions,
            step_generator=generator,
        )
        return transactions, fund_protection

    return _make


@pytest.fixture
def drive_to(session, world, make_services):
    """Create an offer and push it through the real services to ``target``."""

    async def _drive(
        target: TransactionStatus,
        payment_method: PaymentMethod = PaymentMethod.FIAT,
        crypto_percentage: int | None = None,
        fiat_percentage: int | None = None,
        price: Decimal = Decimal("300000"),
        currency: str | None = None,
    ):
        txs, _ = make_services(session)
        buyer, seller = world.buyer_actor, world.seller_actor

        transaction = await txs.create_offer(
            actor=buyer,
            property_id=world.property.id,
            offer_price=price,
            payment_method=payment_method,
            crypto_percentage=crypto_percentage,
            fiat_percentage=fiat_percentage,
        )
        if target == TransactionStatus.OFFER:
            await session.commit()
            return transaction

        if target == TransactionStatus.NEGOTIATION:
            transaction = await txs.transition(
                transaction.id, seller, TransactionAction.COUNTER_OFFER, price=price + 10000
            )
            await session.commit()
            return transaction

        transaction = await txs.transition(transaction.id, seller, TransactionAction.ACCEPT_OFFER)
        if target == TransactionStatus.AGREEMENT:
            await session.commit()
            return transaction

        for actor in (buyer, seller):
            await txs.record_document(
                transaction.id,
                actor,
                DocumentType.PROMISSORY_AGREEMENT,
                "promissory.pdf",
                "s3://docs/promissory.pdf",
            )
            await txs.sign_promissory(transaction.id, actor)
        await txs.record_document(
            transaction.id,
            buyer,
            DocumentType.REPRESENTATION_DOCUMENT,
            "poa.pdf",
            "s3://docs/poa.pdf",
        )
        for actor in (buyer, seller):
            await txs.sign_mediation(transaction.id, actor)
        transaction = await txs.transition(
            transaction.id, buyer, TransactionAction.COMPLETE_AGREEMENT
        )
        if target == TransactionStatus.KYC2_VERIFICATION:
            await session.commit()
            return transaction

        transaction = await txs.transition(
            transaction.id,
            buyer,
            TransactionAction.ENTER_FUND_PROTECTION,
            currency=currency,
        )
        await session.commit()
        return transaction

    return _drive
