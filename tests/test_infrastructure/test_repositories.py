"""Tests for the conditional-write repositories against SQLite."""

from __future__ import annotations

from decimal import Decimal

import pytest

from property_clearinghouse.domain.enums import (
    HistoryEntryType,
    StepStatus,
    TransactionAction,
    TransactionStatus,
)
from property_clearinghouse.domain.exceptions import ConflictError
from property_clearinghouse.infrastructure.database.orm_models import (
    FundProtectionStep,
    Transaction,
)
from property_clearinghouse.infrastructure.database.repositories import (
    CounterOfferRepository,
    HistoryRepository,
    StepRepository,
    TransactionRepository,
    WalletRepository,
)


async def _new_transaction(session, world) -> Transaction:
    transaction = await TransactionRepository(session).create(
        Transaction(
            property_id=world.property.id,
            buyer_id=world.buyer.id,
            seller_id=world.seller.id,
            offer_price=Decimal("300000"),
            payment_method="FIAT",
        )
    )
    await session.commit()
    return transaction


class TestConditionalUpdate:
    @pytest.mark.asyncio
    async def test_bumps_version(self, session, world) -> None:
        transaction = await _new_transaction(session, world)
        assert transaction.version == 1

        repo = TransactionRepository(session)
        await repo.conditional_update(
            transaction, TransactionStatus.OFFER, status=TransactionStatus.NEGOTIATION.value
        )

        assert transaction.version == 2
        assert transaction.status == "NEGOTIATION"

    @pytest.mark.asyncio
    async def test_wrong_expected_status_conflicts(self, session, world) -> None:
        transaction = await _new_transaction(session, world)
        with pytest.raises(ConflictError):
            await TransactionRepository(session).conditional_update(
                transaction, TransactionStatus.AGREEMENT, buyer_signed=True
            )

    @pytest.mark.asyncio
    async def test_stale_version_from_second_session_conflicts(
        self, session_factory, world
    ) -> None:
        async with session_factory() as setup:
            transaction = await _new_transaction(setup, world)

        async with session_factory() as first, session_factory() as second:
            mine = await TransactionRepository(first).get_by_id(transaction.id)
            theirs = await TransactionRepository(second).get_by_id(transaction.id)
            assert mine.version == theirs.version == 1

            await TransactionRepository(first).conditional_update(
                mine, TransactionStatus.OFFER, status=TransactionStatus.AGREEMENT.value
            )
            await first.commit()

            with pytest.raises(ConflictError):
                await TransactionRepository(second).conditional_update(
                    theirs, TransactionStatus.OFFER, status=TransactionStatus.CANCELLED.value
                )
            await second.rollback()

        async with session_factory() as check:
            stored = await TransactionRepository(check).get_by_id(transaction.id)
            assert stored.status == "AGREEMENT"
            assert stored.version == 2

    @pytest.mark.asyncio
    async def test_fresh_read_overwrites_identity_map(self, session_factory, world) -> None:
        async with session_factory() as setup:
            transaction = await _new_transaction(setup, world)

        async with session_factory() as reader, session_factory() as writer:
            cached = await TransactionRepository(reader).get_by_id(transaction.id)

            other = await TransactionRepository(writer).get_by_id(transaction.id)
            await TransactionRepository(writer).conditional_update(
                other, TransactionStatus.OFFER, buyer_signed=True
            )
            await writer.commit()

            fresh = await TransactionRepository(reader).get_by_id(transaction.id, fresh=True)
            assert fresh is cached
            assert fresh.buyer_signed is True
            assert fresh.version == 2


class TestFindActive:
    @pytest.mark.asyncio
    async def test_terminal_transactions_do_not_count(self, session, world) -> None:
        repo = TransactionRepository(session)
        transaction = await _new_transaction(session, world)
        assert await repo.find_active(world.buyer.id, world.property.id) is not None

        await repo.conditional_update(
            transaction, TransactionStatus.OFFER, status=TransactionStatus.CANCELLED.value
        )
        assert await repo.find_active(world.buyer.id, world.property.id) is None


class TestCounterOffers:
    @pytest.mark.asyncio
    async def test_rounds_increment(self, session, world) -> None:
        transaction = await _new_transaction(session, world)
        repo = CounterOfferRepository(session)

        first = await repo.create(transaction.id, "SELLER", world.seller.id, Decimal("310000"))
        second = await repo.create(transaction.id, "BUYER", world.buyer.id, Decimal("305000"))

        assert (first.round_number, second.round_number) == (1, 2)
        latest = await repo.get_latest(transaction.id)
        assert latest.offered_by == "BUYER"


class TestHistory:
    @pytest.mark.asyncio
    async def test_entries_keep_write_order(self, session, world) -> None:
        transaction = await _new_transaction(session, world)
        repo = HistoryRepository(session)

        await repo.record(
            transaction.id,
            HistoryEntryType.OFFER_CREATED,
            None,
            TransactionStatus.OFFER,
            actor=str(world.buyer.id),
            actor_role="BUYER",
        )
        await repo.record(
            transaction.id,
            HistoryEntryType.TRANSITION,
            TransactionStatus.OFFER,
            TransactionStatus.AGREEMENT,
            action=TransactionAction.ACCEPT_OFFER.value,
            metadata={"agreed_price": "300000"},
        )

        entries = await repo.get_by_transaction(transaction.id)
        assert [e.entry_type for e in entries] == ["OFFER_CREATED", "TRANSITION"]
        assert entries[1].actor == "SYSTEM"
        assert entries[1].metadata_json == {"agreed_price": "300000"}


class TestSteps:
    @staticmethod
    def _step(number: int) -> FundProtectionStep:
        return FundProtectionStep(
            step_number=number,
            step_type="FIAT_UPLOAD",
            description=f"step {number}",
            user_type="BUYER",
            status=StepStatus.PENDING.value,
            amount=Decimal("100"),
            currency="EUR",
            eur_amount=Decimal("100"),
        )

    @pytest.mark.asyncio
    async def test_replace_all_discards_previous_set(self, session, world) -> None:
        transaction = await _new_transaction(session, world)
        repo = StepRepository(session)

        await repo.replace_all(transaction.id, [self._step(1), self._step(2), self._step(3)])
        await repo.replace_all(transaction.id, [self._step(1)])

        steps = await repo.get_by_transaction(transaction.id)
        assert [s.step_number for s in steps] == [1]

    @pytest.mark.asyncio
    async def test_conditional_status_update(self, session, world) -> None:
        transaction = await _new_transaction(session, world)
        repo = StepRepository(session)
        (step,) = await repo.replace_all(transaction.id, [self._step(1)])

        assert await repo.conditional_status_update(
            step, (StepStatus.PENDING,), status=StepStatus.COMPLETED.value
        )
        assert step.status == "COMPLETED"
        assert not await repo.conditional_status_update(
            step, (StepStatus.PENDING,), status=StepStatus.FAILED.value
        )


class TestWallets:
    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, session, world) -> None:
        wallet = await WalletRepository(session).get_for_user(world.buyer.id, "btc")
        assert wallet is not None
        assert wallet.address == "bc1-b"
