"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Writes that must be linearizable per transaction (status changes, flag
changes, step completion) are issued as conditional UPDATEs and report
whether they matched, instead of mutating loaded objects and flushing.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update

from property_clearinghouse.domain.enums import StepStatus, TransactionStatus
from property_clearinghouse.domain.exceptions import ConflictError
from property_clearinghouse.infrastructure.database.orm_models import (
    CounterOffer,
    Document,
    FundProtectionStep,
    Notification,
    Property,
    Transaction,
    TransactionHistoryEntry,
    User,
    Wallet,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from property_clearinghouse.domain.enums import DocumentType, HistoryEntryType


_ACTIVE_STATUSES = [s.value for s in TransactionStatus if not s.is_terminal]


class UserRepository:
    """Data access for platform users."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, user: User) -> User:
        self._session.add(user)
        await self._session.flush()
        return user

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        result = await self._session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_many(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, User]:
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self._session.execute(select(User).where(User.id.in_(ids)))
        return {u.id: u for u in result.scalars().all()}


class PropertyRepository:
    """Data access for listed properties."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, prop: Property) -> Property:
        self._session.add(prop)
        await self._session.flush()
        return prop

    async def get_by_id(self, property_id: uuid.UUID) -> Property | None:
        result = await self._session.execute(
            select(Property).where(Property.id == property_id)
        )
        return result.scalar_one_or_none()


class WalletRepository:
    """Data access for provider-backed wallets."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, wallet: Wallet) -> Wallet:
        self._session.add(wallet)
        await self._session.flush()
        return wallet

    async def get_for_user(self, user_id: uuid.UUID, currency: str) -> Wallet | None:
        """Fetch the user's wallet for a currency (case-insensitive)."""
        result = await self._session.execute(
            select(Wallet).where(
                Wallet.user_id == user_id,
                func.upper(Wallet.currency) == currency.upper(),
            )
        )
        return result.scalar_one_or_none()

    async def set_address(self, wallet: Wallet, address: str) -> Wallet:
        """Persist a deposit address obtained from the provider."""
        wallet.address = address
        await self._session.flush()
        return wallet


class TransactionRepository:
    """Data access for transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transaction: Transaction) -> Transaction:
        """Insert a new transaction."""
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    async def get_by_id(
        self,
        transaction_id: uuid.UUID,
        fresh: bool = False,
    ) -> Transaction | None:
        """Fetch a transaction by its UUID.

        ``fresh=True`` overwrites any copy already in the identity map with
        the persisted row, so guards never run against stale state.
        """
        stmt = select(Transaction).where(Transaction.id == transaction_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active(
        self,
        buyer_id: uuid.UUID,
        property_id: uuid.UUID,
    ) -> Transaction | None:
        """Return the buyer's non-terminal transaction on a property, if any."""
        result = await self._session.execute(
            select(Transaction)
            .where(
                Transaction.buyer_id == buyer_id,
                Transaction.property_id == property_id,
                Transaction.status.in_(_ACTIVE_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        """Fetch transactions where the user is buyer or seller, newest first."""
        stmt = select(Transaction).where(
            (Transaction.buyer_id == user_id) | (Transaction.seller_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(Transaction.status == status.value)
        result = await self._session.execute(stmt.order_by(Transaction.created_at.desc()))
        return list(result.scalars().all())

    async def conditional_update(
        self,
        transaction: Transaction,
        expected_status: TransactionStatus,
        **values: Any,
    ) -> Transaction:
        """Apply ``values`` only if status and version are still as loaded.

        The version is bumped on success. If another writer got there first
        the UPDATE matches nothing and ConflictError is raised; the caller's
        database transaction should then be rolled back.
        """
        result = await self._session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == expected_status.value,
                Transaction.version == transaction.version,
            )
            .values(
                version=Transaction.version + 1,
                updated_at=datetime.now(UTC),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                f"Transaction {transaction.id} was modified concurrently; "
                "re-fetch and retry"
            )
        await self._session.refresh(transaction)
        return transaction


class CounterOfferRepository:
    """Data access for counter-offers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        transaction_id: uuid.UUID,
        offered_by: str,
        offered_by_user_id: uuid.UUID,
        price: Decimal,
        message: str | None = None,
    ) -> CounterOffer:
        """Append the next counter-offer round."""
        latest = await self.get_latest(transaction_id)
        counter = CounterOffer(
            transaction_id=transaction_id,
            round_number=(latest.round_number + 1) if latest else 1,
            offered_by=offered_by,
            offered_by_user_id=offered_by_user_id,
            price=price,
            message=message,
        )
        self._session.add(counter)
        await self._session.flush()
        return counter

    async def get_latest(self, transaction_id: uuid.UUID) -> CounterOffer | None:
        result = await self._session.execute(
            select(CounterOffer)
            .where(CounterOffer.transaction_id == transaction_id)
            .order_by(CounterOffer.round_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> list[CounterOffer]:
        result = await self._session.execute(
            select(CounterOffer)
            .where(CounterOffer.transaction_id == transaction_id)
            .order_by(CounterOffer.round_number.asc())
        )
        return list(result.scalars().all())


class HistoryRepository:
    """Data access for the append-only transaction history."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        transaction_id: uuid.UUID,
        entry_type: HistoryEntryType,
        from_status: TransactionStatus | None,
        to_status: TransactionStatus,
        actor: str = "SYSTEM",
        actor_role: str | None = None,
        action: str | None = None,
        notes: str | None = None,
        metadata: dict | None = None,
    ) -> TransactionHistoryEntry:
        """Append a history entry. This is the ONLY write operation allowed."""
        entry = TransactionHistoryEntry(
            transaction_id=transaction_id,
            entry_type=entry_type.value,
            action=action,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            actor=actor,
            actor_role=actor_role,
            notes=notes,
            metadata_json=metadata,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_by_transaction(
        self, transaction_id: uuid.UUID
    ) -> list[TransactionHistoryEntry]:
        """Fetch all entries for a transaction in the order they were written."""
        result = await self._session.execute(
            select(TransactionHistoryEntry)
            .where(TransactionHistoryEntry.transaction_id == transaction_id)
            .order_by(TransactionHistoryEntry.id.asc())
        )
        return list(result.scalars().all())


class StepRepository:
    """Data access for fund-protection steps."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, step_id: uuid.UUID) -> FundProtectionStep | None:
        result = await self._session.execute(
            select(FundProtectionStep)
            .where(FundProtectionStep.id == step_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_transaction(
        self, transaction_id: uuid.UUID
    ) -> list[FundProtectionStep]:
        """Fetch a transaction's steps ordered by step number."""
        result = await self._session.execute(
            select(FundProtectionStep)
            .where(FundProtectionStep.transaction_id == transaction_id)
            .order_by(FundProtectionStep.step_number.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def replace_all(
        self,
        transaction_id: uuid.UUID,
        steps: list[FundProtectionStep],
    ) -> list[FundProtectionStep]:
        """Delete every step of the transaction, then insert ``steps``.

        Both statements run in the caller's database transaction, so either
        the old set or the new set is visible, never a mix.
        """
        await self._session.execute(
            delete(FundProtectionStep)
            .where(FundProtectionStep.transaction_id == transaction_id)
            .execution_options(synchronize_session=False)
        )
        for step in steps:
            step.transaction_id = transaction_id
        self._session.add_all(steps)
        await self._session.flush()
        return steps

    async def conditional_status_update(
        self,
        step: FundProtectionStep,
        allowed_from: Iterable[StepStatus],
        **values: Any,
    ) -> bool:
        """Update a step only if its status is still one of ``allowed_from``.

        Returns False when another writer moved the step first.
        """
        result = await self._session.execute(
            update(FundProtectionStep)
            .where(
                FundProtectionStep.id == step.id,
                FundProtectionStep.status.in_([s.value for s in allowed_from]),
            )
            .values(updated_at=datetime.now(UTC), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self._session.refresh(step)
        return True


class DocumentRepository:
    """Data access for document metadata."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, document: Document) -> Document:
        self._session.add(document)
        await self._session.flush()
        return document

    async def exists(
        self,
        transaction_id: uuid.UUID,
        document_type: DocumentType,
        uploaded_by: uuid.UUID | None = None,
    ) -> bool:
        """Whether a document of this type was recorded (optionally by one user)."""
        stmt = select(func.count(Document.id)).where(
            Document.transaction_id == transaction_id,
            Document.document_type == document_type.value,
        )
        if uploaded_by is not None:
            stmt = stmt.where(Document.uploaded_by == uploaded_by)
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> list[Document]:
        result = await self._session.execute(
            select(Document)
            .where(Document.transaction_id == transaction_id)
            .order_by(Document.created_at.asc())
        )
        return list(result.scalars().all())


class NotificationRepository:
    """Data access for in-app notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def get_for_user(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """Fetch a user's notifications, newest first."""
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        result = await self._session.execute(
            stmt.order_by(Notification.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def get_by_id(self, notification_id: uuid.UUID) -> Notification | None:
        result = await self._session.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        return result.scalar_one_or_none()

    async def mark_read(self, notification: Notification) -> Notification:
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(UTC)
            await self._session.flush()
        return notification

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        """Mark every unread notification of the user as read; return how many."""
        result = await self._session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
