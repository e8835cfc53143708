"""SQLAlchemy 2.0 ORM models for the Property Clearinghouse.

Tables:
    1. users                       — Platform users with KYC tier statuses.
    2. properties                  — Listed properties (only what offers need).
    3. transactions                — One buyer/seller negotiation over a property.
    4. counter_offers              — Each price proposal after the initial offer.
    5. transaction_status_history  — Append-only audit log of every transition.
    6. fund_protection_steps       — Ordered payment steps for a transaction.
    7. wallets                     — Provider-backed custodial wallets per currency.
    8. documents                   — Metadata of documents attached to a transaction.
    9. notifications               — In-app notifications.

Design decisions:
    - UUIDs as primary keys (no sequential leakage).
    - Decimal for every monetary amount. Step amounts keep 18 decimal places
      so crypto quantities are stored at full computed precision.
    - transactions.version is an optimistic-concurrency counter, bumped by
      every conditional update in TransactionRepository.
    - CHECK constraints on enum-valued columns and amounts.
    - transaction_status_history is append-only: no UPDATE or DELETE at the
      application level.
    - Generic Uuid/JSON types (JSONB on PostgreSQL) so the test suite can run
      on SQLite.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from property_clearinghouse.domain.enums import (
    DocumentType,
    KycStatus,
    NotificationType,
    PaymentMethod,
    StepStatus,
    StepType,
    TransactionStatus,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _in_clause(column: str, values: type) -> str:
    quoted = ", ".join(f"'{v.value}'" for v in values)
    return f"{column} IN ({quoted})"


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _now()


# ---------------------------------------------------------------------------
# 1. users
# ---------------------------------------------------------------------------
class User(Base):
    """A platform user. KYC statuses are written by the KYC sync, never here."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="USER",
        comment="Platform role: USER or ADMIN",
    )
    provider_user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="User id at the payment/custody provider",
    )
    kyc_status: Mapped[str] = mapped_column(
        String(12), nullable=False, default=KycStatus.PENDING.value
    )
    kyc2_status: Mapped[str] = mapped_column(
        String(12), nullable=False, default=KycStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        CheckConstraint("role IN ('USER', 'ADMIN')", name="ck_user_valid_role"),
        CheckConstraint(_in_clause("kyc_status", KycStatus), name="ck_user_valid_kyc"),
        CheckConstraint(_in_clause("kyc2_status", KycStatus), name="ck_user_valid_kyc2"),
    )

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


# ---------------------------------------------------------------------------
# 2. properties
# ---------------------------------------------------------------------------
class Property(Base):
    """A listed property. Compliance review happens elsewhere; we read is_approved."""

    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (Index("idx_property_seller", "seller_id"),)

    def __repr__(self) -> str:
        return f"<Property id={self.id} title={self.title!r}>"


# ---------------------------------------------------------------------------
# 3. transactions
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A buyer/seller negotiation over one property.

    Never deleted: COMPLETED and CANCELLED rows are retained for audit.
    """

    __tablename__ = "transactions"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    property_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("properties.id"), nullable=False
    )
    buyer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    seller_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.OFFER.value,
        comment="Current lifecycle stage (guarded by TransactionStateMachine)",
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency counter",
    )

    # --- Commercial terms ---
    offer_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    agreed_price: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2),
        nullable=True,
        comment="Set on acceptance; only present from AGREEMENT onwards",
    )
    payment_method: Mapped[str] = mapped_column(String(10), nullable=False)
    crypto_percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fiat_percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    settlement_currency: Mapped[str | None] = mapped_column(
        String(10),
        nullable=True,
        comment="Currency chosen at fund-protection initialization",
    )
    offer_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Promissory / representation / mediation flags ---
    buyer_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seller_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_representation_doc: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    buyer_mediation_signed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    seller_mediation_signed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    buyer_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seller_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Timestamps ---
    proposal_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    acceptance_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fund_protection_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    escrow_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            _in_clause("status", TransactionStatus), name="ck_transaction_valid_status"
        ),
        CheckConstraint(
            _in_clause("payment_method", PaymentMethod),
            name="ck_transaction_valid_payment_method",
        ),
        CheckConstraint("offer_price > 0", name="ck_transaction_positive_offer"),
        CheckConstraint(
            "payment_method != 'HYBRID' OR crypto_percentage + fiat_percentage = 100",
            name="ck_transaction_hybrid_split",
        ),
        Index("idx_transaction_status", "status"),
        Index("idx_transaction_buyer", "buyer_id"),
        Index("idx_transaction_seller", "seller_id"),
        Index("idx_transaction_property", "property_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} status={self.status} "
            f"v={self.version} offer={self.offer_price}>"
        )


# ---------------------------------------------------------------------------
# 4. counter_offers
# ---------------------------------------------------------------------------
class CounterOffer(Base):
    """One counter-proposal. ``round_number`` orders them within a transaction."""

    __tablename__ = "counter_offers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    offered_by: Mapped[str] = mapped_column(
        String(10), nullable=False, comment="BUYER or SELLER"
    )
    offered_by_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", "round_number", name="uq_counter_offer_round"),
        CheckConstraint("offered_by IN ('BUYER', 'SELLER')", name="ck_counter_offer_party"),
        CheckConstraint("price > 0", name="ck_counter_offer_positive_price"),
    )

    def __repr__(self) -> str:
        return (
            f"<CounterOffer tx={self.transaction_id} round={self.round_number} "
            f"by={self.offered_by} price={self.price}>"
        )


# ---------------------------------------------------------------------------
# 5. transaction_status_history (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class TransactionHistoryEntry(Base):
    """Immutable record of a transition or sub-stage action.

    This table is APPEND-ONLY. The integer primary key gives a total order
    within a transaction even when timestamps collide.
    """

    __tablename__ = "transaction_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )
    entry_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="HistoryEntryType value (e.g., TRANSITION, STEP_COMPLETED)",
    )
    action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="User id of whoever triggered this entry, or SYSTEM",
    )
    actor_role: Mapped[str | None] = mapped_column(String(10), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_history_transaction", "transaction_id"),
        Index("idx_history_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<TransactionHistoryEntry tx={self.transaction_id} type={self.entry_type} "
            f"{self.from_status}->{self.to_status}>"
        )


# ---------------------------------------------------------------------------
# 6. fund_protection_steps
# ---------------------------------------------------------------------------
class FundProtectionStep(Base):
    """One payment action within the fund-protection stage.

    The whole set for a transaction is deleted and re-inserted on every
    (re)initialization; individual rows are then advanced one at a time.
    """

    __tablename__ = "fund_protection_steps"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    user_type: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(12), nullable=False, default=StepStatus.PENDING.value
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    eur_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 18),
        nullable=False,
        comment="EUR equivalent of this step's amount",
    )
    from_wallet_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_wallet_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Completion evidence ---
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    proof_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", "step_number", name="uq_step_number"),
        CheckConstraint("step_number >= 1", name="ck_step_number_positive"),
        CheckConstraint(_in_clause("step_type", StepType), name="ck_step_valid_type"),
        CheckConstraint(_in_clause("status", StepStatus), name="ck_step_valid_status"),
        CheckConstraint("user_type IN ('BUYER', 'SELLER')", name="ck_step_valid_user_type"),
        Index("idx_step_transaction", "transaction_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<FundProtectionStep tx={self.transaction_id} #{self.step_number} "
            f"{self.step_type} {self.status}>"
        )


# ---------------------------------------------------------------------------
# 7. wallets
# ---------------------------------------------------------------------------
class Wallet(Base):
    """A provider-backed custodial account for one currency.

    The provider owns the wallet; we only record its id and, once enriched,
    its blockchain deposit address.
    """

    __tablename__ = "wallets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    provider_wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "currency", name="uq_wallet_user_currency"),
        Index("idx_wallet_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Wallet user={self.user_id} {self.currency} address={self.address}>"


# ---------------------------------------------------------------------------
# 8. documents
# ---------------------------------------------------------------------------
class Document(Base):
    """Metadata of an uploaded document. File bytes live in external storage."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )
    uploaded_by: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    uploader_role: Mapped[str] = mapped_column(String(10), nullable=False)
    document_type: Mapped[str] = mapped_column(String(30), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        CheckConstraint(
            _in_clause("document_type", DocumentType), name="ck_document_valid_type"
        ),
        Index("idx_document_transaction", "transaction_id"),
    )

    def __repr__(self) -> str:
        return f"<Document tx={self.transaction_id} type={self.document_type}>"


# ---------------------------------------------------------------------------
# 9. notifications
# ---------------------------------------------------------------------------
class Notification(Base):
    """In-app notification, written in the same DB transaction as its trigger."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True
    )
    property_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("properties.id"), nullable=True
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        CheckConstraint(_in_clause("type", NotificationType), name="ck_notification_type"),
        Index("idx_notification_user_read", "user_id", "is_read"),
        Index("idx_notification_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification user={self.user_id} type={self.type} read={self.is_read}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(Transaction, "before_update", _set_updated_at)
event.listen(FundProtectionStep, "before_update", _set_updated_at)
