"""Database infrastructure — engine, ORM models, and repositories."""

from property_clearinghouse.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from property_clearinghouse.infrastructure.database.orm_models import (
    Base,
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
from property_clearinghouse.infrastructure.database.repositories import (
    CounterOfferRepository,
    DocumentRepository,
    HistoryRepository,
    NotificationRepository,
    PropertyRepository,
    StepRepository,
    TransactionRepository,
    UserRepository,
    WalletRepository,
)

__all__ = [
    "Base",
    "CounterOffer",
    "Document",
    "FundProtectionStep",
    "Notification",
    "Property",
    "Transaction",
    "TransactionHistoryEntry",
    "User",
    "Wallet",
    "CounterOfferRepository",
    "DocumentRepository",
    "HistoryRepository",
    "NotificationRepository",
    "PropertyRepository",
    "StepRepository",
    "TransactionRepository",
    "UserRepository",
    "WalletRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
