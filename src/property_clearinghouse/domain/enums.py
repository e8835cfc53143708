"""Domain enumerations for the Property Clearinghouse.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class TransactionStatus(enum.StrEnum):
    """Lifecycle stages of a property transaction.

    Movement between stages is guarded by TransactionStateMachine and the
    transition table in domain/transitions.py. The promissory and
    representation/mediation sub-stages live inside AGREEMENT as flags.
    """

    OFFER = "OFFER"
    NEGOTIATION = "NEGOTIATION"
    AGREEMENT = "AGREEMENT"
    KYC2_VERIFICATION = "KYC2_VERIFICATION"
    FUND_PROTECTION = "FUND_PROTECTION"
    ESCROW = "ESCROW"
    CLOSING = "CLOSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.COMPLETED, TransactionStatus.CANCELLED)

    @property
    def is_pre_agreement(self) -> bool:
        return self in (TransactionStatus.OFFER, TransactionStatus.NEGOTIATION)


class TransactionAction(enum.StrEnum):
    """Actions a caller may request against a transaction.

    Each value maps to a state machine event of the same name in lower case.
    """

    COUNTER_OFFER = "COUNTER_OFFER"
    ACCEPT_OFFER = "ACCEPT_OFFER"
    REJECT_OFFER = "REJECT_OFFER"
    COMPLETE_AGREEMENT = "COMPLETE_AGREEMENT"
    ENTER_FUND_PROTECTION = "ENTER_FUND_PROTECTION"
    RELEASE_TO_ESCROW = "RELEASE_TO_ESCROW"
    BEGIN_CLOSING = "BEGIN_CLOSING"
    COMPLETE_CLOSING = "COMPLETE_CLOSING"
    CANCEL = "CANCEL"

    @property
    def event_name(self) -> str:
        return self.value.lower()


class PlatformRole(enum.StrEnum):
    """Role attached to the caller's session by the auth provider."""

    USER = "USER"
    ADMIN = "ADMIN"


class PartyRole(enum.StrEnum):
    """The caller's role relative to one transaction."""

    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class PaymentMethod(enum.StrEnum):
    FIAT = "FIAT"
    CRYPTO = "CRYPTO"
    HYBRID = "HYBRID"


class KycStatus(enum.StrEnum):
    """Tier-1 / tier-2 verification status as reported by the KYC provider."""

    PENDING = "PENDING"
    INITIATED = "INITIATED"
    PASSED = "PASSED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class StepType(enum.StrEnum):
    """Kinds of fund-protection step, in the order they are generated."""

    CRYPTO_DEPOSIT = "CRYPTO_DEPOSIT"
    CRYPTO_TRANSFER = "CRYPTO_TRANSFER"
    CRYPTO_CONVERT = "CRYPTO_CONVERT"
    IBAN_TRANSFER = "IBAN_TRANSFER"
    FIAT_UPLOAD = "FIAT_UPLOAD"
    FIAT_CONFIRM = "FIAT_CONFIRM"


class StepUserType(enum.StrEnum):
    """Which party must act on a fund-protection step."""

    BUYER = "BUYER"
    SELLER = "SELLER"


class StepStatus(enum.StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DocumentType(enum.StrEnum):
    """Document categories that can be attached to a transaction."""

    PROMISSORY_AGREEMENT = "PROMISSORY_AGREEMENT"
    REPRESENTATION_DOCUMENT = "REPRESENTATION_DOCUMENT"
    MEDIATION_AGREEMENT = "MEDIATION_AGREEMENT"
    PURCHASE_AGREEMENT = "PURCHASE_AGREEMENT"
    LEGAL_DOCUMENT = "LEGAL_DOCUMENT"
    NOTARIZED_DOCUMENT = "NOTARIZED_DOCUMENT"
    FIAT_PROOF = "FIAT_PROOF"


class NotificationType(enum.StrEnum):
    """Types of in-app notification created as side effects of transitions."""

    NEW_OFFER = "NEW_OFFER"
    COUNTER_OFFER = "COUNTER_OFFER"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_REJECTED = "OFFER_REJECTED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    TRANSACTION_STATUS_CHANGE = "TRANSACTION_STATUS_CHANGE"
    FUND_PROTECTION_UPDATE = "FUND_PROTECTION_UPDATE"


class HistoryEntryType(enum.StrEnum):
    """Kinds of row in the append-only transaction history.

    Every status transition produces exactly one TRANSITION entry; sub-stage
    actions (signatures, uploads, step completions) produce their own types.
    """

    OFFER_CREATED = "OFFER_CREATED"
    TRANSITION = "TRANSITION"
    DOCUMENT_RECORDED = "DOCUMENT_RECORDED"
    PROMISSORY_SIGNED = "PROMISSORY_SIGNED"
    MEDIATION_SIGNED = "MEDIATION_SIGNED"
    REPRESENTATION_CONFIRMED = "REPRESENTATION_CONFIRMED"
    FLAGS_OVERRIDDEN = "FLAGS_OVERRIDDEN"
    FUND_PROTECTION_INITIALIZED = "FUND_PROTECTION_INITIALIZED"
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_FAILED = "STEP_FAILED"
