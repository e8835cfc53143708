"""Pydantic schemas for the Transactions API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API
and database layers.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from property_clearinghouse.domain.enums import (
    DocumentType,
    PaymentMethod,
    TransactionAction,
    TransactionStatus,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateOfferRequest(BaseModel):
    """Request body for a buyer's initial offer on a property."""

    property_id: uuid.UUID
    offer_price: Decimal = Field(
        ...,
        gt=0,
        max_digits=20,
        decimal_places=2,
        description="Offer price in EUR",
        examples=[300000],
    )
    payment_method: PaymentMethod
    crypto_percentage: int | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Crypto share in percent (HYBRID only)",
    )
    fiat_percentage: int | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Fiat share in percent (HYBRID only)",
    )
    message: str | None = Field(default=None, max_length=2000)


class TransitionRequest(BaseModel):
    """Request body for moving a transaction to its next stage."""

    action: TransactionAction
    price: Decimal | None = Field(
        default=None,
        gt=0,
        description="Counter-offer price in EUR (COUNTER_OFFER only)",
    )
    message: str | None = Field(default=None, max_length=2000)
    currency: str | None = Field(
        default=None,
        min_length=2,
        max_length=10,
        description="Crypto settlement currency (ENTER_FUND_PROTECTION on crypto/hybrid deals)",
        examples=["BTC"],
    )
    expected_status: TransactionStatus | None = Field(
        default=None,
        description="Status the client last saw; a mismatch returns 409",
    )


class RecordDocumentRequest(BaseModel):
    """Metadata for a document already uploaded to external storage."""

    document_type: DocumentType
    file_name: str = Field(..., min_length=1, max_length=255)
    storage_url: str = Field(..., min_length=1, max_length=2048)


class OverrideFlagsRequest(BaseModel):
    flags: dict[str, bool] = Field(
        ...,
        min_length=1,
        description="AGREEMENT flags to set, e.g. {\"buyer_signed\": false}",
    )
    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransactionResponse(BaseModel):
    """Response schema for a transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    status: TransactionStatus
    version: int
    offer_price: Decimal
    agreed_price: Decimal | None
    payment_method: PaymentMethod
    crypto_percentage: int | None
    fiat_percentage: int | None
    settlement_currency: str | None
    offer_message: str | None
    buyer_signed: bool
    seller_signed: bool
    has_representation_doc: bool
    buyer_mediation_signed: bool
    seller_mediation_signed: bool
    buyer_confirmed: bool
    seller_confirmed: bool
    proposal_date: datetime | None
    acceptance_date: datetime | None
    fund_protection_date: datetime | None
    escrow_date: datetime | None
    completion_date: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime


class CounterOfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    round_number: int
    offered_by: str
    offered_by_user_id: uuid.UUID | None
    price: Decimal
    message: str | None
    created_at: datetime


class HistoryEntryResponse(BaseModel):
    """Response schema for one row of the transaction history."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: uuid.UUID
    entry_type: str
    action: str | None
    from_status: str | None
    to_status: str
    actor: str
    actor_role: str | None
    notes: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    uploaded_by: uuid.UUID
    uploader_role: str
    document_type: DocumentType
    file_name: str
    storage_url: str
    created_at: datetime


class AgreementProgress(BaseModel):
    buyer_signed: bool
    seller_signed: bool
    has_representation_doc: bool
    buyer_mediation_signed: bool
    seller_mediation_signed: bool
    buyer_confirmed: bool
    seller_confirmed: bool
    promissory_complete: bool
    mediation_complete: bool
    documentation_complete: bool


class Kyc2Readiness(BaseModel):
    buyer: str | None
    seller: str | None
    ready: bool


class FundProtectionSummary(BaseModel):
    initialized: bool
    total_steps: int
    completed_steps: int
    settlement_currency: str | None


class TransactionStatusResponse(BaseModel):
    """Polled status snapshot with the actions open to the caller."""

    transaction_id: uuid.UUID
    status: TransactionStatus
    version: int
    user_role: str
    is_terminal: bool
    offer_price: Decimal
    current_price: Decimal
    agreed_price: Decimal | None
    payment_method: PaymentMethod
    latest_offer_by: str
    awaiting_response_from: str | None
    available_actions: list[str] = Field(
        description="Actions the caller can perform right now"
    )
    blocked_actions: dict[str, str] = Field(
        description="Actions the caller may request later, keyed to the missing precondition"
    )
    agreement: AgreementProgress
    kyc2: Kyc2Readiness
    fund_protection: FundProtectionSummary
