"""Pydantic schemas for the Fund Protection API.

Amounts are returned quantized for display: EUR-denominated values to
cents, crypto amounts to 8 decimal places. Stored values keep full precision.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from property_clearinghouse.domain.enums import (
    PaymentMethod,
    StepStatus,
    StepType,
    StepUserType,
    TransactionStatus,
)
from property_clearinghouse.domain.fund_protection import (
    PAYOUT_STEP_TYPES,
    FundProtectionPlan,
    display_crypto,
    display_eur,
)

_EUR_STEP_TYPES = PAYOUT_STEP_TYPES | {StepType.FIAT_UPLOAD}

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class InitializeFundProtectionRequest(BaseModel):
    currency: str | None = Field(
        default=None,
        min_length=2,
        max_length=10,
        description="Crypto settlement currency; omit for FIAT-only deals",
        examples=["BTC"],
    )


class CompleteStepRequest(BaseModel):
    tx_hash: str | None = Field(
        default=None,
        max_length=255,
        description="On-chain transaction hash (crypto steps)",
    )
    proof_url: str | None = Field(
        default=None,
        max_length=2048,
        description="Link to a transfer receipt (fiat steps)",
    )


class FailStepRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class StepResponse(BaseModel):
    """Response schema for one fund-protection step."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    step_number: int
    step_type: StepType
    description: str
    user_type: StepUserType
    status: StepStatus
    amount: Decimal
    currency: str
    eur_amount: Decimal
    from_wallet_id: str | None
    to_wallet_id: str | None
    tx_hash: str | None
    proof_url: str | None
    failure_reason: str | None
    started_at: datetime | None
    completed_at: datetime | None
    completed_by: uuid.UUID | None
    created_at: datetime

    @model_validator(mode="after")
    def _quantize(self) -> StepResponse:
        if self.step_type in _EUR_STEP_TYPES:
            self.amount = display_eur(self.amount)
        else:
            self.amount = display_crypto(self.amount)
        self.eur_amount = display_eur(self.eur_amount)
        return self


class FundProtectionPlanResponse(BaseModel):
    payment_method: PaymentMethod
    currency: str
    crypto_eur_amount: Decimal
    fiat_eur_amount: Decimal
    crypto_amount: Decimal
    exchange_rate: Decimal
    rate_source: str
    buyer_eur_total: Decimal
    seller_eur_total: Decimal

    @classmethod
    def from_plan(cls, plan: FundProtectionPlan) -> FundProtectionPlanResponse:
        return cls(
            payment_method=plan.payment_method,
            currency=plan.currency,
            crypto_eur_amount=display_eur(plan.crypto_eur_amount),
            fiat_eur_amount=display_eur(plan.fiat_eur_amount),
            crypto_amount=display_crypto(plan.crypto_amount),
            exchange_rate=plan.exchange_rate,
            rate_source=plan.rate_source,
            buyer_eur_total=display_eur(plan.buyer_eur_total),
            seller_eur_total=display_eur(plan.seller_eur_total),
        )


class InitializeFundProtectionResponse(BaseModel):
    transaction_id: uuid.UUID
    plan: FundProtectionPlanResponse
    steps: list[StepResponse]


class StepCompletionResponse(BaseModel):
    step: StepResponse
    transaction_status: TransactionStatus
    released_to_escrow: bool


class FundProtectionProgress(BaseModel):
    completed: int
    total: int
    percentage: int


class FundProtectionStatusResponse(BaseModel):
    """Ordered steps and progress, polled by the UI."""

    transaction_id: uuid.UUID
    status: TransactionStatus
    settlement_currency: str | None
    initialized: bool
    user_role: str
    steps: list[StepResponse]
    current_step: int | None
    progress: FundProtectionProgress
    needs_user_action: bool
