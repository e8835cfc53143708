"""Pydantic API schemas."""

from property_clearinghouse.schemas.common import ErrorResponse, HealthResponse
from property_clearinghouse.schemas.fund_protection import (
    CompleteStepRequest,
    FailStepRequest,
    FundProtectionPlanResponse,
    FundProtectionStatusResponse,
    InitializeFundProtectionRequest,
    InitializeFundProtectionResponse,
    StepCompletionResponse,
    StepResponse,
)
from property_clearinghouse.schemas.notifications import (
    MarkAllReadResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from property_clearinghouse.schemas.transactions import (
    CounterOfferResponse,
    CreateOfferRequest,
    DocumentResponse,
    HistoryEntryResponse,
    OverrideFlagsRequest,
    RecordDocumentRequest,
    TransactionResponse,
    TransactionStatusResponse,
    TransitionRequest,
)

__all__ = [
    "CompleteStepRequest",
    "CounterOfferResponse",
    "CreateOfferRequest",
    "DocumentResponse",
    "ErrorResponse",
    "FailStepRequest",
    "FundProtectionPlanResponse",
    "FundProtectionStatusResponse",
    "HealthResponse",
    "HistoryEntryResponse",
    "InitializeFundProtectionRequest",
    "InitializeFundProtectionResponse",
    "MarkAllReadResponse",
    "NotificationResponse",
    "OverrideFlagsRequest",
    "RecordDocumentRequest",
    "StepCompletionResponse",
    "StepResponse",
    "TransactionResponse",
    "TransactionStatusResponse",
    "TransitionRequest",
    "UnreadCountResponse",
]
