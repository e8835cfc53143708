"""Transaction REST API routes.

Every mutating endpoint commits before responding and hands the queued
notifications to a background task, so a notice is only delivered for a
state change that is durable.

Routes:
    POST   /api/v1/transactions                              — Create an offer
    GET    /api/v1/transactions                              — List the caller's transactions
    GET    /api/v1/transactions/{id}                         — Get transaction details
    GET    /api/v1/transactions/{id}/status                  — Polled status + available actions
    GET    /api/v1/transactions/{id}/history                 — Audit trail
    GET    /api/v1/transactions/{id}/counter-offers          — Negotiation rounds
    GET    /api/v1/transactions/{id}/documents               — Recorded documents
    POST   /api/v1/transactions/{id}/transition              — Move to the next stage
    POST   /api/v1/transactions/{id}/documents               — Record an uploaded document
    POST   /api/v1/transactions/{id}/promissory/sign         — Sign the promissory agreement
    POST   /api/v1/transactions/{id}/mediation/sign          — Sign the mediation agreement
    POST   /api/v1/transactions/{id}/representation/confirm  — Confirm representation
    POST   /api/v1/transactions/{id}/flags/override          — Admin flag override
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, BackgroundTasks, Depends

from property_clearinghouse.api.deps import (
    commit_and_dispatch,
    get_actor,
    get_db_session,
    get_transaction_service,
)
from property_clearinghouse.domain.enums import TransactionStatus
from property_clearinghouse.domain.ports import Actor
from property_clearinghouse.logging_config import get_logger
from property_clearinghouse.schemas.common import error_responses
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
from property_clearinghouse.services import TransactionService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(
    prefix="/api/v1/transactions",
    tags=["Transactions"],
    responses=error_responses(401, 403, 404, 409, 412, 422),
)
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=201,
    summary="Create an offer on a property",
)
async def create_offer(
    request: CreateOfferRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    """Create a transaction in OFFER with the caller as buyer."""
    transaction = await svc.create_offer(
        actor=actor,
        property_id=request.property_id,
        offer_price=request.offer_price,
        payment_method=request.payment_method,
        crypto_percentage=request.crypto_percentage,
        fiat_percentage=request.fiat_percentage,
        message=request.message,
    )
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return TransactionResponse.model_validate(transaction)


# ---------------------------------------------------------------------------
# Stage transitions
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/transition",
    response_model=TransactionResponse,
    summary="Move a transaction to its next stage",
)
async def transition(
    transaction_id: uuid.UUID,
    request: TransitionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    """Counter, accept, reject, advance, or cancel.

    Returns 409 if the transaction changed since ``expected_status`` or if
    another request won the race.
    """
    transaction = await svc.transition(
        transaction_id,
        actor,
        request.action,
        price=request.price,
        message=request.message,
        currency=request.currency,
        expected_status=request.expected_status,
    )
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return TransactionResponse.model_validate(transaction)


# ---------------------------------------------------------------------------
# AGREEMENT sub-stages
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/documents",
    response_model=DocumentResponse,
    status_code=201,
    summary="Record an uploaded document",
)
async def record_document(
    transaction_id: uuid.UUID,
    request: RecordDocumentRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: TransactionService = Depends(get_transaction_service),
) -> DocumentResponse:
    document = await svc.record_document(
        transaction_id,
        actor,
        document_type=request.document_type,
        file_name=request.file_name,
        storage_url=request.storage_url,
    )
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return DocumentResponse.model_validate(document)


@router.post(
    "/{transaction_id}/promissory/sign",
    response_model=TransactionResponse,
    summary="Sign the promissory agreement",
)
async def sign_promissory(
    transaction_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.sign_promissory(transaction_id, actor)
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/mediation/sign",
    response_model=TransactionResponse,
    summary="Sign the mediation agreement",
)
async def sign_mediation(
    transaction_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.sign_mediation(transaction_id, actor)
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/representation/confirm",
    response_model=TransactionResponse,
    summary="Confirm legal representation",
)
async def confirm_representation(
    transaction_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.confirm_representation(transaction_id, actor)
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/flags/override",
    response_model=TransactionResponse,
    summary="Override AGREEMENT flags (admin)",
)
async def override_flags(
    transaction_id: uuid.UUID,
    request: OverrideFlagsRequest,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.override_flags(
        transaction_id, actor, request.flags, reason=request.reason
    )
    await session.commit()
    return TransactionResponse.model_validate(transaction)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List the caller's transactions",
)
async def list_transactions(
    status: TransactionStatus | None = None,
    actor: Actor = Depends(get_actor),
    svc: TransactionService = Depends(get_transaction_service),
) -> list[TransactionResponse]:
    transactions = await svc.list_transactions(actor, status=status)
    return [TransactionResponse.model_validate(t) for t in transactions]


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get transaction details",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.get_transaction(transaction_id, actor)
    return TransactionResponse.model_validate(transaction)


@router.get(
    "/{transaction_id}/status",
    response_model=TransactionStatusResponse,
    summary="Get status and available actions",
)
async def get_status(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionStatusResponse:
    """Return the current stage, what the caller can do next, and sub-stage progress."""
    status_data = await svc.get_status(transaction_id, actor)
    return TransactionStatusResponse(**status_data)


@router.get(
    "/{transaction_id}/history",
    response_model=list[HistoryEntryResponse],
    summary="Get audit trail",
)
async def get_history(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: TransactionService = Depends(get_transaction_service),
) -> list[HistoryEntryResponse]:
    entries = await svc.get_history(transaction_id, actor)
    return [HistoryEntryResponse.model_validate(e) for e in entries]


@router.get(
    "/{transaction_id}/counter-offers",
    response_model=list[CounterOfferResponse],
    summary="Get negotiation rounds",
)
async def get_counter_offers(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: TransactionService = Depends(get_transaction_service),
) -> list[CounterOfferResponse]:
    counters = await svc.get_counter_offers(transaction_id, actor)
    return [CounterOfferResponse.model_validate(c) for c in counters]


@router.get(
    "/{transaction_id}/documents",
    response_model=list[DocumentResponse],
    summary="List recorded documents",
)
async def get_documents(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: TransactionService = Depends(get_transaction_service),
) -> list[DocumentResponse]:
    documents = await svc.get_documents(transaction_id, actor)
    return [DocumentResponse.model_validate(d) for d in documents]
