"""Fund protection REST API routes.

Routes:
    POST   /api/v1/transactions/{id}/fund-protection/initialize  — Generate steps (buyer)
    GET    /api/v1/transactions/{id}/fund-protection             — Steps + progress
    POST   /api/v1/fund-protection/steps/{step_id}/start         — Mark IN_PROGRESS
    POST   /api/v1/fund-protection/steps/{step_id}/complete      — Complete (may release to ESCROW)
    POST   /api/v1/fund-protection/steps/{step_id}/fail          — Mark FAILED (admin)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, BackgroundTasks, Depends

from property_clearinghouse.api.deps import (
    commit_and_dispatch,
    get_actor,
    get_db_session,
    get_fund_protection_service,
)
from property_clearinghouse.domain.ports import Actor
from property_clearinghouse.logging_config import get_logger
from property_clearinghouse.schemas.common import error_responses
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
from property_clearinghouse.services import FundProtectionService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(
    prefix="/api/v1",
    tags=["Fund Protection"],
    responses=error_responses(400, 401, 403, 404, 409, 412, 503),
)
logger = get_logger(__name__)


@router.post(
    "/transactions/{transaction_id}/fund-protection/initialize",
    response_model=InitializeFundProtectionResponse,
    summary="Generate fund-protection steps",
)
async def initialize_fund_protection(
    transaction_id: uuid.UUID,
    request: InitializeFundProtectionRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: FundProtectionService = Depends(get_fund_protection_service),
) -> InitializeFundProtectionResponse:
    """Generate (or regenerate) the step list. Replaces any existing steps."""
    result = await svc.initialize_fund_protection(transaction_id, actor, request.currency)
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return InitializeFundProtectionResponse(
        transaction_id=result.transaction.id,
        plan=FundProtectionPlanResponse.from_plan(result.plan),
        steps=[StepResponse.model_validate(s) for s in result.steps],
    )


@router.get(
    "/transactions/{transaction_id}/fund-protection",
    response_model=FundProtectionStatusResponse,
    summary="Get fund-protection steps and progress",
)
async def get_fund_protection(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: FundProtectionService = Depends(get_fund_protection_service),
) -> FundProtectionStatusResponse:
    data = await svc.get_fund_protection_status(transaction_id, actor)
    data["steps"] = [StepResponse.model_validate(s) for s in data["steps"]]
    return FundProtectionStatusResponse(**data)


@router.post(
    "/fund-protection/steps/{step_id}/start",
    response_model=StepResponse,
    summary="Start a step",
)
async def start_step(
    step_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: FundProtectionService = Depends(get_fund_protection_service),
) -> StepResponse:
    step = await svc.start_step(step_id, actor)
    await session.commit()
    return StepResponse.model_validate(step)


@router.post(
    "/fund-protection/steps/{step_id}/complete",
    response_model=StepCompletionResponse,
    summary="Complete a step",
)
async def complete_step(
    step_id: uuid.UUID,
    request: CompleteStepRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: FundProtectionService = Depends(get_fund_protection_service),
) -> StepCompletionResponse:
    """Complete a step in order. Completing the last step releases to ESCROW."""
    result = await svc.complete_step(
        step_id, actor, tx_hash=request.tx_hash, proof_url=request.proof_url
    )
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return StepCompletionResponse(
        step=StepResponse.model_validate(result.step),
        transaction_status=result.transaction.status,
        released_to_escrow=result.released,
    )


@router.post(
    "/fund-protection/steps/{step_id}/fail",
    response_model=StepResponse,
    summary="Mark a step as failed (admin)",
)
async def fail_step(
    step_id: uuid.UUID,
    request: FailStepRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: FundProtectionService = Depends(get_fund_protection_service),
) -> StepResponse:
    step = await svc.fail_step(step_id, actor, request.reason)
    await commit_and_dispatch(session, svc.notifications, background_tasks)
    return StepResponse.model_validate(step)
