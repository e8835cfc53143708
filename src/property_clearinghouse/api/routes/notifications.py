"""Notification REST API routes (the caller's own notifications only)."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query

from property_clearinghouse.api.deps import get_actor, get_db_session, get_notification_service
from property_clearinghouse.domain.ports import Actor
from property_clearinghouse.schemas.common import error_responses
from property_clearinghouse.schemas.notifications import (
    MarkAllReadResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from property_clearinghouse.services import NotificationService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(
    prefix="/api/v1/notifications",
    tags=["Notifications"],
    responses=error_responses(401, 403, 404),
)


@router.get("", response_model=list[NotificationResponse], summary="List notifications")
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    svc: NotificationService = Depends(get_notification_service),
) -> list[NotificationResponse]:
    notifications = await svc.list_for_user(actor.user_id, unread_only=unread_only, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread count")
async def unread_count(
    actor: Actor = Depends(get_actor),
    svc: NotificationService = Depends(get_notification_service),
) -> UnreadCountResponse:
    return UnreadCountResponse(count=await svc.unread_count(actor.user_id))


@router.post("/read-all", response_model=MarkAllReadResponse, summary="Mark all as read")
async def mark_all_read(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: NotificationService = Depends(get_notification_service),
) -> MarkAllReadResponse:
    updated = await svc.mark_all_read(actor.user_id)
    await session.commit()
    return MarkAllReadResponse(updated=updated)


@router.post(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark one notification as read",
)
async def mark_read(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_db_session),
    svc: NotificationService = Depends(get_notification_service),
) -> NotificationResponse:
    notification = await svc.mark_read(notification_id, actor.user_id)
    await session.commit()
    return NotificationResponse.model_validate(notification)
