"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the caller's identity, services, and configuration.

Identity comes from the upstream auth gateway as two headers:
    X-User-Id    — the caller's user UUID (required)
    X-User-Role  — USER or ADMIN (optional, defaults to USER)
"""

from __future__ import annotations

import uuid
from contextlib import aclosing
from typing import TYPE_CHECKING

from fastapi import BackgroundTasks, Depends, Header, Request

from property_clearinghouse.domain.enums import PlatformRole
from property_clearinghouse.domain.exceptions import UnauthorizedError
from property_clearinghouse.domain.ports import Actor
from property_clearinghouse.infrastructure.database.engine import get_async_session
from property_clearinghouse.infrastructure.notification_dispatch import (
    get_notification_dispatcher,
)
from property_clearinghouse.infrastructure.redis_client import (
    ExchangeRateCache,
    get_exchange_rate_cache,
)
from property_clearinghouse.services import (
    FundProtectionService,
    NotificationService,
    StepGenerator,
    TransactionService,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession

    from property_clearinghouse.domain.ports import NotificationDispatcher, PaymentProvider


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request.

    The inner generator is closed as soon as the request ends, so a failed
    request releases its connection without waiting for garbage collection.
    """
    async with aclosing(get_async_session()) as sessions:
        async for session in sessions:
            yield session


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    """Resolve the caller from the gateway headers."""
    if not x_user_id:
        raise UnauthorizedError("Missing X-User-Id header")
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError as exc:
        raise UnauthorizedError("X-User-Id is not a valid UUID") from exc
    try:
        role = PlatformRole((x_user_role or PlatformRole.USER.value).upper())
    except ValueError as exc:
        raise UnauthorizedError(f"Unknown role: {x_user_role}") from exc
    return Actor(user_id=user_id, role=role)


def get_payment_provider(request: Request) -> PaymentProvider | None:
    """Provide the provider client opened in the app lifespan, if any."""
    return getattr(request.app.state, "payment_provider", None)


def get_rate_cache() -> ExchangeRateCache:
    return get_exchange_rate_cache()


def get_dispatcher() -> NotificationDispatcher:
    return get_notification_dispatcher()


async def get_notification_service(
    session: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AsyncGenerator[NotificationService, None]:
    """Provide the request's notification service.

    Deliveries queued by a request that fails are dropped along with its
    rolled-back notification rows.
    """
    notifications = NotificationService(session, dispatcher=dispatcher)
    try:
        yield notifications
    except Exception:
        notifications.discard_pending()
        raise


def get_step_generator(
    session: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider | None = Depends(get_payment_provider),
    rate_cache: ExchangeRateCache = Depends(get_rate_cache),
) -> StepGenerator:
    return StepGenerator(session, provider=provider, rate_cache=rate_cache)


def get_transaction_service(
    session: AsyncSession = Depends(get_db_session),
    notifications: NotificationService = Depends(get_notification_service),
    step_generator: StepGenerator = Depends(get_step_generator),
) -> TransactionService:
    return TransactionService(
        session, notifications=notifications, step_generator=step_generator
    )


def get_fund_protection_service(
    session: AsyncSession = Depends(get_db_session),
    provider: PaymentProvider | None = Depends(get_payment_provider),
    notifications: NotificationService = Depends(get_notification_service),
    step_generator: StepGenerator = Depends(get_step_generator),
    transactions: TransactionService = Depends(get_transaction_service),
) -> FundProtectionService:
    return FundProtectionService(
        session,
        provider=provider,
        notifications=notifications,
        transactions=transactions,
        step_generator=step_generator,
    )


async def commit_and_dispatch(
    session: AsyncSession,
    notifications: NotificationService,
    background_tasks: BackgroundTasks,
) -> None:
    """Commit the request's work, then deliver its notifications in the background."""
    await session.commit()
    background_tasks.add_task(notifications.dispatch_pending)
