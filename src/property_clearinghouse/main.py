"""FastAPI application entry point for the Property Clearinghouse.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the provider client,
       create tables (dev mode).
    2. Running: Serve the REST API at /api/v1/* on a single Uvicorn process.
    3. Shutdown: Close the provider client, database and Redis connections.

Run with:
    uv run uvicorn property_clearinghouse.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from redis.exceptions import RedisError

from property_clearinghouse.config import get_settings
from property_clearinghouse.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from property_clearinghouse.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (optional: the rate cache degrades to a miss)
    from property_clearinghouse.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except (RedisError, OSError) as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Provider client, built once from settings
    from property_clearinghouse.infrastructure.payment_provider import PaymentProviderClient

    async with AsyncExitStack() as stack:
        provider = PaymentProviderClient.from_settings(settings)
        if provider.is_configured:
            app.state.payment_provider = await stack.enter_async_context(provider)
        else:
            app.state.payment_provider = None
            logger.warning("app.provider_not_configured")

        logger.info("app.started", host=settings.app_host, port=settings.app_port)

        yield

        # Shutdown
        logger.info("app.shutting_down")

    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Property Clearinghouse",
        description=(
            "Transaction lifecycle and fund protection for a real-estate marketplace."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from property_clearinghouse.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from property_clearinghouse.api.routes.fund_protection import router as fund_router
    from property_clearinghouse.api.routes.health import router as health_router
    from property_clearinghouse.api.routes.notifications import (
        router as notifications_router,
    )
    from property_clearinghouse.api.routes.transactions import (
        router as transactions_router,
    )

    app.include_router(health_router)
    app.include_router(transactions_router)
    app.include_router(fund_router)
    app.include_router(notifications_router)

    return app


# The app instance used by Uvicorn
app = create_app()
