"""Redis client and the exchange-rate cache.

Redis is optional at runtime: if it is not initialized or a command fails,
the cache helpers log and report a miss so callers go to the provider.

Usage:
    from property_clearinghouse.infrastructure.redis_client import init_redis, close_redis

    await init_redis()
    rates = await get_exchange_rate_cache().get()
"""

from __future__ import annotations

import json

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from property_clearinghouse.config import get_settings
from property_clearinghouse.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

EXCHANGE_RATES_KEY = "provider:exchange_rates"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity; an unreachable server leaves the cache disabled
    try:
        await client.ping()
    except (RedisError, OSError):
        await client.aclose()
        raise
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis_or_none() -> aioredis.Redis | None:
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Exchange-rate cache ---


class ExchangeRateCache:
    """Short-TTL cache for the provider's ``/trade/rates`` payload.

    Rates are stored as the provider returned them (JSON object keyed by
    pair, e.g. ``BTCEUR``), so cached and live lookups share one parser.
    """

    def __init__(self, client: aioredis.Redis | None, ttl_seconds: int) -> None:
        self._client = client
        self._ttl = ttl_seconds

    async def get(self) -> dict | None:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(EXCHANGE_RATES_KEY)
        except RedisError as exc:
            logger.warning("exchange_rates.cache_read_failed", error=str(exc))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("exchange_rates.cache_corrupt")
            return None

    async def set(self, rates: dict) -> None:
        if self._client is None or self._ttl <= 0:
            return
        try:
            await self._client.set(EXCHANGE_RATES_KEY, json.dumps(rates), ex=self._ttl)
        except RedisError as exc:
            logger.warning("exchange_rates.cache_write_failed", error=str(exc))


def get_exchange_rate_cache() -> ExchangeRateCache:
    """Build a cache over the process-wide client (no-op when Redis is down)."""
    settings = get_settings()
    return ExchangeRateCache(get_redis_or_none(), settings.exchange_rate_cache_ttl_seconds)
