"""
Redis caching service for availability queries.

CACHING STRATEGY
================

What we cache:
  - Availability responses (free slots for a resource over a date range)
  - Cache key pattern: "availability:{resource_id}:g{generation}:{start}:{end}"

Why:
  - Availability is the most frequent read and expands unbounded series
    on every call
  - A resource's bookings change far less often than they are read

Invalidation strategy:
  - Each resource has a generation counter "availability:{resource_id}:gen".
    Readers fetch it BEFORE computing and store their result under that
    generation, so a result computed from pre-write state can only land on
    a key nobody reads any more.
  - On booking creation, occurrence cancellation or series deletion:
    INCR the generation, then delete the old entries of that resource
  - TTL-based expiry as safety net (5 minutes)

Why NOT cache conflict checks:
  - The creation path must see committed state under locks; a cached
    "free" answer would reintroduce the double-booking race

Redis is advisory only. If it is disabled or down, every call here degrades
to a no-op / cache miss and the request is served from the store.
"""

import json
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from resource_booking.core.config import get_settings
from resource_booking.core.logging import get_logger
from resource_booking.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

AVAILABILITY_PREFIX = "availability"
INVALIDATION_BATCH = 100

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or unreachable."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except redis.RedisError as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _make_generation_key(resource_id: str) -> str:
    return f"{AVAILABILITY_PREFIX}:{resource_id}:gen"


def _make_availability_key(
    resource_id: str, generation: int, range_start: datetime, range_end: datetime
) -> str:
    return (
        f"{AVAILABILITY_PREFIX}:{resource_id}:g{generation}:"
        f"{range_start.isoformat()}:{range_end.isoformat()}"
    )


async def get_availability_generation(resource_id: str) -> Optional[int]:
    """Current cache generation of a resource. None means: do not cache."""
    client = await get_redis()
    if not client:
        return None

    try:
        value = await client.get(_make_generation_key(resource_id))
    except redis.RedisError as e:
        logger.error("cache_generation_error", resource_id=resource_id, error=str(e))
        return None
    return int(value or 0)


async def get_cached_availability(
    resource_id: str, generation: Optional[int], range_start: datetime, range_end: datetime
) -> Optional[dict]:
    """Retrieve a cached availability response."""
    if generation is None:
        return None
    client = await get_redis()
    if not client:
        return None

    key = _make_availability_key(resource_id, generation, range_start, range_end)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=data is not None)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except redis.RedisError as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_availability(
    resource_id: str,
    generation: Optional[int],
    range_start: datetime,
    range_end: datetime,
    data: dict,
) -> None:
    """Cache an availability response with TTL, under the generation it was computed in."""
    if generation is None:
        return
    client = await get_redis()
    if not client:
        return

    key = _make_availability_key(resource_id, generation, range_start, range_end)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        record_cache_operation("set", hit=False)
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except redis.RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_availability_cache(resource_id: str) -> None:
    """
    Drop every cached availability range of one resource.
    The generation is bumped first, so entries still being computed from the
    old state are written under a dead key. Old keys are then collected with
    SCAN (never KEYS) and removed with UNLINK in batches.
    """
    client = await get_redis()
    if not client:
        return

    generation_key = _make_generation_key(resource_id)
    pattern = f"{AVAILABILITY_PREFIX}:{resource_id}:g*"
    try:
        generation = await client.incr(generation_key)
        batch: list[str] = []
        removed = 0
        async for key in client.scan_iter(match=pattern, count=INVALIDATION_BATCH):
            if key == generation_key:
                continue
            batch.append(key)
            if len(batch) >= INVALIDATION_BATCH:
                removed += await client.unlink(*batch)
                batch.clear()
        if batch:
            removed += await client.unlink(*batch)
        logger.info(
            "cache_invalidated", resource_id=resource_id, generation=generation, keys_deleted=removed
        )
    except redis.RedisError as e:
        logger.error("cache_invalidation_error", resource_id=resource_id, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
