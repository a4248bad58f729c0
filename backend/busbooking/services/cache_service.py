"""
Redis caching service for trip seat maps.

CACHING STRATEGY
================

What we cache:
  - The seat map response for a trip (occupied seat numbers + counters)
  - Cache key pattern: "trips:seatmap:{trip_id}"

Why:
  - Seat maps are polled by every customer sitting on the booking page
  - Serving from Redis: ~1ms vs rebuilding occupancy from passengers: ~10-30ms

Invalidation strategy:
  - After any committed seat-ledger mutation on a trip, bump the trip's
    generation counter ("trips:seatmap:{trip_id}:gen") and delete its key
  - Entries carry the generation they were built under; a map read from the
    database before a commit and stored after its invalidation is ignored
  - Short TTL as a safety net (REDIS_CACHE_TTL)

What we never do:
  - Read the cache on a write path. Reservations always derive occupancy
    from the database inside the locked transaction; the cache only serves
    the read-only seat map endpoint.

Redis is advisory. When it is disabled or unreachable every call degrades to
a miss / no-op and the service keeps working uncached.
"""

import json
from typing import Optional

import redis.asyncio as redis
from busbooking.core.config import get_settings
from busbooking.core.logging import get_logger
from busbooking.core.metrics import record_cache_operation

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client
    settings = get_settings()

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
        except Exception as e:
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


def _make_seat_map_key(trip_id: int) -> str:
    return f"trips:seatmap:{trip_id}"


def _make_generation_key(trip_id: int) -> str:
    return f"trips:seatmap:{trip_id}:gen"


async def get_cached_seat_map(trip_id: int) -> tuple[Optional[dict], int]:
    """
    Returns (seat_map or None, generation). Pass the generation back to
    set_cached_seat_map so a map built before an invalidation is never served.
    """
    client = await get_redis()
    if not client:
        return None, 0

    key = _make_seat_map_key(trip_id)
    try:
        data, generation = await client.mget(key, _make_generation_key(trip_id))
        generation = int(generation or 0)
        if data:
            entry = json.loads(data)
            if entry.get("generation") == generation:
                record_cache_operation("get", "hit")
                return entry["seat_map"], generation
            record_cache_operation("get", "stale")
        else:
            record_cache_operation("get", "miss")
        return None, generation
    except Exception as e:
        record_cache_operation("get", "error")
        logger.error("cache_get_error", key=key, error=str(e))

    return None, 0


async def set_cached_seat_map(trip_id: int, data: dict, generation: int) -> None:
    client = await get_redis()
    if not client:
        return

    key = _make_seat_map_key(trip_id)
    entry = {"generation": generation, "seat_map": data}
    try:
        await client.setex(key, get_settings().REDIS_CACHE_TTL, json.dumps(entry, default=str))
        record_cache_operation("set", "ok")
    except Exception as e:
        record_cache_operation("set", "error")
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_seat_maps(trip_ids: set[int]) -> None:
    if not trip_ids:
        return
    client = await get_redis()
    if not client:
        return

    keys = [_make_seat_map_key(trip_id) for trip_id in sorted(trip_ids)]
    try:
        # Bump first: a reader that built its map before this commit stores it
        # under the old generation, which no later read accepts
        for trip_id in sorted(trip_ids):
            await client.incr(_make_generation_key(trip_id))
        deleted = await client.delete(*keys)
        record_cache_operation("invalidate", "ok")
        logger.debug("cache_invalidated", keys=keys, deleted=deleted)
    except Exception as e:
        record_cache_operation("invalidate", "error")
        logger.error("cache_invalidation_error", keys=keys, error=str(e))


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
    except Exception as e:
        return {"status": "error", "error": str(e)}
