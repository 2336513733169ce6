"""
Shared utility functions for routers and services
"""
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Any, Awaitable

import redis
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from config.settings import settings

logger = logging.getLogger(__name__)

# Redis client for caching
_redis_cache_client = None
_redis_cache_available = False

redis_url = settings.redis_url
if redis_url:
    try:
        # Parse Redis URL (supports redis:// and redis://:password@host:port)
        _redis_cache_client = redis.from_url(redis_url, decode_responses=True)
        # Test connection
        _redis_cache_client.ping()
        _redis_cache_available = True
        logger.info("Redis connected successfully for caching")
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Caching will fall back to direct execution.")
        _redis_cache_client = None
        _redis_cache_available = False
else:
    logger.info("REDIS_URL not set. Caching will fall back to direct execution.")


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def account_cache_key(user_id: str) -> str:
    return f"account:{user_id}"


async def get_cached(key: str, fallback_func: Callable[[], Awaitable[Any]], ttl_seconds: int) -> Any:
    """
    Distributed caching utility with Redis fallback.

    Attempts to fetch data from Redis cache. If not found or Redis is unavailable,
    executes the fallback function and stores the result in Redis with TTL.

    Args:
        key: Redis cache key (e.g., "account:123")
        fallback_func: Async callable that returns the data to cache
        ttl_seconds: Time-to-live in seconds for the cached value

    Returns:
        The cached value or the result from fallback_func
    """
    # Try to fetch from Redis if available
    if _redis_cache_available and _redis_cache_client:
        try:
            cached_value = _redis_cache_client.get(key)
            if cached_value is not None:
                try:
                    # Try to parse as JSON (for dict/list values)
                    return json.loads(cached_value)
                except (json.JSONDecodeError, TypeError):
                    # If not JSON, return as string
                    return cached_value
        except redis.RedisError as e:
            logger.warning(f"Redis cache get failed for key '{key}': {e}. Executing fallback.")

    # Cache miss or Redis unavailable - execute fallback
    result = await fallback_func()

    # Results of None are never cached so a missing record is re-read next time
    if result is not None and _redis_cache_available and _redis_cache_client:
        try:
            # Serialize result to JSON if it's a dict/list, otherwise store as string
            if isinstance(result, (dict, list)):
                cache_value = json.dumps(result)
            else:
                cache_value = str(result)

            _redis_cache_client.setex(key, ttl_seconds, cache_value)
        except redis.RedisError as e:
            logger.warning(f"Redis cache set failed for key '{key}': {e}. Result not cached.")

    return result


def invalidate_cached(key: str) -> None:
    """Drop a cached value after the underlying record changed."""
    if not (_redis_cache_available and _redis_cache_client):
        return
    try:
        _redis_cache_client.delete(key)
    except redis.RedisError as e:
        logger.warning(f"Redis cache delete failed for key '{key}': {e}")


_PENDING_INVALIDATIONS = "pending_cache_invalidations"


def invalidate_after_commit(db: AsyncSession, key: str) -> None:
    """
    Drop a cached value once the session's current transaction commits.

    Invalidating before the commit would let a concurrent read re-cache the
    old row for the whole TTL.
    """
    db.sync_session.info.setdefault(_PENDING_INVALIDATIONS, set()).add(key)


@event.listens_for(Session, "after_commit")
def _invalidate_committed_keys(session: Session) -> None:
    for key in session.info.pop(_PENDING_INVALIDATIONS, ()):
        invalidate_cached(key)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back_keys(session: Session) -> None:
    session.info.pop(_PENDING_INVALIDATIONS, None)
