"""
Redis caching utilities for the back-office API.

Caches the expensive dashboard aggregations. Every helper degrades to a cache
miss when Redis is unreachable or caching is disabled.
"""
import json
import logging
from typing import Optional, Any
import redis

from .config import REDIS_URL, CACHE_ENABLED

logger = logging.getLogger(__name__)

redis_client = redis.from_url(REDIS_URL, decode_responses=True)

DASHBOARD_STATS_KEY = "dashboard:stats"


def get_cache(key: str) -> Optional[Any]:
    """
    Get a value from Redis cache.

    Args:
        key: Cache key

    Returns:
        Cached value or None if not found
    """
    if not CACHE_ENABLED:
        return None
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except redis.RedisError as e:
        logger.warning(f"Cache get error for '{key}': {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = 300) -> bool:
    """
    Set a value in Redis cache with TTL.

    Args:
        key: Cache key
        value: Value to cache (will be JSON serialized)
        ttl: Time to live in seconds

    Returns:
        True if successful, False otherwise
    """
    if not CACHE_ENABLED:
        return False
    try:
        redis_client.setex(key, ttl, json.dumps(value))
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache set error for '{key}': {e}")
        return False


def delete_cache(key: str) -> bool:
    """Delete a key from Redis cache."""
    if not CACHE_ENABLED:
        return False
    try:
        redis_client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete error for '{key}': {e}")
        return False


def invalidate_dashboard() -> None:
    """Drop cached dashboard figures after a write that changes them."""
    delete_cache(DASHBOARD_STATS_KEY)
