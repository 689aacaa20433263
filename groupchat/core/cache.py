"""
Optional Redis cache for collaborator lookups.

Degrades to "no caching" when redis is not configured or unreachable; a
cache failure never fails a request.

Usage:
    from groupchat.core.cache import cache

    value = await cache.get("group:123")
    if value is None:
        value = await fetch_group()
        await cache.set("group:123", serialize_for_cache(value), ttl=300)
"""

from typing import Any, Optional
import json

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from groupchat.config import settings
from groupchat.core.logging_config import get_logger

logger = get_logger(__name__)


class CacheBackend:
    """Thin async wrapper around redis with graceful degradation."""

    def __init__(self):
        self.redis: Optional[aioredis.Redis] = None
        self.enabled = False

    async def initialize(self, redis_url: str = None):
        """Connect to Redis if a URL is configured."""
        redis_url = redis_url if redis_url is not None else settings.REDIS_URL
        if not redis_url:
            logger.info("cache_disabled", reason="no_redis_url_configured")
            return

        try:
            self.redis = aioredis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2
            )
            await self.redis.ping()
            self.enabled = True
            logger.info("cache_enabled")
        except (RedisError, OSError) as e:
            logger.warning("cache_initialization_failed", error=str(e))
            self.enabled = False

    async def close(self):
        if self.redis:
            try:
                await self.redis.aclose()
            except (RedisError, OSError) as e:
                logger.error("cache_close_error", error=str(e))
        self.enabled = False

    async def get(self, key: str) -> Optional[str]:
        """Return the cached value, or None on miss, when disabled, or on error."""
        if not self.enabled or not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            logger.debug("cache_hit" if value else "cache_miss", key=key)
            return value
        except (RedisError, OSError) as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None

    async def set(self, key: str, value: str, ttl: int = 300) -> bool:
        if not self.enabled or not self.redis:
            return False

        try:
            await self.redis.setex(key, ttl, value)
            logger.debug("cache_set", key=key, ttl=ttl)
            return True
        except (RedisError, OSError) as e:
            logger.error("cache_set_error", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        if not self.enabled or not self.redis:
            return False

        try:
            await self.redis.delete(key)
            logger.debug("cache_delete", key=key)
            return True
        except (RedisError, OSError) as e:
            logger.error("cache_delete_error", key=key, error=str(e))
            return False


def serialize_for_cache(data: Any) -> str:
    return json.dumps(data, default=str)


def deserialize_from_cache(data: str) -> Any:
    return json.loads(data)


# Global cache instance
cache = CacheBackend()
