"""
Best-effort cache for order listings.

Listings are cached read-through with short TTLs. Any cache failure is logged
and treated as a miss; the order engine never reads stock or pricing
decisions from here.
"""

from typing import Any, Optional

from redis.exceptions import RedisError

from storefront.cache.redis_client import RedisClient
from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

CACHE_ERRORS = (RedisError, OSError, ValueError, TypeError)


class OrderCache:
    """Order listing cache. Implements the ListingCache contract."""

    def __init__(
        self,
        redis_client: Optional[RedisClient],
        settings: Optional[Settings] = None,
    ):
        self._redis = redis_client
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return (
            self.settings.cache_enabled
            and self._redis is not None
            and self._redis.is_connected
        )

    async def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            value = await self._redis.get_json(key)
        except CACHE_ERRORS as e:
            logger.warning(
                "Order cache read failed",
                cache_key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        logger.debug("Order cache lookup", cache_key=key, hit=value is not None)
        return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if not self.enabled:
            return False
        try:
            return await self._redis.set_json(key, value, ex=ttl)
        except CACHE_ERRORS as e:
            logger.warning(
                "Order cache write failed",
                cache_key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def invalidate(self, pattern: str) -> None:
        """Delete every key matching ``pattern``; never raises."""
        if not self.enabled:
            return
        try:
            count = await self._redis.delete_pattern(pattern)
            logger.debug("Order cache invalidated", pattern=pattern, keys_deleted=count)
        except CACHE_ERRORS as e:
            logger.warning(
                "Order cache invalidation failed",
                pattern=pattern,
                error=str(e),
                error_type=type(e).__name__,
            )

