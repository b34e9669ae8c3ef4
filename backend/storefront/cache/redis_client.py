"""
Redis client configuration with connection pooling and async support.

Provides the Redis client wrapper used for caching order listings, with
connection pooling, retry with exponential backoff, JSON helpers and
pattern-based invalidation.
"""

import json
from typing import Any, Optional, Union

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client with connection pooling and retry logic.

    Operations raise ConnectionError when the client is not connected and
    propagate RedisError; callers that treat the cache as optional catch
    those.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        socket_timeout: float = 2.0,
        socket_connect_timeout: float = 2.0,
        health_check_interval: int = 30,
    ):
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

        self._cache_hits = 0
        self._cache_misses = 0
        self._total_operations = 0

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Strip credentials from a Redis URL for logging."""
        if "@" in url:
            protocol, rest = url.split("://", 1)
            if "@" in rest:
                _, host_part = rest.split("@", 1)
                return f"{protocol}://***@{host_part}"
        return url

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self) -> None:
        """
        Create the connection pool and verify connectivity with PING.

        Raises:
            ConnectionError: If connection cannot be established
        """
        if self._is_connected:
            return

        try:
            retry = Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3)

            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                health_check_interval=self._health_check_interval,
                retry=retry,
                retry_on_timeout=True,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connection established",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
            )

        except (ConnectionError, TimeoutError, OSError) as e:
            logger.warning(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self._close_resources()
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def disconnect(self) -> None:
        """Close the client and its connection pool."""
        if not self._is_connected:
            return
        await self._close_resources()
        logger.info("Redis connection closed")

    async def _close_resources(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
        self._is_connected = False

    async def health_check(self) -> bool:
        if not self._is_connected or self._client is None:
            return False
        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning("Redis health check failed", error=str(e))
            return False

    def _ensure_connected(self) -> None:
        if not self._is_connected or self._client is None:
            raise ConnectionError("Redis client is not connected")

    async def get(self, key: str) -> Optional[str]:
        self._ensure_connected()
        self._total_operations += 1
        value = await self._client.get(key)
        if value is not None:
            self._cache_hits += 1
        else:
            self._cache_misses += 1
        logger.debug("Redis GET operation", key=key, found=value is not None)
        return value

    async def set(
        self,
        key: str,
        value: Union[str, bytes, int, float],
        ex: Optional[int] = None,
    ) -> bool:
        self._ensure_connected()
        self._total_operations += 1
        result = await self._client.set(key, value, ex=ex)
        logger.debug("Redis SET operation", key=key, ex=ex, success=bool(result))
        return bool(result)

    async def delete(self, *keys: str) -> int:
        self._ensure_connected()
        if not keys:
            return 0
        self._total_operations += 1
        return await self._client.delete(*keys)

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get a JSON value.

        Raises:
            json.JSONDecodeError: If the stored value is not valid JSON
        """
        value = await self.get(key)
        if value is None:
            return None
        return json.loads(value)

    async def set_json(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        return await self.set(key, json.dumps(value, default=str), ex=ex)

    async def delete_pattern(self, pattern: str, batch_size: int = 500) -> int:
        """
        Delete all keys matching a glob pattern using SCAN.

        Args:
            pattern: Redis key pattern (e.g., "storefront:orders:admin:*")
            batch_size: Keys deleted per DEL command

        Returns:
            Number of keys deleted
        """
        self._ensure_connected()

        deleted = 0
        batch: list[str] = []
        async for key in self._client.scan_iter(match=pattern, count=batch_size):
            batch.append(key)
            if len(batch) >= batch_size:
                deleted += await self.delete(*batch)
                batch = []
        if batch:
            deleted += await self.delete(*batch)

        logger.debug("Redis DELETE pattern", pattern=pattern, count=deleted)
        return deleted

    def get_cache_stats(self) -> dict[str, Any]:
        hit_rate = (
            self._cache_hits / self._total_operations * 100
            if self._total_operations > 0
            else 0.0
        )
        return {
            "total_operations": self._total_operations,
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
            "hit_rate_percent": round(hit_rate, 2),
        }


_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get or create the global Redis client; connecting is the caller's job."""
    global _redis_client

    if _redis_client is None:
        _redis_client = RedisClient()

    return _redis_client


async def close_redis_client() -> None:
    global _redis_client

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
