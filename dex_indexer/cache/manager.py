"""Redis tier for closed height-range query results"""

import json
from decimal import Decimal
from typing import Any, Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()


class CacheManager:
    """
    Manages the shared Redis tier of the query cache.

    Results of closed height ranges never change, so entries are stored
    without expiry unless a TTL is given. Redis failures are logged and
    reported as misses.
    """

    def __init__(self, redis_url: str):
        """
        Initialize cache manager.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379)
        """
        self.redis_url = redis_url
        self.client: Optional[redis.Redis] = None
        self._logger = logger.bind(component="cache_manager")

    async def connect(self) -> None:
        """Establish connection to Redis"""
        try:
            self.client = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self.client.ping()
            self._logger.info("redis_connected", url=self.redis_url)
        except Exception as e:
            self._logger.error("redis_connection_failed", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection"""
        if self.client:
            await self.client.close()
            self._logger.info("redis_disconnected")

    def _serialize_value(self, value: Any) -> str:
        """
        Serialize value to JSON string, handling Decimal types.

        Args:
            value: Value to serialize

        Returns:
            JSON string
        """

        def decimal_default(obj):
            if isinstance(obj, Decimal):
                return float(obj)
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(value, default=decimal_default)

    def _deserialize_value(self, value: str) -> Any:
        return json.loads(value)

    @staticmethod
    def range_key(segment: str, key: str) -> str:
        """Redis key of a cached range: range:{segment}:{key}"""
        return f"range:{segment}:{key}"

    async def cache_range(self, segment: str, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """
        Cache the result of a closed height range.

        Args:
            segment: Cache segment (e.g. "price")
            key: Key within the segment, encoding the height range
            value: JSON serializable result
            ttl: Time-to-live in seconds (default: no expiry)
        """
        if not self.client:
            self._logger.warning("cache_range_skipped", reason="redis_not_connected")
            return

        try:
            redis_key = self.range_key(segment, key)
            if ttl:
                await self.client.setex(redis_key, ttl, self._serialize_value(value))
            else:
                await self.client.set(redis_key, self._serialize_value(value))

            self._logger.debug("range_cached", segment=segment, key=key, ttl=ttl)

        except Exception as e:
            self._logger.error(
                "cache_range_failed",
                segment=segment,
                key=key,
                error=str(e),
            )

    async def get_cached_range(self, segment: str, key: str) -> Optional[Any]:
        """
        Get a cached range result.

        Args:
            segment: Cache segment
            key: Key within the segment

        Returns:
            Cached value or None if not found
        """
        if not self.client:
            return None

        try:
            cached = await self.client.get(self.range_key(segment, key))
            if cached is None:
                return None

            self._logger.debug("range_cache_hit", segment=segment, key=key)
            return self._deserialize_value(cached)

        except Exception as e:
            self._logger.error(
                "get_cached_range_failed",
                segment=segment,
                key=key,
                error=str(e),
            )
            return None

    async def invalidate_cache(self, pattern: str) -> int:
        """
        Invalidate cache entries matching pattern.

        Args:
            pattern: Redis key pattern (e.g., "range:*", "range:price:*")

        Returns:
            Number of keys deleted
        """
        if not self.client:
            self._logger.warning("invalidate_cache_skipped", reason="redis_not_connected")
            return 0

        try:
            keys = []
            async for key in self.client.scan_iter(match=pattern):
                keys.append(key)

            if keys:
                deleted = await self.client.delete(*keys)
                self._logger.info(
                    "cache_invalidated",
                    pattern=pattern,
                    deleted_count=deleted,
                )
                return deleted

            return 0

        except Exception as e:
            self._logger.error(
                "invalidate_cache_failed",
                pattern=pattern,
                error=str(e),
            )
            return 0
