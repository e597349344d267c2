"""Query cache keyed by closed block height ranges"""

import time
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from dex_indexer.cache.coalescing import CoalescingCache
from dex_indexer.cache.manager import CacheManager
from dex_indexer.errors import ClientError
from dex_indexer.monitoring import metrics
from dex_indexer.sync.state import SyncState

logger = structlog.get_logger()

SEGMENTS = ("tick-liquidity", "price", "total-volume", "swap-volume", "fees")


class HeightBoundedCache:
    """
    Caches aggregate results of block ranges that are already fully synced.

    A range (from_height, to_height] at or below the last synced height can
    never change, so its result is stored without expiry: locally in a
    coalescing cache and, when configured, in Redis. Ranges reaching past
    the synced height are rejected instead of cached.
    """

    def __init__(
        self,
        sync_state: SyncState,
        cache_manager: Optional[CacheManager] = None,
        generate_timeout: Optional[float] = 20.0,
        max_entries: int = 1000,
    ):
        self.sync_state = sync_state
        self.cache_manager = cache_manager
        self._local = CoalescingCache(generate_timeout=generate_timeout, max_entries=max_entries)
        self._logger = logger.bind(component="height_bounded_cache")

    def validate_range(self, from_height: Optional[int], to_height: Optional[int]) -> None:
        """
        Check that a height range is closed and bound to synced data.

        Raises:
            ClientError: If a height is missing, unsynced or the range is inverted
        """
        if from_height is None or to_height is None:
            raise ClientError("Height is not specified")
        last_height = self.sync_state.last_block_height
        if from_height > last_height or to_height > last_height:
            raise ClientError("Height is not bound to known data")
        if to_height < from_height:
            raise ClientError("Height range is inverted: to_height is below from_height")

    async def get(
        self,
        segment: str,
        params: Iterable[Any],
        from_height: Optional[int],
        to_height: Optional[int],
        generate: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Get the cached result of an aggregate over (from_height, to_height].

        Args:
            segment: Cache segment naming the aggregate
            params: Other values the result depends on (tokens, resolution, ...)
            from_height: Exclusive lower height
            to_height: Inclusive upper height
            generate: Zero-argument coroutine function running the aggregate

        Returns:
            The aggregate rows ([] for a zero-width range)

        Raises:
            ClientError: If the range is not closed over synced data
            CacheGenerateTimeoutError: If generation takes too long
        """
        self.validate_range(from_height, to_height)
        if from_height == to_height:
            return []

        key = ":".join([*(str(param) for param in params), str(from_height), str(to_height)])
        local_key = (segment, key)
        metrics.query_cache_requests.labels(segment=segment, result=self._local.lookup_state(local_key)).inc()

        try:
            return await self._local.get_or_generate(local_key, lambda: self._load(segment, key, generate))
        except ClientError:
            raise
        except Exception as e:
            metrics.query_cache_requests.labels(segment=segment, result="error").inc()
            self._logger.error(
                "query_cache_generate_failed",
                segment=segment,
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def _load(self, segment: str, key: str, generate: Callable[[], Awaitable[Any]]) -> Any:
        """Read the shared Redis tier, generating and publishing on a miss"""
        if self.cache_manager:
            cached = await self.cache_manager.get_cached_range(segment, key)
            if cached is not None:
                return cached

        start_time = time.time()
        value = await generate()
        metrics.query_cache_generate_latency.labels(segment=segment).observe(time.time() - start_time)

        if self.cache_manager:
            await self.cache_manager.cache_range(segment, key, value)
        return value

    def stats(self):
        return self._local.stats()
