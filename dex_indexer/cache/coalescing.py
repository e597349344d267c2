"""Request-coalescing in-memory cache"""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

import structlog

from dex_indexer.errors import CacheGenerateTimeoutError

logger = structlog.get_logger()


class CoalescingCache:
    """
    Memoizes async generations by key with at most one generation in flight per key.

    Concurrent callers of a key that is being generated await the same
    task. A caller waiting longer than `generate_timeout` receives
    CacheGenerateTimeoutError while the generation keeps running, so its
    result still lands in the cache for later callers. Failed generations
    are never stored. Stored values expire after `ttl` seconds (None keeps
    them until evicted); the least recently used value is evicted beyond
    `max_entries`.
    """

    def __init__(
        self,
        generate_timeout: Optional[float] = 20.0,
        ttl: Optional[float] = None,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.generate_timeout = generate_timeout
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._values: "OrderedDict[Hashable, Tuple[Any, Optional[float]]]" = OrderedDict()
        self._inflight: Dict[Hashable, asyncio.Task] = {}
        self._stats = {"hits": 0, "misses": 0, "coalesced": 0, "errors": 0, "timeouts": 0}
        self._logger = logger.bind(component="coalescing_cache")

    def _get_fresh(self, key: Hashable) -> Tuple[bool, Any]:
        entry = self._values.get(key)
        if entry is None:
            return False, None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return False, None
        self._values.move_to_end(key)
        return True, value

    def lookup_state(self, key: Hashable) -> str:
        """Report what a lookup of key would do now: hit, coalesced or miss"""
        entry = self._values.get(key)
        if entry is not None and (entry[1] is None or entry[1] > self._clock()):
            return "hit"
        if key in self._inflight:
            return "coalesced"
        return "miss"

    async def get_or_generate(self, key: Hashable, generate: Callable[[], Awaitable[Any]]) -> Any:
        """
        Get the value of key, generating it on a miss.

        Args:
            key: Cache key
            generate: Zero-argument coroutine function producing the value

        Returns:
            Cached or generated value

        Raises:
            CacheGenerateTimeoutError: If the generation outlasts generate_timeout
            Exception: Whatever the generation raised
        """
        found, value = self._get_fresh(key)
        if found:
            self._stats["hits"] += 1
            return value

        task = self._inflight.get(key)
        if task is None:
            self._stats["misses"] += 1
            task = asyncio.ensure_future(self._generate(key, generate))
            task.add_done_callback(self._retrieve_exception)
            self._inflight[key] = task
        else:
            self._stats["coalesced"] += 1

        try:
            if self.generate_timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), self.generate_timeout)
        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            self._logger.warning("cache_generate_timeout", key=str(key), timeout=self.generate_timeout)
            raise CacheGenerateTimeoutError(f"Generating {key} timed out")

    async def _generate(self, key: Hashable, generate: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await generate()
        except Exception:
            self._stats["errors"] += 1
            raise
        finally:
            self._inflight.pop(key, None)

        expires_at = self._clock() + self.ttl if self.ttl is not None else None
        self._values[key] = (value, expires_at)
        self._values.move_to_end(key)
        while len(self._values) > self.max_entries:
            self._values.popitem(last=False)
        return value

    @staticmethod
    def _retrieve_exception(task: asyncio.Task) -> None:
        # callers may all have timed out; mark the failure as observed
        if not task.cancelled():
            task.exception()

    def drop(self, key: Hashable) -> None:
        """Forget the stored value of key"""
        self._values.pop(key, None)

    def clear(self) -> None:
        """Forget all stored values"""
        self._values.clear()

    def stats(self) -> Dict[str, int]:
        """Get hit/miss counters and current sizes"""
        return {**self._stats, "size": len(self._values), "inflight": len(self._inflight)}

    def __len__(self) -> int:
        return len(self._values)
