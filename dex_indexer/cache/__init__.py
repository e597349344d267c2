"""Query caching: request coalescing, Redis tier and height-bounded keys"""

from dex_indexer.cache.coalescing import CoalescingCache
from dex_indexer.cache.height_bounded import SEGMENTS, HeightBoundedCache
from dex_indexer.cache.manager import CacheManager

__all__ = ["CacheManager", "CoalescingCache", "HeightBoundedCache", "SEGMENTS"]
