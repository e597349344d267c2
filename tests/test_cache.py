"""Integration tests for Redis cache manager

These tests require a Redis instance to be running.
To run these tests, ensure you have Redis running:
docker run --name redis-test -p 6379:6379 -d redis:7-alpine

Or skip these tests with: pytest -m "not integration"
"""

import asyncio
import os
from decimal import Decimal

import pytest

from dex_indexer.cache.height_bounded import HeightBoundedCache
from dex_indexer.cache.manager import CacheManager
from dex_indexer.sync.state import SyncState


# Test Redis URL
TEST_REDIS_URL = os.getenv("TEST_REDIS_URL", "redis://localhost:6379/1")

# Mark all tests in this module as integration tests
pytestmark = pytest.mark.integration


@pytest.fixture
async def cache_manager():
    """Create cache manager for testing"""
    manager = CacheManager(TEST_REDIS_URL)

    try:
        await manager.connect()

        # Clear test database before tests
        if manager.client:
            await manager.client.flushdb()

        yield manager
    finally:
        # Cleanup
        if manager.client:
            await manager.client.flushdb()
        await manager.disconnect()


async def test_cache_range_round_trip(cache_manager):
    """Test storing and reading a range result"""
    value = [[1704067200, [0, 2, 0, 2]]]

    await cache_manager.cache_range("price", "1:minute:0:0:11", value)

    assert await cache_manager.get_cached_range("price", "1:minute:0:0:11") == value
    assert await cache_manager.client.ttl("range:price:1:minute:0:0:11") == -1


async def test_cache_range_serializes_decimals(cache_manager):
    """Test that Decimal values are stored as numbers"""
    await cache_manager.cache_range("tick-liquidity", "1:tokenA:0:11", [[0, Decimal("110.5")]])

    assert await cache_manager.get_cached_range("tick-liquidity", "1:tokenA:0:11") == [[0, 110.5]]


async def test_cache_range_with_ttl(cache_manager):
    """Test that an explicit TTL expires the entry"""
    await cache_manager.cache_range("fees", "1:day:0:0:5", [], ttl=1)

    assert await cache_manager.get_cached_range("fees", "1:day:0:0:5") == []
    await asyncio.sleep(1.5)
    assert await cache_manager.get_cached_range("fees", "1:day:0:0:5") is None


async def test_cache_miss(cache_manager):
    """Test reading a range that was never cached"""
    assert await cache_manager.get_cached_range("price", "missing") is None


async def test_invalidate_cache_by_pattern(cache_manager):
    """Test pattern invalidation"""
    await cache_manager.cache_range("price", "a", [1])
    await cache_manager.cache_range("price", "b", [2])
    await cache_manager.cache_range("fees", "a", [3])

    deleted = await cache_manager.invalidate_cache("range:price:*")

    assert deleted == 2
    assert await cache_manager.get_cached_range("price", "a") is None
    assert await cache_manager.get_cached_range("fees", "a") == [3]


async def test_height_bounded_cache_shares_results(cache_manager):
    """Test that a second process-local cache reads results from Redis"""
    sync_state = SyncState(last_block_height=20)
    first = HeightBoundedCache(sync_state, cache_manager)
    second = HeightBoundedCache(sync_state, cache_manager)
    calls = 0

    async def generate():
        nonlocal calls
        calls += 1
        return [[5, 1.0]]

    assert await first.get("tick-liquidity", (1, "tokenA"), 0, 20, generate) == [[5, 1.0]]
    assert await second.get("tick-liquidity", (1, "tokenA"), 0, 20, generate) == [[5, 1.0]]
    assert calls == 1
