"""Tests for the upstream feed client"""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from dex_indexer.config.models import SyncConfig
from dex_indexer.errors import UpstreamError
from dex_indexer.sync.client import CircuitBreaker, CircuitState, TxFeedClient, get_page_number


@pytest.fixture
def feed_client():
    return TxFeedClient(SyncConfig(rpc_api="http://localhost:26657"))


def test_get_page_number_aligned_offset():
    """Test page numbers for offsets that are multiples of the limit"""
    assert get_page_number(0, 100) == {"page": 1, "per_page": 100}
    assert get_page_number(200, 100) == {"page": 3, "per_page": 100}


def test_get_page_number_shrinks_per_page():
    """Test that per_page shrinks until it divides the offset"""
    assert get_page_number(30, 100) == {"page": 4, "per_page": 10}
    assert get_page_number(7, 100) == {"page": 8, "per_page": 1}
    assert get_page_number(5, 0) == {"page": 6, "per_page": 1}


def test_circuit_breaker_opens_after_threshold():
    """Test circuit breaker opening after repeated failures"""
    breaker = CircuitBreaker(failure_threshold=3, timeout_seconds=60)

    for _ in range(3):
        assert breaker.can_attempt()
        breaker.record_failure()

    assert breaker.state == CircuitState.OPEN
    assert not breaker.can_attempt()


def test_circuit_breaker_half_open_recovery():
    """Test recovery through the half-open state"""
    breaker = CircuitBreaker(failure_threshold=1, timeout_seconds=60)
    breaker.record_failure()
    breaker.last_failure_time = time.time() - 61

    assert breaker.can_attempt()
    assert breaker.state == CircuitState.HALF_OPEN

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


def test_circuit_breaker_half_open_failure_reopens():
    """Test that a failed attempt while half-open opens the circuit again"""
    breaker = CircuitBreaker(failure_threshold=5, timeout_seconds=60)
    breaker.state = CircuitState.HALF_OPEN

    breaker.record_failure()

    assert breaker.state == CircuitState.OPEN


async def test_latest_height_from_status(feed_client):
    """Test reading the upstream height from /status"""
    feed_client._get_result = AsyncMock(return_value={"sync_info": {"latest_block_height": "12345"}})

    assert await feed_client.get_latest_height() == 12345
    feed_client._get_result.assert_awaited_once_with("status")


async def test_latest_height_malformed_status(feed_client):
    """Test that a malformed status response is an upstream error"""
    feed_client._get_result = AsyncMock(return_value={"node_info": {}})

    with pytest.raises(UpstreamError):
        await feed_client.get_latest_height()


async def test_get_block_time_is_memoized(feed_client):
    """Test that block headers are fetched once per height"""
    feed_client._get_result = AsyncMock(return_value={"header": {"time": "2024-01-01T00:00:05.123456789Z"}})

    assert await feed_client.get_block_time(10) == "2024-01-01T00:00:05.123456789Z"
    assert await feed_client.get_block_time(10) == "2024-01-01T00:00:05.123456789Z"
    feed_client._get_result.assert_awaited_once_with("header", {"height": "10"})


async def test_fetch_tx_page(feed_client):
    """Test mapping a tx_search result into transaction responses"""
    search_result = {
        "total_count": "3",
        "txs": [
            {
                "hash": "ABC",
                "height": "10",
                "tx_result": {
                    "code": 0,
                    "events": [{"type": "message", "attributes": []}],
                    "gas_wanted": "200000",
                    "gas_used": "150000",
                },
            },
            {
                "hash": "DEF",
                "height": "11",
                "tx_result": {"code": 5, "codespace": "dex", "info": "failed"},
            },
        ],
    }

    async def get_result(endpoint, params=None):
        if endpoint == "tx_search":
            return search_result
        return {"header": {"time": f"2024-01-01T00:00:{params['height']}Z"}}

    feed_client._get_result = AsyncMock(side_effect=get_result)

    page = await feed_client.fetch_tx_page(10, 0, 100)

    assert page.total == 3
    assert [t.txhash for t in page.tx_responses] == ["ABC", "DEF"]
    first, second = page.tx_responses
    assert first.height == 10
    assert first.timestamp == "2024-01-01T00:00:10Z"
    assert first.gas_used == 150000
    assert first.events == [{"type": "message", "attributes": []}]
    assert second.code == 5
    assert second.codespace == "dex"
    assert second.gas_wanted is None

    params = feed_client._get_result.await_args_list[0].args[1]
    assert params["query"] == "\"tx.height>=10 AND message.module='dex'\""
    assert params["page"] == "1"
    assert params["per_page"] == "100"
    assert params["order_by"] == '"asc"'


async def test_fetch_tx_page_malformed_tx(feed_client):
    """Test that transactions without a hash are an upstream error"""
    feed_client._get_result = AsyncMock(return_value={"total_count": "1", "txs": [{"height": "1"}]})

    with pytest.raises(UpstreamError):
        await feed_client.fetch_tx_page(1, 0, 10)


class FakeResponse:
    """Async context manager standing in for an aiohttp response"""

    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


async def test_get_result_http_error_counts_as_failure(feed_client):
    """Test that non-200 responses raise and trip the circuit breaker"""
    session = MagicMock()
    session.get = MagicMock(return_value=FakeResponse(503, {}))
    feed_client._session = session

    with pytest.raises(UpstreamError) as exc_info:
        await feed_client._get_result("status")

    assert exc_info.value.status == 503
    assert feed_client._circuit_breaker.failure_count == 1


async def test_get_result_rpc_error(feed_client):
    """Test that JSON-RPC errors raise"""
    session = MagicMock()
    session.get = MagicMock(return_value=FakeResponse(200, {"error": {"code": -32603}}))
    feed_client._session = session

    with pytest.raises(UpstreamError):
        await feed_client._get_result("status")


async def test_get_result_returns_result(feed_client):
    """Test a successful call"""
    session = MagicMock()
    session.get = MagicMock(return_value=FakeResponse(200, {"jsonrpc": "2.0", "result": {"ok": True}}))
    feed_client._session = session

    assert await feed_client._get_result("status") == {"ok": True}
    session.get.assert_called_once_with("http://localhost:26657/status", params=None)


async def test_get_result_circuit_open(feed_client):
    """Test that an open circuit fails fast"""
    feed_client._circuit_breaker.state = CircuitState.OPEN
    feed_client._circuit_breaker.last_failure_time = time.time()

    with pytest.raises(UpstreamError, match="Circuit open"):
        await feed_client._get_result("status")
