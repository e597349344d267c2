"""Upstream chain RPC client for DEX transaction pages, with circuit breaker"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from dex_indexer.config.models import SyncConfig
from dex_indexer.database.models import TxResponse
from dex_indexer.errors import UpstreamError
from dex_indexer.monitoring import metrics

logger = structlog.get_logger()

BLOCK_TIME_CACHE_SIZE = 1000


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failures detected, stop calling
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreaker:
    """Circuit breaker for the RPC endpoint"""

    failure_threshold: int = 5
    timeout_seconds: int = 60
    failure_count: int = 0
    state: CircuitState = CircuitState.CLOSED
    last_failure_time: float = 0.0

    def record_success(self) -> None:
        """Record successful call"""
        self.failure_count = 0
        if self.state != CircuitState.CLOSED:
            self.state = CircuitState.CLOSED
            logger.info("circuit_breaker_closed", state=self.state.value)

    def record_failure(self) -> None:
        """Record failed call"""
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == CircuitState.HALF_OPEN or (
            self.failure_count >= self.failure_threshold and self.state == CircuitState.CLOSED
        ):
            self.state = CircuitState.OPEN
            logger.warning(
                "circuit_breaker_opened",
                state=self.state.value,
                failure_count=self.failure_count,
            )

    def can_attempt(self) -> bool:
        """Check if call can be attempted"""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if time.time() - self.last_failure_time >= self.timeout_seconds:
                self.state = CircuitState.HALF_OPEN
                logger.info("circuit_breaker_half_open", state=self.state.value)
                return True
            return False

        # HALF_OPEN state - allow one attempt
        return True


@dataclass
class TxPage:
    """One page of the upstream transaction search"""

    tx_responses: List[TxResponse] = field(default_factory=list)
    total: int = 0


def get_page_number(offset: int, limit: int) -> Dict[str, int]:
    """
    Map an item offset onto the feed's 1-based page numbering.

    The per-page size is reduced by factors of ten until it divides the
    offset, so the requested page starts exactly at the offset.

    Returns:
        {"page": ..., "per_page": ...}
    """
    per_page = max(1, limit)
    while per_page > 1 and offset % per_page != 0:
        per_page = max(1, per_page // 10)
    return {"page": offset // per_page + 1, "per_page": per_page}


class TxFeedClient:
    """
    Reads DEX transactions from a chain RPC endpoint.

    Uses `tx_search` for transactions with `tx.height >= N` touching the
    dex module, ascending, and `header` for block times (memoized per
    height). All failures surface as UpstreamError.
    """

    def __init__(self, config: SyncConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._circuit_breaker = CircuitBreaker()
        self._block_times: "OrderedDict[int, str]" = OrderedDict()
        self._logger = logger.bind(component="tx_feed_client", rpc_api=config.rpc_api)

    async def start(self) -> None:
        """Open the HTTP session"""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            )

    async def close(self) -> None:
        """Close the HTTP session"""
        if self._session:
            await self._session.close()
            self._session = None

    async def _get_result(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET an RPC endpoint and return its JSON-RPC `result`.

        Raises:
            UpstreamError: On circuit open, transport failure, non-200 status or RPC error
        """
        if not self._circuit_breaker.can_attempt():
            raise UpstreamError(f"Circuit open for {self.config.rpc_api}")

        await self.start()
        url = f"{self.config.rpc_api}/{endpoint}"
        start_time = time.time()
        try:
            async with self._session.get(url, params=params) as response:
                if response.status != 200:
                    raise UpstreamError(f"{endpoint} returned HTTP {response.status}", status=response.status)
                body = await response.json(content_type=None)
        except UpstreamError as e:
            self._record_failure(endpoint, e)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self._record_failure(endpoint, e)
            raise UpstreamError(f"{endpoint} request failed: {e!r}") from e

        metrics.upstream_request_latency.labels(endpoint=endpoint).observe(time.time() - start_time)

        if not isinstance(body, dict) or "result" not in body:
            error = UpstreamError(f"{endpoint} returned an error: {body.get('error') if isinstance(body, dict) else body!r}")
            self._record_failure(endpoint, error)
            raise error

        self._circuit_breaker.record_success()
        return body["result"]

    def _record_failure(self, endpoint: str, error: Exception) -> None:
        self._circuit_breaker.record_failure()
        metrics.upstream_errors.labels(endpoint=endpoint, error_type=type(error).__name__).inc()
        self._logger.warning("upstream_request_failed", endpoint=endpoint, error=str(error))

    async def get_latest_height(self) -> int:
        """
        Check that the upstream is reachable.

        Returns:
            The upstream's latest block height
        """
        result = await self._get_result("status")
        try:
            return int(result["sync_info"]["latest_block_height"])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"status response is malformed: {e!r}") from e

    async def get_block_time(self, height: int) -> str:
        """Get the RFC 3339 time of a block, memoized per height"""
        cached = self._block_times.get(height)
        if cached is not None:
            return cached

        result = await self._get_result("header", {"height": str(height)})
        try:
            block_time = result["header"]["time"]
        except (KeyError, TypeError) as e:
            raise UpstreamError(f"header response for {height} is malformed: {e!r}") from e

        self._block_times[height] = block_time
        while len(self._block_times) > BLOCK_TIME_CACHE_SIZE:
            self._block_times.popitem(last=False)
        return block_time

    async def fetch_tx_page(self, min_height: int, offset: int, limit: int) -> TxPage:
        """
        Fetch DEX transactions at or above a height.

        Args:
            min_height: Lowest block height to include
            offset: Items to skip in the ascending result set
            limit: Maximum items to return

        Returns:
            TxPage with the transactions and the total count of the search
        """
        paging = get_page_number(offset, limit)
        result = await self._get_result(
            "tx_search",
            {
                "query": f"\"tx.height>={min_height} AND message.module='dex'\"",
                "per_page": str(paging["per_page"]),
                "page": str(paging["page"]),
                "order_by": '"asc"',
            },
        )

        try:
            total = int(result.get("total_count") or 0)
            raw_txs = result.get("txs") or []
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamError(f"tx_search response is malformed: {e!r}") from e

        tx_responses = []
        for raw_tx in raw_txs:
            tx_responses.append(await self._to_tx_response(raw_tx))

        return TxPage(tx_responses=tx_responses, total=total)

    async def _to_tx_response(self, raw_tx: Dict[str, Any]) -> TxResponse:
        try:
            height = int(raw_tx["height"])
            tx_result = raw_tx.get("tx_result") or {}
            return TxResponse(
                height=height,
                timestamp=await self.get_block_time(height),
                txhash=raw_tx["hash"],
                code=int(tx_result.get("code") or 0),
                events=tx_result.get("events") or [],
                gas_wanted=_optional_int(tx_result.get("gas_wanted")),
                gas_used=_optional_int(tx_result.get("gas_used")),
                info=tx_result.get("info"),
                codespace=tx_result.get("codespace"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"tx_search result is malformed: {e!r}") from e


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value not in (None, "") else None
