"""Endpoint handlers: liquidity and timeseries data per token pair"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from dex_indexer.api.block_range import get_block_range
from dex_indexer.api.delivery import EndpointData, EndpointHandler
from dex_indexer.api.pagination import paginate_data
from dex_indexer.cache.height_bounded import HeightBoundedCache
from dex_indexer.database.aggregates import (
    VOLATILITY_DAYS,
    AggregateQueries,
    TimeseriesRow,
    invert_price_row,
    swap_value_pairs,
)
from dex_indexer.database.manager import DatabaseManager
from dex_indexer.database.models import Pair
from dex_indexer.sync.state import SyncState

LIQUIDITY_PAGE_LIMIT = 10000
TICK_SHAPE = ["tick_index", "reserves"]


@dataclass
class ApiContext:
    """Components shared by all endpoint handlers"""

    db_manager: DatabaseManager
    aggregates: AggregateQueries
    query_cache: HeightBoundedCache
    sync_state: SyncState


class PairHandler(EndpointHandler):
    """Base of handlers serving one token pair in the requested order"""

    def __init__(self, context: ApiContext, token_a: str, token_b: str):
        self.context = context
        self.token_a = token_a
        self.token_b = token_b

    async def _get_pair(self) -> Optional[Tuple[Pair, bool]]:
        """Get the canonical pair and whether the request order is inverted"""
        pair = await self.context.db_manager.get_pair(self.token_a, self.token_b)
        if pair is None:
            return None
        return pair, bool(pair.is_inverted(self.token_a, self.token_b))

    def _get_heights(self, query: Dict[str, Any]) -> Tuple[int, int]:
        """Resolve the query's range, ending at the synced height when open"""
        block_range = get_block_range(query)
        from_height = block_range.from_height or 0
        to_height = block_range.to_height or self.context.sync_state.last_block_height
        return from_height, to_height


class LiquidityPairHandler(PairHandler):
    """Tick liquidity of both sides of a pair"""

    shape = [TICK_SHAPE, TICK_SHAPE]

    async def _get_side(self, pair: Pair, token: str, from_height: int, to_height: int) -> List[list]:
        token_id = await self.context.db_manager.get_token_id(token)
        if token_id is None:
            return []
        return await self.context.query_cache.get(
            "tick-liquidity",
            (pair.id, token),
            from_height,
            to_height,
            lambda: self.context.aggregates.get_tick_liquidity(
                pair.id, token_id, token == pair.token1, from_height, to_height
            ),
        )

    async def get_data(self, query: Dict[str, Any]) -> Optional[EndpointData]:
        found = await self._get_pair()
        if found is None:
            return None
        pair, _ = found
        from_height, to_height = self._get_heights(query)
        # sides are read by token, so they already follow the requested order
        ticks_a = await self._get_side(pair, self.token_a, from_height, to_height)
        ticks_b = await self._get_side(pair, self.token_b, from_height, to_height)
        return EndpointData(height=to_height, datasets=[ticks_a, ticks_b])

    def get_paginated_response(self, data: EndpointData, query: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        ticks_a, ticks_b = data.datasets
        page_a, meta_a = paginate_data(ticks_a, query, LIQUIDITY_PAGE_LIMIT, LIQUIDITY_PAGE_LIMIT)
        page_b, meta_b = paginate_data(ticks_b, query, LIQUIDITY_PAGE_LIMIT, LIQUIDITY_PAGE_LIMIT)
        pagination: Dict[str, Any] = {"next_key": meta_a["next_key"] or meta_b["next_key"]}
        if "total" in meta_a:
            pagination["total"] = meta_a["total"] + meta_b["total"]
            pagination["totals"] = [meta_a["total"], meta_b["total"]]
        return [page_a, page_b], pagination

    def count_items(self, payload: Any) -> int:
        return max(len(side) for side in payload)


class LiquidityTokenHandler(LiquidityPairHandler):
    """Tick liquidity of the first token's side of a pair"""

    shape = TICK_SHAPE

    async def get_data(self, query: Dict[str, Any]) -> Optional[EndpointData]:
        found = await self._get_pair()
        if found is None:
            return None
        pair, _ = found
        from_height, to_height = self._get_heights(query)
        ticks = await self._get_side(pair, self.token_a, from_height, to_height)
        return EndpointData(height=to_height, datasets=[ticks])

    def get_paginated_response(self, data: EndpointData, query: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        return paginate_data(data.datasets[0], query, LIQUIDITY_PAGE_LIMIT, LIQUIDITY_PAGE_LIMIT)

    def count_items(self, payload: Any) -> int:
        return len(payload)


class TimeseriesHandler(PairHandler):
    """
    Base of timeseries endpoints.

    Subclasses name the cache segment, run the aggregate in canonical
    order and express rows in the requested order.
    """

    segment: str = ""

    def __init__(
        self,
        context: ApiContext,
        token_a: str,
        token_b: str,
        resolution: str,
        offset_seconds: int = 0,
    ):
        super().__init__(context, token_a, token_b)
        self.resolution = resolution
        self.offset_seconds = offset_seconds

    def _generate(self, pair: Pair, from_height: int, to_height: int) -> Callable[[], Awaitable[List[TimeseriesRow]]]:
        raise NotImplementedError

    def _invert(self, row: TimeseriesRow) -> TimeseriesRow:
        return swap_value_pairs(row)

    async def get_rows(self, from_height: int, to_height: int, cached: bool = True) -> Optional[List[TimeseriesRow]]:
        """
        Get the timeseries rows of a range, newest first, in the requested order.

        Args:
            from_height: Exclusive lower height
            to_height: Inclusive upper height
            cached: Whether to go through the query cache; results keyed by
                a moving window offset are read directly
        """
        found = await self._get_pair()
        if found is None:
            return None
        pair, inverted = found
        if cached:
            rows = await self.context.query_cache.get(
                self.segment,
                (pair.id, self.resolution, self.offset_seconds),
                from_height,
                to_height,
                self._generate(pair, from_height, to_height),
            )
        else:
            self.context.query_cache.validate_range(from_height, to_height)
            rows = await self._generate(pair, from_height, to_height)() if to_height > from_height else []
        if inverted:
            rows = [self._invert(row) for row in rows]
        return rows

    async def get_data(self, query: Dict[str, Any]) -> Optional[EndpointData]:
        from_height, to_height = self._get_heights(query)
        rows = await self.get_rows(from_height, to_height)
        if rows is None:
            return None
        return EndpointData(height=to_height, datasets=[rows])

    def get_paginated_response(self, data: EndpointData, query: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        return paginate_data(data.datasets[0], query, filter_by_time=True)


class PriceHandler(TimeseriesHandler):
    """Open/high/low/close of the last tick per window"""

    segment = "price"
    shape = ["time_unix", ["open", "high", "low", "close"]]

    def _generate(self, pair, from_height, to_height):
        return lambda: self.context.aggregates.get_price_timeseries(
            pair.id, self.resolution, from_height, to_height, self.offset_seconds
        )

    def _invert(self, row: TimeseriesRow) -> TimeseriesRow:
        return invert_price_row(row)


class LatestPriceHandler(PriceHandler):
    """Open/high/low/close of the newest second with a price change"""

    segment = "latest-price"

    def __init__(self, context: ApiContext, token_a: str, token_b: str):
        super().__init__(context, token_a, token_b, "second")

    def _generate(self, pair, from_height, to_height):
        return lambda: self.context.aggregates.get_price_timeseries(
            pair.id, self.resolution, from_height, to_height, limit=1
        )


class DailyPriceHandler(PriceHandler):
    """Open/high/low/close of the newest UTC days, enough for price volatility"""

    segment = "daily-price"

    def __init__(self, context: ApiContext, token_a: str, token_b: str):
        super().__init__(context, token_a, token_b, "day")

    def _generate(self, pair, from_height, to_height):
        return lambda: self.context.aggregates.get_price_timeseries(
            pair.id, self.resolution, from_height, to_height, limit=VOLATILITY_DAYS + 1
        )


class TotalVolumeHandler(TimeseriesHandler):
    """Total value locked per token per window"""

    segment = "total-volume"

    @property
    def shape(self):
        return ["time_unix", [self.token_a, self.token_b]]

    def _generate(self, pair, from_height, to_height):
        return lambda: self.context.aggregates.get_total_volume_timeseries(
            pair.id, self.resolution, from_height, to_height, self.offset_seconds
        )


class SwapVolumeHandler(TimeseriesHandler):
    """Swapped amounts and fees per token per window"""

    segment = "swap-volume"

    @property
    def shape(self):
        return ["time_unix", [self.token_a, self.token_b, f"{self.token_a} fee", f"{self.token_b} fee"]]

    def _generate(self, pair, from_height, to_height):
        return lambda: self.context.aggregates.get_swap_volume_timeseries(
            pair.id, self.resolution, from_height, to_height, self.offset_seconds
        )


class FeesHandler(TimeseriesHandler):
    """Fees per token per window"""

    segment = "fees"

    @property
    def shape(self):
        return ["time_unix", [self.token_a, self.token_b]]

    def _generate(self, pair, from_height, to_height):
        async def generate():
            rows = await self.context.aggregates.get_swap_volume_timeseries(
                pair.id, self.resolution, from_height, to_height, self.offset_seconds
            )
            return [[time_unix, values[2:]] for time_unix, values in rows if values[2] or values[3]]

        return generate
