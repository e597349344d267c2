"""Read-side aggregate queries over closed block height ranges"""

import math
import statistics
from decimal import Decimal
from typing import List, Optional

import structlog

from dex_indexer.database.manager import DatabaseManager
from dex_indexer.errors import ClientError

logger = structlog.get_logger()

RESOLUTIONS = ("second", "minute", "hour", "day", "month")
DEFAULT_RESOLUTION = "minute"

DAY_SECONDS = 24 * 60 * 60
VOLATILITY_DAYS = 21
VOLATILITY_PERIOD_DAYS = 10
TRADING_DAYS_PER_YEAR = 252

TickRow = List  # [tick_index, reserves]
TimeseriesRow = List  # [time_unix, [values...]]


def get_resolution(resolution: Optional[str]) -> str:
    """
    Validate a timeseries resolution.

    Args:
        resolution: One of second, minute, hour, day, month (None for the default)

    Returns:
        The resolution name

    Raises:
        ClientError: If the resolution is unknown
    """
    if not resolution:
        return DEFAULT_RESOLUTION
    if resolution not in RESOLUTIONS:
        raise ClientError(f"Unknown resolution: {resolution}")
    return resolution


def tick_state_as_of_sql(key_filter: str = "") -> str:
    """
    Build the as-of read of tick state.

    Selects, for each (tick_index, fee) of one pair and token, the last
    recorded reserves at or before a block height. Parameters: $1 pair id,
    $2 token id, $3 block height. `key_filter` may add conditions on
    further numbered parameters.
    """
    return f"""
        SELECT DISTINCT ON (tick_index, fee)
            tick_index, fee, reserves, block_height, tx_index, event_index
        FROM derived_tick_state_log
        WHERE pair_id = $1
          AND token_id = $2
          AND block_height <= $3
          {key_filter}
        ORDER BY tick_index, fee, block_height DESC, tx_index DESC, event_index DESC
    """


def _window_sql(time_column: str, resolution: str, offset_seconds: int) -> str:
    """Window start (unix seconds) of a timestamp column for a resolution"""
    offset = int(offset_seconds)
    return (
        f"(EXTRACT(EPOCH FROM date_trunc('{resolution}', "
        f"to_timestamp({time_column} - {offset}) AT TIME ZONE 'UTC'))::bigint + {offset})"
    )


def round_significant(value, digits: int = 3) -> float:
    """Round a reserves amount to a number of significant figures"""
    return float(f"{float(Decimal(value)):.{digits}g}")


class AggregateQueries:
    """
    Aggregations backing the liquidity, price and volume endpoints.

    Every query is restricted to blocks in (from_height, to_height] and
    returns rows in the pair's canonical token order, newest first for
    timeseries. Callers handle inverted token order.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self._logger = logger.bind(component="aggregate_queries")

    async def get_tick_liquidity(
        self,
        pair_id: int,
        token_id: int,
        reverse_direction: bool,
        from_height: int,
        to_height: int,
    ) -> List[TickRow]:
        """
        Get tick reserves of one side of a pair as of to_height.

        With from_height 0 only ticks holding reserves are returned; with a
        later from_height every tick that changed inside the range is
        returned, including ticks that were emptied.

        Args:
            pair_id: Pair id
            token_id: Token id of the side
            reverse_direction: True for the token1 side (tick indexes negated)
            from_height: Exclusive lower height
            to_height: Inclusive upper height

        Returns:
            Rows of [tick_index, reserves], innermost ticks first
        """
        order = "ASC" if reverse_direction else "DESC"
        query = f"""
            WITH as_of AS ({tick_state_as_of_sql()})
            SELECT tick_index, SUM(reserves) AS reserves
            FROM as_of
            GROUP BY tick_index
            HAVING MAX(block_height) > $4
               AND ($4 > 0 OR SUM(reserves) <> 0)
            ORDER BY tick_index {order}
        """
        rows = await self.db_manager.fetch(query, pair_id, token_id, to_height, from_height)
        return [
            [
                -row["tick_index"] if reverse_direction else row["tick_index"],
                round_significant(row["reserves"]),
            ]
            for row in rows
        ]

    async def get_price_timeseries(
        self,
        pair_id: int,
        resolution: str,
        from_height: int,
        to_height: int,
        offset_seconds: int = 0,
        limit: Optional[int] = None,
    ) -> List[TimeseriesRow]:
        """
        Get open/high/low/close of the pair's last tick per time window.

        Args:
            limit: Number of newest windows to return (None for all)

        Returns:
            Rows of [time_unix, [open, high, low, close]], newest first
        """
        limit_sql = f"LIMIT {int(limit)}" if limit else ""
        window = _window_sql("b.time_unix", resolution, offset_seconds)
        query = f"""
            WITH price_points AS (
                SELECT
                    {window} AS resolution_unix,
                    first_value(p.last_tick) OVER resolution_window AS first_price,
                    last_value(p.last_tick) OVER resolution_window AS last_price,
                    p.last_tick AS price
                FROM derived_tx_price_data p
                INNER JOIN block b ON b.height = p.block_height
                WHERE p.pair_id = $1
                  AND p.block_height > $2
                  AND p.block_height <= $3
                  AND p.last_tick IS NOT NULL
                WINDOW resolution_window AS (
                    PARTITION BY {window}
                    ORDER BY p.block_height ASC, p.tx_index ASC, p.event_index ASC
                    ROWS BETWEEN UNBOUNDED PRECEDING AND UNBOUNDED FOLLOWING
                )
            )
            SELECT
                resolution_unix AS time_unix,
                MIN(first_price) AS open,
                MAX(price) AS high,
                MIN(price) AS low,
                MIN(last_price) AS close
            FROM price_points
            GROUP BY resolution_unix
            ORDER BY resolution_unix DESC
            {limit_sql}
        """
        rows = await self.db_manager.fetch(query, pair_id, from_height, to_height)
        return [
            [row["time_unix"], [row["open"], row["high"], row["low"], row["close"]]]
            for row in rows
        ]

    async def get_total_volume_timeseries(
        self,
        pair_id: int,
        resolution: str,
        from_height: int,
        to_height: int,
        offset_seconds: int = 0,
    ) -> List[TimeseriesRow]:
        """
        Get the last total reserves of each token per time window.

        Returns:
            Rows of [time_unix, [amount0, amount1]], newest first
        """
        window = _window_sql("b.time_unix", resolution, offset_seconds)
        query = f"""
            WITH windowed AS (
                SELECT
                    {window} AS resolution_unix,
                    last_value(v.reserves_float_0) OVER resolution_window AS last_amount_0,
                    last_value(v.reserves_float_1) OVER resolution_window AS last_amount_1
                FROM derived_tx_volume_data v
                INNER JOIN block b ON b.height = v.block_height
                WHERE v.pair_id = $1
                  AND v.block_height > $2
                  AND v.block_height <= $3
                WINDOW resolution_window AS (
                    PARTITION BY {window}
                    ORDER BY v.block_height ASC, v.tx_index ASC, v.event_index ASC
                    ROWS BETWEEN UNBOUNDED PRECEDING AND UNBOUNDED FOLLOWING
                )
            )
            SELECT
                resolution_unix AS time_unix,
                MIN(last_amount_0) AS amount0,
                MIN(last_amount_1) AS amount1
            FROM windowed
            GROUP BY resolution_unix
            ORDER BY resolution_unix DESC
        """
        rows = await self.db_manager.fetch(query, pair_id, from_height, to_height)
        return [[row["time_unix"], [row["amount0"], row["amount1"]]] for row in rows]

    async def get_swap_volume_timeseries(
        self,
        pair_id: int,
        resolution: str,
        from_height: int,
        to_height: int,
        offset_seconds: int = 0,
    ) -> List[TimeseriesRow]:
        """
        Get swapped amounts and fees of each token per time window.

        Swapped amounts are the AmountOut of swaps by output token. Fees are
        taken from reserves added at ticks, scaled by the tick's fee tier
        in basis points.

        Returns:
            Rows of [time_unix, [amount0, amount1, fee0, fee1]], newest first
        """
        swap_window = _window_sql("b.time_unix", resolution, offset_seconds)
        query = f"""
            WITH swaps AS (
                SELECT
                    {swap_window} AS time_unix,
                    SUM(CASE WHEN s.token_out = s.token0 THEN s.amount_out ELSE 0 END) AS amount0,
                    SUM(CASE WHEN s.token_out = s.token1 THEN s.amount_out ELSE 0 END) AS amount1
                FROM event_swap s
                INNER JOIN tx_event e ON e.id = s.tx_event_id
                INNER JOIN tx ON tx.id = e.tx_id
                INNER JOIN block b ON b.height = tx.block_height
                WHERE s.pair_id = $1
                  AND tx.block_height > $2
                  AND tx.block_height <= $3
                GROUP BY 1
            ),
            fees AS (
                SELECT
                    {swap_window} AS time_unix,
                    SUM(CASE WHEN t.token_in = t.token0 THEN t.reserves_diff * t.fee / 10000 ELSE 0 END) AS fee0,
                    SUM(CASE WHEN t.token_in = t.token1 THEN t.reserves_diff * t.fee / 10000 ELSE 0 END) AS fee1
                FROM event_tick_update t
                INNER JOIN tx_event e ON e.id = t.tx_event_id
                INNER JOIN tx ON tx.id = e.tx_id
                INNER JOIN block b ON b.height = tx.block_height
                WHERE t.pair_id = $1
                  AND tx.block_height > $2
                  AND tx.block_height <= $3
                  AND t.reserves_diff > 0
                GROUP BY 1
            )
            SELECT
                COALESCE(swaps.time_unix, fees.time_unix) AS time_unix,
                COALESCE(swaps.amount0, 0)::float8 AS amount0,
                COALESCE(swaps.amount1, 0)::float8 AS amount1,
                COALESCE(fees.fee0, 0)::float8 AS fee0,
                COALESCE(fees.fee1, 0)::float8 AS fee1
            FROM swaps
            FULL OUTER JOIN fees ON fees.time_unix = swaps.time_unix
            ORDER BY 1 DESC
        """
        rows = await self.db_manager.fetch(query, pair_id, from_height, to_height)
        return [
            [row["time_unix"], [row["amount0"], row["amount1"], row["fee0"], row["fee1"]]]
            for row in rows
            if row["amount0"] or row["amount1"] or row["fee0"] or row["fee1"]
        ]


def invert_price_row(row: TimeseriesRow) -> TimeseriesRow:
    """Express an OHLC tick row for the reversed token order"""
    time_unix, (open_tick, high, low, close) = row
    return [time_unix, [-open_tick, -low, -high, -close]]


def swap_value_pairs(row: TimeseriesRow) -> TimeseriesRow:
    """Swap token0/token1 values held as consecutive pairs"""
    time_unix, values = row
    swapped = []
    for index in range(0, len(values) - 1, 2):
        swapped.extend([values[index + 1], values[index]])
    return [time_unix, swapped]



def tick_to_price(tick_index: int) -> float:
    """Price of token1 in token0 at a tick"""
    return math.pow(1.0001, tick_index)


def get_price_volatility(
    rows: List[TimeseriesRow],
    start_of_today: int,
    strict: bool = True,
) -> List[TimeseriesRow]:
    """
    Annualized volatility of daily close prices over the last two 10 day periods.

    Closes are taken for the 21 whole days before today; a day without a
    row takes the close of the nearest earlier row.

    Args:
        rows: Day OHLC tick rows in the requested token order, newest first
        start_of_today: Unix time of the current day's UTC midnight
        strict: Leave a period empty unless enough daily changes exist for it

    Returns:
        [[start_of_today - 10 days, [volatility]], [start_of_today - 20 days, [volatility]]]
    """
    closes: List[Optional[float]] = []
    for days_ago in range(1, VOLATILITY_DAYS + 1):
        start_of_day = start_of_today - days_ago * DAY_SECONDS
        found = next((row for row in rows if row[0] <= start_of_day), None)
        close = found[1][3] if found else None
        closes.append(tick_to_price(close) if close is not None else None)

    changes = [
        newer / older - 1
        for newer, older in zip(closes, closes[1:])
        if newer is not None and older is not None
    ]

    annual_factor = math.sqrt(TRADING_DAYS_PER_YEAR)
    data = []
    for periods_ago in (1, 2):
        required = periods_ago * VOLATILITY_PERIOD_DAYS
        period_changes = changes[:VOLATILITY_PERIOD_DAYS] if periods_ago == 1 else changes[-VOLATILITY_PERIOD_DAYS:]
        values = []
        if (len(changes) >= required or not strict) and len(period_changes) > 1:
            values = [annual_factor * statistics.stdev(period_changes)]
        data.append([start_of_today - required * DAY_SECONDS, values])
    return data
