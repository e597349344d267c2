"""Derived tick state, price and volume changelogs maintained from TickUpdate events"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import asyncpg
import structlog

from dex_indexer.database.models import Pair, SequencePosition
from dex_indexer.ingest.events import TickUpdateAction
from dex_indexer.monitoring import metrics

logger = structlog.get_logger()


@dataclass
class DerivationResult:
    """Outcome of applying one TickUpdate"""

    previous_reserves: Optional[Decimal]
    tick_state_changed: bool = False
    price_changed: bool = False
    volume_changed: bool = False


class DerivationEngine:
    """
    Applies TickUpdate events to the derived tables.

    Must be called by the single ingestion writer, inside the database
    transaction of the blockchain transaction being ingested, in event
    order. Every read below therefore sees all earlier events, including
    earlier events of the same transaction.
    """

    def __init__(self):
        self._logger = logger.bind(component="derivation_engine")

    async def get_tick_reserves(
        self,
        conn: asyncpg.Connection,
        pair_id: int,
        token_id: int,
        tick_index: int,
        fee: int,
    ) -> Optional[Decimal]:
        """Get the latest recorded reserves of one tick key (None if never recorded)"""
        return await conn.fetchval(
            """
            SELECT reserves FROM derived_tick_state
            WHERE pair_id = $1 AND token_id = $2 AND tick_index = $3 AND fee = $4
            """,
            pair_id,
            token_id,
            tick_index,
            fee,
        )

    async def apply_tick_update(
        self,
        conn: asyncpg.Connection,
        action: TickUpdateAction,
        pair: Pair,
        token_id: int,
        position: SequencePosition,
        previous_reserves: Optional[Decimal] = None,
    ) -> DerivationResult:
        """
        Apply one TickUpdate to tick state and the price and volume changelogs.

        Args:
            conn: Connection holding the open ingestion transaction
            action: Parsed TickUpdate
            pair: Canonical pair of the update
            token_id: Registry id of the update's TokenIn
            position: Sequence position of the event
            previous_reserves: Reserves before this update, when already read

        Returns:
            DerivationResult
        """
        if previous_reserves is None:
            previous_reserves = await self.get_tick_reserves(
                conn, pair.id, token_id, action.tick_index, action.fee
            )

        result = DerivationResult(previous_reserves=previous_reserves)
        if action.reserves == (previous_reserves or Decimal(0)):
            self._logger.debug(
                "tick_update_unchanged",
                pair_id=pair.id,
                tick_index=action.tick_index,
                fee=action.fee,
                block_height=position.block_height,
            )
            return result

        await self._write_tick_state(conn, action, pair.id, token_id, position)
        result.tick_state_changed = True

        is_forward = action.token_in == pair.token1
        result.price_changed = await self._update_price(conn, pair.id, token_id, is_forward, position)
        result.volume_changed = await self._update_volume(conn, pair.id, token_id, is_forward, position)
        return result

    async def _write_tick_state(
        self,
        conn: asyncpg.Connection,
        action: TickUpdateAction,
        pair_id: int,
        token_id: int,
        position: SequencePosition,
    ) -> None:
        args = (
            pair_id,
            token_id,
            action.tick_index,
            action.fee,
            action.reserves,
            position.block_height,
            position.tx_index,
            position.event_index,
        )
        await conn.execute(
            """
            INSERT INTO derived_tick_state (
                pair_id, token_id, tick_index, fee, reserves,
                block_height, tx_index, event_index
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (pair_id, token_id, tick_index, fee) DO UPDATE SET
                reserves = EXCLUDED.reserves,
                block_height = EXCLUDED.block_height,
                tx_index = EXCLUDED.tx_index,
                event_index = EXCLUDED.event_index
            """,
            *args,
        )
        await conn.execute(
            """
            INSERT INTO derived_tick_state_log (
                pair_id, token_id, tick_index, fee, reserves,
                block_height, tx_index, event_index
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            *args,
        )
        metrics.derived_rows_written.labels(table="derived_tick_state").inc()

    async def _update_price(
        self,
        conn: asyncpg.Connection,
        pair_id: int,
        token_id: int,
        is_forward: bool,
        position: SequencePosition,
    ) -> bool:
        """Write a price row when the best tick of the updated side moved"""
        # token1 liquidity is best at its lowest tick, token0 at its highest
        best = "MIN" if is_forward else "MAX"
        current = await conn.fetchval(
            f"""
            SELECT {best}(tick_index) FROM derived_tick_state
            WHERE pair_id = $1 AND token_id = $2 AND reserves <> 0
            """,
            pair_id,
            token_id,
        )

        previous = await conn.fetchrow(
            """
            SELECT highest_tick_0, lowest_tick_1 FROM derived_tx_price_data
            WHERE pair_id = $1
            ORDER BY block_height DESC, tx_index DESC, event_index DESC
            LIMIT 1
            """,
            pair_id,
        )
        side_column, other_column = (
            ("lowest_tick_1", "highest_tick_0") if is_forward else ("highest_tick_0", "lowest_tick_1")
        )
        previous_side = previous[side_column] if previous else None
        if current == previous_side:
            return False

        other_side = previous[other_column] if previous else None
        last_tick = current if current is not None else other_side
        await conn.execute(
            f"""
            INSERT INTO derived_tx_price_data (
                pair_id, block_height, tx_index, event_index,
                {side_column}, {other_column}, last_tick
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            pair_id,
            position.block_height,
            position.tx_index,
            position.event_index,
            current,
            other_side,
            last_tick,
        )
        metrics.derived_rows_written.labels(table="derived_tx_price_data").inc()
        return True

    async def _update_volume(
        self,
        conn: asyncpg.Connection,
        pair_id: int,
        token_id: int,
        is_forward: bool,
        position: SequencePosition,
    ) -> bool:
        """Write a volume row when the total reserves of the updated side changed"""
        total = await conn.fetchval(
            """
            SELECT COALESCE(SUM(reserves), 0)::float8 FROM derived_tick_state
            WHERE pair_id = $1 AND token_id = $2 AND reserves <> 0
            """,
            pair_id,
            token_id,
        )

        previous = await conn.fetchrow(
            """
            SELECT reserves_float_0, reserves_float_1 FROM derived_tx_volume_data
            WHERE pair_id = $1
            ORDER BY block_height DESC, tx_index DESC, event_index DESC
            LIMIT 1
            """,
            pair_id,
        )
        side_column, other_column = (
            ("reserves_float_1", "reserves_float_0") if is_forward else ("reserves_float_0", "reserves_float_1")
        )
        previous_side = previous[side_column] if previous else 0.0
        if total == previous_side:
            return False

        other_side = previous[other_column] if previous else 0.0
        await conn.execute(
            f"""
            INSERT INTO derived_tx_volume_data (
                pair_id, block_height, tx_index, event_index,
                {side_column}, {other_column}
            ) VALUES ($1, $2, $3, $4, $5, $6)
            """,
            pair_id,
            position.block_height,
            position.tx_index,
            position.event_index,
            total,
            other_side,
        )
        metrics.derived_rows_written.labels(table="derived_tx_volume_data").inc()
        return True
