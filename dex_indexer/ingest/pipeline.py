"""Ingestion of upstream transaction pages into raw, event and derived tables"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List

import asyncpg
import structlog

from dex_indexer.database.manager import DatabaseManager
from dex_indexer.database.models import Pair, SequencePosition, TxResponse
from dex_indexer.derivation.engine import DerivationEngine
from dex_indexer.ingest.decoder import DecodedTxEvent, decode_events, get_pair_tokens, get_token_denoms
from dex_indexer.ingest.events import (
    DepositAction,
    DexAction,
    PlaceLimitOrderAction,
    SwapAction,
    TickUpdateAction,
    WithdrawAction,
    parse_dex_action,
)
from dex_indexer.monitoring import metrics

logger = structlog.get_logger()

_FRACTION_PATTERN = re.compile(r"\.(\d+)")


def parse_timestamp(value: str) -> int:
    """
    Convert an RFC 3339 block timestamp to unix seconds.

    Fractions beyond microseconds (chain timestamps carry nanoseconds) are
    truncated; timestamps without an offset are taken as UTC.
    """
    normalized = value.strip().replace("Z", "+00:00")
    normalized = _FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized, count=1)
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


@dataclass
class IngestResult:
    """Outcome of ingesting one page of transactions"""

    ingested: int = 0
    skipped_failed: int = 0
    skipped_duplicate: int = 0
    max_height: int = 0

    @property
    def total(self) -> int:
        return self.ingested + self.skipped_failed + self.skipped_duplicate


class IngestionPipeline:
    """
    Writes transaction pages to the store, one database transaction per
    blockchain transaction.

    Transactions are processed strictly in page order and events in their
    emitted order; TickUpdate events are derived before the next event is
    read. Any failure aborts the current transaction's writes and is
    re-raised so the caller retries the page from the same height.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        derivation_engine: DerivationEngine,
        encoded_attributes: bool = True,
    ):
        """
        Initialize ingestion pipeline.

        Args:
            db_manager: Database manager
            derivation_engine: Engine applying TickUpdate events
            encoded_attributes: Whether event attributes arrive base64 encoded
        """
        self.db_manager = db_manager
        self.derivation_engine = derivation_engine
        self.encoded_attributes = encoded_attributes
        self._logger = logger.bind(component="ingestion_pipeline")

    async def ingest_tx_page(self, tx_responses: List[TxResponse]) -> IngestResult:
        """
        Ingest a page of transactions in order.

        Args:
            tx_responses: Page of upstream transactions, ascending by height

        Returns:
            IngestResult with counts and the highest height in the page

        Raises:
            Exception: The first write failure, after rolling back that transaction
        """
        result = IngestResult()

        for tx in tx_responses:
            result.max_height = max(result.max_height, tx.height)

            if tx.code != 0:
                result.skipped_failed += 1
                metrics.sync_txs_skipped.labels(reason="failed").inc()
                continue

            try:
                async with self.db_manager.transaction() as conn:
                    written = await self._ingest_tx(conn, tx)
            except Exception as e:
                metrics.sync_errors.labels(stage="ingest", error_type=type(e).__name__).inc()
                self._logger.error(
                    "tx_ingest_failed",
                    tx_hash=tx.txhash,
                    height=tx.height,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            if written:
                result.ingested += 1
                metrics.sync_txs_ingested.inc()
            else:
                result.skipped_duplicate += 1
                metrics.sync_txs_skipped.labels(reason="duplicate").inc()

        return result

    async def _ingest_tx(self, conn: asyncpg.Connection, tx: TxResponse) -> bool:
        """Write one successful transaction; returns False if it was already stored"""
        existing = await conn.fetchval("SELECT id FROM tx WHERE hash = $1", tx.txhash)
        if existing is not None:
            self._logger.debug("tx_already_ingested", tx_hash=tx.txhash, height=tx.height)
            return False

        events = decode_events(tx.events, encoded=self.encoded_attributes)

        await conn.execute(
            """
            INSERT INTO block (height, time, time_unix)
            VALUES ($1, $2, $3)
            ON CONFLICT (height) DO NOTHING
            """,
            tx.height,
            tx.timestamp,
            parse_timestamp(tx.timestamp),
        )

        token_ids: Dict[str, int] = {}
        for event in events:
            for denom in get_token_denoms(event):
                if denom not in token_ids:
                    token_ids[denom] = await self._get_or_create_token(conn, denom)

        pairs: Dict[FrozenSet[str], Pair] = {}
        for event in events:
            tokens = get_pair_tokens(event)
            if tokens and frozenset(tokens) not in pairs:
                pairs[frozenset(tokens)] = await self._get_or_create_pair(conn, *tokens)

        # stored txs of this height precede this one
        tx_index = await conn.fetchval("SELECT COUNT(*) FROM tx WHERE block_height = $1", tx.height)
        tx_id = await conn.fetchval(
            """
            INSERT INTO tx (
                hash, block_height, tx_index, code, info,
                gas_wanted, gas_used, codespace
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING id
            """,
            tx.txhash,
            tx.height,
            tx_index,
            tx.code,
            tx.info,
            tx.gas_wanted,
            tx.gas_used,
            tx.codespace,
        )

        for event in events:
            tx_event_id = await self._insert_tx_event(conn, tx_id, event)
            action = parse_dex_action(event)
            if action is None:
                continue
            pair = pairs[frozenset((action.token0, action.token1))]
            position = SequencePosition(tx.height, tx_index, event.index)
            await self._insert_action(conn, action, tx_event_id, pair, token_ids, position)

        return True

    async def _get_or_create_token(self, conn: asyncpg.Connection, denom: str) -> int:
        token_id = await conn.fetchval("SELECT id FROM dex_token WHERE denom = $1", denom)
        if token_id is None:
            token_id = await conn.fetchval(
                "INSERT INTO dex_token (denom) VALUES ($1) RETURNING id",
                denom,
            )
            self._logger.info("token_registered", denom=denom, token_id=token_id)
        return token_id

    async def _get_or_create_pair(self, conn: asyncpg.Connection, token0: str, token1: str) -> Pair:
        """Get a pair in either order, creating it in the given order on first sight"""
        row = await conn.fetchrow(
            """
            SELECT id, token0, token1 FROM dex_pair
            WHERE LEAST(token0, token1) = LEAST($1::text, $2::text)
              AND GREATEST(token0, token1) = GREATEST($1::text, $2::text)
            """,
            token0,
            token1,
        )
        if row:
            return Pair(id=row["id"], token0=row["token0"], token1=row["token1"])

        pair_id = await conn.fetchval(
            "INSERT INTO dex_pair (token0, token1) VALUES ($1, $2) RETURNING id",
            token0,
            token1,
        )
        self._logger.info("pair_registered", pair_id=pair_id, token0=token0, token1=token1)
        return Pair(id=pair_id, token0=token0, token1=token1)

    async def _insert_tx_event(self, conn: asyncpg.Connection, tx_id: int, event: DecodedTxEvent) -> int:
        return await conn.fetchval(
            """
            INSERT INTO tx_event (tx_id, event_index, type, attributes)
            VALUES ($1, $2, $3, $4::jsonb)
            RETURNING id
            """,
            tx_id,
            event.index,
            event.type,
            json.dumps(event.attributes),
        )

    async def _insert_action(
        self,
        conn: asyncpg.Connection,
        action: DexAction,
        tx_event_id: int,
        pair: Pair,
        token_ids: Dict[str, int],
        position: SequencePosition,
    ) -> None:
        """Write an action to its table, deriving state for TickUpdates"""
        if isinstance(action, SwapAction):
            await conn.execute(
                """
                INSERT INTO event_swap (
                    tx_event_id, pair_id, creator, receiver, token0, token1,
                    token_in, token_out, amount_in, amount_out
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                """,
                tx_event_id,
                pair.id,
                action.creator,
                action.receiver,
                action.token0,
                action.token1,
                action.token_in,
                action.token_out,
                action.amount_in,
                action.amount_out,
            )
        elif isinstance(action, DepositAction):
            await conn.execute(
                """
                INSERT INTO event_deposit (
                    tx_event_id, pair_id, action, creator, receiver, token0, token1,
                    tick_index, fee, reserves0_deposited, reserves1_deposited, shares_minted
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                tx_event_id,
                pair.id,
                action.kind,
                action.creator,
                action.receiver,
                action.token0,
                action.token1,
                action.tick_index,
                action.fee,
                action.reserves0_deposited,
                action.reserves1_deposited,
                action.shares_minted,
            )
        elif isinstance(action, WithdrawAction):
            await conn.execute(
                """
                INSERT INTO event_withdraw (
                    tx_event_id, pair_id, action, creator, receiver, token0, token1,
                    tick_index, fee, reserves0_withdrawn, reserves1_withdrawn, shares_removed
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                tx_event_id,
                pair.id,
                action.kind,
                action.creator,
                action.receiver,
                action.token0,
                action.token1,
                action.tick_index,
                action.fee,
                action.reserves0_withdrawn,
                action.reserves1_withdrawn,
                action.shares_removed,
            )
        elif isinstance(action, PlaceLimitOrderAction):
            await conn.execute(
                """
                INSERT INTO event_place_limit_order (
                    tx_event_id, pair_id, creator, receiver, token0, token1,
                    token_in, token_out, amount_in, limit_tick, order_type, shares, tranche_key
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                """,
                tx_event_id,
                pair.id,
                action.creator,
                action.receiver,
                action.token0,
                action.token1,
                action.token_in,
                action.token_out,
                action.amount_in,
                action.limit_tick,
                action.order_type,
                action.shares,
                action.tranche_key,
            )
        elif isinstance(action, TickUpdateAction):
            await self._insert_tick_update(conn, action, tx_event_id, pair, token_ids[action.token_in], position)

        metrics.dex_actions_ingested.labels(action=action.kind).inc()

    async def _insert_tick_update(
        self,
        conn: asyncpg.Connection,
        action: TickUpdateAction,
        tx_event_id: int,
        pair: Pair,
        token_id: int,
        position: SequencePosition,
    ) -> None:
        previous = await self.derivation_engine.get_tick_reserves(
            conn, pair.id, token_id, action.tick_index, action.fee
        )
        reserves_diff = action.reserves - (previous if previous is not None else Decimal(0))

        await conn.execute(
            """
            INSERT INTO event_tick_update (
                tx_event_id, pair_id, token0, token1, token_in,
                tick_index, fee, reserves, reserves_diff
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            tx_event_id,
            pair.id,
            action.token0,
            action.token1,
            action.token_in,
            action.tick_index,
            action.fee,
            action.reserves,
            reserves_diff,
        )

        await self.derivation_engine.apply_tick_update(
            conn, action, pair, token_id, position, previous_reserves=previous
        )
