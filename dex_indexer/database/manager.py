"""Database manager with connection pooling and retry logic"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
import structlog

from dex_indexer.database.models import Pair
from dex_indexer.database.schema import get_schema_sql
from dex_indexer.monitoring import metrics

logger = structlog.get_logger()

# tables that may be dumped through the debug route
DEBUG_TABLES = (
    "block",
    "tx",
    "tx_event",
    "dex_token",
    "dex_pair",
    "event_swap",
    "event_deposit",
    "event_withdraw",
    "event_place_limit_order",
    "event_tick_update",
    "derived_tick_state",
    "derived_tick_state_log",
    "derived_tx_price_data",
    "derived_tx_volume_data",
)


class DatabaseManager:
    """
    Manages PostgreSQL database connections and operations with connection pooling.

    Features:
    - Connection pooling (min 5, max 20 connections)
    - Automatic retry logic for transient failures (3 attempts with exponential backoff)
    - Parameterized queries to prevent SQL injection
    - Transaction support for the serial ingestion writer
    """

    def __init__(self, database_url: str, min_pool_size: int = 5, max_pool_size: int = 20):
        """
        Initialize database manager.

        Args:
            database_url: PostgreSQL connection URL
            min_pool_size: Minimum number of connections in pool
            max_pool_size: Maximum number of connections in pool
        """
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None
        self._logger = logger.bind(component="database_manager")

    async def connect(self) -> None:
        """Establish connection pool to database"""
        try:
            self.pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=60,
            )
            self._logger.info(
                "database_connected",
                min_pool_size=self.min_pool_size,
                max_pool_size=self.max_pool_size,
            )
        except Exception as e:
            self._logger.error("database_connection_failed", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close connection pool"""
        if self.pool:
            await self.pool.close()
            self._logger.info("database_disconnected")

    async def initialize_schema(self) -> None:
        """Initialize database schema"""
        if not self.pool:
            raise RuntimeError("Database pool not initialized. Call connect() first.")

        schema_sql = get_schema_sql()
        async with self.pool.acquire() as conn:
            await conn.execute(schema_sql)
            self._logger.info("database_schema_initialized")

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Retry database operation with exponential backoff.

        Args:
            operation: Async function to retry
            *args: Positional arguments for operation
            **kwargs: Keyword arguments for operation

        Returns:
            Result of operation

        Raises:
            Exception: If all retry attempts fail
        """
        max_attempts = 3
        base_delay = 0.5  # seconds

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation(*args, **kwargs)
            except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                if attempt == max_attempts:
                    metrics.db_errors.labels(
                        operation=operation.__name__,
                        error_type=type(e).__name__,
                    ).inc()
                    self._logger.error(
                        "database_operation_failed",
                        operation=operation.__name__,
                        attempts=attempt,
                        error=str(e),
                    )
                    raise

                delay = base_delay * (2 ** (attempt - 1))
                self._logger.warning(
                    "database_operation_retry",
                    operation=operation.__name__,
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection and run the enclosed block in one transaction.

        The transaction commits when the block exits normally and rolls back
        when it raises.
        """
        if not self.pool:
            raise RuntimeError("Database pool not initialized")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Run a read query with retries"""
        if not self.pool:
            raise RuntimeError("Database pool not initialized")

        async def _fetch():
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)

        return await self._retry_operation(_fetch)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Run a single-row read query with retries"""
        if not self.pool:
            raise RuntimeError("Database pool not initialized")

        async def _fetchrow():
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *args)

        return await self._retry_operation(_fetchrow)

    async def get_last_block_height(self) -> int:
        """Get the highest ingested block height (0 when nothing is ingested)"""
        row = await self.fetchrow("SELECT COALESCE(MAX(height), 0) AS height FROM block")
        return int(row["height"]) if row else 0

    async def get_height_at_time(self, time_unix: int) -> Optional[int]:
        """
        Resolve a unix timestamp to the last block at or before it.

        Args:
            time_unix: Unix timestamp in seconds

        Returns:
            Block height, or None when no block is that old
        """
        row = await self.fetchrow(
            """
            SELECT height FROM block
            WHERE time_unix <= $1
            ORDER BY height DESC
            LIMIT 1
            """,
            time_unix,
        )
        return int(row["height"]) if row else None

    async def get_pair(self, token_a: str, token_b: str) -> Optional[Pair]:
        """
        Get the pair of two tokens in either order.

        Args:
            token_a: First token denom
            token_b: Second token denom

        Returns:
            Pair in canonical order, or None if the pair was never seen
        """
        row = await self.fetchrow(
            """
            SELECT id, token0, token1 FROM dex_pair
            WHERE LEAST(token0, token1) = LEAST($1::text, $2::text)
              AND GREATEST(token0, token1) = GREATEST($1::text, $2::text)
            LIMIT 1
            """,
            token_a,
            token_b,
        )
        if not row:
            return None
        return Pair(id=row["id"], token0=row["token0"], token1=row["token1"])

    async def has_inverted_order(self, token_a: str, token_b: str) -> Optional[bool]:
        """
        Check whether (token_a, token_b) is the reverse of the canonical pair order.

        Returns:
            False if token_a is token0, True if token_b is token0,
            None if the pair is unknown
        """
        pair = await self.get_pair(token_a, token_b)
        if pair is None:
            return None
        return pair.is_inverted(token_a, token_b)

    async def get_token_id(self, denom: str) -> Optional[int]:
        """Get the registry id of a token denom"""
        row = await self.fetchrow("SELECT id FROM dex_token WHERE denom = $1", denom)
        return row["id"] if row else None

    async def get_table_rows(self, limit: Optional[int] = 100) -> Dict[str, List[Dict[str, Any]]]:
        """
        Dump the most recent rows of every table.

        Args:
            limit: Rows per table, or None for all rows

        Returns:
            Rows keyed by table name, oldest first
        """
        if not self.pool:
            raise RuntimeError("Database pool not initialized")

        tables: Dict[str, List[Dict[str, Any]]] = {}
        async with self.pool.acquire() as conn:
            for table in DEBUG_TABLES:
                if limit:
                    rows = await conn.fetch(
                        f"SELECT * FROM (SELECT * FROM {table} ORDER BY id DESC LIMIT $1) t ORDER BY id ASC",
                        limit,
                    )
                else:
                    rows = await conn.fetch(f"SELECT * FROM {table} ORDER BY id ASC")
                tables[table] = [dict(row) for row in rows]
        return tables

    async def get_pool_size(self) -> int:
        """Get current connection pool size"""
        if not self.pool:
            return 0
        return self.pool.get_size()

    async def get_pool_free_size(self) -> int:
        """Get number of free connections in pool"""
        if not self.pool:
            return 0
        return self.pool.get_idle_size()
