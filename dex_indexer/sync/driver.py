"""Sync driver: connect to the upstream feed, catch up, then keep up"""

import asyncio
import math
import time
from typing import Optional

import structlog

from dex_indexer.config.models import SyncConfig
from dex_indexer.database.manager import DatabaseManager
from dex_indexer.errors import UpstreamError
from dex_indexer.ingest.pipeline import IngestionPipeline
from dex_indexer.monitoring import metrics
from dex_indexer.sync.client import TxFeedClient, TxPage
from dex_indexer.sync.state import SyncState, SyncStatus

logger = structlog.get_logger()

STILL_POLLING_LOG_INTERVAL = 10.0


class SyncDriver:
    """
    Single writer of the index.

    Responsibilities:
    - Wait for the upstream feed to become reachable (capped exponential backoff)
    - Catch up from the last stored height, page by page
    - Poll for new transactions every poll interval, tolerating failures
    - Publish the synced height through SyncState after every page
    """

    def __init__(
        self,
        client: TxFeedClient,
        pipeline: IngestionPipeline,
        sync_state: SyncState,
        config: SyncConfig,
        db_manager: DatabaseManager,
    ):
        self.client = client
        self.pipeline = pipeline
        self.sync_state = sync_state
        self.config = config
        self.db_manager = db_manager

        self._running = False
        self._keep_up_task: Optional[asyncio.Task] = None
        self._last_poll_log_time = 0.0
        self._logger = logger.bind(component="sync_driver")

    async def connect(self) -> int:
        """
        Ask the upstream for its height until it answers, backing off up to the configured cap.

        Returns:
            The upstream's latest block height
        """
        self.sync_state.set_status(SyncStatus.CONNECTING)
        delay = 1.0
        while True:
            try:
                latest_height = await self.client.get_latest_height()
                self._logger.info("upstream_connected", latest_height=latest_height)
                return latest_height
            except UpstreamError as e:
                self._logger.warning("upstream_connect_retry", delay=delay, error=str(e))
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.config.max_connect_backoff_seconds)

    async def _fetch_page(self, from_height: int, offset: int) -> TxPage:
        """
        Fetch one page, retrying with page sizes shrunk tenfold per attempt.

        Raises:
            UpstreamError: When even a single-item page cannot be fetched
        """
        retry_count = 0
        while True:
            limit = math.ceil(self.config.page_size / 10 ** retry_count)
            try:
                return await self.client.fetch_tx_page(from_height, offset, limit)
            except UpstreamError as e:
                metrics.sync_errors.labels(stage="fetch", error_type=type(e).__name__).inc()
                if limit <= 1:
                    raise
                retry_count += 1
                self._logger.warning(
                    "sync_page_fetch_retry",
                    from_height=from_height,
                    offset=offset,
                    limit=limit,
                    retry_count=retry_count,
                    error=str(e),
                )
                await asyncio.sleep(retry_count)

    async def catch_up(self, from_height: int, mode: str = "catch_up") -> int:
        """
        Ingest every DEX transaction at or above from_height.

        Pages are ingested in order and the synced height is published
        after each one: while more pages follow, only up to the height
        below the page's last transaction, since that block may continue
        on the next page.

        Args:
            from_height: Lowest height to fetch
            mode: Metrics label (catch_up or keep_up)

        Returns:
            Number of transactions written
        """
        offset = 0
        ingested = 0
        while True:
            start_time = time.time()
            page = await self._fetch_page(from_height, offset)
            result = await self.pipeline.ingest_tx_page(page.tx_responses)

            count = len(page.tx_responses)
            next_offset = offset + count
            has_next_page = next_offset < page.total
            ingested += result.ingested

            if result.max_height:
                await self.sync_state.advance(result.max_height - 1 if has_next_page else result.max_height)

            metrics.sync_pages_ingested.labels(mode=mode).inc()
            metrics.sync_page_latency.labels(mode=mode).observe(time.time() - start_time)
            self._logger.info(
                "sync_page_ingested",
                mode=mode,
                from_height=from_height,
                offset=offset,
                count=count,
                total=page.total,
                ingested=result.ingested,
                skipped_failed=result.skipped_failed,
                skipped_duplicate=result.skipped_duplicate,
                last_block_height=self.sync_state.last_block_height,
            )

            if count == 0 or not has_next_page:
                return ingested
            offset = next_offset

    async def start(self) -> None:
        """
        Connect, run the initial catch-up and start polling.

        Errors of the initial catch-up propagate to the caller.
        """
        if self._running:
            self._logger.warning("sync_driver_already_running")
            return

        await self.connect()

        # the last stored block may be partial; stored txs are skipped by hash
        resume_height = max(1, await self.db_manager.get_last_block_height())
        self.sync_state.set_status(SyncStatus.CATCHING_UP)
        self._logger.info("sync_catch_up_started", from_height=resume_height)
        ingested = await self.catch_up(resume_height)
        self._logger.info(
            "sync_catch_up_completed",
            ingested=ingested,
            last_block_height=self.sync_state.last_block_height,
        )

        self._running = True
        self.sync_state.set_status(SyncStatus.KEEPING_UP)
        self._keep_up_task = asyncio.create_task(self._keep_up_loop())
        self._logger.info("sync_driver_started")

    async def stop(self) -> None:
        """Stop polling gracefully"""
        if not self._running:
            self._logger.warning("sync_driver_not_running")
            return

        self._running = False

        if self._keep_up_task:
            self._keep_up_task.cancel()
            try:
                await self._keep_up_task
            except asyncio.CancelledError:
                self._logger.info("sync_driver_task_cancelled")

        self.sync_state.set_status(SyncStatus.DISCONNECTED)
        self._logger.info("sync_driver_stopped")

    async def keep_up_once(self) -> int:
        """Poll once from the block after the synced height"""
        previous_height = self.sync_state.last_block_height
        ingested = await self.catch_up(previous_height + 1, mode="keep_up")

        now = time.time()
        if self.sync_state.last_block_height > previous_height:
            self._last_poll_log_time = now
        elif now - self._last_poll_log_time >= STILL_POLLING_LOG_INTERVAL:
            self._last_poll_log_time = now
            self._logger.debug("sync_still_polling", last_block_height=previous_height)
        return ingested

    async def _keep_up_loop(self) -> None:
        """Poll loop that survives failed iterations"""
        self._logger.info("sync_keep_up_loop_started")

        try:
            while self._running:
                try:
                    await self.keep_up_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    metrics.sync_errors.labels(stage="keep_up", error_type=type(e).__name__).inc()
                    self._logger.error(
                        "sync_keep_up_loop_error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )

                await asyncio.sleep(self.config.poll_interval_seconds)

        except asyncio.CancelledError:
            self._logger.info("sync_keep_up_loop_cancelled")
        finally:
            self._logger.info("sync_keep_up_loop_exited")
