"""Main application entry point for the DEX indexer"""

import asyncio
import signal
import sys
from typing import Optional

import structlog
import uvicorn
from dotenv import load_dotenv

from dex_indexer.api.app import create_app
from dex_indexer.cache.height_bounded import HeightBoundedCache
from dex_indexer.cache.manager import CacheManager
from dex_indexer.config.models import Settings
from dex_indexer.database.manager import DatabaseManager
from dex_indexer.derivation.engine import DerivationEngine
from dex_indexer.ingest.pipeline import IngestionPipeline
from dex_indexer.monitoring.metrics import start_metrics_server
from dex_indexer.sync.client import TxFeedClient
from dex_indexer.sync.driver import SyncDriver
from dex_indexer.sync.state import SyncState
from dex_indexer.utils.logging import setup_logging

load_dotenv()

setup_logging()

logger = structlog.get_logger()


class Application:
    """Wires storage, sync and the API together and owns their lifecycle"""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.db_manager: Optional[DatabaseManager] = None
        self.cache_manager: Optional[CacheManager] = None

        self.sync_state: Optional[SyncState] = None
        self.feed_client: Optional[TxFeedClient] = None
        self.pipeline: Optional[IngestionPipeline] = None
        self.sync_driver: Optional[SyncDriver] = None

        self.query_cache: Optional[HeightBoundedCache] = None

        self.app = None
        self._shutdown_event = asyncio.Event()

        self._logger = logger.bind(component="application")

    async def initialize(self) -> None:
        """Load settings, connect storage and build the sync and API components"""
        self._logger.info("application_initializing")

        try:
            self._logger.info("loading_settings")
            self.settings = Settings()

            setup_logging(self.settings.log_level)

            self._logger.info(
                "settings_loaded",
                log_level=self.settings.log_level.upper(),
                database_url=self.settings.database_url.split("@")[-1] if "@" in self.settings.database_url else "***",
                rpc_api=self.settings.rpc_api,
            )

            self._logger.info("initializing_database")
            self.db_manager = DatabaseManager(
                self.settings.database_url,
                min_pool_size=self.settings.db_min_pool_size,
                max_pool_size=self.settings.db_max_pool_size,
            )
            await self.db_manager.connect()
            await self.db_manager.initialize_schema()
            self._logger.info("database_initialized")

            if self.settings.redis_url:
                try:
                    self._logger.info("initializing_cache")
                    self.cache_manager = CacheManager(self.settings.redis_url)
                    await self.cache_manager.connect()
                    if await self.db_manager.get_last_block_height() == 0:
                        # ranges cached for an earlier database are not valid for an empty one
                        await self.cache_manager.invalidate_cache("range:*")
                    self._logger.info("cache_initialized")
                except Exception as e:
                    self._logger.warning(
                        "cache_initialization_failed",
                        error=str(e),
                        message="Continuing without cache",
                    )
                    self.cache_manager = None

            self._logger.info("initializing_sync")
            sync_config = self.settings.get_sync_config()
            self.sync_state = SyncState()
            self.feed_client = TxFeedClient(sync_config)
            self.pipeline = IngestionPipeline(self.db_manager, DerivationEngine())
            self.sync_driver = SyncDriver(
                client=self.feed_client,
                pipeline=self.pipeline,
                sync_state=self.sync_state,
                config=sync_config,
                db_manager=self.db_manager,
            )

            self.query_cache = HeightBoundedCache(
                self.sync_state,
                self.cache_manager,
                generate_timeout=self.settings.cache_generate_timeout_seconds,
                max_entries=self.settings.cache_max_entries,
            )

            self._logger.info("creating_api_app")
            self.app = create_app(
                settings=self.settings,
                db_manager=self.db_manager,
                sync_state=self.sync_state,
                query_cache=self.query_cache,
                cache_manager=self.cache_manager,
            )

            self._logger.info("application_initialized")

        except Exception as e:
            self._logger.error(
                "application_initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def start(self) -> None:
        """Start syncing: connect, initial catch-up, then polling"""
        self._logger.info("application_starting")

        try:
            await self.feed_client.start()
            await self.sync_driver.start()
            self._logger.info("application_started")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                "application_start_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def stop(self) -> None:
        """Stop polling, then close the feed client, cache and database"""
        self._logger.info("application_stopping")

        try:
            if self.sync_driver:
                self._logger.info("stopping_sync_driver")
                await self.sync_driver.stop()

            if self.feed_client:
                self._logger.info("closing_feed_client")
                await self.feed_client.close()

            if self.cache_manager:
                self._logger.info("closing_cache_connection")
                await self.cache_manager.disconnect()

            if self.db_manager:
                self._logger.info("closing_database_connection")
                await self.db_manager.disconnect()

            self._logger.info("application_stopped")

        except Exception as e:
            self._logger.error(
                "application_stop_error",
                error=str(e),
                error_type=type(e).__name__,
            )

    def setup_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to the shutdown event"""
        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            self._logger.info(
                "shutdown_signal_received",
                signal=signal_name,
            )
            self._shutdown_event.set()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        self._logger.info("signal_handlers_registered")

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()


async def main() -> None:
    """Run the indexer until a signal arrives or the initial sync fails"""
    app = Application()
    server: Optional[uvicorn.Server] = None
    server_task: Optional[asyncio.Task] = None

    try:
        await app.initialize()
        app.setup_signal_handlers()

        logger.info("starting_metrics_server", port=app.settings.prometheus_port)
        start_metrics_server(port=app.settings.prometheus_port)

        # Serve the API while the initial catch-up runs
        config = uvicorn.Config(
            app.app,
            host=app.settings.api_host,
            port=app.settings.api_port,
            log_level=app.settings.log_level.lower(),
            access_log=True,
        )
        server = uvicorn.Server(config)
        server_task = asyncio.create_task(server.serve())

        logger.info(
            "uvicorn_server_started",
            host=app.settings.api_host,
            port=app.settings.api_port,
        )

        start_task = asyncio.create_task(app.start())
        shutdown_task = asyncio.create_task(app.wait_for_shutdown())
        done, _ = await asyncio.wait({start_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

        if start_task in done:
            # initial catch-up failures propagate from here
            start_task.result()
            await shutdown_task
        else:
            start_task.cancel()
            try:
                await start_task
            except asyncio.CancelledError:
                logger.info("sync_start_cancelled")

        logger.info("shutting_down_uvicorn_server")
        server.should_exit = True
        await server_task

        await app.stop()

        logger.info("application_shutdown_complete")

    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_received")
        await app.stop()
    except Exception as e:
        logger.error(
            "application_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task
        await app.stop()
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("application_terminated")
    except Exception as e:
        logger.error(
            "application_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        sys.exit(1)
