"""FastAPI application with CORS and metrics middleware"""

import time
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
import structlog

from dex_indexer.api.handlers import ApiContext
from dex_indexer.cache.height_bounded import HeightBoundedCache
from dex_indexer.cache.manager import CacheManager
from dex_indexer.config.models import Settings
from dex_indexer.database.aggregates import AggregateQueries
from dex_indexer.database.manager import DatabaseManager
from dex_indexer.monitoring import metrics
from dex_indexer.monitoring.metrics import get_content_type, get_metrics
from dex_indexer.sync.state import SyncState

logger = structlog.get_logger()


def create_app(
    settings: Settings,
    db_manager: DatabaseManager,
    sync_state: SyncState,
    query_cache: Optional[HeightBoundedCache] = None,
    cache_manager: Optional[CacheManager] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Application settings
        db_manager: Database manager instance
        sync_state: Shared sync progress
        query_cache: Height-bounded query cache (created when omitted)
        cache_manager: Optional Redis cache manager instance

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="DEX Indexer API",
        description="Liquidity, price and volume of DEX pairs indexed from chain events",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Middleware to track API request metrics"""
        # Skip metrics for the metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path
        start_time = time.time()

        try:
            response = await call_next(request)

            # route template, not the raw path with token denoms
            route = request.scope.get("route")
            endpoint = getattr(route, "path", None) or endpoint
            metrics.api_request_latency.labels(
                endpoint=endpoint,
                method=request.method
            ).observe(time.time() - start_time)

            metrics.api_requests_total.labels(
                endpoint=endpoint,
                method=request.method,
                status=response.status_code
            ).inc()

            return response
        except Exception as e:
            metrics.api_errors.labels(
                endpoint=endpoint,
                error_type=type(e).__name__
            ).inc()
            raise

    if query_cache is None:
        query_cache = HeightBoundedCache(
            sync_state,
            cache_manager,
            generate_timeout=settings.cache_generate_timeout_seconds,
            max_entries=settings.cache_max_entries,
        )

    # Store dependencies in app state
    app.state.settings = settings
    app.state.db_manager = db_manager
    app.state.sync_state = sync_state
    app.state.cache_manager = cache_manager
    app.state.query_cache = query_cache
    app.state.context = ApiContext(
        db_manager=db_manager,
        aggregates=AggregateQueries(db_manager),
        query_cache=query_cache,
        sync_state=sync_state,
    )

    # Register routes
    from dex_indexer.api.routes import health, liquidity, stats, timeseries

    app.include_router(health.router)
    app.include_router(liquidity.router)
    app.include_router(timeseries.router)
    app.include_router(stats.router)

    if settings.debug_routes:
        from dex_indexer.api.routes import debug

        app.include_router(debug.router)

    @app.get("/metrics")
    async def metrics_endpoint():
        """Prometheus metrics endpoint"""
        return Response(content=get_metrics(), media_type=get_content_type())

    logger.info(
        "fastapi_app_created",
        title=app.title,
        version=app.version,
        debug_routes=settings.debug_routes,
    )

    return app
