"""Health check endpoints"""

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
import structlog

from dex_indexer.database.manager import DatabaseManager
from dex_indexer.monitoring import metrics
from dex_indexer.sync.state import SyncState

logger = structlog.get_logger()

router = APIRouter(tags=["health"])


async def get_db_manager(request: Request) -> DatabaseManager:
    """Get database manager from app state"""
    return request.app.state.db_manager


async def get_sync_state(request: Request) -> SyncState:
    """Get sync state from app state"""
    return request.app.state.sync_state


class HealthResponse(BaseModel):
    """Health check response model"""

    status: str = Field(description="Overall health status (healthy or unhealthy)")
    database: str = Field(description="Database connection status")
    database_pool_size: int = Field(description="Current database connection pool size")
    database_pool_free: int = Field(description="Number of free connections in pool")
    sync_status: str = Field(description="Sync driver state")
    last_block_height: int = Field(description="Highest fully ingested block height")


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    """Liveness check"""
    return "ok"


@router.get("/api/v1/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    db_manager: DatabaseManager = Depends(get_db_manager),
    sync_state: SyncState = Depends(get_sync_state),
) -> HealthResponse:
    """
    Health check endpoint to verify system status.

    Checks:
    - Database connectivity
    - Connection pool status
    - Sync driver state and synced height

    Returns:
    - 200 OK if the database is reachable
    - 503 Service Unavailable otherwise
    """
    sync_fields = {
        "sync_status": sync_state.status.value,
        "last_block_height": sync_state.last_block_height,
    }
    try:
        if not db_manager.pool:
            logger.error("health_check_failed", reason="database_pool_not_initialized")
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="unhealthy",
                database="disconnected",
                database_pool_size=0,
                database_pool_free=0,
                **sync_fields,
            )

        pool_size = await db_manager.get_pool_size()
        pool_free = await db_manager.get_pool_free_size()
        metrics.db_connection_pool_size.set(pool_size)
        metrics.db_connection_pool_free.set(pool_free)

        async with db_manager.pool.acquire() as conn:
            await conn.fetchval("SELECT 1")

        logger.debug("health_check_success", pool_size=pool_size, pool_free=pool_free)

        return HealthResponse(
            status="healthy",
            database="connected",
            database_pool_size=pool_size,
            database_pool_free=pool_free,
            **sync_fields,
        )

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="unhealthy",
            database="error",
            database_pool_size=0,
            database_pool_free=0,
            **sync_fields,
        )
