"""Table dump endpoint, registered only when DEBUG_ROUTES is enabled"""

from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from dex_indexer.database.manager import DatabaseManager

logger = structlog.get_logger()

router = APIRouter(prefix="/debug", tags=["debug"])


async def get_db_manager(request: Request) -> DatabaseManager:
    """Get database manager from app state"""
    return request.app.state.db_manager


@router.get("/{limit_or_all}")
async def dump_tables(limit_or_all: str, db_manager: DatabaseManager = Depends(get_db_manager)):
    """Dump the most recent `limit` rows of every table, or all rows for "all" """
    if limit_or_all == "all":
        limit = None
    elif limit_or_all.isdigit() and int(limit_or_all) > 0:
        limit = int(limit_or_all)
    else:
        raise HTTPException(status_code=400, detail="Expected a positive row limit or 'all'")

    try:
        return await db_manager.get_table_rows(limit)
    except Exception as e:
        logger.error("debug_dump_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to dump tables")
