"""Pair statistics: current price, volatility and last 24 hour totals"""

import time
from typing import Awaitable, Callable, Type

from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from dex_indexer.api.handlers import (
    ApiContext,
    DailyPriceHandler,
    FeesHandler,
    LatestPriceHandler,
    SwapVolumeHandler,
    TimeseriesHandler,
    TotalVolumeHandler,
)
from dex_indexer.api.routes.timeseries import get_api_context
from dex_indexer.database.aggregates import DAY_SECONDS, get_price_volatility
from dex_indexer.errors import IndexerError, NotFoundError

logger = structlog.get_logger()

router = APIRouter(prefix="/stats", tags=["stats"])

LOOKBACK_SECONDS = 2 * DAY_SECONDS


async def get_last_day_stat(
    context: ApiContext,
    handler_class: Type[TimeseriesHandler],
    token_a: str,
    token_b: str,
    now: int,
) -> dict:
    """
    Get the newest day-long window of the last 48 hours.

    Day windows are shifted by the time since midnight UTC so that one
    window covers exactly the last 24 hours.
    """
    handler = handler_class(context, token_a, token_b, "day", now % DAY_SECONDS)
    from_height = await context.db_manager.get_height_at_time(now - LOOKBACK_SECONDS) or 0
    to_height = context.sync_state.last_block_height

    rows = await handler.get_rows(min(from_height, to_height), to_height, cached=False)
    if rows is None:
        raise NotFoundError("Not Found")

    return {
        "shape": handler.shape,
        "data": rows[0] if rows else None,
        "block_range": {"from_height": from_height, "to_height": to_height},
    }


async def get_latest_price_stat(context: ApiContext, token_a: str, token_b: str) -> dict:
    """Get the price of the newest second in which the price changed"""
    handler = LatestPriceHandler(context, token_a, token_b)
    to_height = context.sync_state.last_block_height

    rows = await handler.get_rows(0, to_height, cached=False)
    if rows is None:
        raise NotFoundError("Not Found")

    return {
        "shape": handler.shape,
        "data": rows[0] if rows else None,
        "block_range": {"from_height": 0, "to_height": to_height},
    }


async def get_volatility_stat(
    context: ApiContext,
    token_a: str,
    token_b: str,
    now: int,
    strict: bool = True,
) -> dict:
    """
    Get the annualized price volatility of the last two 10 day periods.

    With strict, a period without a full set of daily price changes is
    reported with an empty value list.
    """
    handler = DailyPriceHandler(context, token_a, token_b)
    to_height = context.sync_state.last_block_height

    rows = await handler.get_rows(0, to_height, cached=False)
    if rows is None:
        raise NotFoundError("Not Found")

    start_of_today = now - now % DAY_SECONDS
    return {
        "shape": ["time_unix", ["volatility"]],
        "data": get_price_volatility(rows, start_of_today, strict),
        "block_range": {"from_height": 0, "to_height": to_height},
    }


async def _serve(stat_name: str, load: Callable[[], Awaitable[dict]]):
    try:
        return await load()
    except HTTPException:
        raise
    except IndexerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(
            "stats_request_failed",
            stat=stat_name,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(status_code=500, detail="Failed to retrieve statistics")


def _serve_last_day(context: ApiContext, handler_class: Type[TimeseriesHandler], token_a: str, token_b: str):
    return _serve(
        handler_class.segment,
        lambda: get_last_day_stat(context, handler_class, token_a, token_b, int(time.time())),
    )


@router.get("/price/{token_a}/{token_b}")
async def get_price_stat(token_a: str, token_b: str, context: ApiContext = Depends(get_api_context)):
    """Get the current price as the last open/high/low/close tick row"""
    return await _serve("price", lambda: get_latest_price_stat(context, token_a, token_b))


@router.get("/volatility/{token_a}/{token_b}")
async def get_volatility(
    token_a: str,
    token_b: str,
    strict: bool = Query(default=True, description="Only report periods with complete daily data"),
    context: ApiContext = Depends(get_api_context),
):
    """Get annualized price volatility of the last 10 and the 10 days before"""
    return await _serve(
        "volatility",
        lambda: get_volatility_stat(context, token_a, token_b, int(time.time()), strict),
    )


@router.get("/tvl/{token_a}/{token_b}")
async def get_tvl_stat(token_a: str, token_b: str, context: ApiContext = Depends(get_api_context)):
    """Get total reserves of each token over the last 24 hours"""
    return await _serve_last_day(context, TotalVolumeHandler, token_a, token_b)


@router.get("/volume/{token_a}/{token_b}")
async def get_volume_stat(token_a: str, token_b: str, context: ApiContext = Depends(get_api_context)):
    """Get swapped amounts and fees of each token over the last 24 hours"""
    return await _serve_last_day(context, SwapVolumeHandler, token_a, token_b)


@router.get("/fees/{token_a}/{token_b}")
async def get_fees_stat(token_a: str, token_b: str, context: ApiContext = Depends(get_api_context)):
    """Get fees of each token over the last 24 hours"""
    return await _serve_last_day(context, FeesHandler, token_a, token_b)
