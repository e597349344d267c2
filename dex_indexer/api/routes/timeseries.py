"""Price, TVL, volume and fee timeseries endpoints"""

from typing import Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from dex_indexer.api.delivery import process_request
from dex_indexer.api.handlers import (
    ApiContext,
    FeesHandler,
    PriceHandler,
    SwapVolumeHandler,
    TimeseriesHandler,
    TotalVolumeHandler,
)
from dex_indexer.database.aggregates import get_resolution
from dex_indexer.errors import IndexerError

logger = structlog.get_logger()

router = APIRouter(prefix="/timeseries", tags=["timeseries"])


async def get_api_context(request: Request) -> ApiContext:
    """Get endpoint handler context from app state"""
    return request.app.state.context


async def _serve(
    request: Request,
    context: ApiContext,
    handler_class: Type[TimeseriesHandler],
    token_a: str,
    token_b: str,
    resolution: Optional[str],
):
    try:
        handler = handler_class(context, token_a, token_b, get_resolution(resolution))
        return await process_request(request, handler)
    except HTTPException:
        raise
    except IndexerError as e:
        logger.info(
            "timeseries_request_rejected",
            segment=handler_class.segment,
            status=e.status_code,
            error=e.message,
        )
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(
            "timeseries_request_failed",
            segment=handler_class.segment,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(status_code=500, detail="Failed to retrieve timeseries")


@router.get("/price/{token_a}/{token_b}")
@router.get("/price/{token_a}/{token_b}/{resolution}")
async def get_price_timeseries(
    request: Request,
    token_a: str,
    token_b: str,
    resolution: Optional[str] = None,
    context: ApiContext = Depends(get_api_context),
):
    """
    Get open/high/low/close tick index per window (newest first).

    Resolution is one of second, minute (default), hour, day, month.
    """
    return await _serve(request, context, PriceHandler, token_a, token_b, resolution)


@router.get("/tvl/{token_a}/{token_b}")
@router.get("/tvl/{token_a}/{token_b}/{resolution}")
async def get_tvl_timeseries(
    request: Request,
    token_a: str,
    token_b: str,
    resolution: Optional[str] = None,
    context: ApiContext = Depends(get_api_context),
):
    """Get total reserves of each token per window (newest first)"""
    return await _serve(request, context, TotalVolumeHandler, token_a, token_b, resolution)


@router.get("/volume/{token_a}/{token_b}")
@router.get("/volume/{token_a}/{token_b}/{resolution}")
async def get_volume_timeseries(
    request: Request,
    token_a: str,
    token_b: str,
    resolution: Optional[str] = None,
    context: ApiContext = Depends(get_api_context),
):
    """Get swapped amounts and fees of each token per window (newest first)"""
    return await _serve(request, context, SwapVolumeHandler, token_a, token_b, resolution)


@router.get("/fees/{token_a}/{token_b}")
@router.get("/fees/{token_a}/{token_b}/{resolution}")
async def get_fees_timeseries(
    request: Request,
    token_a: str,
    token_b: str,
    resolution: Optional[str] = None,
    context: ApiContext = Depends(get_api_context),
):
    """Get fees of each token per window (newest first)"""
    return await _serve(request, context, FeesHandler, token_a, token_b, resolution)
