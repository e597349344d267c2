"""Tick liquidity endpoints"""

from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from dex_indexer.api.delivery import EndpointHandler, process_request
from dex_indexer.api.handlers import ApiContext, LiquidityPairHandler, LiquidityTokenHandler
from dex_indexer.errors import IndexerError

logger = structlog.get_logger()

router = APIRouter(prefix="/liquidity", tags=["liquidity"])


async def get_api_context(request: Request) -> ApiContext:
    """Get endpoint handler context from app state"""
    return request.app.state.context


async def _serve(request: Request, handler: EndpointHandler, endpoint: str):
    try:
        return await process_request(request, handler)
    except HTTPException:
        raise
    except IndexerError as e:
        logger.info("liquidity_request_rejected", endpoint=endpoint, status=e.status_code, error=e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("liquidity_request_failed", endpoint=endpoint, error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=500, detail="Failed to retrieve liquidity")


@router.get("/pair/{token_a}/{token_b}")
async def get_pair_liquidity(
    request: Request,
    token_a: str,
    token_b: str,
    context: ApiContext = Depends(get_api_context),
):
    """
    Get tick liquidity of both tokens of a pair.

    Data is `[ticks of token_a, ticks of token_b]`, each a list of
    `[tick_index, reserves]`. With `block_range.from_height` only ticks
    changed after that height are returned, including emptied ones.

    Supports long-poll (default) and server-sent events (`stream=true`).
    """
    return await _serve(request, LiquidityPairHandler(context, token_a, token_b), "pair")


@router.get("/token/{token_a}/{token_b}")
async def get_token_liquidity(
    request: Request,
    token_a: str,
    token_b: str,
    context: ApiContext = Depends(get_api_context),
):
    """
    Get tick liquidity of token_a in its pair with token_b.

    Supports long-poll (default) and server-sent events (`stream=true`).
    """
    return await _serve(request, LiquidityTokenHandler(context, token_a, token_b), "token")
