"""Live delivery of endpoint data: long-poll and server-sent events"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import structlog
from fastapi import Request
from fastapi.responses import StreamingResponse

from dex_indexer.api.block_range import get_block_range, resolve_block_range_timestamps
from dex_indexer.api.pagination import get_pagination_from_query
from dex_indexer.errors import IndexerError, NotFoundError, RequestTimeoutError
from dex_indexer.monitoring import metrics
from dex_indexer.sync.state import SyncState

logger = structlog.get_logger()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@dataclass
class EndpointData:
    """Datasets of an endpoint over a block range ending at height"""

    height: int
    datasets: List[List[Any]] = field(default_factory=list)

    def has_items(self) -> bool:
        return any(len(dataset) > 0 for dataset in self.datasets)


class EndpointHandler(ABC):
    """Data source of one live-capable endpoint"""

    shape: Any = None

    @abstractmethod
    async def get_data(self, query: Dict[str, Any]) -> Optional[EndpointData]:
        """
        Load the datasets of the query's block range.

        Returns:
            EndpointData, or None when the endpoint has nothing to serve (404)
        """

    @abstractmethod
    def get_paginated_response(self, data: EndpointData, query: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        """Return (payload, pagination) of the requested page"""

    def count_items(self, payload: Any) -> int:
        """Number of items of a page payload, for page offsets"""
        return len(payload)


def select_mechanism(request: Request) -> str:
    """Pick "sse" for stream=true or an event-stream Accept header, else "long_poll" """
    if request.query_params.get("stream", "").lower() == "true":
        return "sse"
    if "text/event-stream" in request.headers.get("accept", ""):
        return "sse"
    return "long_poll"


def format_sse_frame(event: Optional[str] = None, id: Optional[str] = None, data: str = "") -> str:
    """Format one server-sent event frame"""
    lines = []
    if event:
        lines.append(f"event: {event}")
    if id is not None:
        lines.append(f"id: {id}")
    for line in (data.split("\n") if data else [""]):
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


async def long_poll_request(
    handler: EndpointHandler,
    query: Dict[str, Any],
    sync_state: SyncState,
    timeout: float = 180.0,
) -> Dict[str, Any]:
    """
    Respond once with the data of a block range, waiting for data if needed.

    When only `from_height` is given the request waits, through new
    blocks, until the range has any data or the wall-clock timeout since
    the request started elapses. A `from_height` equal to the synced
    height skips the first read, which could only be empty.

    Raises:
        RequestTimeoutError: If no data arrived within timeout
        NotFoundError: If the endpoint has nothing to serve
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    block_range = get_block_range(query)
    wait_for_data = block_range.from_height is not None and block_range.to_height is None

    data: Optional[EndpointData] = None
    fetched = False
    # blocks synced while a read runs must still wake the next wait
    seen_height = sync_state.last_block_height
    if not (wait_for_data and block_range.from_height == seen_height):
        data = await handler.get_data(query)
        fetched = True

    if wait_for_data:
        while (not fetched) or (data is not None and not data.has_items()):
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise RequestTimeoutError("Request Timeout")
            try:
                await sync_state.wait_for_next_block(remaining, min_height=seen_height + 1)
            except asyncio.TimeoutError:
                continue
            seen_height = sync_state.last_block_height
            data = await handler.get_data(query)
            fetched = True

    if data is None:
        raise NotFoundError("Not Found")

    payload, pagination = handler.get_paginated_response(data, query)
    return {
        "shape": handler.shape,
        "data": payload,
        "pagination": pagination,
        "block_range": {
            "from_height": block_range.from_height or 0,
            "to_height": data.height,
        },
    }


async def stream_events(
    request: Request,
    handler: EndpointHandler,
    query: Dict[str, Any],
    sync_state: SyncState,
    check_interval: float = 5.0,
) -> AsyncIterator[str]:
    """
    Generate the server-sent event frames of a live endpoint.

    One `update` frame (or a run of split frames) is sent per synced
    block, carrying the data of the blocks since the previous frame; a
    block without data yields a heartbeat frame with empty data. Client
    disconnects are checked before every read and at least every
    check_interval seconds while waiting for a block.
    """
    block_range = get_block_range(query)
    from_height = block_range.from_height or 0
    to_height = block_range.to_height
    last_height = from_height
    requested_limit = query.get("pagination.limit")
    offset = get_pagination_from_query(query)[0].offset

    metrics.live_connections_active.labels(mechanism="sse").inc()
    try:
        for event, frame_id, data in (
            ("id shape", None, "block_range.to_height:start-end/total_items"),
            ("data shape", None, json.dumps(handler.shape)),
            ("update", str(from_height), ""),
        ):
            metrics.sse_frames_sent.labels(event=event).inc()
            yield format_sse_frame(event, frame_id, data)

        while True:
            if await request.is_disconnected():
                logger.debug("sse_client_disconnected", last_height=last_height)
                return

            current_height = sync_state.last_block_height
            upper = min(to_height, current_height) if to_height else current_height
            page_query = dict(query)
            page_query.update(
                {
                    "pagination.limit": requested_limit or ("100" if last_height == 0 and offset == 0 else "10000"),
                    "pagination.count_total": "true",
                    "block_range.from_height": str(last_height),
                    "block_range.to_height": str(upper),
                }
            )
            page_query.pop("pagination.key", None)

            try:
                height = upper
                while True:
                    page_query["pagination.offset"] = str(offset)
                    data = await handler.get_data(page_query)
                    if data is None:
                        raise NotFoundError("Not Found")

                    payload, pagination = handler.get_paginated_response(data, page_query)
                    count = handler.count_items(payload)
                    # multi-list pages advance by their longest list
                    total = max(pagination["totals"]) if pagination.get("totals") else pagination.get("total", count)
                    next_offset = offset + count
                    height = data.height
                    frame_id = (
                        f"{height}:{offset + 1}-{next_offset}/{total}"
                        if offset > 0 or total > next_offset
                        else str(height)
                    )
                    metrics.sse_frames_sent.labels(event="update").inc()
                    yield format_sse_frame("update", frame_id, json.dumps(payload) if count else "")

                    if not pagination.get("next_key") or count == 0:
                        break
                    offset = next_offset
                offset = 0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                message = e.message if isinstance(e, IndexerError) else "Internal server error"
                logger.error("sse_stream_error", error=str(e), error_type=type(e).__name__)
                metrics.sse_frames_sent.labels(event="error").inc()
                yield format_sse_frame("error", None, message)
                return

            if to_height and height >= to_height:
                return
            last_height = max(last_height, height)

            while sync_state.last_block_height <= last_height:
                if await request.is_disconnected():
                    logger.debug("sse_client_disconnected", last_height=last_height)
                    return
                try:
                    await sync_state.wait_for_next_block(check_interval, min_height=last_height + 1)
                except asyncio.TimeoutError:
                    continue
    finally:
        metrics.live_connections_active.labels(mechanism="sse").dec()


def server_sent_event_request(
    request: Request,
    handler: EndpointHandler,
    query: Dict[str, Any],
    sync_state: SyncState,
    check_interval: float = 5.0,
) -> StreamingResponse:
    """Open an unbuffered event stream of an endpoint"""
    return StreamingResponse(
        stream_events(request, handler, query, sync_state, check_interval),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def process_request(request: Request, handler: EndpointHandler):
    """
    Serve a live-capable endpoint by long-poll or server-sent events.

    Block range timestamps are resolved to heights first. Errors of the
    long-poll path propagate to the route as IndexerError.
    """
    state = request.app.state
    query: Dict[str, Any] = dict(request.query_params)
    query.pop("stream", None)
    await resolve_block_range_timestamps(query, state.db_manager)

    if select_mechanism(request) == "sse":
        return server_sent_event_request(
            request,
            handler,
            query,
            state.sync_state,
            check_interval=state.settings.poll_interval_seconds,
        )

    metrics.live_connections_active.labels(mechanism="long_poll").inc()
    try:
        return await long_poll_request(
            handler,
            query,
            state.sync_state,
            timeout=state.settings.long_poll_timeout_seconds,
        )
    finally:
        metrics.live_connections_active.labels(mechanism="long_poll").dec()
