"""Tests for the sync driver"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from dex_indexer.config.models import SyncConfig
from dex_indexer.database.manager import DatabaseManager
from dex_indexer.database.models import TxResponse
from dex_indexer.errors import UpstreamError
from dex_indexer.ingest.pipeline import IngestionPipeline, IngestResult
from dex_indexer.sync.client import TxFeedClient, TxPage
from dex_indexer.sync.driver import SyncDriver
from dex_indexer.sync.state import SyncState, SyncStatus


def tx(height, txhash):
    return TxResponse(height=height, timestamp="2024-01-01T00:00:00Z", txhash=txhash, code=0)


@pytest.fixture
def sync_config():
    return SyncConfig(
        rpc_api="http://localhost:26657",
        page_size=2,
        poll_interval_seconds=0.01,
        max_connect_backoff_seconds=4.0,
    )


@pytest.fixture
def mock_client():
    client = Mock(spec=TxFeedClient)
    client.get_latest_height = AsyncMock(return_value=100)
    client.fetch_tx_page = AsyncMock(return_value=TxPage(tx_responses=[], total=0))
    return client


@pytest.fixture
def mock_pipeline():
    pipeline = Mock(spec=IngestionPipeline)

    async def ingest(tx_responses):
        return IngestResult(
            ingested=len(tx_responses),
            max_height=max((t.height for t in tx_responses), default=0),
        )

    pipeline.ingest_tx_page = AsyncMock(side_effect=ingest)
    return pipeline


@pytest.fixture
def mock_db_manager():
    db_manager = Mock(spec=DatabaseManager)
    db_manager.get_last_block_height = AsyncMock(return_value=0)
    return db_manager


@pytest.fixture
def driver(mock_client, mock_pipeline, sync_config, mock_db_manager):
    return SyncDriver(
        client=mock_client,
        pipeline=mock_pipeline,
        sync_state=SyncState(),
        config=sync_config,
        db_manager=mock_db_manager,
    )


async def test_catch_up_advances_below_split_block(driver, mock_client):
    """Test that a block continuing on the next page is not published early"""
    mock_client.fetch_tx_page = AsyncMock(side_effect=[
        TxPage(tx_responses=[tx(5, "a"), tx(7, "b")], total=3),
        TxPage(tx_responses=[tx(7, "c")], total=3),
    ])
    advances = []
    original_advance = driver.sync_state.advance

    async def record_advance(height):
        advances.append(height)
        return await original_advance(height)

    driver.sync_state.advance = record_advance

    ingested = await driver.catch_up(1)

    assert ingested == 3
    assert advances == [6, 7]
    assert driver.sync_state.last_block_height == 7
    assert mock_client.fetch_tx_page.await_args_list[0].args == (1, 0, 2)
    assert mock_client.fetch_tx_page.await_args_list[1].args == (1, 2, 2)


async def test_catch_up_empty_feed(driver, mock_pipeline):
    """Test catching up when there is nothing to ingest"""
    assert await driver.catch_up(1) == 0
    assert driver.sync_state.last_block_height == 0
    mock_pipeline.ingest_tx_page.assert_awaited_once_with([])


async def test_fetch_retries_with_smaller_pages(driver, mock_client):
    """Test that failing fetches retry with tenfold smaller pages"""
    driver.config = SyncConfig(rpc_api="http://localhost:26657", page_size=100)
    page = TxPage(tx_responses=[tx(5, "a")], total=1)
    mock_client.fetch_tx_page = AsyncMock(side_effect=[UpstreamError("too big"), UpstreamError("too big"), page])

    with patch("dex_indexer.sync.driver.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await driver._fetch_page(1, 0) is page

    limits = [call.args[2] for call in mock_client.fetch_tx_page.await_args_list]
    assert limits == [100, 10, 1]
    assert [call.args[0] for call in sleep.await_args_list] == [1, 2]


async def test_fetch_gives_up_at_single_item_pages(driver, mock_client):
    """Test that the error propagates once pages cannot shrink further"""
    mock_client.fetch_tx_page = AsyncMock(side_effect=UpstreamError("down"))

    with patch("dex_indexer.sync.driver.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(UpstreamError):
            await driver._fetch_page(1, 0)

    limits = [call.args[2] for call in mock_client.fetch_tx_page.await_args_list]
    assert limits == [2, 1]


async def test_connect_backs_off_until_reachable(driver, mock_client):
    """Test capped exponential backoff while the upstream is unreachable"""
    mock_client.get_latest_height = AsyncMock(side_effect=[UpstreamError("down")] * 4 + [123])

    with patch("dex_indexer.sync.driver.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await driver.connect() == 123

    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0, 4.0, 4.0]
    assert driver.sync_state.status == SyncStatus.CONNECTING


async def test_start_resumes_from_last_stored_height(driver, mock_client, mock_db_manager):
    """Test that syncing resumes at the last stored block"""
    mock_db_manager.get_last_block_height = AsyncMock(return_value=42)

    await driver.start()
    try:
        assert mock_client.fetch_tx_page.await_args_list[0].args[0] == 42
        assert driver.sync_state.status == SyncStatus.KEEPING_UP
    finally:
        await driver.stop()

    assert driver.sync_state.status == SyncStatus.DISCONNECTED


async def test_initial_catch_up_failure_propagates(driver, mock_client):
    """Test that the initial catch-up raises to the caller"""
    mock_client.fetch_tx_page = AsyncMock(side_effect=UpstreamError("down"))

    with patch("dex_indexer.sync.driver.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(UpstreamError):
            await driver.start()

    assert driver._keep_up_task is None


async def test_keep_up_polls_after_synced_height(driver, mock_client):
    """Test that polling starts at the block after the synced height"""
    await driver.sync_state.advance(9)
    mock_client.fetch_tx_page = AsyncMock(return_value=TxPage(tx_responses=[tx(10, "a")], total=1))

    assert await driver.keep_up_once() == 1
    assert mock_client.fetch_tx_page.await_args.args[0] == 10
    assert driver.sync_state.last_block_height == 10


async def test_keep_up_loop_survives_errors(driver, mock_client):
    """Test that polling continues after a failed iteration"""
    calls = 0

    async def flaky(*args):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise UpstreamError("blip")
        return TxPage(tx_responses=[], total=0)

    mock_client.fetch_tx_page = AsyncMock(side_effect=flaky)
    driver.config = SyncConfig(rpc_api="http://localhost:26657", page_size=1, poll_interval_seconds=0.01)
    driver._running = True

    task = asyncio.create_task(driver._keep_up_loop())
    await asyncio.sleep(0.05)
    driver._running = False
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert calls >= 2
