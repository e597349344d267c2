"""Tests for tick state, price and volume derivation"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from dex_indexer.database.models import Pair, SequencePosition
from dex_indexer.derivation.engine import DerivationEngine
from dex_indexer.ingest.events import TickUpdateAction

PAIR = Pair(id=1, token0="tokenA", token1="tokenB")
POSITION = SequencePosition(block_height=10, tx_index=0, event_index=2)


def tick_update(token_in, tick_index=5, fee=1, reserves="100"):
    return TickUpdateAction(
        token0="tokenA",
        token1="tokenB",
        token_in=token_in,
        tick_index=tick_index,
        fee=fee,
        reserves=Decimal(reserves),
    )


def make_conn(fetchval=(), fetchrow=()):
    conn = MagicMock()
    conn.fetchval = AsyncMock(side_effect=list(fetchval))
    conn.fetchrow = AsyncMock(side_effect=list(fetchrow))
    conn.execute = AsyncMock()
    return conn


def insert_calls(conn, table):
    return [call for call in conn.execute.await_args_list if f"INSERT INTO {table} " in call.args[0]]


@pytest.fixture
def engine():
    return DerivationEngine()


async def test_unchanged_reserves_are_a_no_op(engine):
    """Test that an update to the same reserves writes nothing"""
    conn = make_conn()

    result = await engine.apply_tick_update(
        conn, tick_update("tokenB", reserves="0"), PAIR, 2, POSITION, previous_reserves=Decimal(0)
    )

    assert not result.tick_state_changed
    conn.execute.assert_not_called()


async def test_first_zero_update_is_a_no_op(engine):
    """Test that zero reserves at a never seen tick write nothing"""
    conn = make_conn(fetchval=[None])

    result = await engine.apply_tick_update(conn, tick_update("tokenB", reserves="0"), PAIR, 2, POSITION)

    assert result.previous_reserves is None
    assert not result.tick_state_changed
    conn.execute.assert_not_called()


async def test_first_token1_update_sets_lowest_tick(engine):
    """Test deriving the first update of the token1 side"""
    conn = make_conn(fetchval=[None, 5, 100.0], fetchrow=[None, None])

    result = await engine.apply_tick_update(conn, tick_update("tokenB"), PAIR, 2, POSITION)

    assert result.tick_state_changed
    assert result.price_changed
    assert result.volume_changed

    assert len(insert_calls(conn, "derived_tick_state")) == 1
    assert len(insert_calls(conn, "derived_tick_state_log")) == 1

    (price_call,) = insert_calls(conn, "derived_tx_price_data")
    assert "lowest_tick_1, highest_tick_0, last_tick" in price_call.args[0]
    assert price_call.args[1:] == (1, 10, 0, 2, 5, None, 5)

    (volume_call,) = insert_calls(conn, "derived_tx_volume_data")
    assert "reserves_float_1, reserves_float_0" in volume_call.args[0]
    assert volume_call.args[1:] == (1, 10, 0, 2, 100.0, 0.0)


async def test_unmoved_best_tick_skips_price_row(engine):
    """Test that only volume is written when the best tick did not move"""
    previous_price = {"highest_tick_0": -3, "lowest_tick_1": 5}
    previous_volume = {"reserves_float_0": 40.0, "reserves_float_1": 100.0}
    conn = make_conn(fetchval=[5, 150.0], fetchrow=[previous_price, previous_volume])

    result = await engine.apply_tick_update(
        conn, tick_update("tokenB", tick_index=8, reserves="50"), PAIR, 2, POSITION,
        previous_reserves=Decimal(0),
    )

    assert not result.price_changed
    assert result.volume_changed
    assert insert_calls(conn, "derived_tx_price_data") == []
    (volume_call,) = insert_calls(conn, "derived_tx_volume_data")
    assert volume_call.args[1:] == (1, 10, 0, 2, 150.0, 40.0)


async def test_emptied_token0_side_keeps_other_tick(engine):
    """Test that last tick falls back to the other side when a side empties"""
    previous_price = {"highest_tick_0": -3, "lowest_tick_1": 5}
    previous_volume = {"reserves_float_0": 40.0, "reserves_float_1": 100.0}
    conn = make_conn(fetchval=[None, 0.0], fetchrow=[previous_price, previous_volume])

    result = await engine.apply_tick_update(
        conn, tick_update("tokenA", tick_index=-3, reserves="0"), PAIR, 1, POSITION,
        previous_reserves=Decimal(40),
    )

    assert result.price_changed
    (price_call,) = insert_calls(conn, "derived_tx_price_data")
    assert "highest_tick_0, lowest_tick_1, last_tick" in price_call.args[0]
    assert price_call.args[1:] == (1, 10, 0, 2, None, 5, 5)

    (volume_call,) = insert_calls(conn, "derived_tx_volume_data")
    assert "reserves_float_0, reserves_float_1" in volume_call.args[0]
    assert volume_call.args[1:] == (1, 10, 0, 2, 0.0, 100.0)


async def test_tick_state_write_uses_full_key(engine):
    """Test that tick state is keyed by pair, token, tick and fee"""
    conn = make_conn(fetchval=[5, 1.0], fetchrow=[None, None])

    await engine.apply_tick_update(
        conn, tick_update("tokenB", tick_index=5, fee=30, reserves="1"), PAIR, 2, POSITION,
        previous_reserves=Decimal(0),
    )

    (state_call,) = insert_calls(conn, "derived_tick_state")
    assert "ON CONFLICT (pair_id, token_id, tick_index, fee)" in state_call.args[0]
    assert state_call.args[1:] == (1, 2, 5, 30, Decimal("1"), 10, 0, 2)
