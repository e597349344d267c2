"""Tests for offset pagination and block range parameters"""

from unittest.mock import AsyncMock, Mock

import pytest

from dex_indexer.api.block_range import BlockRange, get_block_range, resolve_block_range_timestamps
from dex_indexer.api.pagination import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    decode_pagination_key,
    encode_pagination_key,
    get_pagination_from_query,
    paginate_data,
)
from dex_indexer.database.manager import DatabaseManager


def test_defaults():
    """Test pagination defaults"""
    pagination, _ = get_pagination_from_query({})

    assert pagination.offset == 0
    assert pagination.limit == DEFAULT_LIMIT
    assert pagination.after == 0
    assert pagination.before > 0
    assert pagination.count_total is False


def test_limit_is_capped():
    """Test that limits above the maximum are capped"""
    pagination, _ = get_pagination_from_query({"pagination.limit": "5000"})

    assert pagination.limit == MAX_LIMIT


def test_invalid_values_fall_back():
    """Test that unparseable values fall back to defaults"""
    pagination, _ = get_pagination_from_query({
        "pagination.offset": "abc",
        "pagination.limit": "-3",
    })

    assert pagination.offset == 0
    assert pagination.limit == DEFAULT_LIMIT


def test_key_overrides_discrete_parameters():
    """Test that a pagination key replaces discrete parameters"""
    key = encode_pagination_key({"offset": 20, "limit": 10, "before": 1700000000, "after": 5})

    pagination, _ = get_pagination_from_query({
        "pagination.key": key,
        "pagination.offset": "999",
        "pagination.limit": "1",
    })

    assert pagination.offset == 20
    assert pagination.limit == 10
    assert pagination.before == 1700000000
    assert pagination.after == 5


def test_invalid_key_is_ignored():
    """Test that an undecodable key falls back to discrete parameters"""
    pagination, _ = get_pagination_from_query({
        "pagination.key": "!!!",
        "pagination.offset": "3",
    })

    assert pagination.offset == 3


def test_decode_pagination_key_rejects_non_objects():
    """Test decoding keys that are not JSON objects"""
    with pytest.raises(ValueError):
        decode_pagination_key(encode_pagination_key([1, 2]))


def test_next_key_keeps_resolved_before():
    """Test that the next key carries the resolved before timestamp"""
    pagination, get_next_key = get_pagination_from_query({"pagination.limit": "2"})

    decoded = decode_pagination_key(get_next_key(2))

    assert decoded["offset"] == 2
    assert decoded["limit"] == 2
    assert decoded["before"] == pagination.before


def test_paginate_data_pages_through_rows():
    """Test following next keys through a dataset"""
    rows = [[i, [i]] for i in range(5)]

    page, meta = paginate_data(rows, {"pagination.limit": "2", "pagination.count_total": "true"})
    assert page == rows[0:2]
    assert meta["total"] == 5

    page, meta = paginate_data(rows, {"pagination.key": meta["next_key"]})
    assert page == rows[2:4]

    page, meta = paginate_data(rows, {"pagination.key": meta["next_key"]})
    assert page == rows[4:5]
    assert meta["next_key"] is None


def test_paginate_data_filters_by_time():
    """Test the time filter on the first row value"""
    rows = [[300, [3]], [200, [2]], [100, [1]]]

    page, meta = paginate_data(
        rows,
        {"pagination.before": "250", "pagination.after": "100"},
        filter_by_time=True,
    )

    assert page == [[200, [2]], [100, [1]]]
    assert meta == {"next_key": None}


def test_get_block_range():
    """Test reading block range heights"""
    assert get_block_range({}) == BlockRange(None, None)
    assert get_block_range({
        "block_range.from_height": "10",
        "block_range.to_height": "20",
    }) == BlockRange(10, 20)
    assert get_block_range({
        "block_range.from_height": "0",
        "block_range.to_height": "abc",
    }) == BlockRange(None, None)


async def test_resolve_block_range_timestamps():
    """Test resolving timestamps to heights"""
    db_manager = Mock(spec=DatabaseManager)
    db_manager.get_height_at_time = AsyncMock(side_effect=[42, 77])

    query = await resolve_block_range_timestamps(
        {"block_range.from_timestamp": "1700000000", "block_range.to_timestamp": "1700000600"},
        db_manager,
    )

    assert query == {"block_range.from_height": "42", "block_range.to_height": "77"}


async def test_resolve_block_range_timestamps_keeps_explicit_heights():
    """Test that explicit heights win over timestamps"""
    db_manager = Mock(spec=DatabaseManager)
    db_manager.get_height_at_time = AsyncMock(return_value=42)

    query = await resolve_block_range_timestamps(
        {"block_range.from_height": "5", "block_range.from_timestamp": "1700000000"},
        db_manager,
    )

    assert query == {"block_range.from_height": "5"}
    db_manager.get_height_at_time.assert_not_called()
