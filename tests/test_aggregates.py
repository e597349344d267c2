"""Tests for aggregate row helpers and price volatility"""

import math
import statistics

import pytest

from dex_indexer.database.aggregates import (
    DAY_SECONDS,
    get_price_volatility,
    get_resolution,
    invert_price_row,
    round_significant,
    swap_value_pairs,
    tick_to_price,
)
from dex_indexer.errors import ClientError

START_OF_TODAY = 1000 * DAY_SECONDS


def day_row(days_ago, close):
    return [START_OF_TODAY - days_ago * DAY_SECONDS, [close, close, close, close]]


def test_get_resolution():
    """Test resolution defaults and validation"""
    assert get_resolution(None) == "minute"
    assert get_resolution("day") == "day"
    with pytest.raises(ClientError):
        get_resolution("week")


def test_invert_price_row():
    """Test that inverted prices negate ticks and swap high and low"""
    assert invert_price_row([60, [1, 5, -2, 3]]) == [60, [-1, 2, -5, -3]]


def test_swap_value_pairs():
    """Test swapping token0/token1 value pairs"""
    assert swap_value_pairs([60, [1, 2, 3, 4]]) == [60, [2, 1, 4, 3]]


def test_round_significant():
    """Test rounding reserves to three significant figures"""
    assert round_significant("123456") == 123000.0
    assert round_significant("0.0012345") == 0.00123


def test_volatility_of_constant_price():
    """Test zero volatility when the close never moves"""
    rows = [day_row(days_ago, 500) for days_ago in range(1, 23)]

    data = get_price_volatility(rows, START_OF_TODAY)

    assert data == [
        [START_OF_TODAY - 10 * DAY_SECONDS, [0.0]],
        [START_OF_TODAY - 20 * DAY_SECONDS, [0.0]],
    ]


def test_volatility_of_alternating_price():
    """Test daily changes of a close alternating between two ticks"""
    rows = [day_row(days_ago, 100 * (days_ago % 2)) for days_ago in range(1, 23)]
    high = tick_to_price(100)
    changes = [high - 1, 1 / high - 1] * 5

    data = get_price_volatility(rows, START_OF_TODAY)

    expected = math.sqrt(252) * statistics.stdev(changes)
    assert data[0][1] == [pytest.approx(expected)]
    assert data[1][1] == [pytest.approx(expected)]


def test_volatility_ignores_today():
    """Test that the unfinished current day does not count"""
    rows = [day_row(days_ago, 500) for days_ago in range(1, 23)]

    data = get_price_volatility([day_row(0, 9000)] + rows, START_OF_TODAY)

    assert [values for _, values in data] == [[0.0], [0.0]]


def test_volatility_missing_days():
    """Test strict and lenient results with only a few days of prices"""
    rows = [day_row(1, 200), day_row(3, 100)]

    assert [values for _, values in get_price_volatility(rows, START_OF_TODAY)] == [[], []]

    # day 2 has no row and takes the close of day 3
    changes = [tick_to_price(200) / tick_to_price(100) - 1, 0.0]
    expected = math.sqrt(252) * statistics.stdev(changes)
    data = get_price_volatility(rows, START_OF_TODAY, strict=False)
    assert data[0][1] == [pytest.approx(expected)]
    assert data[1][1] == [pytest.approx(expected)]


def test_volatility_without_prices():
    """Test empty periods for a pair without price history"""
    data = get_price_volatility([], START_OF_TODAY, strict=False)

    assert [values for _, values in data] == [[], []]
