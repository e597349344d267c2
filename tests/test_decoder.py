"""Tests for transaction event decoding"""

import base64

from dex_indexer.ingest.decoder import (
    decode_event,
    decode_events,
    get_pair_tokens,
    get_token_denoms,
    is_dex_message,
)


def b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def encoded_event(event_type, attributes):
    return {
        "type": event_type,
        "attributes": [{"key": b64(k), "value": b64(v)} for k, v in attributes.items()],
    }


def test_decode_event_base64_attributes():
    """Test decoding base64 keys and values"""
    event = decode_event(3, encoded_event("message", {"module": "dex", "action": "Swap"}))

    assert event.index == 3
    assert event.type == "message"
    assert event.attributes == {"module": "dex", "action": "Swap"}


def test_decode_event_plain_attributes():
    """Test decoding attributes that are not encoded"""
    raw = {"type": "message", "attributes": [{"key": "module", "value": "dex"}]}

    event = decode_event(0, raw, encoded=False)

    assert event.attributes == {"module": "dex"}


def test_decode_event_drops_undecodable_keys():
    """Test that keys that fail to decode are dropped"""
    raw = {
        "type": "message",
        "attributes": [
            {"key": "not base64!", "value": b64("x")},
            {"key": b64("module"), "value": b64("dex")},
        ],
    }

    event = decode_event(0, raw)

    assert event.attributes == {"module": "dex"}


def test_decode_event_bad_value_becomes_empty():
    """Test that values that fail to decode become empty strings"""
    raw = {
        "type": "message",
        "attributes": [
            {"key": b64("sender"), "value": "%%%"},
            {"key": b64("memo")},
        ],
    }

    event = decode_event(0, raw)

    assert event.attributes == {"sender": "", "memo": ""}


def test_decode_event_invalid_utf8_value():
    """Test that non UTF-8 values become empty strings"""
    raw = {
        "type": "message",
        "attributes": [{"key": b64("blob"), "value": base64.b64encode(b"\xff\xfe").decode("ascii")}],
    }

    event = decode_event(0, raw)

    assert event.attributes == {"blob": ""}


def test_decode_event_malformed_input():
    """Test that malformed events never raise"""
    assert decode_event(0, {}).attributes == {}
    assert decode_event(0, {"type": "message", "attributes": None}).attributes == {}
    assert decode_event(0, {"type": "message", "attributes": ["junk", 42]}).attributes == {}
    assert decode_event(0, None).type == ""


def test_decode_events_keeps_order():
    """Test that events keep their emitted index"""
    events = decode_events([
        encoded_event("coin_spent", {"amount": "1"}),
        encoded_event("message", {"module": "dex"}),
    ])

    assert [event.index for event in events] == [0, 1]
    assert [event.type for event in events] == ["coin_spent", "message"]
    assert decode_events(None) == []


def test_is_dex_message():
    """Test DEX message detection"""
    dex = decode_event(0, encoded_event("message", {"module": "dex", "action": "Swap"}))
    tick = decode_event(0, encoded_event("TickUpdate", {"module": "dex", "action": "TickUpdate"}))
    bank = decode_event(0, encoded_event("message", {"module": "bank", "action": "send"}))
    no_action = decode_event(0, encoded_event("message", {"module": "dex"}))

    assert is_dex_message(dex)
    assert is_dex_message(tick)
    assert not is_dex_message(bank)
    assert not is_dex_message(no_action)


def test_get_token_denoms_distinct_in_order():
    """Test collecting referenced token denoms"""
    event = decode_event(0, encoded_event("message", {
        "Token0": "tokenA",
        "Token1": "tokenB",
        "TokenIn": "tokenA",
    }))

    assert get_token_denoms(event) == ["tokenA", "tokenB"]


def test_get_pair_tokens():
    """Test reading the pair named by an event"""
    event = decode_event(0, encoded_event("message", {"Token0": "tokenA", "Token1": "tokenB"}))
    same = decode_event(0, encoded_event("message", {"Token0": "tokenA", "Token1": "tokenA"}))
    missing = decode_event(0, encoded_event("message", {"Token0": "tokenA"}))

    assert get_pair_tokens(event) == ("tokenA", "tokenB")
    assert get_pair_tokens(same) is None
    assert get_pair_tokens(missing) is None
