"""Decoding of raw transaction events into attribute maps"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

TOKEN_ATTRIBUTES = (
    "Token0",
    "Token1",
    "TokenIn",
    "TokenOut",
    "Token",
    "TokenZero",
    "TokenOne",
)

DEX_EVENT_TYPES = ("message", "TickUpdate")


@dataclass(frozen=True)
class DecodedTxEvent:
    """Transaction event with its attributes decoded into a string map"""

    index: int
    type: str
    attributes: Dict[str, str] = field(default_factory=dict)


def _decode_text(value: Any, encoded: bool) -> Optional[str]:
    """Decode one attribute key or value, returning None when it cannot be read"""
    if value is None:
        return None
    if not encoded:
        return str(value)
    try:
        return base64.b64decode(str(value), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def decode_event(index: int, raw_event: Mapping[str, Any], encoded: bool = True) -> DecodedTxEvent:
    """
    Decode a raw event's attribute list into a key/value map.

    Each attribute is decoded independently. Keys that are empty or fail
    to decode are dropped, values that are absent or fail to decode become
    an empty string. Never raises on malformed input.

    Args:
        index: Position of the event within its transaction
        raw_event: Event as {"type": str, "attributes": [{"key", "value"}]}
        encoded: Whether keys and values are base64 encoded

    Returns:
        DecodedTxEvent
    """
    attributes: Dict[str, str] = {}
    raw_attributes = raw_event.get("attributes") if isinstance(raw_event, Mapping) else None

    for attribute in raw_attributes or []:
        if not isinstance(attribute, Mapping):
            continue
        key = _decode_text(attribute.get("key"), encoded)
        if not key:
            continue
        attributes[key] = _decode_text(attribute.get("value"), encoded) or ""

    event_type = raw_event.get("type", "") if isinstance(raw_event, Mapping) else ""
    return DecodedTxEvent(index=index, type=str(event_type or ""), attributes=attributes)


def decode_events(raw_events: Optional[List[Mapping[str, Any]]], encoded: bool = True) -> List[DecodedTxEvent]:
    """Decode all events of a transaction, keeping their emitted order"""
    return [decode_event(index, event, encoded) for index, event in enumerate(raw_events or [])]


def is_dex_message(event: DecodedTxEvent) -> bool:
    """Check whether an event reports a DEX module action"""
    return (
        event.type in DEX_EVENT_TYPES
        and event.attributes.get("module") == "dex"
        and bool(event.attributes.get("action"))
    )


def get_token_denoms(event: DecodedTxEvent) -> List[str]:
    """Collect the distinct token denoms an event references, in attribute order"""
    denoms: List[str] = []
    for name in TOKEN_ATTRIBUTES:
        denom = event.attributes.get(name)
        if denom and denom not in denoms:
            denoms.append(denom)
    return denoms


def get_pair_tokens(event: DecodedTxEvent) -> Optional[Tuple[str, str]]:
    """Return the (token0, token1) pair an event names, if any"""
    token0 = event.attributes.get("Token0") or event.attributes.get("TokenZero")
    token1 = event.attributes.get("Token1") or event.attributes.get("TokenOne")
    if token0 and token1 and token0 != token1:
        return token0, token1
    return None
