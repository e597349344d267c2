"""Ingestion of upstream transactions into the relational store"""

from dex_indexer.ingest.decoder import DecodedTxEvent, decode_event, decode_events
from dex_indexer.ingest.events import (
    DepositAction,
    DexAction,
    PlaceLimitOrderAction,
    SwapAction,
    TickUpdateAction,
    WithdrawAction,
    parse_dex_action,
)

__all__ = [
    "DecodedTxEvent",
    "decode_event",
    "decode_events",
    "DexAction",
    "SwapAction",
    "DepositAction",
    "WithdrawAction",
    "PlaceLimitOrderAction",
    "TickUpdateAction",
    "parse_dex_action",
]
