"""Data models for database entities and upstream transactions"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class TxResponse:
    """Transaction result as delivered by the upstream feed"""

    height: int
    timestamp: str
    txhash: str
    code: int
    events: List[Dict[str, Any]] = field(default_factory=list)
    gas_wanted: Optional[int] = None
    gas_used: Optional[int] = None
    info: Optional[str] = None
    codespace: Optional[str] = None


@dataclass
class Pair:
    """Token pair in canonical order"""

    token0: str
    token1: str
    id: Optional[int] = None

    def is_inverted(self, token_a: str, token_b: str) -> Optional[bool]:
        """Whether (token_a, token_b) is the reverse of the canonical order"""
        if self.token0 == token_a and self.token1 == token_b:
            return False
        if self.token0 == token_b and self.token1 == token_a:
            return True
        return None


@dataclass(frozen=True, order=True)
class SequencePosition:
    """Global ordering of an event: (block height, tx index, event index)"""

    block_height: int
    tx_index: int
    event_index: int

