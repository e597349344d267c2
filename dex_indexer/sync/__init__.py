"""Upstream sync: feed client, shared sync state and the sync driver"""

from dex_indexer.sync.client import CircuitBreaker, CircuitState, TxFeedClient, TxPage
from dex_indexer.sync.driver import SyncDriver
from dex_indexer.sync.state import SyncState, SyncStatus

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "SyncDriver",
    "SyncState",
    "SyncStatus",
    "TxFeedClient",
    "TxPage",
]
