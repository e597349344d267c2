"""Shared sync progress and block-advancement notification"""

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from dex_indexer.monitoring import metrics

logger = structlog.get_logger()


class SyncStatus(str, Enum):
    """Sync driver states"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CATCHING_UP = "catching_up"
    KEEPING_UP = "keeping_up"


class SyncState:
    """
    Owner of the last fully ingested block height.

    Only the sync driver calls `advance`. Everyone else reads
    `last_block_height` or suspends in `wait_for_next_block`, which
    wakes every waiter on each advance.
    """

    def __init__(self, last_block_height: int = 0):
        self._last_block_height = last_block_height
        self._condition = asyncio.Condition()
        self.status = SyncStatus.DISCONNECTED
        self.last_advanced_at: Optional[float] = None
        self._logger = logger.bind(component="sync_state")

    @property
    def last_block_height(self) -> int:
        return self._last_block_height

    async def advance(self, height: int) -> bool:
        """
        Publish a new last block height and wake all waiters.

        Args:
            height: Highest fully ingested height

        Returns:
            True if the height moved forward
        """
        if height <= self._last_block_height:
            return False

        async with self._condition:
            self._last_block_height = height
            self.last_advanced_at = time.time()
            self._condition.notify_all()

        metrics.sync_last_block_height.set(height)
        self._logger.debug("sync_height_advanced", height=height)
        return True

    async def wait_for_next_block(self, timeout: float, min_height: Optional[int] = None) -> int:
        """
        Suspend until the height reaches min_height (default: the next block).

        Args:
            timeout: Seconds to wait at most
            min_height: Height to wait for

        Returns:
            The last block height after waking

        Raises:
            asyncio.TimeoutError: If the height did not advance in time
        """
        target = min_height if min_height is not None else self._last_block_height + 1
        async with self._condition:
            await asyncio.wait_for(
                self._condition.wait_for(lambda: self._last_block_height >= target),
                timeout,
            )
        return self._last_block_height

    def set_status(self, status: SyncStatus) -> None:
        if status != self.status:
            self._logger.info("sync_status_changed", previous=self.status.value, status=status.value)
            self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "last_block_height": self._last_block_height,
            "last_advanced_at": self.last_advanced_at,
        }
