"""Block range parameters: heights and timestamps"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from dex_indexer.database.manager import DatabaseManager


@dataclass(frozen=True)
class BlockRange:
    """Requested range: from_height is exclusive, to_height inclusive"""

    from_height: Optional[int] = None
    to_height: Optional[int] = None


def _positive_int(value: Any) -> Optional[int]:
    """Read a height, treating non-numeric and non-positive values as unset"""
    if value is None or value == "":
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return number if number > 0 else None


def get_block_range(query: Mapping[str, Any]) -> BlockRange:
    """Read `block_range.from_height` and `block_range.to_height` from a query"""
    return BlockRange(
        from_height=_positive_int(query.get("block_range.from_height")),
        to_height=_positive_int(query.get("block_range.to_height")),
    )


async def resolve_block_range_timestamps(query: Dict[str, Any], db_manager: DatabaseManager) -> Dict[str, Any]:
    """
    Replace `block_range.from_timestamp`/`to_timestamp` with heights.

    Each timestamp resolves to the last block at or before it and only
    fills a height that was not given explicitly.

    Returns:
        The query, updated in place
    """
    for bound in ("from", "to"):
        height_key = f"block_range.{bound}_height"
        timestamp = _positive_int(query.pop(f"block_range.{bound}_timestamp", None))
        if timestamp is None or _positive_int(query.get(height_key)) is not None:
            continue
        height = await db_manager.get_height_at_time(timestamp)
        if height is not None:
            query[height_key] = str(height)
    return query
