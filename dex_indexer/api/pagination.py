"""Offset pagination with opaque continuation keys"""

import base64
import binascii
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

logger = structlog.get_logger()

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


@dataclass(frozen=True)
class Pagination:
    """Resolved pagination parameters of a request"""

    offset: int = 0
    limit: int = DEFAULT_LIMIT
    before: int = 0
    after: int = 0
    count_total: bool = False


def _to_int(value: Any, default: Optional[int]) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def encode_pagination_key(values: Dict[str, Any]) -> str:
    """Encode continuation values as base64url JSON"""
    return base64.urlsafe_b64encode(json.dumps(values).encode("utf-8")).decode("ascii")


def decode_pagination_key(key: str) -> Dict[str, Any]:
    """
    Decode a continuation key.

    Raises:
        ValueError: If the key is not base64url JSON of an object
    """
    padded = key + "=" * (-len(key) % 4)
    try:
        decoded = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError) as e:
        raise ValueError(f"pagination key is not base64url: {e}") from e
    if not isinstance(decoded, dict):
        raise ValueError("pagination key is not an object")
    return decoded


def get_pagination_from_query(
    query: Mapping[str, Any],
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Tuple[Pagination, Callable[[int], str]]:
    """
    Read pagination parameters from a request query.

    A `pagination.key` overrides the discrete `pagination.offset`,
    `pagination.limit`, `pagination.before` and `pagination.after`
    parameters; a key that cannot be decoded is logged and ignored.

    Args:
        query: Request query parameters
        default_limit: Limit used when none is given
        max_limit: Upper bound of the limit

    Returns:
        (Pagination, get_next_key) where get_next_key(offset_increase)
        encodes the key of the page that follows
    """
    values: Dict[str, Any] = {
        name: query.get(f"pagination.{name}") for name in ("offset", "limit", "before", "after")
    }

    key = query.get("pagination.key")
    if key:
        try:
            decoded = decode_pagination_key(key)
            values = {name: decoded.get(name) for name in values}
        except ValueError as e:
            logger.warning("pagination_key_invalid", error=str(e))

    limit = _to_int(values["limit"], None)
    pagination = Pagination(
        offset=max(0, _to_int(values["offset"], 0)),
        limit=min(max_limit, limit if limit and limit > 0 else default_limit),
        before=_to_int(values["before"], None) or int(time.time()),
        after=_to_int(values["after"], 0),
        count_total=str(query.get("pagination.count_total", "")).lower() == "true",
    )

    def get_next_key(offset_increase: int) -> str:
        # the resolved `before` keeps following pages on the same dataset
        return encode_pagination_key(
            {
                "offset": pagination.offset + offset_increase,
                "limit": pagination.limit,
                "before": pagination.before,
                "after": pagination.after,
            }
        )

    return pagination, get_next_key


def paginate_data(
    rows: List[Any],
    query: Mapping[str, Any],
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
    filter_by_time: bool = False,
) -> Tuple[List[Any], Dict[str, Any]]:
    """
    Slice an in-memory dataset into the requested page.

    Args:
        rows: Complete dataset in presentation order
        query: Request query parameters
        default_limit: Limit used when none is given
        max_limit: Upper bound of the limit
        filter_by_time: Keep only rows whose first value (unix time) lies in [after, before]

    Returns:
        (page, pagination) where pagination holds `next_key` and, when
        `pagination.count_total=true`, `total`
    """
    pagination, get_next_key = get_pagination_from_query(query, default_limit, max_limit)

    if filter_by_time:
        rows = [row for row in rows if pagination.after <= row[0] <= pagination.before]

    page = rows[pagination.offset : pagination.offset + pagination.limit]
    has_more = pagination.offset + len(page) < len(rows)

    meta: Dict[str, Any] = {"next_key": get_next_key(len(page)) if has_more else None}
    if pagination.count_total:
        meta["total"] = len(rows)
    return page, meta
