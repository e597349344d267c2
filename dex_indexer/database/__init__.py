"""Database module for PostgreSQL interaction"""

from dex_indexer.database.manager import DatabaseManager
from dex_indexer.database.models import Pair, SequencePosition, TxResponse
from dex_indexer.database.schema import get_schema_sql

__all__ = [
    "DatabaseManager",
    "get_schema_sql",
    "Pair",
    "SequencePosition",
    "TxResponse",
]
