"""Indexer for DEX activity on a Cosmos chain, with height-bounded queries and live delivery"""

__version__ = "1.0.0"
