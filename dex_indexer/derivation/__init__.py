"""Derivation of tick state, price and volume from TickUpdate events"""

from dex_indexer.derivation.engine import DerivationEngine, DerivationResult

__all__ = ["DerivationEngine", "DerivationResult"]
