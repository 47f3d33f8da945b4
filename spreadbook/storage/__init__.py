"""Concrete implementations of the key-value persistence interface.

Keeping implementations separate from the store makes them swappable.
"""

from .memory import InMemoryKeyValueStore
from .sql import SqlKeyValueStore

__all__ = ["InMemoryKeyValueStore", "SqlKeyValueStore"]
