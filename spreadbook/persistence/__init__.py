"""Persistence boundary.

The store only needs a byte-oriented key-value primitive; implementations
live in `spreadbook.storage`.
"""

from .codec import decode_record, encode_record
from .interfaces import KeyValueStore

__all__ = ["KeyValueStore", "decode_record", "encode_record"]
