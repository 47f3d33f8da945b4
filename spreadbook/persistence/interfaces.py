from __future__ import annotations

from typing import Optional, Protocol


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes for `key`, or None if absent."""

    def set(self, key: str, value: bytes) -> None:
        """Insert or replace the bytes stored under `key`."""
