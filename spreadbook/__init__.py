"""spreadbook - persisted domain store for an options position tracker.

Public entry points:
- PositionStore: owns spreads, positions, settings and portfolios
- migrate / normalize_payload: load-time and import-time rebuilding
- Key-value backends: InMemoryKeyValueStore, SqlKeyValueStore
"""

from spreadbook.config import StoreConfig
from spreadbook.errors import ImportValidationError, RecordDecodeError, SpreadbookError, StorageError
from spreadbook.migrations import CURRENT_VERSION, migrate
from spreadbook.storage import InMemoryKeyValueStore, SqlKeyValueStore
from spreadbook.store import PositionStore
from spreadbook.types import (
    CloseSnapshot,
    ImportResult,
    OptionLeg,
    PortfolioMeta,
    Position,
    PositionLeg,
    Settings,
    SpreadPosition,
    StoreState,
)

__all__ = [
    "CURRENT_VERSION",
    "CloseSnapshot",
    "ImportResult",
    "ImportValidationError",
    "InMemoryKeyValueStore",
    "OptionLeg",
    "PortfolioMeta",
    "Position",
    "PositionLeg",
    "PositionStore",
    "RecordDecodeError",
    "Settings",
    "SpreadPosition",
    "SpreadbookError",
    "SqlKeyValueStore",
    "StorageError",
    "StoreConfig",
    "StoreState",
    "migrate",
]
