"""Import of external JSON payloads (backups from any schema version)."""

from .classifier import classify, is_vertical_like, split_unified_positions, spread_to_legs
from .normalizer import (
    NormalizeContext,
    NormalizedImport,
    Rejected,
    build_state,
    merge_settings,
    normalize_payload,
    normalize_portfolios,
    normalize_position,
    normalize_spread,
    parse_payload,
)

__all__ = [
    # Classifier
    "classify",
    "is_vertical_like",
    "split_unified_positions",
    "spread_to_legs",
    # Normalizer
    "NormalizeContext",
    "NormalizedImport",
    "Rejected",
    "build_state",
    "merge_settings",
    "normalize_payload",
    "normalize_portfolios",
    "normalize_position",
    "normalize_spread",
    "parse_payload",
]
