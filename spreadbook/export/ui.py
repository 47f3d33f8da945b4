"""Auxiliary UI preference blobs carried along in backups.

The blobs are opaque: they are read from and written back to the key-value
store without interpretation.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from spreadbook.persistence.interfaces import KeyValueStore

logger = logging.getLogger(__name__)

# export field -> storage key
UI_PREFERENCE_KEYS: tuple[tuple[str, str], ...] = (
    ("draft", "options-draft-v1"),
    ("ifRules", "if-rules-v3"),
    ("ifTemplates", "if-templates-v1"),
    ("positionsColumns", "positions-columns-v1"),
    ("positionsActions", "positions-actions-v1"),
    ("positionsUi", "positions-ui-v1"),
    ("positionViewUi", "position-view-ui-v1"),
    ("positionViewUiByPos", "position-view-ui-bypos-v1"),
)


def collect_ui_snapshot(kv: KeyValueStore) -> dict[str, Any]:
    """Read every known preference blob; missing or unreadable ones are skipped."""
    snapshot: dict[str, Any] = {}
    for field_name, storage_key in UI_PREFERENCE_KEYS:
        try:
            raw = kv.get(storage_key)
            if raw is None:
                continue
            snapshot[field_name] = json.loads(raw)
        except Exception as exc:
            logger.debug(f"Skipping UI blob {storage_key}: {exc}")
    return snapshot


def restore_ui_snapshot(kv: KeyValueStore, ui: Mapping[str, Any]) -> int:
    """Write back the blobs present in `ui`. Returns how many were written."""
    written = 0
    for field_name, storage_key in UI_PREFERENCE_KEYS:
        if field_name not in ui:
            continue
        try:
            kv.set(storage_key, json.dumps(ui[field_name], ensure_ascii=False).encode("utf-8"))
            written += 1
        except Exception as exc:
            logger.warning(f"Failed to restore UI blob {storage_key}: {exc}")
    return written
