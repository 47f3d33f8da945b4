"""Backup export utilities."""

from .json import build_export_payload, export_filename, export_state_to_json, iso_timestamp
from .ui import UI_PREFERENCE_KEYS, collect_ui_snapshot, restore_ui_snapshot

__all__ = [
    "UI_PREFERENCE_KEYS",
    "build_export_payload",
    "collect_ui_snapshot",
    "export_filename",
    "export_state_to_json",
    "iso_timestamp",
    "restore_ui_snapshot",
]
