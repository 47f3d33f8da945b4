"""JSON export of the full store state (backup file format)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from spreadbook.migrations import CURRENT_VERSION
from spreadbook.serialization import state_to_dict
from spreadbook.types import StoreState


def iso_timestamp(now_ms: int) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    seconds, millis = divmod(int(now_ms), 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


def build_export_payload(
    state: StoreState,
    *,
    now_ms: int,
    ui: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    body = state_to_dict(state)
    return {
        "version": CURRENT_VERSION,
        "exportedAt": iso_timestamp(now_ms),
        "positions": body["positions"],
        "spreads": body["spreads"],
        "settings": body["settings"],
        "ui": dict(ui or {}),
        "portfolios": body["portfolios"],
        "activePortfolioId": body["activePortfolioId"],
    }


def export_state_to_json(
    state: StoreState,
    *,
    now_ms: int,
    ui: Optional[Mapping[str, Any]] = None,
) -> str:
    """Export the store state to the backup JSON format.

    Args:
        state: Store snapshot to export
        now_ms: Export time (epoch ms)
        ui: Opaque UI preference blobs, passed through as-is

    Returns:
        Pretty-printed JSON string
    """
    return json.dumps(build_export_payload(state, now_ms=now_ms, ui=ui), indent=2, ensure_ascii=False)


def export_filename(now_ms: int) -> str:
    stamp = iso_timestamp(now_ms).replace(":", "-").replace(".", "-")
    return f"options-dashboard-{stamp}.json"
