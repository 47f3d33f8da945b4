"""Persisted store record: `{"state": {...}, "version": N}` as UTF-8 JSON."""

from __future__ import annotations

import json
from typing import Any

from spreadbook.errors import RecordDecodeError
from spreadbook.serialization import state_to_dict
from spreadbook.types import StoreState


def encode_record(state: StoreState, version: int) -> bytes:
    record = {"state": state_to_dict(state), "version": version}
    return json.dumps(record, ensure_ascii=False).encode("utf-8")


def decode_record(raw: bytes) -> tuple[Any, Any]:
    """Return (state, version) exactly as stored; the caller migrates them.

    Raises:
        RecordDecodeError: bytes are not a JSON object.
    """
    try:
        record = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RecordDecodeError(f"Persisted record is not valid JSON: {exc}") from exc
    if not isinstance(record, dict):
        raise RecordDecodeError("Persisted record must be a JSON object")
    return record.get("state"), record.get("version")
