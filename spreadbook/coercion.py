"""Field-level coercion rules shared by migrations and import.

Every function here is total: malformed input is treated as absent and
defaulted, never raised.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Mapping, Optional

from spreadbook.types import CloseSnapshot, OptionLeg, OptionType, SettlementRecord

SymbolNormalizer = Callable[[Any], str]


def to_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings to a finite float."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
    else:
        return None
    return result if math.isfinite(result) else None


def to_timestamp(value: Any) -> Optional[int]:
    number = to_number(value)
    return None if number is None else int(number)


def positive_or_none(value: Any) -> Optional[float]:
    number = to_number(value)
    return number if number is not None and number > 0 else None


def non_negative_or_none(value: Any) -> Optional[float]:
    number = to_number(value)
    return number if number is not None and number >= 0 else None


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def as_list(value: Any) -> Optional[list[Any]]:
    return list(value) if isinstance(value, (list, tuple)) else None


def optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def optional_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def coerce_option_type(value: Any) -> OptionType:
    return "P" if value == "P" else "C"


def coerce_option_leg(raw: Any, normalize_symbol: SymbolNormalizer) -> OptionLeg:
    data = as_mapping(raw)
    return OptionLeg(
        symbol=normalize_symbol(data.get("symbol") or ""),
        strike=to_number(data.get("strike")) or 0.0,
        option_type=coerce_option_type(data.get("optionType")),
        expiry_ms=to_timestamp(data.get("expiryMs")) or 0,
    )


def _first_number(data: Mapping[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        number = to_number(data.get(key))
        if number is not None:
            return number
    return None


def coerce_close_snapshot(raw: Any, anchor: int) -> Optional[CloseSnapshot]:
    """Accept historical field aliases; emit canonical names only.

    The snapshot timestamp falls back to `anchor` (closedAt ?? createdAt).
    """
    if not isinstance(raw, Mapping):
        return None
    timestamp = _first_number(raw, "timestamp", "closedAt", "time")
    return CloseSnapshot(
        timestamp=int(timestamp) if timestamp is not None else anchor,
        index_price=_first_number(raw, "indexPrice", "index"),
        spot_price=_first_number(raw, "spotPrice", "spot"),
        pnl_exec=_first_number(raw, "pnlExec", "pnl"),
    )


def coerce_settlement_record(raw: Any, now: int) -> Optional[SettlementRecord]:
    data = as_mapping(raw)
    settle = positive_or_none(data.get("settleUnderlying"))
    if settle is None:
        return None
    settled_at = to_timestamp(data.get("settledAt"))
    return SettlementRecord(settle_underlying=settle, settled_at=settled_at if settled_at is not None else now)


def coerce_settlements(raw: Any, now: int) -> Optional[dict[str, SettlementRecord]]:
    """Rebuild a settlements map, dropping entries without a positive settle price."""
    if not isinstance(raw, Mapping):
        return None
    out: dict[str, SettlementRecord] = {}
    for key, value in raw.items():
        record = coerce_settlement_record(value, now)
        if record is not None:
            out[str(key)] = record
    return out or None
