"""Option symbol canonicalization.

Every stored symbol settles in USDT. Legacy exports may carry USDC-settled
symbols (`BTC-240101-50000-C-USDC`) or the bare four-part form
(`BTC-240101-50000-C`); both are rewritten to the USDT form.
"""

from __future__ import annotations

from typing import Any

QUOTE_ASSET = "USDT"
LEGACY_QUOTE_ASSETS = ("USDC",)


def normalize_symbol(raw: Any) -> str:
    """Return the canonical USDT-settled form of an option symbol."""
    sym = str(raw if raw is not None else "").strip()
    if not sym:
        return sym

    parts = sym.split("-")
    if len(parts) >= 5:
        settle = parts[4].upper()
        if settle == QUOTE_ASSET:
            return sym
        if settle in LEGACY_QUOTE_ASSETS:
            parts[4] = QUOTE_ASSET
            return "-".join(parts)
        return sym

    if len(parts) == 4:
        opt = parts[3].upper()
        if opt.startswith("P") or opt.startswith("C"):
            return f"{'-'.join(parts)}-{QUOTE_ASSET}"

    upper = sym.upper()
    if upper.endswith(f"-{QUOTE_ASSET}"):
        return sym
    for legacy in LEGACY_QUOTE_ASSETS:
        if upper.endswith(f"-{legacy}"):
            return f"{sym[: -len(legacy) - 1]}-{QUOTE_ASSET}"

    return sym
