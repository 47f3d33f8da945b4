"""Dataclass -> JSON-compatible dict conversion (camelCase wire names).

Optional fields that are None are omitted, matching how the JSON files
written by earlier versions leave unset fields out.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from spreadbook.types import (
    CloseSnapshot,
    OptionLeg,
    PortfolioMeta,
    Position,
    PositionLeg,
    SettlementRecord,
    Settings,
    SpreadPosition,
    StoreState,
)


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def option_leg_to_dict(leg: OptionLeg) -> dict[str, Any]:
    return {
        "symbol": leg.symbol,
        "strike": leg.strike,
        "optionType": leg.option_type,
        "expiryMs": leg.expiry_ms,
    }


def close_snapshot_to_dict(snapshot: Optional[CloseSnapshot]) -> Optional[dict[str, Any]]:
    if snapshot is None:
        return None
    return _compact(
        {
            "timestamp": snapshot.timestamp,
            "indexPrice": snapshot.index_price,
            "spotPrice": snapshot.spot_price,
            "pnlExec": snapshot.pnl_exec,
        }
    )


def settlements_to_dict(settlements: Optional[Mapping[str, SettlementRecord]]) -> Optional[dict[str, Any]]:
    if not settlements:
        return None
    return {
        key: {"settleUnderlying": record.settle_underlying, "settledAt": record.settled_at}
        for key, record in settlements.items()
    }


def position_leg_to_dict(leg: PositionLeg) -> dict[str, Any]:
    return _compact(
        {
            "leg": option_leg_to_dict(leg.leg),
            "side": leg.side,
            "qty": leg.qty,
            "entryPrice": leg.entry_price,
            "createdAt": leg.created_at,
            "hidden": leg.hidden,
            "settleS": leg.settle_s,
            "settledAt": leg.settled_at,
        }
    )


def position_to_dict(position: Position) -> dict[str, Any]:
    return _compact(
        {
            "id": position.id,
            "createdAt": position.created_at,
            "closedAt": position.closed_at,
            "closeSnapshot": close_snapshot_to_dict(position.close_snapshot),
            "note": position.note,
            "favorite": position.favorite,
            "settlements": settlements_to_dict(position.settlements),
            "legs": [position_leg_to_dict(leg) for leg in position.legs],
            "portfolioId": position.portfolio_id,
        }
    )


def spread_to_dict(spread: SpreadPosition) -> dict[str, Any]:
    return _compact(
        {
            "id": spread.id,
            "createdAt": spread.created_at,
            "closedAt": spread.closed_at,
            "closeSnapshot": close_snapshot_to_dict(spread.close_snapshot),
            "note": spread.note,
            "favorite": spread.favorite,
            "settlements": settlements_to_dict(spread.settlements),
            "qty": spread.qty,
            "cEnter": spread.c_enter,
            "entryShort": spread.entry_short,
            "entryLong": spread.entry_long,
            "short": option_leg_to_dict(spread.short),
            "long": option_leg_to_dict(spread.long),
            "portfolioId": spread.portfolio_id,
        }
    )


def portfolio_to_dict(meta: PortfolioMeta) -> dict[str, Any]:
    return {"id": meta.id, "name": meta.name, "createdAt": meta.created_at, "updatedAt": meta.updated_at}


def settings_to_dict(settings: Settings) -> dict[str, Any]:
    return _compact({"depositUsd": settings.deposit_usd, "riskLimitPct": settings.risk_limit_pct})


def state_to_dict(state: StoreState) -> dict[str, Any]:
    """Persisted `state` body: spreads, positions, settings, portfolios, activePortfolioId."""
    return {
        "spreads": [spread_to_dict(s) for s in state.spreads],
        "positions": [position_to_dict(p) for p in state.positions],
        "settings": settings_to_dict(state.settings),
        "portfolios": [portfolio_to_dict(m) for m in state.portfolios],
        "activePortfolioId": state.active_portfolio_id,
    }
