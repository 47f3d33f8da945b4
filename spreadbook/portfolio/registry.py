"""Portfolio registry: referential integrity between entities and portfolios.

Pure functions over `StoreState`; every invalid or not-found operation
returns the input state unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional

from spreadbook.types import (
    DEFAULT_PORTFOLIO_ID,
    DEFAULT_PORTFOLIO_NAME,
    PortfolioMeta,
    StoreState,
)

logger = logging.getLogger(__name__)


def default_portfolio(now: int) -> PortfolioMeta:
    return PortfolioMeta(id=DEFAULT_PORTFOLIO_ID, name=DEFAULT_PORTFOLIO_NAME, created_at=now, updated_at=now)


def sort_portfolios(portfolios: Iterable[PortfolioMeta]) -> tuple[PortfolioMeta, ...]:
    """Default first, then ascending creation time (stable for ties)."""
    return tuple(sorted(portfolios, key=lambda m: (m.id != DEFAULT_PORTFOLIO_ID, m.created_at)))


def ensure_default(portfolios: Iterable[PortfolioMeta], now: int) -> tuple[PortfolioMeta, ...]:
    items = list(portfolios)
    if not any(m.id == DEFAULT_PORTFOLIO_ID for m in items):
        items.append(default_portfolio(now))
    return sort_portfolios(items)


def portfolio_ids(portfolios: Iterable[PortfolioMeta]) -> set[str]:
    return {m.id for m in portfolios}


def portfolio_exists(portfolios: Iterable[PortfolioMeta], portfolio_id: Optional[str]) -> bool:
    return isinstance(portfolio_id, str) and any(m.id == portfolio_id for m in portfolios)


def resolve_portfolio_id(candidate: Optional[str], state: StoreState) -> str:
    """Return a portfolio id guaranteed to exist in the registry.

    Preference: the candidate, then the active portfolio, then the default.
    """
    if portfolio_exists(state.portfolios, candidate):
        return candidate  # type: ignore[return-value]
    if portfolio_exists(state.portfolios, state.active_portfolio_id):
        return state.active_portfolio_id
    return DEFAULT_PORTFOLIO_ID


def touch_portfolio(portfolios: tuple[PortfolioMeta, ...], portfolio_id: str, now: int) -> tuple[PortfolioMeta, ...]:
    """Bump `updated_at` on exactly the named portfolio; no-op if absent."""
    if not portfolio_exists(portfolios, portfolio_id):
        return portfolios
    return tuple(replace(m, updated_at=now) if m.id == portfolio_id else m for m in portfolios)


def link_portfolio(state: StoreState, candidate: Optional[str], now: int) -> tuple[str, tuple[PortfolioMeta, ...]]:
    """Resolve then touch, in that order. Returns (resolved_id, touched_portfolios)."""
    resolved = resolve_portfolio_id(candidate, state)
    return resolved, touch_portfolio(state.portfolios, resolved, now)


def _normalized_name(name: object) -> str:
    return name.strip() if isinstance(name, str) else ""


def create_portfolio(
    state: StoreState, name: object, *, now: int, new_id: str
) -> tuple[StoreState, Optional[PortfolioMeta]]:
    """Create a portfolio and make it active. Blank names are rejected."""
    trimmed = _normalized_name(name)
    if not trimmed:
        logger.debug("create_portfolio ignored: blank name")
        return state, None
    meta = PortfolioMeta(id=new_id, name=trimmed, created_at=now, updated_at=now)
    portfolios = ensure_default((*state.portfolios, meta), now)
    logger.info(f"Created portfolio {meta.id} ({meta.name!r})")
    return replace(state, portfolios=portfolios, active_portfolio_id=meta.id), meta


def delete_portfolio(state: StoreState, portfolio_id: str, now: int) -> StoreState:
    """Delete a portfolio, moving its spreads/positions to the default portfolio."""
    if portfolio_id == DEFAULT_PORTFOLIO_ID or not portfolio_exists(state.portfolios, portfolio_id):
        logger.debug(f"delete_portfolio ignored for {portfolio_id!r}")
        return state

    spreads = tuple(
        replace(s, portfolio_id=DEFAULT_PORTFOLIO_ID) if s.portfolio_id == portfolio_id else s for s in state.spreads
    )
    positions = tuple(
        replace(p, portfolio_id=DEFAULT_PORTFOLIO_ID) if p.portfolio_id == portfolio_id else p
        for p in state.positions
    )
    portfolios = ensure_default((m for m in state.portfolios if m.id != portfolio_id), now)
    active = DEFAULT_PORTFOLIO_ID if state.active_portfolio_id == portfolio_id else state.active_portfolio_id
    logger.info(f"Deleted portfolio {portfolio_id}")
    return replace(state, spreads=spreads, positions=positions, portfolios=portfolios, active_portfolio_id=active)


def rename_portfolio(state: StoreState, portfolio_id: str, name: object, now: int) -> StoreState:
    trimmed = _normalized_name(name)
    if portfolio_id == DEFAULT_PORTFOLIO_ID or not trimmed or not portfolio_exists(state.portfolios, portfolio_id):
        logger.debug(f"rename_portfolio ignored for {portfolio_id!r}")
        return state
    lowered = trimmed.lower()
    if any(m.id != portfolio_id and m.name.strip().lower() == lowered for m in state.portfolios):
        logger.debug(f"rename_portfolio ignored: name {trimmed!r} already taken")
        return state
    portfolios = tuple(
        replace(m, name=trimmed, updated_at=now) if m.id == portfolio_id else m for m in state.portfolios
    )
    return replace(state, portfolios=portfolios)


def set_active_portfolio(state: StoreState, portfolio_id: str) -> StoreState:
    if not portfolio_exists(state.portfolios, portfolio_id) or state.active_portfolio_id == portfolio_id:
        return state
    return replace(state, active_portfolio_id=portfolio_id)


def clear_realized_history(state: StoreState, now: int) -> StoreState:
    """Drop every close snapshot and touch every portfolio."""
    spreads = tuple(replace(s, close_snapshot=None) for s in state.spreads)
    positions = tuple(replace(p, close_snapshot=None) for p in state.positions)
    portfolios = tuple(replace(m, updated_at=now) for m in state.portfolios)
    return replace(state, spreads=spreads, positions=positions, portfolios=portfolios)
