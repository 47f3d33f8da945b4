"""Persisted-state migrations.

Each step upgrades the raw persisted `state` dict to one schema version.
Steps run in version order and only when the stored version is below the
step's version. A step never mutates its input and treats malformed fields
as absent.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from spreadbook.clock import now_ms, unique_id
from spreadbook.coercion import as_list, as_mapping, coerce_settlements, to_number, to_timestamp
from spreadbook.importing.normalizer import NormalizeContext, build_state
from spreadbook.portfolio.registry import ensure_default
from spreadbook.serialization import portfolio_to_dict, settlements_to_dict
from spreadbook.types import DEFAULT_PORTFOLIO_ID, DEFAULT_PORTFOLIO_NAME, PortfolioMeta, Settings, StoreState

logger = logging.getLogger(__name__)

CURRENT_VERSION = 5

RawState = dict[str, Any]
MigrationStep = Callable[[RawState, NormalizeContext], RawState]


def _map_entries(state: RawState, key: str, fn: Callable[[dict[str, Any]], dict[str, Any]]) -> RawState:
    items = as_list(state.get(key))
    if items is None:
        return state
    mapped = [fn(dict(item)) if isinstance(item, Mapping) else item for item in items]
    return {**state, key: mapped}


def _canonical_leg(raw: Any, ctx: NormalizeContext) -> Any:
    if not isinstance(raw, Mapping):
        return raw
    return {**raw, "symbol": ctx.normalize_symbol(raw.get("symbol") or "")}


def to_v2(state: RawState, ctx: NormalizeContext) -> RawState:
    """Canonicalize every leg symbol to the USDT-settled form."""

    def spread(entry: dict[str, Any]) -> dict[str, Any]:
        for side in ("short", "long"):
            if side in entry:
                entry[side] = _canonical_leg(entry[side], ctx)
        return entry

    def position(entry: dict[str, Any]) -> dict[str, Any]:
        legs = as_list(entry.get("legs"))
        if legs is not None:
            entry["legs"] = [
                {**leg, "leg": _canonical_leg(leg.get("leg"), ctx)} if isinstance(leg, Mapping) else leg
                for leg in legs
            ]
        return entry

    return _map_entries(_map_entries(state, "spreads", spread), "positions", position)


def to_v3(state: RawState, ctx: NormalizeContext) -> RawState:
    """Drop settlement entries without a positive finite settle price."""

    def rebuild(entry: dict[str, Any]) -> dict[str, Any]:
        if "settlements" not in entry:
            return entry
        cleaned = settlements_to_dict(coerce_settlements(entry.get("settlements"), ctx.now))
        if cleaned is None:
            entry.pop("settlements")
        else:
            entry["settlements"] = cleaned
        return entry

    return _map_entries(_map_entries(state, "spreads", rebuild), "positions", rebuild)


def to_v4(state: RawState, ctx: NormalizeContext) -> RawState:
    """Position createdAt becomes the earliest leg createdAt, when one is usable."""

    def position(entry: dict[str, Any]) -> dict[str, Any]:
        stamps = [
            stamp
            for stamp in (to_timestamp(as_mapping(leg).get("createdAt")) for leg in as_list(entry.get("legs")) or [])
            if stamp is not None
        ]
        if stamps:
            entry["createdAt"] = min(stamps)
        return entry

    return _map_entries(state, "positions", position)


def to_v5(state: RawState, ctx: NormalizeContext) -> RawState:
    """Introduce portfolios: stamp portfolioId, synthesize the registry, clamp the active id."""

    def stamp(entry: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(entry.get("portfolioId"), str) or not entry["portfolioId"]:
            entry["portfolioId"] = DEFAULT_PORTFOLIO_ID
        return entry

    state = _map_entries(_map_entries(state, "spreads", stamp), "positions", stamp)

    metas: dict[str, PortfolioMeta] = {}
    for item in as_list(state.get("portfolios")) or []:
        data = as_mapping(item)
        portfolio_id = data.get("id")
        if not isinstance(portfolio_id, str) or not portfolio_id or portfolio_id in metas:
            continue
        created_at = to_timestamp(data.get("createdAt"))
        created_at = created_at if created_at is not None else ctx.now
        updated_at = to_timestamp(data.get("updatedAt"))
        name = data.get("name") if isinstance(data.get("name"), str) else ""
        if portfolio_id == DEFAULT_PORTFOLIO_ID:
            name = DEFAULT_PORTFOLIO_NAME
        metas[portfolio_id] = PortfolioMeta(
            id=portfolio_id,
            name=name.strip() or portfolio_id,
            created_at=created_at,
            updated_at=updated_at if updated_at is not None else created_at,
        )

    for key in ("spreads", "positions"):
        for entry in as_list(state.get(key)) or []:
            referenced = as_mapping(entry).get("portfolioId")
            if not isinstance(referenced, str) or referenced in ("", DEFAULT_PORTFOLIO_ID) or referenced in metas:
                continue
            metas[referenced] = PortfolioMeta(id=referenced, name=referenced, created_at=ctx.now, updated_at=ctx.now)

    portfolios = ensure_default(metas.values(), ctx.now)
    known = {m.id for m in portfolios}
    active = state.get("activePortfolioId")
    return {
        **state,
        "portfolios": [portfolio_to_dict(m) for m in portfolios],
        "activePortfolioId": active if isinstance(active, str) and active in known else DEFAULT_PORTFOLIO_ID,
    }


MIGRATIONS: tuple[tuple[int, MigrationStep], ...] = (
    (2, to_v2),
    (3, to_v3),
    (4, to_v4),
    (5, to_v5),
)


def _stored_version(value: Any) -> int:
    number = to_number(value)
    return int(number) if number is not None else 0


def upgrade(persisted: Any, stored_version: Any, *, ctx: NormalizeContext) -> RawState:
    """Run every step whose version is above `stored_version`, left to right."""
    state: RawState = dict(persisted) if isinstance(persisted, Mapping) else {}
    version = _stored_version(stored_version)
    for step_version, step in MIGRATIONS:
        if version < step_version:
            logger.debug(f"Applying migration to v{step_version}")
            state = step(state, ctx)
    return state


def empty_state(settings: Settings, now: int) -> StoreState:
    return StoreState(settings=settings, portfolios=ensure_default((), now))


def migrate(
    persisted: Any,
    stored_version: Any,
    *,
    ctx: Optional[NormalizeContext] = None,
    default_settings: Optional[Settings] = None,
) -> StoreState:
    """Upgrade a persisted state and hydrate it into a valid `StoreState`.

    Never raises: an unexpected fault yields an empty default state.
    """
    ctx = ctx or NormalizeContext(now=now_ms(), new_id=unique_id)
    settings = default_settings or Settings()
    try:
        upgraded = upgrade(persisted, stored_version, ctx=ctx)
        hydrated = build_state(upgraded, current=empty_state(settings, ctx.now), ctx=ctx, classify_unified=False)
    except Exception:
        logger.exception(f"Migration from v{stored_version} failed; starting from an empty state")
        return empty_state(settings, ctx.now)
    if hydrated.dropped:
        logger.warning(f"Discarded {len(hydrated.dropped)} unusable record(s) while loading persisted state")
    return hydrated.state
