"""Import normalizer: rebuild valid domain entities from arbitrary JSON.

Handles every historical export shape (schema v1..v5). Individual malformed
fields are defaulted; entries that cannot be salvaged are dropped and
reported; only a payload that is not an object at all is rejected.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from spreadbook.coercion import (
    SymbolNormalizer,
    as_list,
    as_mapping,
    coerce_close_snapshot,
    coerce_option_leg,
    coerce_settlements,
    non_negative_or_none,
    optional_bool,
    optional_str,
    positive_or_none,
    to_number,
    to_timestamp,
)
from spreadbook.errors import ImportValidationError
from spreadbook.importing.classifier import split_unified_positions
from spreadbook.portfolio.registry import ensure_default, portfolio_ids
from spreadbook.symbols import normalize_symbol as default_normalize_symbol
from spreadbook.types import (
    DEFAULT_PORTFOLIO_ID,
    DEFAULT_PORTFOLIO_NAME,
    DropReason,
    PortfolioMeta,
    Position,
    PositionLeg,
    Settings,
    SpreadPosition,
    StoreState,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_PORTFOLIO_NAME = "Portfolio"
UNIFIED_POSITIONS_MIN_VERSION = 3


@dataclass(frozen=True)
class NormalizeContext:
    now: int
    new_id: Callable[[], str]
    normalize_symbol: SymbolNormalizer = default_normalize_symbol


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class NormalizedImport:
    """Fully constructed replacement state plus what was discarded on the way."""

    state: StoreState
    dropped: tuple[DropReason, ...] = ()
    ui: Optional[Mapping[str, Any]] = None


def _coerce_id(raw: Any, ctx: NormalizeContext) -> str:
    return raw if isinstance(raw, str) and raw else ctx.new_id()


def _candidate_portfolio(raw: Any) -> str:
    return optional_str(raw) or DEFAULT_PORTFOLIO_ID


def normalize_spread(raw: Any, ctx: NormalizeContext) -> Union[SpreadPosition, Rejected]:
    data = as_mapping(raw)
    created_at = to_timestamp(data.get("createdAt"))
    if created_at is None:
        created_at = ctx.now
    closed_at = to_timestamp(data.get("closedAt"))
    c_enter = to_number(data.get("cEnter"))
    if c_enter is None:
        c_enter = 0.0

    short = coerce_option_leg(data.get("short"), ctx.normalize_symbol)
    long = coerce_option_leg(data.get("long"), ctx.normalize_symbol)
    if not short.symbol or not long.symbol:
        return Rejected("missing leg symbol")
    if c_enter < 0:
        return Rejected("negative entry credit")

    return SpreadPosition(
        id=_coerce_id(data.get("id"), ctx),
        created_at=created_at,
        short=short,
        long=long,
        c_enter=c_enter,
        qty=positive_or_none(data.get("qty")) or 1,
        portfolio_id=_candidate_portfolio(data.get("portfolioId")),
        entry_short=to_number(data.get("entryShort")),
        entry_long=to_number(data.get("entryLong")),
        closed_at=closed_at,
        close_snapshot=coerce_close_snapshot(
            data.get("closeSnapshot"), closed_at if closed_at is not None else created_at
        ),
        note=optional_str(data.get("note")),
        favorite=optional_bool(data.get("favorite")),
        settlements=coerce_settlements(data.get("settlements"), ctx.now),
    )


def normalize_leg(raw: Any, base_created_at: int, offset: int, ctx: NormalizeContext) -> Optional[PositionLeg]:
    data = as_mapping(raw)
    leg = coerce_option_leg(data.get("leg"), ctx.normalize_symbol)
    if not leg.symbol:
        return None
    created_at = to_timestamp(data.get("createdAt"))
    return PositionLeg(
        leg=leg,
        side="long" if data.get("side") == "long" else "short",
        qty=positive_or_none(data.get("qty")) or 1,
        entry_price=to_number(data.get("entryPrice")) or 0.0,
        created_at=created_at if created_at is not None else base_created_at + offset,
        hidden=optional_bool(data.get("hidden")),
        settle_s=positive_or_none(data.get("settleS")),
        settled_at=to_timestamp(data.get("settledAt")),
    )


def normalize_position(raw: Any, ctx: NormalizeContext) -> Union[Position, Rejected]:
    data = as_mapping(raw)
    base_created_at = to_timestamp(data.get("createdAt"))
    if base_created_at is None:
        base_created_at = ctx.now
    closed_at = to_timestamp(data.get("closedAt"))

    legs = tuple(
        leg
        for leg in (
            normalize_leg(item, base_created_at, offset, ctx)
            for offset, item in enumerate(as_list(data.get("legs")) or [])
        )
        if leg is not None
    )
    if not legs:
        return Rejected("no usable legs")

    created_at = min(leg.created_at for leg in legs if leg.created_at is not None)
    return Position(
        id=_coerce_id(data.get("id"), ctx),
        created_at=created_at,
        legs=legs,
        portfolio_id=_candidate_portfolio(data.get("portfolioId")),
        closed_at=closed_at,
        close_snapshot=coerce_close_snapshot(
            data.get("closeSnapshot"), closed_at if closed_at is not None else created_at
        ),
        note=optional_str(data.get("note")),
        favorite=optional_bool(data.get("favorite")),
        settlements=coerce_settlements(data.get("settlements"), ctx.now),
    )


def normalize_portfolios(raw: Sequence[Any], ctx: NormalizeContext) -> tuple[PortfolioMeta, ...]:
    """Dedupe by id (first valid entry wins), clean names, guarantee the default."""
    seen: set[str] = set()
    metas: list[PortfolioMeta] = []
    for item in raw:
        data = as_mapping(item)
        portfolio_id = data.get("id")
        if not isinstance(portfolio_id, str) or not portfolio_id or portfolio_id in seen:
            continue
        seen.add(portfolio_id)
        name = data.get("name").strip() if isinstance(data.get("name"), str) else ""
        if portfolio_id == DEFAULT_PORTFOLIO_ID:
            name = DEFAULT_PORTFOLIO_NAME
        created_at = to_timestamp(data.get("createdAt"))
        if created_at is None:
            created_at = ctx.now
        updated_at = to_timestamp(data.get("updatedAt"))
        metas.append(
            PortfolioMeta(
                id=portfolio_id,
                name=name or PLACEHOLDER_PORTFOLIO_NAME,
                created_at=created_at,
                updated_at=updated_at if updated_at is not None else created_at,
            )
        )
    return ensure_default(metas, ctx.now)


def _non_negative_number(data: Mapping[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    return non_negative_or_none(value) if isinstance(value, (int, float)) else None


def merge_settings(current: Settings, raw: Any) -> Settings:
    """Apply only individually valid numeric fields on top of `current`."""
    data = as_mapping(raw)
    settings = current
    deposit = _non_negative_number(data, "depositUsd")
    if deposit is not None:
        settings = replace(settings, deposit_usd=deposit)
    risk = _non_negative_number(data, "riskLimitPct")
    if risk is not None:
        settings = replace(settings, risk_limit_pct=risk)
    return settings


def _normalize_collection(items, normalize, collection: str, ctx: NormalizeContext, dropped: list[DropReason]):
    out = []
    for index, item in enumerate(items):
        result = normalize(item, ctx)
        if isinstance(result, Rejected):
            dropped.append(DropReason(collection=collection, index=index, reason=result.reason))
            logger.debug(f"Dropped {collection}[{index}]: {result.reason}")
            continue
        out.append(result)
    return out


def _spreads_from_unified(positions: list[Position]) -> list[SpreadPosition]:
    """Rebuild the missing spreads collection; the positions are left as they are."""
    classified, _ = split_unified_positions(positions)
    return [s for s in classified if s.c_enter >= 0 and s.short.symbol and s.long.symbol]


def build_state(
    data: Mapping[str, Any],
    *,
    current: StoreState,
    ctx: NormalizeContext,
    classify_unified: bool,
) -> NormalizedImport:
    """Construct a complete, invariant-valid state from a payload mapping."""
    dropped: list[DropReason] = []
    spreads_raw = as_list(data.get("spreads"))
    positions_raw = as_list(data.get("positions"))

    positions = _normalize_collection(positions_raw or [], normalize_position, "positions", ctx, dropped)
    if spreads_raw is not None:
        spreads = _normalize_collection(spreads_raw, normalize_spread, "spreads", ctx, dropped)
    elif classify_unified and positions_raw is not None:
        spreads = _spreads_from_unified(positions)
        logger.info(f"Reconstructed {len(spreads)} spread(s) from unified positions")
    else:
        spreads = []

    portfolios_raw = as_list(data.get("portfolios"))
    if portfolios_raw is not None:
        portfolios = normalize_portfolios(portfolios_raw, ctx)
    else:
        portfolios = ensure_default(current.portfolios, ctx.now)
    known = portfolio_ids(portfolios)

    spreads = [s if s.portfolio_id in known else replace(s, portfolio_id=DEFAULT_PORTFOLIO_ID) for s in spreads]
    positions = [p if p.portfolio_id in known else replace(p, portfolio_id=DEFAULT_PORTFOLIO_ID) for p in positions]

    active_raw = data.get("activePortfolioId")
    if isinstance(active_raw, str):
        active = active_raw if active_raw in known else DEFAULT_PORTFOLIO_ID
    else:
        active = current.active_portfolio_id if current.active_portfolio_id in known else DEFAULT_PORTFOLIO_ID

    ui = data.get("ui")
    state = StoreState(
        spreads=tuple(spreads),
        positions=tuple(positions),
        settings=merge_settings(current.settings, data.get("settings")),
        portfolios=portfolios,
        active_portfolio_id=active,
    )
    return NormalizedImport(state=state, dropped=tuple(dropped), ui=ui if isinstance(ui, Mapping) else None)


def normalize_payload(payload: Any, *, current: StoreState, ctx: NormalizeContext) -> NormalizedImport:
    """Normalize an import payload against an isolated copy of it.

    Raises:
        ImportValidationError: payload is not a JSON object.
    """
    if not isinstance(payload, Mapping):
        raise ImportValidationError("Import payload must be a JSON object")
    data = copy.deepcopy(dict(payload))
    version = to_number(data.get("version")) or 1
    return build_state(
        data,
        current=current,
        ctx=ctx,
        classify_unified=version >= UNIFIED_POSITIONS_MIN_VERSION,
    )


def parse_payload(text: Union[str, bytes]) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ImportValidationError(f"Invalid JSON: {exc}") from exc
