"""Domain store - sole owner of the trading records.

One `PositionStore` instance owns one `StoreState`. Every public method runs a
single transition to completion and then writes the new snapshot through to
the key-value store. Previously published states are never mutated.

Thread-safety: Not thread-safe. Use one store per process (or external locking).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Optional, Sequence, Union

from spreadbook.clock import Clock, IdFactory, now_ms, unique_id
from spreadbook.coercion import SymbolNormalizer, positive_or_none, to_number
from spreadbook.config import StoreConfig
from spreadbook.errors import ImportValidationError, RecordDecodeError, StorageError
from spreadbook.export.json import build_export_payload, export_state_to_json
from spreadbook.export.ui import collect_ui_snapshot, restore_ui_snapshot
from spreadbook.importing.normalizer import NormalizeContext, normalize_payload, parse_payload
from spreadbook.migrations import CURRENT_VERSION, empty_state, migrate
from spreadbook.persistence.codec import decode_record, encode_record
from spreadbook.persistence.interfaces import KeyValueStore
from spreadbook.portfolio import registry
from spreadbook.symbols import normalize_symbol as default_normalize_symbol
from spreadbook.types import (
    CloseSnapshot,
    ImportResult,
    OptionLeg,
    PortfolioMeta,
    Position,
    PositionLeg,
    SettlementRecord,
    Settings,
    Settlements,
    SpreadPosition,
    StoreState,
)

logger = logging.getLogger(__name__)


def _with_settlement(
    settlements: Optional[Settlements], expiry_ms: Any, value: Any, now: int
) -> Optional[Settlements]:
    """Set (positive value) or clear (anything else) one expiry's settlement.

    Returns the input object unchanged when nothing changes.
    """
    expiry = to_number(expiry_ms)
    if expiry is None:
        return settlements
    key = str(int(expiry))
    settle = positive_or_none(value)
    current = dict(settlements or {})
    if settle is None:
        if key not in current:
            return settlements
        del current[key]
    else:
        current[key] = SettlementRecord(settle_underlying=settle, settled_at=now)
    return current or None


class PositionStore:
    """Owns spreads, positions, settings and the portfolio registry.

    Coordinates:
    - Portfolio linkage on every entity mutation (resolve, then touch)
    - Write-through persistence of every committed transition
    - Load-time migration and atomic import
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        config: Optional[StoreConfig] = None,
        clock: Clock = now_ms,
        id_factory: IdFactory = unique_id,
        normalize_symbol: SymbolNormalizer = default_normalize_symbol,
    ) -> None:
        """Initialize an empty store.

        Args:
            kv: Key-value persistence primitive
            config: Store configuration (storage key, default deposit)
            clock: Returns the current time as epoch milliseconds
            id_factory: Returns a new collision-free identifier
            normalize_symbol: Option symbol canonicalizer
        """
        self._kv = kv
        self._config = config or StoreConfig()
        self._clock = clock
        self._id_factory = id_factory
        self._normalize_symbol = normalize_symbol
        self._state = empty_state(self._default_settings(), clock())
        self._hydrated = False
        self.last_persist_error: Optional[str] = None

    # ========== State access ==========

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def spreads(self) -> tuple[SpreadPosition, ...]:
        return self._state.spreads

    @property
    def positions(self) -> tuple[Position, ...]:
        return self._state.positions

    @property
    def settings(self) -> Settings:
        return self._state.settings

    @property
    def portfolios(self) -> tuple[PortfolioMeta, ...]:
        return self._state.portfolios

    @property
    def active_portfolio_id(self) -> str:
        return self._state.active_portfolio_id

    def get_spread(self, spread_id: str) -> Optional[SpreadPosition]:
        return next((s for s in self._state.spreads if s.id == spread_id), None)

    def get_position(self, position_id: str) -> Optional[Position]:
        return next((p for p in self._state.positions if p.id == position_id), None)

    def portfolio_counts(self) -> dict[str, int]:
        """Number of spreads + positions per portfolio id (every portfolio listed)."""
        counts = {m.id: 0 for m in self._state.portfolios}
        for item in (*self._state.spreads, *self._state.positions):
            counts[item.portfolio_id] = counts.get(item.portfolio_id, 0) + 1
        return counts

    # ========== Internals ==========

    def _default_settings(self) -> Settings:
        return Settings(deposit_usd=self._config.default_deposit_usd)

    def _context(self, now: int) -> NormalizeContext:
        return NormalizeContext(now=now, new_id=self._id_factory, normalize_symbol=self._normalize_symbol)

    def _commit(self, state: StoreState) -> bool:
        if state is self._state:
            return False
        self._state = state
        self._persist()
        return True

    def _persist(self) -> None:
        """Write-through; a failure is recorded but never rolls back the transition."""
        try:
            self._kv.set(self._config.store_key, encode_record(self._state, CURRENT_VERSION))
        except Exception as exc:
            self.last_persist_error = str(exc) or exc.__class__.__name__
            logger.warning(f"Failed to persist store state: {self.last_persist_error}")
        else:
            self.last_persist_error = None

    def _canonical(self, leg: OptionLeg) -> OptionLeg:
        symbol = self._normalize_symbol(leg.symbol)
        return leg if symbol == leg.symbol else replace(leg, symbol=symbol)

    def _prepare_legs(self, legs: Sequence[PositionLeg], base_created_at: int) -> tuple[PositionLeg, ...]:
        """Canonicalize symbols and synthesize missing leg timestamps (base + index)."""
        prepared = []
        for offset, leg in enumerate(legs):
            created_at = leg.created_at if leg.created_at is not None else base_created_at + offset
            prepared.append(replace(leg, leg=self._canonical(leg.leg), created_at=created_at))
        return tuple(prepared)

    def _update_spread(
        self, spread_id: str, fn: Callable[[SpreadPosition, int], Optional[SpreadPosition]]
    ) -> Optional[SpreadPosition]:
        """Copy-on-write update of one spread, with portfolio linkage."""
        current = self.get_spread(spread_id)
        if current is None:
            logger.debug(f"Spread {spread_id} not found")
            return None
        now = self._clock()
        updated = fn(current, now)
        if updated is None or updated is current:
            return current
        portfolio_id, portfolios = registry.link_portfolio(self._state, updated.portfolio_id, now)
        updated = replace(
            updated,
            id=current.id,
            short=self._canonical(updated.short),
            long=self._canonical(updated.long),
            portfolio_id=portfolio_id,
        )
        spreads = tuple(updated if s.id == spread_id else s for s in self._state.spreads)
        self._commit(replace(self._state, spreads=spreads, portfolios=portfolios))
        return updated

    def _update_position(
        self, position_id: str, fn: Callable[[Position, int], Optional[Position]]
    ) -> Optional[Position]:
        """Copy-on-write update of one position, with portfolio linkage.

        An update leaving no legs is rejected.
        """
        current = self.get_position(position_id)
        if current is None:
            logger.debug(f"Position {position_id} not found")
            return None
        now = self._clock()
        updated = fn(current, now)
        if updated is None or updated is current:
            return current
        legs = self._prepare_legs(updated.legs, current.created_at)
        if not legs:
            logger.debug(f"Ignoring update that removes every leg of position {position_id}")
            return current
        portfolio_id, portfolios = registry.link_portfolio(self._state, updated.portfolio_id, now)
        updated = replace(
            updated,
            id=current.id,
            legs=legs,
            created_at=min(leg.created_at for leg in legs),
            portfolio_id=portfolio_id,
        )
        positions = tuple(updated if p.id == position_id else p for p in self._state.positions)
        self._commit(replace(self._state, positions=positions, portfolios=portfolios))
        return updated

    # ========== Load ==========

    def hydrate(self) -> StoreState:
        """Read the persisted record, migrate it and install it. Runs once."""
        if self._hydrated:
            logger.debug("Store already hydrated")
            return self._state
        self._hydrated = True
        now = self._clock()

        try:
            raw = self._kv.get(self._config.store_key)
        except StorageError as exc:
            logger.warning(f"Could not read persisted state, starting empty: {exc}")
            return self._state
        if raw is None:
            logger.info("No persisted state found, starting empty")
            return self._state

        try:
            persisted, version = decode_record(raw)
        except RecordDecodeError as exc:
            logger.warning(f"Ignoring unreadable persisted state: {exc}")
            return self._state

        self._state = migrate(
            persisted, version, ctx=self._context(now), default_settings=self._default_settings()
        )
        logger.info(
            f"Hydrated store (stored v{version}): {len(self._state.spreads)} spreads, "
            f"{len(self._state.positions)} positions, {len(self._state.portfolios)} portfolios"
        )
        if to_number(version) is None or to_number(version) < CURRENT_VERSION:
            self._persist()
        return self._state

    # ========== Spreads ==========

    def add_spread(
        self,
        *,
        short: OptionLeg,
        long: OptionLeg,
        c_enter: float,
        qty: float = 1,
        entry_short: Optional[float] = None,
        entry_long: Optional[float] = None,
        note: Optional[str] = None,
        favorite: Optional[bool] = None,
        portfolio_id: Optional[str] = None,
    ) -> SpreadPosition:
        """Add a spread; it lands in `portfolio_id`, else the active portfolio."""
        now = self._clock()
        resolved, portfolios = registry.link_portfolio(self._state, portfolio_id, now)
        spread = SpreadPosition(
            id=self._id_factory(),
            created_at=now,
            short=self._canonical(short),
            long=self._canonical(long),
            c_enter=c_enter,
            qty=positive_or_none(qty) or 1,
            portfolio_id=resolved,
            entry_short=entry_short,
            entry_long=entry_long,
            note=note,
            favorite=favorite,
        )
        self._commit(replace(self._state, spreads=(spread, *self._state.spreads), portfolios=portfolios))
        return spread

    def update_spread(
        self, spread_id: str, updater: Callable[[SpreadPosition], SpreadPosition]
    ) -> Optional[SpreadPosition]:
        return self._update_spread(spread_id, lambda s, _now: updater(s))

    def mark_closed(self, spread_id: str, snapshot: Optional[CloseSnapshot] = None) -> Optional[SpreadPosition]:
        """Close a spread, optionally recording a close snapshot."""
        return self._update_spread(
            spread_id, lambda s, now: replace(s, closed_at=now, close_snapshot=snapshot or s.close_snapshot)
        )

    def remove_spread(self, spread_id: str) -> bool:
        current = self.get_spread(spread_id)
        if current is None:
            return False
        _, portfolios = registry.link_portfolio(self._state, current.portfolio_id, self._clock())
        spreads = tuple(s for s in self._state.spreads if s.id != spread_id)
        return self._commit(replace(self._state, spreads=spreads, portfolios=portfolios))

    def toggle_favorite_spread(self, spread_id: str) -> Optional[SpreadPosition]:
        return self._update_spread(spread_id, lambda s, _now: replace(s, favorite=not s.favorite))

    def set_spread_settlement(self, spread_id: str, expiry_ms: Any, settle_underlying: Any) -> Optional[SpreadPosition]:
        """Record the underlying settle price for one expiry; invalid prices clear it."""

        def apply(spread: SpreadPosition, now: int) -> SpreadPosition:
            settlements = _with_settlement(spread.settlements, expiry_ms, settle_underlying, now)
            return spread if settlements is spread.settlements else replace(spread, settlements=settlements)

        return self._update_spread(spread_id, apply)

    # ========== Positions ==========

    def add_position(
        self,
        legs: Sequence[PositionLeg],
        *,
        note: Optional[str] = None,
        favorite: Optional[bool] = None,
        portfolio_id: Optional[str] = None,
    ) -> Optional[Position]:
        """Add a multi-leg position. Returns None (no-op) when `legs` is empty."""
        if not legs:
            logger.debug("add_position ignored: no legs")
            return None
        now = self._clock()
        prepared = self._prepare_legs(legs, now)
        resolved, portfolios = registry.link_portfolio(self._state, portfolio_id, now)
        position = Position(
            id=self._id_factory(),
            created_at=min(leg.created_at for leg in prepared),
            legs=prepared,
            portfolio_id=resolved,
            note=note,
            favorite=favorite,
        )
        self._commit(replace(self._state, positions=(position, *self._state.positions), portfolios=portfolios))
        return position

    def update_position(self, position_id: str, updater: Callable[[Position], Position]) -> Optional[Position]:
        return self._update_position(position_id, lambda p, _now: updater(p))

    def close_position(self, position_id: str, snapshot: Optional[CloseSnapshot] = None) -> Optional[Position]:
        return self._update_position(
            position_id, lambda p, now: replace(p, closed_at=now, close_snapshot=snapshot or p.close_snapshot)
        )

    def remove_position(self, position_id: str) -> bool:
        current = self.get_position(position_id)
        if current is None:
            return False
        _, portfolios = registry.link_portfolio(self._state, current.portfolio_id, self._clock())
        positions = tuple(p for p in self._state.positions if p.id != position_id)
        return self._commit(replace(self._state, positions=positions, portfolios=portfolios))

    def toggle_favorite_position(self, position_id: str) -> Optional[Position]:
        return self._update_position(position_id, lambda p, _now: replace(p, favorite=not p.favorite))

    def set_position_settlement(
        self, position_id: str, expiry_ms: Any, settle_underlying: Any
    ) -> Optional[Position]:
        def apply(position: Position, now: int) -> Position:
            settlements = _with_settlement(position.settlements, expiry_ms, settle_underlying, now)
            return position if settlements is position.settlements else replace(position, settlements=settlements)

        return self._update_position(position_id, apply)

    def set_leg_settlement(self, position_id: str, leg_index: Any, settle_s: Any) -> Optional[Position]:
        """Set one leg's settle price; an invalid price clears it. A bad index is a no-op."""

        def apply(position: Position, now: int) -> Position:
            if isinstance(leg_index, bool) or not isinstance(leg_index, int):
                return position
            if not 0 <= leg_index < len(position.legs):
                return position
            leg = position.legs[leg_index]
            settle = positive_or_none(settle_s)
            if settle is None:
                if leg.settle_s is None and leg.settled_at is None:
                    return position
                new_leg = replace(leg, settle_s=None, settled_at=None)
            else:
                new_leg = replace(leg, settle_s=settle, settled_at=now)
            legs = tuple(new_leg if i == leg_index else item for i, item in enumerate(position.legs))
            return replace(position, legs=legs)

        return self._update_position(position_id, apply)

    # ========== Settings ==========

    def set_deposit(self, value: Any) -> Settings:
        deposit = to_number(value)
        if deposit is None or deposit < 0 or isinstance(value, str):
            logger.debug(f"set_deposit ignored: {value!r}")
            return self._state.settings
        self._commit(replace(self._state, settings=replace(self._state.settings, deposit_usd=deposit)))
        return self._state.settings

    def set_risk_limit_pct(self, value: Any) -> Settings:
        """Set the risk limit percentage; None clears it."""
        if value is None:
            risk = None
        else:
            risk = to_number(value)
            if risk is None or risk < 0 or isinstance(value, str):
                logger.debug(f"set_risk_limit_pct ignored: {value!r}")
                return self._state.settings
        if risk == self._state.settings.risk_limit_pct:
            return self._state.settings
        self._commit(replace(self._state, settings=replace(self._state.settings, risk_limit_pct=risk)))
        return self._state.settings

    # ========== Portfolios ==========

    def create_portfolio(self, name: str) -> Optional[PortfolioMeta]:
        """Create a portfolio and make it active. Returns None for a blank name."""
        state, meta = registry.create_portfolio(self._state, name, now=self._clock(), new_id=self._id_factory())
        self._commit(state)
        return meta

    def delete_portfolio(self, portfolio_id: str) -> bool:
        return self._commit(registry.delete_portfolio(self._state, portfolio_id, self._clock()))

    def rename_portfolio(self, portfolio_id: str, name: str) -> bool:
        return self._commit(registry.rename_portfolio(self._state, portfolio_id, name, self._clock()))

    def set_active_portfolio(self, portfolio_id: str) -> bool:
        return self._commit(registry.set_active_portfolio(self._state, portfolio_id))

    def clear_realized_history(self) -> None:
        self._commit(registry.clear_realized_history(self._state, self._clock()))

    # ========== Import / export ==========

    def import_state(self, payload: Any) -> ImportResult:
        """Replace the collections with a normalized import payload.

        The whole replacement state is built first; the store is touched only
        by the single commit at the end. Any failure leaves it as it was.
        """
        try:
            normalized = normalize_payload(payload, current=self._state, ctx=self._context(self._clock()))
        except ImportValidationError as exc:
            logger.warning(f"Import rejected: {exc}")
            return ImportResult(ok=False, error=str(exc))
        except Exception as exc:
            logger.exception("Import failed")
            return ImportResult(ok=False, error=str(exc) or "Invalid file")

        self._state = normalized.state
        self._persist()
        if normalized.ui is not None:
            restore_ui_snapshot(self._kv, normalized.ui)
        logger.info(
            f"Imported {len(normalized.state.spreads)} spreads, {len(normalized.state.positions)} positions "
            f"({len(normalized.dropped)} dropped)"
        )
        return ImportResult(ok=True, dropped=normalized.dropped)

    def import_json(self, text: Union[str, bytes]) -> ImportResult:
        try:
            payload = parse_payload(text)
        except ImportValidationError as exc:
            logger.warning(f"Import rejected: {exc}")
            return ImportResult(ok=False, error=str(exc))
        return self.import_state(payload)

    def export_payload(self) -> dict[str, Any]:
        return build_export_payload(self._state, now_ms=self._clock(), ui=collect_ui_snapshot(self._kv))

    def export_json(self) -> str:
        return export_state_to_json(self._state, now_ms=self._clock(), ui=collect_ui_snapshot(self._kv))
