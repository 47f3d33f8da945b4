from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional

OptionType = Literal["C", "P"]
LegSide = Literal["long", "short"]

DEFAULT_PORTFOLIO_ID = "default"
DEFAULT_PORTFOLIO_NAME = "Default"
DEFAULT_DEPOSIT_USD = 5000.0


@dataclass(frozen=True)
class OptionLeg:
    symbol: str  # canonical quote-currency form
    strike: float
    option_type: OptionType
    expiry_ms: int


@dataclass(frozen=True)
class SettlementRecord:
    settle_underlying: float  # > 0
    settled_at: int


@dataclass(frozen=True)
class CloseSnapshot:
    timestamp: int
    index_price: Optional[float] = None
    spot_price: Optional[float] = None
    pnl_exec: Optional[float] = None


Settlements = Mapping[str, SettlementRecord]


@dataclass(frozen=True)
class PositionLeg:
    leg: OptionLeg
    side: LegSide
    qty: float
    entry_price: float
    created_at: Optional[int] = None  # filled by the store / normalizer
    hidden: Optional[bool] = None
    settle_s: Optional[float] = None
    settled_at: Optional[int] = None


@dataclass(frozen=True)
class Position:
    """Generic multi-leg position."""

    id: str
    created_at: int  # min over legs[].created_at
    legs: tuple[PositionLeg, ...]
    portfolio_id: str = DEFAULT_PORTFOLIO_ID
    closed_at: Optional[int] = None
    close_snapshot: Optional[CloseSnapshot] = None
    note: Optional[str] = None
    favorite: Optional[bool] = None
    settlements: Optional[Settlements] = None


@dataclass(frozen=True)
class SpreadPosition:
    """Two-leg vertical spread.

    `c_enter` is the net entry credit (short entry minus long entry).
    """

    id: str
    created_at: int
    short: OptionLeg
    long: OptionLeg
    c_enter: float
    qty: float
    portfolio_id: str = DEFAULT_PORTFOLIO_ID
    entry_short: Optional[float] = None
    entry_long: Optional[float] = None
    closed_at: Optional[int] = None
    close_snapshot: Optional[CloseSnapshot] = None
    note: Optional[str] = None
    favorite: Optional[bool] = None
    settlements: Optional[Settlements] = None


@dataclass(frozen=True)
class PortfolioMeta:
    id: str
    name: str
    created_at: int
    updated_at: int


@dataclass(frozen=True)
class Settings:
    deposit_usd: float = DEFAULT_DEPOSIT_USD
    risk_limit_pct: Optional[float] = None


@dataclass(frozen=True)
class StoreState:
    """Complete snapshot owned by the store.

    Never mutated in place: every transition builds a new instance.
    """

    spreads: tuple[SpreadPosition, ...] = ()
    positions: tuple[Position, ...] = ()
    settings: Settings = field(default_factory=Settings)
    portfolios: tuple[PortfolioMeta, ...] = ()
    active_portfolio_id: str = DEFAULT_PORTFOLIO_ID


@dataclass(frozen=True)
class DropReason:
    """Why an import entry was discarded."""

    collection: str  # spreads|positions|portfolios
    index: int
    reason: str


@dataclass(frozen=True)
class ImportResult:
    ok: bool
    error: Optional[str] = None
    dropped: tuple[DropReason, ...] = ()
