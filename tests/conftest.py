"""Shared test fixtures for pytest.

Provides a fixed clock, deterministic ids, an in-memory key-value store and
sample export payloads used across multiple test files.
"""

from __future__ import annotations

import itertools
from typing import Any, Callable

import pytest

from spreadbook.importing import NormalizeContext
from spreadbook.storage import InMemoryKeyValueStore
from spreadbook.store import PositionStore
from spreadbook.types import OptionLeg, PositionLeg

FIXED_NOW = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, now: int = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def id_factory() -> Callable[[], str]:
    """Deterministic ids: id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def ctx(clock: FakeClock, id_factory: Callable[[], str]) -> NormalizeContext:
    return NormalizeContext(now=clock(), new_id=id_factory)


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def store(kv: InMemoryKeyValueStore, clock: FakeClock, id_factory: Callable[[], str]) -> PositionStore:
    s = PositionStore(kv, clock=clock, id_factory=id_factory)
    s.hydrate()
    return s


def make_leg(
    symbol: str = "ETH-240329-3000-C-USDT",
    strike: float = 3000.0,
    option_type: str = "C",
    expiry_ms: int = 1_711_699_200_000,
) -> OptionLeg:
    return OptionLeg(symbol=symbol, strike=strike, option_type=option_type, expiry_ms=expiry_ms)


def make_position_leg(side: str = "short", entry_price: float = 10.0, qty: float = 1, **leg_kwargs: Any) -> PositionLeg:
    return PositionLeg(leg=make_leg(**leg_kwargs), side=side, qty=qty, entry_price=entry_price)


def raw_leg(symbol: str, strike: float, option_type: str = "C", expiry_ms: int = 1_711_699_200_000) -> dict[str, Any]:
    return {"symbol": symbol, "strike": strike, "optionType": option_type, "expiryMs": expiry_ms}


@pytest.fixture
def v1_spread_payload() -> dict[str, Any]:
    """Legacy export with a USDC-settled vertical and no version field."""
    return {
        "spreads": [
            {
                "id": "a",
                "short": raw_leg("ETH-240329-3000-C-USDC", 3000),
                "long": raw_leg("ETH-240329-3200-C-USDC", 3200),
                "cEnter": 40,
                "qty": 1,
                "createdAt": 1,
            }
        ]
    }


@pytest.fixture
def v4_unified_payload() -> dict[str, Any]:
    """Schema v4 export where every construction is a generic position."""
    return {
        "version": 4,
        "positions": [
            {
                "id": "vert",
                "createdAt": 1000,
                "legs": [
                    {"leg": raw_leg("BTC-240329-60000-P-USDT", 60000, "P"), "side": "short", "qty": 2, "entryPrice": 900},
                    {"leg": raw_leg("BTC-240329-58000-P-USDT", 58000, "P"), "side": "long", "qty": 2, "entryPrice": 400},
                ],
            },
            {
                "id": "fly",
                "createdAt": 2000,
                "legs": [
                    {"leg": raw_leg("BTC-240329-60000-C-USDT", 60000), "side": "long", "qty": 1, "entryPrice": 500},
                    {"leg": raw_leg("BTC-240329-62000-C-USDT", 62000), "side": "short", "qty": 2, "entryPrice": 300},
                    {"leg": raw_leg("BTC-240329-64000-C-USDT", 64000), "side": "long", "qty": 1, "entryPrice": 150},
                ],
            },
        ],
    }
