"""Tests for the domain store (mutators, persistence, import/export)."""

import json
from dataclasses import replace

import pytest

from conftest import make_leg, make_position_leg, raw_leg
from spreadbook.config import StoreConfig
from spreadbook.errors import StorageError
from spreadbook.importing import normalizer
from spreadbook.migrations import CURRENT_VERSION
from spreadbook.persistence import decode_record
from spreadbook.storage import InMemoryKeyValueStore
from spreadbook.store import PositionStore
from spreadbook.types import DEFAULT_PORTFOLIO_ID, CloseSnapshot, SettlementRecord

STORE_KEY = "options-dashboard"
EXPIRY = 1_700_000_000_000


class RecordingKeyValueStore(InMemoryKeyValueStore):
    """In-memory store that counts writes."""

    def __init__(self, initial=None) -> None:
        super().__init__(initial)
        self.writes = 0

    def set(self, key: str, value: bytes) -> None:
        self.writes += 1
        super().set(key, value)


class FailingKeyValueStore(InMemoryKeyValueStore):
    """Store whose writes always fail."""

    def set(self, key: str, value: bytes) -> None:
        raise StorageError("disk full")


@pytest.fixture
def recording_store(clock, id_factory):
    kv = RecordingKeyValueStore()
    store = PositionStore(kv, clock=clock, id_factory=id_factory)
    store.hydrate()
    return store, kv


def _add_spread(store: PositionStore, **kwargs):
    defaults = dict(
        short=make_leg(symbol="ETH-240329-3000-C-USDC"),
        long=make_leg(symbol="ETH-240329-3200-C", strike=3200.0),
        c_enter=40.0,
    )
    return store.add_spread(**{**defaults, **kwargs})


def _persisted(kv) -> tuple:
    return decode_record(kv.get(STORE_KEY))


# ========== Spread Tests ==========


class TestSpreads:
    """Test spread mutators."""

    def test_add_spread(self, store, clock) -> None:
        """Test a new spread is canonicalized, stamped and placed in the active portfolio."""
        spread = _add_spread(store)

        assert spread.id == "id-1"
        assert spread.created_at == clock()
        assert spread.short.symbol == "ETH-240329-3000-C-USDT"
        assert spread.long.symbol == "ETH-240329-3200-C-USDT"
        assert spread.portfolio_id == DEFAULT_PORTFOLIO_ID
        assert store.spreads == (spread,)

    def test_add_spread_touches_portfolio(self, store, clock) -> None:
        """Test the owning portfolio's updatedAt is bumped."""
        clock.advance(1000)
        _add_spread(store)
        assert store.portfolios[0].updated_at == clock()

    def test_add_spread_unknown_portfolio_uses_active(self, store) -> None:
        """Test an unknown portfolio id resolves to the active portfolio."""
        meta = store.create_portfolio("Income")
        spread = _add_spread(store, portfolio_id="ghost")
        assert spread.portfolio_id == meta.id

    def test_update_spread_preserves_id(self, store) -> None:
        """Test updates cannot change the id and re-canonicalize symbols."""
        spread = _add_spread(store)
        updated = store.update_spread(
            spread.id, lambda s: replace(s, id="other", note="hi", short=make_leg(symbol="X-1-1-C"))
        )
        assert updated.id == spread.id
        assert updated.note == "hi"
        assert updated.short.symbol == "X-1-1-C-USDT"
        assert store.get_spread(spread.id) == updated

    def test_mark_closed(self, store, clock) -> None:
        """Test closing stamps closedAt and keeps the snapshot."""
        spread = _add_spread(store)
        clock.advance(5)
        snap = CloseSnapshot(timestamp=clock(), pnl_exec=12.5)
        closed = store.mark_closed(spread.id, snap)
        assert closed.closed_at == clock()
        assert closed.close_snapshot == snap

    def test_toggle_favorite(self, store) -> None:
        """Test favorite flips."""
        spread = _add_spread(store)
        assert store.toggle_favorite_spread(spread.id).favorite is True
        assert store.toggle_favorite_spread(spread.id).favorite is False

    def test_remove_spread(self, store) -> None:
        """Test removal."""
        spread = _add_spread(store)
        assert store.remove_spread(spread.id) is True
        assert store.spreads == ()
        assert store.remove_spread(spread.id) is False


class TestSettlements:
    """Test settlement setters."""

    def test_set_then_clear(self, recording_store, clock) -> None:
        """Test a positive price is stored and an invalid one removes it."""
        store, kv = recording_store
        spread = _add_spread(store)

        stored = store.set_spread_settlement(spread.id, EXPIRY, 500)
        assert stored.settlements == {str(EXPIRY): SettlementRecord(500.0, clock())}

        cleared = store.set_spread_settlement(spread.id, EXPIRY, -5)
        assert cleared.settlements is None

        writes = kv.writes
        store.set_spread_settlement(spread.id, EXPIRY, -5)
        assert kv.writes == writes

    @pytest.mark.parametrize("value", [0, -1, float("nan"), float("inf"), None, "abc"])
    def test_invalid_value_not_stored(self, store, value) -> None:
        """Test only positive finite values are recorded."""
        spread = _add_spread(store)
        assert store.set_spread_settlement(spread.id, EXPIRY, value).settlements is None

    def test_position_settlement(self, store) -> None:
        """Test position-level settlements."""
        position = store.add_position([make_position_leg()])
        updated = store.set_position_settlement(position.id, EXPIRY, 3100)
        assert updated.settlements[str(EXPIRY)].settle_underlying == 3100.0

    def test_leg_settlement(self, store, clock) -> None:
        """Test per-leg settle price set and clear."""
        position = store.add_position([make_position_leg(), make_position_leg(side="long", strike=3200.0)])
        updated = store.set_leg_settlement(position.id, 1, 2950)
        assert (updated.legs[1].settle_s, updated.legs[1].settled_at) == (2950.0, clock())
        assert updated.legs[0].settle_s is None

        cleared = store.set_leg_settlement(position.id, 1, 0)
        assert (cleared.legs[1].settle_s, cleared.legs[1].settled_at) == (None, None)

    def test_leg_settlement_bad_index(self, store) -> None:
        """Test an out-of-range leg index is a no-op."""
        position = store.add_position([make_position_leg()])
        before = store.state
        store.set_leg_settlement(position.id, 5, 100)
        assert store.state is before

    @pytest.mark.parametrize("index", ["0", 0.0, None, True, [0]])
    def test_leg_settlement_non_integer_index(self, store, index) -> None:
        """Test a non-integer leg index is a no-op rather than an error."""
        position = store.add_position([make_position_leg()])
        before = store.state
        assert store.set_leg_settlement(position.id, index, 100) == position
        assert store.state is before


# ========== Position Tests ==========


class TestPositions:
    """Test position mutators."""

    def test_add_position_synthesizes_created_at(self, store, clock) -> None:
        """Test missing leg createdAt becomes now + index."""
        position = store.add_position([make_position_leg(), make_position_leg(side="long", strike=3200.0)])
        assert [leg.created_at for leg in position.legs] == [clock(), clock() + 1]
        assert position.created_at == clock()

    def test_add_position_created_at_is_min(self, store) -> None:
        """Test position createdAt is the earliest leg createdAt."""
        legs = [
            replace(make_position_leg(), created_at=200),
            replace(make_position_leg(side="long"), created_at=100),
        ]
        assert store.add_position(legs).created_at == 100

    def test_add_position_without_legs(self, recording_store) -> None:
        """Test an empty leg list is rejected without persisting."""
        store, kv = recording_store
        assert store.add_position([]) is None
        assert store.positions == ()
        assert kv.writes == 0

    def test_update_that_empties_legs_is_noop(self, store) -> None:
        """Test an update removing every leg is ignored."""
        position = store.add_position([make_position_leg()])
        before = store.state
        assert store.update_position(position.id, lambda p: replace(p, legs=())) == position
        assert store.state is before

    def test_update_recomputes_created_at(self, store) -> None:
        """Test createdAt follows the legs after an update."""
        position = store.add_position([replace(make_position_leg(), created_at=500)])
        extra = replace(make_position_leg(side="long"), created_at=50)
        updated = store.update_position(position.id, lambda p: replace(p, legs=(*p.legs, extra)))
        assert updated.created_at == 50

    def test_close_and_remove(self, store, clock) -> None:
        """Test closing then removing a position."""
        position = store.add_position([make_position_leg()])
        assert store.close_position(position.id).closed_at == clock()
        assert store.toggle_favorite_position(position.id).favorite is True
        assert store.remove_position(position.id) is True
        assert store.positions == ()


class TestNotFound:
    """Test id-targeted mutators on unknown ids."""

    def test_unknown_ids_are_noops(self, recording_store) -> None:
        """Test nothing changes and nothing is persisted."""
        store, kv = recording_store
        before = store.state

        assert store.update_spread("nope", lambda s: s) is None
        assert store.mark_closed("nope") is None
        assert store.remove_spread("nope") is False
        assert store.toggle_favorite_spread("nope") is None
        assert store.set_spread_settlement("nope", EXPIRY, 1) is None
        assert store.update_position("nope", lambda p: p) is None
        assert store.close_position("nope") is None
        assert store.remove_position("nope") is False
        assert store.set_leg_settlement("nope", 0, 1) is None
        assert store.delete_portfolio("nope") is False
        assert store.rename_portfolio("nope", "x") is False
        assert store.set_active_portfolio("nope") is False

        assert store.state is before
        assert kv.writes == 0


# ========== Settings & Portfolio Tests ==========


class TestSettings:
    """Test settings setters."""

    def test_deposit(self, store) -> None:
        """Test only valid deposits apply."""
        assert store.set_deposit(10000).deposit_usd == 10000
        assert store.set_deposit(-1).deposit_usd == 10000
        assert store.set_deposit("20000").deposit_usd == 10000
        assert store.set_deposit(float("nan")).deposit_usd == 10000

    def test_risk_limit(self, store) -> None:
        """Test risk limit set and clear."""
        assert store.set_risk_limit_pct(2.5).risk_limit_pct == 2.5
        assert store.set_risk_limit_pct(None).risk_limit_pct is None

    def test_default_deposit_from_config(self, kv, clock, id_factory) -> None:
        """Test the configured default deposit seeds a fresh store."""
        store = PositionStore(kv, config=StoreConfig(default_deposit_usd=750.0), clock=clock, id_factory=id_factory)
        assert store.hydrate().settings.deposit_usd == 750.0


class TestStorePortfolios:
    """Test portfolio operations through the store."""

    def test_delete_moves_entities(self, store) -> None:
        """Test deleting a portfolio reassigns its spreads to default."""
        meta = store.create_portfolio("Income")
        spread = _add_spread(store)
        assert spread.portfolio_id == meta.id

        assert store.delete_portfolio(meta.id) is True
        assert store.get_spread(spread.id).portfolio_id == DEFAULT_PORTFOLIO_ID
        assert store.active_portfolio_id == DEFAULT_PORTFOLIO_ID

    def test_portfolio_counts(self, store) -> None:
        """Test counts cover every portfolio."""
        meta = store.create_portfolio("Income")
        _add_spread(store)
        store.add_position([make_position_leg()], portfolio_id=DEFAULT_PORTFOLIO_ID)
        assert store.portfolio_counts() == {DEFAULT_PORTFOLIO_ID: 1, meta.id: 1}

    def test_clear_realized_history(self, store) -> None:
        """Test close snapshots are wiped."""
        spread = _add_spread(store)
        store.mark_closed(spread.id, CloseSnapshot(timestamp=1, pnl_exec=3.0))
        store.clear_realized_history()
        assert store.get_spread(spread.id).close_snapshot is None


# ========== Persistence Tests ==========


class TestPersistence:
    """Test write-through persistence and hydration."""

    def test_write_through(self, store, kv) -> None:
        """Test each transition is written with the current version."""
        spread = _add_spread(store)
        state, version = _persisted(kv)
        assert version == CURRENT_VERSION
        assert state["spreads"][0]["id"] == spread.id

    def test_persist_failure_does_not_roll_back(self, clock, id_factory) -> None:
        """Test a failing write keeps the in-memory transition."""
        store = PositionStore(FailingKeyValueStore(), clock=clock, id_factory=id_factory)
        store.hydrate()
        spread = _add_spread(store)
        assert store.spreads == (spread,)
        assert store.last_persist_error == "disk full"

    def test_hydrate_runs_once(self, kv, clock, id_factory) -> None:
        """Test a second hydrate does not reload."""
        store = PositionStore(kv, clock=clock, id_factory=id_factory)
        store.hydrate()
        kv.set(STORE_KEY, json.dumps({"state": {"settings": {"depositUsd": 1}}, "version": 5}).encode())
        assert store.hydrate().settings.deposit_usd == 5000.0

    def test_hydrate_restores_saved_state(self, store, kv, clock, id_factory) -> None:
        """Test a new store instance sees what the previous one wrote."""
        spread = _add_spread(store, note="keep")
        reloaded = PositionStore(kv, clock=clock, id_factory=id_factory)
        reloaded.hydrate()
        assert reloaded.spreads == store.spreads
        assert reloaded.get_spread(spread.id).note == "keep"

    def test_hydrate_upgrades_legacy_record(self, clock, id_factory) -> None:
        """Test a v1 record is migrated and rewritten at the current version."""
        legacy = {
            "state": {
                "spreads": [
                    {
                        "id": "s",
                        "short": raw_leg("ETH-240329-3000-C-USDC", 3000),
                        "long": raw_leg("ETH-240329-3200-C-USDC", 3200),
                        "cEnter": 40,
                    }
                ]
            },
            "version": 1,
        }
        kv = InMemoryKeyValueStore({STORE_KEY: json.dumps(legacy).encode()})
        store = PositionStore(kv, clock=clock, id_factory=id_factory)
        store.hydrate()

        assert store.spreads[0].short.symbol == "ETH-240329-3000-C-USDT"
        assert _persisted(kv)[1] == CURRENT_VERSION

    def test_hydrate_corrupt_record(self, clock, id_factory) -> None:
        """Test unreadable bytes yield an empty store."""
        kv = InMemoryKeyValueStore({STORE_KEY: b"\xff not json"})
        store = PositionStore(kv, clock=clock, id_factory=id_factory)
        state = store.hydrate()
        assert state.spreads == ()
        assert state.portfolios[0].id == DEFAULT_PORTFOLIO_ID


# ========== Import / Export Tests ==========


class TestImportExport:
    """Test import atomicity and export round trip."""

    def test_round_trip(self, store, clock, id_factory) -> None:
        """Test exporting then importing reproduces the state."""
        store.create_portfolio("Income")
        spread = _add_spread(store, note="n")
        store.set_spread_settlement(spread.id, EXPIRY, 3000)
        store.toggle_favorite_spread(spread.id)
        position = store.add_position([make_position_leg(), make_position_leg(side="long", strike=3200.0)])
        store.close_position(position.id, CloseSnapshot(timestamp=clock(), index_price=3100.0))
        store.set_risk_limit_pct(3)

        other = PositionStore(InMemoryKeyValueStore(), clock=clock, id_factory=id_factory)
        other.hydrate()
        result = other.import_state(store.export_payload())

        assert result.ok
        assert other.state == store.state

    def test_import_legacy_file(self, store, v1_spread_payload) -> None:
        """Test importing a legacy USDC file."""
        result = store.import_state(v1_spread_payload)
        assert result.ok
        assert store.spreads[0].short.symbol == "ETH-240329-3000-C-USDT"
        assert store.spreads[0].portfolio_id == DEFAULT_PORTFOLIO_ID

    def test_import_rejects_non_object(self, store) -> None:
        """Test a non-object payload fails without touching state."""
        before = store.state
        result = store.import_state([1, 2, 3])
        assert not result.ok
        assert result.error
        assert store.state is before

    def test_import_json_invalid(self, store) -> None:
        """Test invalid JSON text fails cleanly."""
        before = store.state
        assert not store.import_json("{oops").ok
        assert store.state is before

    def test_import_is_atomic(self, store, v1_spread_payload, monkeypatch) -> None:
        """Test a fault mid-construction leaves the store untouched."""
        _add_spread(store)
        before = store.state

        def boom(raw, now):
            raise RuntimeError("boom")

        monkeypatch.setattr(normalizer, "coerce_settlements", boom)
        result = store.import_state(v1_spread_payload)

        assert not result.ok
        assert result.error == "boom"
        assert store.state is before

    def test_import_reports_dropped(self, store) -> None:
        """Test dropped entries are reported."""
        payload = {"spreads": [{"id": "x"}], "positions": [{"id": "y", "legs": []}]}
        result = store.import_state(payload)
        assert result.ok
        assert {d.collection for d in result.dropped} == {"spreads", "positions"}

    def test_ui_blobs(self, store, kv) -> None:
        """Test ui blobs are restored on import and collected on export."""
        result = store.import_state({"ui": {"draft": {"legs": []}, "unknown": 1}})
        assert result.ok
        assert json.loads(kv.get("options-draft-v1")) == {"legs": []}
        assert store.export_payload()["ui"] == {"draft": {"legs": []}}

    def test_export_json(self, store) -> None:
        """Test export document shape."""
        _add_spread(store)
        data = json.loads(store.export_json())
        assert data["version"] == CURRENT_VERSION
        assert data["exportedAt"].endswith("Z")
        assert data["activePortfolioId"] == DEFAULT_PORTFOLIO_ID
        assert len(data["spreads"]) == 1
        assert data["positions"] == []
