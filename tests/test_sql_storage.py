"""Tests for the SQLAlchemy-backed key-value store (SQLite)."""

import pytest

pytest.importorskip("sqlalchemy")

from spreadbook.config import StoreConfig
from spreadbook.storage import SqlKeyValueStore
from spreadbook.store import PositionStore
from conftest import make_leg


@pytest.fixture
def sql_config(tmp_path) -> StoreConfig:
    return StoreConfig(database_url=f"sqlite:///{tmp_path / 'nested' / 'spreadbook.db'}")


class TestSqlKeyValueStore:
    """Test SQL key-value persistence."""

    def test_missing_key(self, sql_config) -> None:
        """Test reading an unknown key returns None."""
        assert SqlKeyValueStore(config=sql_config).get("absent") is None

    def test_set_get_overwrite(self, sql_config) -> None:
        """Test values round-trip and upsert overwrites."""
        kv = SqlKeyValueStore(config=sql_config)
        kv.set("k", '{"a": "é"}'.encode("utf-8"))
        assert kv.get("k") == '{"a": "é"}'.encode("utf-8")
        kv.set("k", b"2")
        assert kv.get("k") == b"2"

    def test_store_survives_reopen(self, sql_config, clock, id_factory) -> None:
        """Test a store backed by SQLite reloads its state."""
        store = PositionStore(SqlKeyValueStore(config=sql_config), config=sql_config, clock=clock, id_factory=id_factory)
        store.hydrate()
        spread = store.add_spread(short=make_leg(), long=make_leg(strike=3200.0), c_enter=12.0)
        assert store.last_persist_error is None

        reopened = PositionStore(SqlKeyValueStore(config=sql_config), config=sql_config, clock=clock, id_factory=id_factory)
        reopened.hydrate()
        assert reopened.spreads == (spread,)
