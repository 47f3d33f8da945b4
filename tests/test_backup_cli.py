"""Tests for the backup.py CLI."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

pytest.importorskip("sqlalchemy")

# Add project root to path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts.backup import EXIT_IMPORT_REJECTED, EXIT_OK, EXIT_STORAGE_ERROR, main


@pytest.fixture
def database(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "cli.db"
    monkeypatch.setenv("SPREADBOOK_DATABASE_URL", f"sqlite:///{path}")
    monkeypatch.delenv("SPREADBOOK_STORE_KEY", raising=False)
    return path


@pytest.fixture
def backup_file(tmp_path, v1_spread_payload) -> Path:
    path = tmp_path / "backup.json"
    path.write_text(json.dumps(v1_spread_payload), encoding="utf-8")
    return path


def test_import_then_export(database, backup_file, tmp_path) -> None:
    """Test a file imported through the CLI shows up in the export."""
    assert main(["import", str(backup_file)]) == EXIT_OK

    out = tmp_path / "out.json"
    assert main(["export", "--out", str(out)]) == EXIT_OK
    data = json.loads(out.read_text(encoding="utf-8"))
    assert [s["id"] for s in data["spreads"]] == ["a"]
    assert data["spreads"][0]["short"]["symbol"] == "ETH-240329-3000-C-USDT"


def test_import_rejects_invalid_file(database, tmp_path) -> None:
    """Test unreadable files exit with the rejection code."""
    bad = tmp_path / "bad.json"
    bad.write_text("[not json", encoding="utf-8")
    assert main(["import", str(bad)]) == EXIT_IMPORT_REJECTED
    assert main(["import", str(tmp_path / "missing.json")]) == EXIT_IMPORT_REJECTED


def test_show(database, capsys) -> None:
    """Test show lists the default portfolio as active."""
    assert main(["show"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "* default" in out
    assert "deposit_usd=5000" in out


def test_storage_error(monkeypatch) -> None:
    """Test an unusable database URL exits with the storage code."""
    monkeypatch.setenv("SPREADBOOK_DATABASE_URL", "nosuchdialect://host/db")
    assert main(["show"]) == EXIT_STORAGE_ERROR
