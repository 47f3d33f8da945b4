#!/usr/bin/env python3
"""Backup CLI for the position store.

Reads SPREADBOOK_DATABASE_URL from the environment (does not print it).

Usage:
  python scripts/backup.py export [--out FILE]
  python scripts/backup.py import FILE
  python scripts/backup.py show

Exit codes:
  0 = OK
  2 = import rejected (unreadable file or payload)
  3 = storage error
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spreadbook.clock import now_ms
from spreadbook.config import StoreConfig
from spreadbook.errors import StorageError
from spreadbook.export import export_filename
from spreadbook.storage import SqlKeyValueStore
from spreadbook.store import PositionStore

logger = logging.getLogger("spreadbook.backup")

EXIT_OK = 0
EXIT_IMPORT_REJECTED = 2
EXIT_STORAGE_ERROR = 3


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Export, import or inspect the options position store.")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="Write a backup JSON file")
    export.add_argument("--out", help="Output file (default: options-dashboard-<timestamp>.json, '-' for stdout)")

    imp = sub.add_parser("import", help="Replace the store contents from a backup JSON file")
    imp.add_argument("file", help="Backup JSON file")

    sub.add_parser("show", help="Print portfolios with their spread/position counts")
    return p.parse_args(argv)


def _open_store(config: StoreConfig) -> PositionStore:
    kv = SqlKeyValueStore(config=config)
    # Probe the backend so connectivity problems surface as exit code 3.
    kv.get(config.store_key)
    store = PositionStore(kv, config=config)
    store.hydrate()
    return store


def _cmd_export(store: PositionStore, out: str | None) -> int:
    payload = store.export_json()
    if out == "-":
        print(payload)
        return EXIT_OK
    target = Path(out) if out else Path(export_filename(now_ms()))
    target.write_text(payload, encoding="utf-8")
    logger.info(f"Exported {len(store.spreads)} spreads, {len(store.positions)} positions to {target}")
    return EXIT_OK


def _cmd_import(store: PositionStore, file: str) -> int:
    try:
        raw = Path(file).read_bytes()
    except OSError as exc:
        logger.error(f"Cannot read {file}: {exc}")
        return EXIT_IMPORT_REJECTED

    result = store.import_json(raw)
    if not result.ok:
        logger.error(f"Import rejected: {result.error}")
        return EXIT_IMPORT_REJECTED
    for drop in result.dropped:
        logger.warning(f"Dropped {drop.collection}[{drop.index}]: {drop.reason}")
    if store.last_persist_error:
        logger.error(f"Imported state could not be saved: {store.last_persist_error}")
        return EXIT_STORAGE_ERROR
    print(f"Imported {len(store.spreads)} spreads, {len(store.positions)} positions")
    return EXIT_OK


def _cmd_show(store: PositionStore) -> int:
    counts = store.portfolio_counts()
    for meta in store.portfolios:
        marker = "*" if meta.id == store.active_portfolio_id else " "
        print(f"{marker} {meta.id:<36} {meta.name:<24} {counts.get(meta.id, 0):>5}")
    print(f"deposit_usd={store.settings.deposit_usd:g} risk_limit_pct={store.settings.risk_limit_pct}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = StoreConfig.from_env()
    try:
        store = _open_store(config)
    except (StorageError, RuntimeError) as exc:
        logger.error(f"Storage unavailable: {exc}")
        return EXIT_STORAGE_ERROR

    if args.command == "export":
        return _cmd_export(store, args.out)
    if args.command == "import":
        return _cmd_import(store, args.file)
    return _cmd_show(store)


if __name__ == "__main__":
    raise SystemExit(main())
