from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from spreadbook.config import StoreConfig
from spreadbook.errors import StorageError
from spreadbook.persistence.interfaces import KeyValueStore

logger = logging.getLogger(__name__)

TABLE_NAME = "kv_store"


class SqlKeyValueStore(KeyValueStore):
    """Key-value store backed by a single SQL table (SQLite or PostgreSQL).

    Table: kv_store(key TEXT PRIMARY KEY, value TEXT, updated_at TEXT)
    """

    def __init__(self, *, config: StoreConfig) -> None:
        self._config = config
        self._engine: Any | None = None
        self._schema_ready = False

    def _require_sqlalchemy(self) -> tuple[Any, Any]:
        try:
            from sqlalchemy import create_engine, text  # type: ignore[import-not-found]
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("SQLAlchemy is required for SqlKeyValueStore. Install it with: pip install SQLAlchemy") from exc

        return create_engine, text

    def _get_engine(self) -> Any:
        if self._engine is None:
            create_engine, _ = self._require_sqlalchemy()
            from sqlalchemy.engine import make_url

            url = make_url(self._config.database_url)
            if url.drivername.startswith("sqlite") and url.database not in (None, "", ":memory:"):
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            # Do not log the URL (it may contain secrets).
            self._engine = create_engine(url, echo=False, pool_pre_ping=True)
        return self._engine

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        _, text = self._require_sqlalchemy()
        stmt = text(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              updated_at TEXT NOT NULL
            )
            """
        )
        with self._get_engine().begin() as conn:
            conn.execute(stmt)
        self._schema_ready = True

    def get(self, key: str) -> Optional[bytes]:
        _, text = self._require_sqlalchemy()
        from sqlalchemy.exc import SQLAlchemyError

        try:
            self._ensure_schema()
            with self._get_engine().begin() as conn:
                row = conn.execute(
                    text(f"SELECT value FROM {TABLE_NAME} WHERE key = :key"),
                    {"key": key},
                ).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read key {key!r}: {exc.__class__.__name__}") from exc

        return None if row is None else str(row[0]).encode("utf-8")

    def set(self, key: str, value: bytes) -> None:
        _, text = self._require_sqlalchemy()
        from sqlalchemy.exc import SQLAlchemyError

        try:
            decoded = value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise StorageError(f"Value for key {key!r} is not UTF-8 text") from exc

        stmt = text(
            f"""
            INSERT INTO {TABLE_NAME} (key, value, updated_at)
            VALUES (:key, :value, :updated_at)
            ON CONFLICT (key) DO UPDATE SET
              value = excluded.value,
              updated_at = excluded.updated_at
            """
        )
        try:
            self._ensure_schema()
            with self._get_engine().begin() as conn:
                conn.execute(
                    stmt,
                    {"key": key, "value": decoded, "updated_at": datetime.now(timezone.utc).isoformat()},
                )
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write key {key!r}: {exc.__class__.__name__}") from exc
        logger.debug(f"Stored {len(value)} bytes under {key!r}")
