from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass

from spreadbook.types import DEFAULT_DEPOSIT_USD

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./data/spreadbook.db"
DEFAULT_STORE_KEY = "options-dashboard"


@dataclass(frozen=True)
class StoreConfig:
    """Store configuration.

    `database_url` should come from environment (SPREADBOOK_DATABASE_URL).
    Do not log it.
    """

    database_url: str = DEFAULT_DATABASE_URL
    store_key: str = DEFAULT_STORE_KEY
    default_deposit_usd: float = DEFAULT_DEPOSIT_USD

    @classmethod
    def from_env(cls) -> "StoreConfig":
        database_url = os.environ.get("SPREADBOOK_DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL
        store_key = os.environ.get("SPREADBOOK_STORE_KEY", "").strip() or DEFAULT_STORE_KEY

        deposit = DEFAULT_DEPOSIT_USD
        raw_deposit = os.environ.get("SPREADBOOK_DEFAULT_DEPOSIT_USD", "").strip()
        if raw_deposit:
            try:
                parsed = float(raw_deposit)
            except ValueError:
                logger.warning(f"Ignoring invalid SPREADBOOK_DEFAULT_DEPOSIT_USD={raw_deposit!r}")
            else:
                if math.isfinite(parsed) and parsed >= 0:
                    deposit = parsed

        return cls(database_url=database_url, store_key=store_key, default_deposit_usd=deposit)
