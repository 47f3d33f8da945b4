"""Schema migrations for the persisted store record."""

from .engine import CURRENT_VERSION, MIGRATIONS, empty_state, migrate, to_v2, to_v3, to_v4, to_v5, upgrade

__all__ = [
    "CURRENT_VERSION",
    "MIGRATIONS",
    "empty_state",
    "migrate",
    "to_v2",
    "to_v3",
    "to_v4",
    "to_v5",
    "upgrade",
]
