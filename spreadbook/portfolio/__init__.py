"""Portfolio registry module.

Namespace management and referential-integrity helpers shared by all mutators.
"""

from .registry import (
    clear_realized_history,
    create_portfolio,
    default_portfolio,
    delete_portfolio,
    ensure_default,
    link_portfolio,
    portfolio_exists,
    rename_portfolio,
    resolve_portfolio_id,
    set_active_portfolio,
    sort_portfolios,
    touch_portfolio,
)

__all__ = [
    "clear_realized_history",
    "create_portfolio",
    "default_portfolio",
    "delete_portfolio",
    "ensure_default",
    "link_portfolio",
    "portfolio_exists",
    "rename_portfolio",
    "resolve_portfolio_id",
    "set_active_portfolio",
    "sort_portfolios",
    "touch_portfolio",
]
