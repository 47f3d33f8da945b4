"""Heuristic reconstruction of two-leg vertical spreads.

Exports from schema v3/v4 stored every construction as a generic position.
When such a file is imported, verticals are turned back into spread records
so they land in the spreads collection. Only used on import; spreads are
never classified again.
"""

from __future__ import annotations

from typing import Optional, Sequence

from spreadbook.types import Position, PositionLeg, SpreadPosition


def is_vertical_like(legs: Sequence[PositionLeg]) -> bool:
    """Two legs, same option type, same expiry, opposite sides."""
    if len(legs) != 2:
        return False
    a, b = legs
    same_type = a.leg.option_type == b.leg.option_type
    same_expiry = a.leg.expiry_ms == b.leg.expiry_ms
    opposite_side = a.side != b.side
    return same_type and same_expiry and opposite_side


def classify(position: Position) -> Optional[SpreadPosition]:
    """Return the spread form of a vertical-like position, else None."""
    if not is_vertical_like(position.legs):
        return None
    a, b = position.legs
    short_leg = a if a.side == "short" else b
    long_leg = a if a.side == "long" else b

    # Zero quantities count as absent here; keep this precedence.
    qty = short_leg.qty or long_leg.qty or 1
    entry_short = short_leg.entry_price or 0.0
    entry_long = long_leg.entry_price or 0.0

    return SpreadPosition(
        id=position.id,
        created_at=position.created_at,
        short=short_leg.leg,
        long=long_leg.leg,
        c_enter=entry_short - entry_long,
        qty=qty,
        portfolio_id=position.portfolio_id,
        entry_short=entry_short,
        entry_long=entry_long,
        closed_at=position.closed_at,
        close_snapshot=position.close_snapshot,
        note=position.note,
        favorite=position.favorite,
        settlements=position.settlements,
    )


def split_unified_positions(
    positions: Sequence[Position],
) -> tuple[list[SpreadPosition], list[Position]]:
    """Partition positions into classified spreads and everything else."""
    spreads: list[SpreadPosition] = []
    combos: list[Position] = []
    for position in positions:
        spread = classify(position)
        if spread is not None:
            spreads.append(spread)
        else:
            combos.append(position)
    return spreads, combos


def spread_to_legs(spread: SpreadPosition) -> tuple[PositionLeg, PositionLeg]:
    """Expand a spread into (short, long) position legs.

    A missing entry price is reconstructed from `c_enter` and the other side.
    """
    qty = spread.qty if spread.qty > 0 else 1
    if spread.entry_short is not None:
        entry_short = spread.entry_short
    elif spread.entry_long is not None:
        entry_short = spread.c_enter + spread.entry_long
    else:
        entry_short = spread.c_enter

    if spread.entry_long is not None:
        entry_long = spread.entry_long
    elif spread.entry_short is not None:
        entry_long = spread.entry_short - spread.c_enter
    else:
        entry_long = 0.0

    return (
        PositionLeg(leg=spread.short, side="short", qty=qty, entry_price=entry_short, created_at=spread.created_at),
        PositionLeg(leg=spread.long, side="long", qty=qty, entry_price=entry_long, created_at=spread.created_at),
    )
