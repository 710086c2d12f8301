"""
Risk level calculations.

Stop-loss and take-profit prices are expressed as the price at which
an open position gains or loses a given amount of money.  The search
walks the tick grid outward from a start price and is bounded both by
an explicit step count and by the price staying positive, so it always
terminates and reports `UnreachableLevel` instead of looping.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from ..errors import UnreachableLevel
from ..execution.models import Side
from ..utils.pricing import to_decimal, round_to_tick, unrealized_pnl

DEFAULT_MAX_STEPS = 100_000


class Objective(Enum):
    """Which side of the anchor the requested level lies on."""
    LOSS = 'loss'
    GAIN = 'gain'


def level_for_target_pnl(
    anchor_price: float,
    side: Side,
    target_amount: float,
    point_value: float,
    tick_size: float,
    objective: Objective = Objective.LOSS,
    start_price: Optional[float] = None,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> float:
    """Return the first tick-aligned price where P&L reaches the target.

    P&L is ``(price - anchor_price) * point_value`` for a long position
    and the negation of that for a short one.  The scan starts at
    `start_price` (the anchor when omitted) and steps one tick at a
    time toward a loss for ``Objective.LOSS`` or toward a gain for
    ``Objective.GAIN``.

    Parameters
    ----------
    anchor_price : float
        Reference price, normally the entry price.
    side : Side
        ``Side.LONG`` or ``Side.SHORT``.
    target_amount : float
        Positive monetary amount to lose or gain.
    point_value : float
        Money per one point of price movement for one contract.
    tick_size : float
        Price grid increment and scan step.
    objective : Objective
        Direction of the scan.
    start_price : float, optional
        Where the scan begins, typically the current close.
    max_steps : int
        Upper bound on the number of ticks visited.

    Returns
    -------
    float
        The level.  P&L evaluated at the level has magnitude of at least
        `target_amount`; one tick closer to the start it does not.

    Raises
    ------
    UnreachableLevel
        If the target is not reached within `max_steps` ticks or before
        the price would drop to zero.
    """
    if side is Side.FLAT:
        raise ValueError("Cannot compute a level for a flat position")
    if target_amount <= 0 or point_value <= 0 or tick_size <= 0:
        raise ValueError("target_amount, point_value and tick_size must be positive")

    sign = side.sign
    direction = -sign if objective is Objective.LOSS else sign
    tick = to_decimal(tick_size)
    step = tick * direction
    goal = to_decimal(target_amount)

    origin = anchor_price if start_price is None else start_price
    # Align the start back toward the anchor so no grid point is skipped.
    start = to_decimal(round_to_tick(origin, tick_size, mode='up' if direction < 0 else 'down'))

    for i in range(max_steps + 1):
        price = start + step * i
        if price <= 0:
            raise UnreachableLevel(
                f"Price reached zero before {objective.value} of {target_amount} "
                f"from anchor {anchor_price}",
                steps=i,
            )
        pnl = unrealized_pnl(anchor_price, price, sign, point_value)
        if objective is Objective.LOSS and pnl <= -goal:
            return float(price)
        if objective is Objective.GAIN and pnl >= goal:
            return float(price)
    raise UnreachableLevel(
        f"No {objective.value} of {target_amount} within {max_steps} ticks of {origin}",
        steps=max_steps,
    )


def percent_stop_level(close: float, side: Side, stop_pct: float, tick_size: float) -> float:
    """Stop placed `stop_pct` percent away from `close`, against the position."""
    offset = close * stop_pct / 100.0
    raw = close - offset if side is Side.LONG else close + offset
    return round_to_tick(raw, tick_size)


def breakeven_level(entry_price: float, side: Side, offset_ticks: int, tick_size: float) -> float:
    """Entry price shifted `offset_ticks` ticks into profit.

    Off-grid results are rounded toward profit, up for longs and down
    for shorts.
    """
    entry = to_decimal(entry_price)
    shifted = entry + to_decimal(tick_size) * offset_ticks * side.sign
    return round_to_tick(shifted, tick_size, mode='down' if side is Side.SHORT else 'up')


def target_reached(close: float, side: Side, level: Optional[float]) -> bool:
    """Return `True` once `close` is at or beyond the take-profit level."""
    if level is None:
        return False
    if side is Side.LONG:
        return close >= level
    if side is Side.SHORT:
        return close <= level
    return False
