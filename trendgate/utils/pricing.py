"""
Price grid and P&L helpers.

All venue prices live on a tick grid.  Rounding is done with
`decimal.Decimal` built from the string form of the float so that
multiples of ticks such as ``0.25`` or ``0.0001`` stay exact and the
rounding is idempotent.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, Decimal]

ROUNDING_MODES = {
    'up': ROUND_CEILING,
    'down': ROUND_FLOOR,
    'nearest': ROUND_HALF_UP,
}


def to_decimal(value: Number) -> Decimal:
    """Convert a float to `Decimal` through its shortest repr."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_to_tick(price: Number, tick_size: Number, mode: str = 'up') -> float:
    """Align `price` to the tick grid.

    Parameters
    ----------
    price : float
        Raw price.
    tick_size : float
        Minimum price increment.  Must be positive.
    mode : str
        ``'up'`` (default) returns the smallest tick-aligned price that
        is greater than or equal to `price`, which is what pending stop
        orders require.  ``'down'`` and ``'nearest'`` are also accepted.

    Returns
    -------
    float
        The aligned price.  A price already on the grid is returned
        unchanged.
    """
    tick = to_decimal(tick_size)
    if tick <= 0:
        raise ValueError(f"tick_size must be positive, got {tick_size}")
    try:
        rounding = ROUNDING_MODES[mode]
    except KeyError:
        raise ValueError(f"Unknown rounding mode: {mode}") from None
    ticks = (to_decimal(price) / tick).to_integral_value(rounding=rounding)
    return float(ticks * tick)


def is_on_tick(price: Number, tick_size: Number) -> bool:
    """Return `True` if `price` is an exact multiple of `tick_size`."""
    return to_decimal(price) % to_decimal(tick_size) == 0


def unrealized_pnl(anchor_price: Number, price: Number, sign: int, point_value: Number) -> Decimal:
    """Monetary P&L of one unit moved from `anchor_price` to `price`.

    `sign` is ``+1`` for a long position and ``-1`` for a short one.
    """
    return (to_decimal(price) - to_decimal(anchor_price)) * to_decimal(point_value) * sign


def percent_move(origin_price: Number, current_price: Number, sign: int = 1) -> float:
    """Percentage move from `origin_price` to `current_price`.

    With ``sign=-1`` the move is measured from a short seller's point
    of view, so a falling price gives a positive value.
    """
    origin = float(origin_price)
    if origin == 0:
        return 0.0
    return ((float(current_price) / origin) - 1.0) * 100.0 * sign
