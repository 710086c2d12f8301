"""
Order, position and event models.

These dataclasses represent the objects passed between the signal
evaluator, the lifecycle manager and the venue.  Keeping them in a
separate module improves readability and makes unit testing easier.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import pandas as pd


class Side(Enum):
    """Direction of a position."""
    LONG = 'long'
    SHORT = 'short'
    FLAT = 'flat'

    @property
    def sign(self) -> int:
        return {Side.LONG: 1, Side.SHORT: -1, Side.FLAT: 0}[self]

    @property
    def entry_order_side(self) -> 'OrderSide':
        if self is Side.FLAT:
            raise ValueError("A flat position has no entry side")
        return OrderSide.BUY if self is Side.LONG else OrderSide.SELL

    @property
    def exit_order_side(self) -> 'OrderSide':
        return self.entry_order_side.opposite


class OrderSide(Enum):
    BUY = 'buy'
    SELL = 'sell'

    @property
    def opposite(self) -> 'OrderSide':
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderKind(Enum):
    MARKET = 'market'
    STOP = 'stop'


class Phase(Enum):
    """States of the position and order lifecycle."""
    FLAT = 'flat'
    ENTRY_PENDING = 'entry_pending'
    OPEN = 'open'
    EXIT_PENDING = 'exit_pending'


@dataclass
class Position:
    """The single position owned by a strategy instance."""
    side: Side = Side.FLAT
    quantity: int = 0
    entry_price: Optional[float] = None
    breakeven_applied: bool = False
    take_profit_price: Optional[float] = None

    @property
    def is_flat(self) -> bool:
        return self.side is Side.FLAT

    def reset(self) -> None:
        """Return the position to flat in place."""
        self.side = Side.FLAT
        self.quantity = 0
        self.entry_price = None
        self.breakeven_applied = False
        self.take_profit_price = None


@dataclass
class ProtectiveOrder:
    """Stop order protecting an open position."""
    handle: str
    side: OrderSide
    price: float
    label: str
    quantity: int = 1
    kind: OrderKind = OrderKind.STOP


@dataclass(frozen=True)
class OrderRequest:
    """A request sent to the venue, as recorded by the engine."""
    action: str  # 'submit', 'cancel' or 'modify'
    handle: Optional[str]
    side: Optional[OrderSide] = None
    quantity: int = 0
    kind: Optional[OrderKind] = None
    price: Optional[float] = None
    label: str = ""


@dataclass(frozen=True)
class EngineEvent:
    """One entry of the structured event log."""
    bar: int
    kind: str
    phase_before: Phase
    phase_after: Phase
    reason: str
    timestamp: Optional[pd.Timestamp] = None
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EngineSnapshot:
    """Read-only view of the engine state returned by `current_state()`."""
    bar: int
    phase: Phase
    position: Position
    protective_order: Optional[ProtectiveOrder]
    pending_orders: Tuple[Tuple[str, str], ...]
    confirmation_count: int
    gate_armed: bool


@dataclass
class BarReport:
    """Outcome of one `on_bar()` call."""
    bar: int
    signal: str
    phase: Phase
    requests: list = field(default_factory=list)
    rejection: Optional[str] = None


def copy_position(position: Position) -> Position:
    return replace(position)


def copy_order(order: Optional[ProtectiveOrder]) -> Optional[ProtectiveOrder]:
    return replace(order) if order is not None else None
