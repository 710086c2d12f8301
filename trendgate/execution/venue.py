"""
Order execution venue.

The engine never matches orders itself.  It talks to a venue through
three requests (submit, cancel, modify) and is told about fills
through `StrategyEngine.on_fill()`.  A venue refuses a request by
raising `VenueRejection`.

`PaperVenue` is an in-memory venue used by the replay harness and the
tests.  It hands out handles, records every request and keeps a queue
of fills reported with `fill()`; the host drains the queue and forwards
each fill to the engine.  It does not watch prices, so stop orders
only fill when told to.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Set, Tuple

from ..errors import VenueRejection
from .models import OrderKind, OrderRequest, OrderSide


logger = logging.getLogger(__name__)


class Venue(Protocol):
    def submit(self, side: OrderSide, quantity: int, kind: OrderKind,
               price: Optional[float] = None, label: str = "") -> str:
        ...

    def cancel(self, handle: str) -> None:
        ...

    def modify(self, handle: str, new_price: float, new_label: str) -> None:
        ...


@dataclass
class PaperOrder:
    handle: str
    side: OrderSide
    quantity: int
    kind: OrderKind
    price: Optional[float]
    label: str
    status: str = 'working'  # 'working', 'filled' or 'cancelled'
    fill_price: Optional[float] = None


class PaperVenue:
    """Accept orders in memory and report fills on request.

    Parameters
    ----------
    reject : set of str, optional
        Request actions (``'submit'``, ``'cancel'``, ``'modify'``) to
        refuse.  Useful for exercising rejection handling.
    """

    def __init__(self, reject: Optional[Set[str]] = None, prefix: str = "ord") -> None:
        self.reject: Set[str] = set(reject or ())
        self.orders: Dict[str, PaperOrder] = {}
        self.requests: List[OrderRequest] = []
        self._fills: List[Tuple[str, float]] = []
        self._ids = itertools.count(1)
        self._prefix = prefix

    def _check(self, action: str, handle: Optional[str] = None) -> None:
        if action in self.reject:
            raise VenueRejection(f"{action} refused by paper venue", handle=handle)

    def _working(self, handle: str) -> PaperOrder:
        order = self.orders.get(handle)
        if order is None or order.status != 'working':
            raise VenueRejection(f"Order {handle} is not working", handle=handle)
        return order

    def submit(self, side: OrderSide, quantity: int, kind: OrderKind,
               price: Optional[float] = None, label: str = "") -> str:
        self._check('submit')
        if quantity <= 0:
            raise VenueRejection(f"Invalid quantity {quantity}")
        if kind is OrderKind.STOP and price is None:
            raise VenueRejection("Stop order without a price")
        handle = f"{self._prefix}-{next(self._ids)}"
        self.orders[handle] = PaperOrder(handle, side, quantity, kind, price, label)
        self.requests.append(OrderRequest('submit', handle, side, quantity, kind, price, label))
        logger.debug("Accepted %s %s x%d @ %s as %s (%s)", kind.value, side.value, quantity, price, handle, label)
        return handle

    def cancel(self, handle: str) -> None:
        self._check('cancel', handle)
        order = self._working(handle)
        order.status = 'cancelled'
        self.requests.append(OrderRequest('cancel', handle))
        logger.debug("Cancelled %s", handle)

    def modify(self, handle: str, new_price: float, new_label: str) -> None:
        self._check('modify', handle)
        order = self._working(handle)
        order.price = new_price
        order.label = new_label
        self.requests.append(OrderRequest('modify', handle, order.side, order.quantity,
                                          order.kind, new_price, new_label))
        logger.debug("Modified %s to %s (%s)", handle, new_price, new_label)

    def fill(self, handle: str, price: float) -> None:
        """Mark a working order filled and queue the notification."""
        order = self._working(handle)
        order.status = 'filled'
        order.fill_price = price
        self._fills.append((handle, price))

    def fill_market_orders(self, price: float) -> int:
        """Fill every working market order at `price`."""
        filled = 0
        for order in list(self.orders.values()):
            if order.status == 'working' and order.kind is OrderKind.MARKET:
                self.fill(order.handle, price)
                filled += 1
        return filled

    def drain_fills(self) -> List[Tuple[str, float]]:
        """Return queued fill notifications and clear the queue."""
        fills, self._fills = self._fills, []
        return fills

    def working_orders(self) -> List[PaperOrder]:
        return [o for o in self.orders.values() if o.status == 'working']
