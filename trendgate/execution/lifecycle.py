"""
Position and order lifecycle.

States:
    FLAT          - no position, no protective order
    ENTRY_PENDING - entry market order and protective stop submitted
    OPEN          - entry filled, stop working
    EXIT_PENDING  - stop cancelled, exit market order submitted

Legal transitions:
    FLAT          -> ENTRY_PENDING (entry signal)
    ENTRY_PENDING -> OPEN          (entry fill)
    ENTRY_PENDING -> FLAT          (stop fill reported before the entry fill)
    OPEN          -> OPEN          (breakeven shift, once per position)
    OPEN          -> EXIT_PENDING  (exit signal or take profit)
    OPEN          -> FLAT          (protective stop filled)
    EXIT_PENDING  -> FLAT          (exit fill, or the cancelled stop filled first)

A venue rejection leaves the manager in the state it had before the
request and is re-raised to the engine.  Fills reported while a
request is still in flight (a venue calling back from inside
`submit()`) are held and applied once the transition has completed.
Every transition, rejection and ignored fill is recorded in `events`
and logged.
"""

from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from ..config.schema import StrategyConfig
from ..errors import DuplicateFillNotification, UnreachableLevel, VenueRejection
from ..strategy.risk import (
    Objective,
    breakeven_level,
    level_for_target_pnl,
    percent_stop_level,
)
from ..strategy.signals import ConfirmationCounter, Signal
from ..utils.pricing import percent_move
from .models import (
    EngineEvent,
    OrderKind,
    OrderRequest,
    Phase,
    Position,
    ProtectiveOrder,
    Side,
)
from .venue import Venue


logger = logging.getLogger(__name__)

_ALLOWED: Dict[Phase, set] = {
    Phase.FLAT:          {Phase.ENTRY_PENDING},
    Phase.ENTRY_PENDING: {Phase.OPEN, Phase.FLAT},
    Phase.OPEN:          {Phase.OPEN, Phase.EXIT_PENDING, Phase.FLAT},
    Phase.EXIT_PENDING:  {Phase.FLAT},
}

STOP_LABEL = "StopLoss triggered"
BREAKEVEN_LABEL = "Breakeven triggered"

_EXIT_LABELS = {
    Signal.EXIT_ON_FILTER: "Filter signal cancelled the {side}.",
    Signal.TAKE_PROFIT: "TakeProfit reached, close {side}",
    Signal.EXIT_LONG: "Trigger reversed, close long",
    Signal.EXIT_SHORT: "Trigger reversed, close short",
}


class LifecycleManager:
    """Owns the Position, its ProtectiveOrder and the ConfirmationCounter.

    `max_events` caps the event log; older events are dropped first.
    """

    def __init__(self, config: StrategyConfig, venue: Venue, counter: ConfirmationCounter,
                 max_events: Optional[int] = None) -> None:
        self.config = config
        self.venue = venue
        self.counter = counter
        self.phase = Phase.FLAT
        self.position = Position()
        self.protective_order: Optional[ProtectiveOrder] = None
        self.pending: Dict[str, str] = {}
        self.events: Deque[EngineEvent] = deque(maxlen=max_events)
        self.emitted: List[OrderRequest] = []
        self._cancelled_stop: Optional[ProtectiveOrder] = None
        self._in_flight = False
        self._held_fills: List[Tuple[str, float]] = []
        self._bar = -1
        self._timestamp: Optional[pd.Timestamp] = None

    # ── bookkeeping ──────────────────────────────────────────────────────────

    def begin_bar(self, bar: int, timestamp: Optional[pd.Timestamp] = None) -> None:
        self._bar = bar
        self._timestamp = timestamp
        self.emitted = []

    def _record(self, kind: str, after: Phase, reason: str, **detail) -> None:
        event = EngineEvent(
            bar=self._bar,
            kind=kind,
            phase_before=self.phase,
            phase_after=after,
            reason=reason,
            timestamp=self._timestamp,
            detail=detail,
        )
        self.events.append(event)

    def _transition(self, new_phase: Phase, kind: str, reason: str, **detail) -> None:
        if new_phase not in _ALLOWED[self.phase]:
            raise RuntimeError(f"Illegal transition {self.phase.name} -> {new_phase.name} ({reason})")
        self._record(kind, new_phase, reason, **detail)
        logger.info("[%s] %s -> %s | %s", self.config.name, self.phase.name, new_phase.name, reason)
        self.phase = new_phase

    def _reject(self, action: str, exc: VenueRejection, **detail) -> None:
        self._record('rejection', self.phase, f"{action} rejected: {exc}", **detail)
        logger.warning("[%s] %s rejected by venue: %s", self.config.name, action, exc)

    def _submit(self, side, kind: OrderKind, price: Optional[float], label: str) -> str:
        qty = self.config.quantity
        handle = self.venue.submit(side, qty, kind, price, label)
        self.emitted.append(OrderRequest('submit', handle, side, qty, kind, price, label))
        return handle

    def _cancel(self, handle: str) -> None:
        self.venue.cancel(handle)
        self.emitted.append(OrderRequest('cancel', handle))

    @contextmanager
    def _request(self) -> Iterator[None]:
        """Hold fill notifications until the surrounding transition is done."""
        self._in_flight = True
        try:
            yield
        finally:
            self._in_flight = False
            held, self._held_fills = self._held_fills, []
            for handle, price in held:
                self.on_fill(handle, price)

    def _go_flat(self, kind: str, reason: str, **detail) -> None:
        self._transition(Phase.FLAT, kind, reason, **detail)
        self.position.reset()
        self.protective_order = None
        self._cancelled_stop = None
        self.pending.clear()
        self.counter.reset()

    # ── price levels ─────────────────────────────────────────────────────────

    def initial_stop(self, side: Side, close: float) -> float:
        """Stop level for a new position, falling back to a percent stop."""
        risk = self.config.risk
        tick = self.config.instrument.tick_size
        if risk.stop_mode == 'percent':
            return percent_stop_level(close, side, risk.stop_pct, tick)
        try:
            return level_for_target_pnl(
                close, side, risk.stop_amount,
                self.config.instrument.point_value, tick,
                objective=Objective.LOSS, start_price=close,
                max_steps=risk.max_search_steps,
            )
        except UnreachableLevel as exc:
            fallback = percent_stop_level(close, side, risk.fallback_stop_pct, tick)
            self._record('unreachable_level', self.phase,
                         f"stop level unreachable, using {risk.fallback_stop_pct}% stop",
                         error=str(exc), fallback=fallback)
            logger.warning("[%s] %s; falling back to %s", self.config.name, exc, fallback)
            return fallback

    def take_profit_level(self, side: Side, entry_price: float) -> Optional[float]:
        """Take-profit level for a filled entry, `None` when disabled or unreachable."""
        risk = self.config.risk
        if risk.take_profit_amount is None:
            return None
        try:
            return level_for_target_pnl(
                entry_price, side, risk.take_profit_amount,
                self.config.instrument.point_value, self.config.instrument.tick_size,
                objective=Objective.GAIN, start_price=entry_price,
                max_steps=risk.max_search_steps,
            )
        except UnreachableLevel as exc:
            self._record('unreachable_level', self.phase, "take-profit level unreachable, skipped",
                         error=str(exc))
            logger.warning("[%s] %s; no take profit for this position", self.config.name, exc)
            return None

    # ── transitions driven by the bar ────────────────────────────────────────

    def enter(self, signal: Signal, close: float) -> None:
        """FLAT -> ENTRY_PENDING: submit the market entry and its protective stop."""
        with self._request():
            self._enter(signal, close)

    def _enter(self, signal: Signal, close: float) -> None:
        if self.phase is not Phase.FLAT:
            raise RuntimeError(f"Cannot enter while {self.phase.name}")
        side = Side.LONG if signal is Signal.ENTER_LONG else Side.SHORT
        qty = self.config.quantity
        if self.position.quantity + qty > self.config.max_open_position:
            self._record('entry_skipped', self.phase, "max open position reached")
            return

        stop_price = self.initial_stop(side, close)
        label = f"Trend confirmed, open {side.value}"
        try:
            entry_handle = self._submit(side.entry_order_side, OrderKind.MARKET, None, label)
        except VenueRejection as exc:
            self._reject('entry submit', exc)
            raise
        try:
            stop_handle = self._submit(side.exit_order_side, OrderKind.STOP, stop_price, STOP_LABEL)
        except VenueRejection as exc:
            self._reject('stop submit', exc, entry_handle=entry_handle)
            try:
                self._cancel(entry_handle)
            except VenueRejection as cancel_exc:
                self._reject('entry cancel', cancel_exc, entry_handle=entry_handle)
                logger.error("[%s] Entry %s could not be withdrawn after stop rejection",
                             self.config.name, entry_handle)
            raise exc

        self.position.side = side
        self.position.quantity += qty
        self.position.breakeven_applied = False
        self.protective_order = ProtectiveOrder(
            handle=stop_handle, side=side.exit_order_side, price=stop_price,
            label=STOP_LABEL, quantity=qty,
        )
        self.pending[entry_handle] = 'entry'
        self._transition(Phase.ENTRY_PENDING, 'entry_submitted', label,
                         close=close, stop_price=stop_price,
                         entry_handle=entry_handle, stop_handle=stop_handle)
        self.counter.consume()

    def apply_breakeven(self, close: float) -> bool:
        """OPEN -> OPEN: move the stop to breakeven once the move is large enough."""
        with self._request():
            return self._apply_breakeven(close)

    def _apply_breakeven(self, close: float) -> bool:
        risk = self.config.risk
        pos = self.position
        if (self.phase is not Phase.OPEN or risk.breakeven_pct is None
                or pos.breakeven_applied or pos.entry_price is None or self.protective_order is None):
            return False
        move = percent_move(pos.entry_price, close, pos.side.sign)
        if move < risk.breakeven_pct:
            return False

        new_price = breakeven_level(pos.entry_price, pos.side, risk.breakeven_offset_ticks,
                                    self.config.instrument.tick_size)
        stop = self.protective_order
        try:
            self.venue.modify(stop.handle, new_price, BREAKEVEN_LABEL)
        except VenueRejection as exc:
            self._reject('breakeven modify', exc, stop_handle=stop.handle)
            raise
        self.emitted.append(OrderRequest('modify', stop.handle, stop.side, stop.quantity,
                                         stop.kind, new_price, BREAKEVEN_LABEL))
        old_price = stop.price
        stop.price = new_price
        stop.label = BREAKEVEN_LABEL
        pos.breakeven_applied = True
        self._transition(Phase.OPEN, 'breakeven', f"favorable move {move:.2f}% >= {risk.breakeven_pct}%",
                         old_stop=old_price, new_stop=new_price, close=close)
        return True

    def exit(self, signal: Signal, close: float) -> None:
        """OPEN -> EXIT_PENDING: cancel the stop and close at market."""
        with self._request():
            self._exit(signal, close)

    def _exit(self, signal: Signal, close: float) -> None:
        if self.phase is not Phase.OPEN:
            raise RuntimeError(f"Cannot exit while {self.phase.name}")
        side = self.position.side
        label = _EXIT_LABELS[signal].format(side=side.value)
        stop = self.protective_order

        if stop is not None:
            try:
                self._cancel(stop.handle)
            except VenueRejection as exc:
                self._reject('stop cancel', exc, stop_handle=stop.handle)
                raise
        try:
            exit_handle = self._submit(side.exit_order_side, OrderKind.MARKET, None, label)
        except VenueRejection as exc:
            self._reject('exit submit', exc)
            if stop is not None:
                self._restore_stop(stop)
            raise

        self._cancelled_stop = stop
        self.protective_order = None
        self.pending[exit_handle] = 'exit'
        self._transition(Phase.EXIT_PENDING, 'exit_submitted', label,
                         signal=signal.value, close=close, exit_handle=exit_handle)

    def _restore_stop(self, stop: ProtectiveOrder) -> None:
        try:
            stop.handle = self._submit(stop.side, OrderKind.STOP, stop.price, stop.label)
        except VenueRejection as exc:
            self._reject('stop restore', exc)
            logger.error("[%s] Position left without a protective stop", self.config.name)
            self.protective_order = None

    # ── transitions driven by the venue ──────────────────────────────────────

    def on_fill(self, handle: str, price: float) -> bool:
        """Apply a fill notification.  Returns `False` if it was ignored."""
        if self._in_flight:
            self._held_fills.append((handle, price))
            logger.debug("[%s] Fill %s @ %s held until the pending request completes",
                         self.config.name, handle, price)
            return True

        role = self.pending.get(handle)
        stop = self.protective_order

        if role == 'entry' and self.phase is Phase.ENTRY_PENDING:
            del self.pending[handle]
            pos = self.position
            pos.entry_price = price
            pos.breakeven_applied = False
            pos.take_profit_price = self.take_profit_level(pos.side, price)
            self._transition(Phase.OPEN, 'entry_filled', f"entry filled at {price}",
                             handle=handle, take_profit=pos.take_profit_price)
            return True

        if role == 'exit' and self.phase is Phase.EXIT_PENDING:
            self._go_flat('exit_filled', f"exit filled at {price}", handle=handle,
                          entry_price=self.position.entry_price)
            return True

        if stop is not None and handle == stop.handle and self.phase in (Phase.OPEN, Phase.ENTRY_PENDING):
            self._go_flat('stop_filled', f"{stop.label} at {price}", handle=handle,
                          entry_price=self.position.entry_price)
            return True

        cancelled = self._cancelled_stop
        if cancelled is not None and handle == cancelled.handle and self.phase is Phase.EXIT_PENDING:
            logger.warning("[%s] Stop %s filled while exit was pending", self.config.name, handle)
            self._go_flat('stop_filled', f"{cancelled.label} at {price} before cancel", handle=handle,
                          entry_price=self.position.entry_price)
            return True

        exc = DuplicateFillNotification(handle, price)
        self._record('duplicate_fill', self.phase, str(exc), handle=handle, price=price)
        logger.warning("[%s] %s; ignored", self.config.name, exc)
        return False
