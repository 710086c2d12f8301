"""
Strategy engine.

This module contains the `StrategyEngine` class which ties an
indicator source, the signal evaluator and the lifecycle manager
together.  The host calls `on_bar()` once per new bar, forwards venue
fills through `on_fill()` and can inspect `current_state()` at any
time.  Engines share no mutable state, so one engine per symbol or
configuration can run independently.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..config.schema import StrategyConfig
from ..data.indicators import IndicatorSource, check_series
from ..errors import VenueRejection
from ..strategy.signals import Signal, SignalEvaluator
from .lifecycle import LifecycleManager
from .models import (
    BarReport,
    EngineEvent,
    EngineSnapshot,
    Phase,
    copy_order,
    copy_position,
)
from .venue import Venue


logger = logging.getLogger(__name__)


class StrategyEngine:
    """Run one configured strategy against one indicator source and venue.

    Parameters
    ----------
    config : StrategyConfig
        Validated again here; invalid values raise `ConfigurationError`.
    source : IndicatorSource
        Must provide every series the configuration reads.
    venue : Venue
        Receives the order requests.
    max_events : int, optional
        Number of most recent events kept in the event log.
    """

    def __init__(self, config: StrategyConfig, source: IndicatorSource, venue: Venue,
                 max_events: Optional[int] = None) -> None:
        self.config = config.validate()
        check_series(source, config.required_series())
        self.source = source
        self.venue = venue
        self.evaluator = SignalEvaluator(config)
        self.lifecycle = LifecycleManager(config, venue, self.evaluator.new_counter(), max_events)
        self._bar = -1
        self._in_bar = False

    @property
    def events(self) -> List[EngineEvent]:
        return list(self.lifecycle.events)

    def on_bar(self) -> BarReport:
        """Process the source's current bar.

        Returns
        -------
        BarReport
            The signal, the phase after processing, the order requests
            that were sent and the venue rejection, if any.
        """
        if self._in_bar:
            raise RuntimeError("on_bar() is not re-entrant")
        self._in_bar = True
        try:
            return self._process_bar()
        finally:
            self._in_bar = False

    def _process_bar(self) -> BarReport:
        self._bar += 1
        lifecycle = self.lifecycle
        lifecycle.begin_bar(self._bar, getattr(self.source, 'timestamp', None))
        report = BarReport(bar=self._bar, signal=Signal.HOLD.value, phase=lifecycle.phase)

        close = self.source.reading(self.config.price_series, 0)
        if close is None:
            logger.debug("Bar %d: no %s value yet", self._bar, self.config.price_series)
            return report

        try:
            if lifecycle.phase is Phase.FLAT:
                signal = self.evaluator.evaluate(self.source, lifecycle.position, lifecycle.counter)
                report.signal = signal.value
                if signal.is_entry:
                    lifecycle.enter(signal, close)
            elif lifecycle.phase is Phase.OPEN:
                try:
                    lifecycle.apply_breakeven(close)
                except VenueRejection as exc:
                    report.rejection = str(exc)
                signal = self.evaluator.evaluate(self.source, lifecycle.position, lifecycle.counter)
                report.signal = signal.value
                if signal.is_exit:
                    lifecycle.exit(signal, close)
        except VenueRejection as exc:
            report.rejection = str(exc)

        report.phase = lifecycle.phase
        report.requests = list(lifecycle.emitted)
        if report.signal != Signal.HOLD.value:
            logger.debug("Bar %d: %s -> %s", self._bar, report.signal, report.phase.name)
        return report

    def on_fill(self, handle: str, price: float) -> bool:
        """Forward a venue fill.  Returns `False` for ignored notifications."""
        return self.lifecycle.on_fill(handle, price)

    def current_state(self) -> EngineSnapshot:
        lifecycle = self.lifecycle
        return EngineSnapshot(
            bar=self._bar,
            phase=lifecycle.phase,
            position=copy_position(lifecycle.position),
            protective_order=copy_order(lifecycle.protective_order),
            pending_orders=tuple(sorted(lifecycle.pending.items())),
            confirmation_count=lifecycle.counter.count,
            gate_armed=lifecycle.counter.armed,
        )
