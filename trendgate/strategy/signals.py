"""
Signal evaluation.

The evaluator turns the current indicator readings into one decision
per bar.  Entries need the trend filter to be open and the trigger to
hold on the same bar; exits fire when the filter reverses, when the
take-profit level is reached, or when the opposing trigger occurs.
Readings that are not available yet make a rule false.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable

from ..config.schema import ConditionConfig, CrossingConfig, Reference, Rule, StrategyConfig
from ..data.indicators import IndicatorSource
from ..errors import InsufficientHistory
from ..execution.models import Position, Side
from .risk import target_reached


logger = logging.getLogger(__name__)

_OPS: Dict[str, Callable[[float, float], bool]] = {
    '>': operator.gt,
    '>=': operator.ge,
    '<': operator.lt,
    '<=': operator.le,
    '==': operator.eq,
}


class Signal(Enum):
    ENTER_LONG = 'enter_long'
    ENTER_SHORT = 'enter_short'
    EXIT_LONG = 'exit_long'
    EXIT_SHORT = 'exit_short'
    EXIT_ON_FILTER = 'exit_on_filter'
    TAKE_PROFIT = 'take_profit'
    HOLD = 'hold'

    @property
    def is_entry(self) -> bool:
        return self in (Signal.ENTER_LONG, Signal.ENTER_SHORT)

    @property
    def is_exit(self) -> bool:
        return self in (Signal.EXIT_LONG, Signal.EXIT_SHORT, Signal.EXIT_ON_FILTER, Signal.TAKE_PROFIT)


@dataclass
class ConfirmationCounter:
    """Tracks how many bars of the confirmation window held the condition.

    `count` is recomputed on every evaluation.  The gate arms when the
    count equals `window` and stays armed until the venue accepts an
    entry or the position cycle ends.
    """
    window: int = 0
    count: int = 0
    armed: bool = False

    def observe(self, hits: int) -> bool:
        self.count = hits
        if self.window and hits == self.window:
            self.armed = True
        return self.armed

    def consume(self) -> None:
        self.count = 0
        self.armed = False

    reset = consume


def _value(source: IndicatorSource, ref: Reference, lookback: int) -> float:
    if not isinstance(ref, str):
        return float(ref)
    value = source.reading(ref, lookback)
    if value is None:
        raise InsufficientHistory(ref, lookback)
    return value


def condition_holds(source: IndicatorSource, cond: ConditionConfig, offset: int = 0) -> bool:
    """Evaluate ``series <op> ref`` at ``cond.lookback + offset``."""
    lookback = cond.lookback + offset
    try:
        left = _value(source, cond.series, lookback)
        right = _value(source, cond.ref, lookback)
    except InsufficientHistory as exc:
        logger.debug("Condition on %s not evaluated: %s", cond.series, exc)
        return False
    return _OPS[cond.op](left, right)


def crossing_holds(source: IndicatorSource, cross: CrossingConfig) -> bool:
    """Previous value strictly on one side, current value on or past the reference."""
    try:
        prev = _value(source, cross.series, 1)
        cur = _value(source, cross.series, 0)
        ref_prev = _value(source, cross.ref, 1)
        ref_cur = _value(source, cross.ref, 0)
    except InsufficientHistory as exc:
        logger.debug("Crossing of %s not evaluated: %s", cross.series, exc)
        return False
    if cross.direction == 'up':
        return prev < ref_prev and cur >= ref_cur
    return prev > ref_prev and cur <= ref_cur


def rule_holds(source: IndicatorSource, rule: Rule) -> bool:
    if isinstance(rule, CrossingConfig):
        return crossing_holds(source, rule)
    return condition_holds(source, rule)


def all_hold(source: IndicatorSource, rules: Iterable[Rule]) -> bool:
    return all(rule_holds(source, rule) for rule in rules)


class SignalEvaluator:
    """Generate entry and exit signals from configured rules."""

    def __init__(self, config: StrategyConfig) -> None:
        self.config = config
        self.side = Side.LONG if config.direction == 'long' else Side.SHORT

    def new_counter(self) -> ConfirmationCounter:
        sustained = self.config.trend_filter.sustained
        return ConfirmationCounter(window=sustained.window if sustained else 0)

    def evaluate(self, source: IndicatorSource, position: Position, counter: ConfirmationCounter) -> Signal:
        """Return the decision for the current bar.

        Parameters
        ----------
        source : IndicatorSource
            Readings positioned on the current bar.
        position : Position
            Flat positions are checked for entries, open ones for exits.
        counter : ConfirmationCounter
            Sustained-window state, updated in place.
        """
        if position.is_flat:
            return self.evaluate_entry(source, counter)
        return self.evaluate_exit(source, position)

    def trend_filter_open(self, source: IndicatorSource, counter: ConfirmationCounter) -> bool:
        trend = self.config.trend_filter
        is_open = all(condition_holds(source, cond) for cond in trend.conditions)
        if trend.sustained is None:
            return is_open
        hits = sum(
            1 for k in range(1, trend.sustained.window + 1)
            if condition_holds(source, trend.sustained.condition, offset=k)
        )
        armed = counter.observe(hits)
        return is_open and armed

    def evaluate_entry(self, source: IndicatorSource, counter: ConfirmationCounter) -> Signal:
        if not self.trend_filter_open(source, counter):
            return Signal.HOLD
        if not all_hold(source, self.config.trigger):
            return Signal.HOLD
        return Signal.ENTER_LONG if self.side is Side.LONG else Signal.ENTER_SHORT

    def evaluate_exit(self, source: IndicatorSource, position: Position) -> Signal:
        exit_cfg = self.config.exit
        if any(condition_holds(source, cond) for cond in exit_cfg.filter):
            return Signal.EXIT_ON_FILTER
        close = source.reading(self.config.price_series, 0)
        if close is not None and target_reached(close, position.side, position.take_profit_price):
            return Signal.TAKE_PROFIT
        if exit_cfg.trigger and all_hold(source, exit_cfg.trigger):
            return Signal.EXIT_LONG if position.side is Side.LONG else Signal.EXIT_SHORT
        return Signal.HOLD
