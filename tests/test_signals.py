import os
import sys
import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from trendgate.config.schema import ConditionConfig, CrossingConfig, config_from_dict
from trendgate.data.indicators import FrameIndicatorSource
from trendgate.execution.engine import StrategyEngine
from trendgate.execution.models import Position, Side
from trendgate.execution.venue import PaperVenue
from trendgate.strategy.signals import (
    ConfirmationCounter,
    Signal,
    SignalEvaluator,
    condition_holds,
    crossing_holds,
)

import unittest


def _source(rows):
    """Source positioned on the last of `rows` (oldest first)."""
    source = FrameIndicatorSource(pd.DataFrame(rows))
    while source.advance():
        pass
    return source


def _sustained_config(window: int = 3):
    return config_from_dict({
        'name': 'sustained',
        'direction': 'short',
        'trend_filter': {'sustained': {'series': 'trend', 'op': '>=', 'ref': 80, 'window': window}},
        'trigger': [{'series': 'osc', 'op': '>=', 'ref': 50}],
    })


class TestCrossing(unittest.TestCase):
    def test_upward_crossing_counts_ties(self) -> None:
        cross = CrossingConfig(series='osc', direction='up', ref=20.0)
        self.assertTrue(crossing_holds(_source([{'osc': 19.0}, {'osc': 20.0}]), cross))
        self.assertTrue(crossing_holds(_source([{'osc': 10.0}, {'osc': 35.0}]), cross))
        # Previous value must be strictly below the reference.
        self.assertFalse(crossing_holds(_source([{'osc': 20.0}, {'osc': 25.0}]), cross))
        self.assertFalse(crossing_holds(_source([{'osc': 10.0}, {'osc': 19.5}]), cross))

    def test_downward_crossing_against_series(self) -> None:
        cross = CrossingConfig(series='macd', direction='down', ref='signal')
        rows = [{'macd': 1.0, 'signal': 0.5}, {'macd': 0.4, 'signal': 0.4}]
        self.assertTrue(crossing_holds(_source(rows), cross))
        rows = [{'macd': 0.5, 'signal': 0.5}, {'macd': 0.1, 'signal': 0.4}]
        self.assertFalse(crossing_holds(_source(rows), cross))

    def test_missing_history_is_false(self) -> None:
        cross = CrossingConfig(series='osc', direction='up', ref=20.0)
        self.assertFalse(crossing_holds(_source([{'osc': 25.0}]), cross))
        cond = ConditionConfig(series='osc', op='>', ref=0.0, lookback=5)
        self.assertFalse(condition_holds(_source([{'osc': 25.0}]), cond))

    def test_nan_reading_is_false(self) -> None:
        cond = ConditionConfig(series='osc', op='>', ref=0.0)
        self.assertFalse(condition_holds(_source([{'osc': float('nan')}]), cond))


class TestConfirmationWindow(unittest.TestCase):
    def test_gate_opens_when_window_fully_confirmed(self) -> None:
        evaluator = SignalEvaluator(_sustained_config())
        counter = evaluator.new_counter()
        rows = [
            {'trend': 85, 'osc': 0},
            {'trend': 90, 'osc': 0},
            {'trend': 81, 'osc': 0},
            {'trend': 60, 'osc': 70},
        ]
        signal = evaluator.evaluate(_source(rows), Position(), counter)
        self.assertEqual(signal, Signal.ENTER_SHORT)
        # Only an accepted entry consumes the gate.
        self.assertTrue(counter.armed)
        self.assertEqual(counter.count, 3)

    def test_two_of_three_bars_do_not_open_the_gate(self) -> None:
        evaluator = SignalEvaluator(_sustained_config())
        counter = evaluator.new_counter()
        rows = [
            {'trend': 85, 'osc': 0},
            {'trend': 70, 'osc': 0},
            {'trend': 81, 'osc': 0},
            {'trend': 60, 'osc': 70},
        ]
        signal = evaluator.evaluate(_source(rows), Position(), counter)
        self.assertEqual(signal, Signal.HOLD)
        self.assertEqual(counter.count, 2)
        self.assertFalse(counter.armed)

    def test_armed_gate_waits_for_trigger(self) -> None:
        counter = ConfirmationCounter(window=3)
        self.assertFalse(counter.observe(2))
        self.assertTrue(counter.observe(3))
        self.assertTrue(counter.observe(1))
        counter.consume()
        self.assertFalse(counter.armed)

    def test_entry_fires_exactly_once_through_engine(self) -> None:
        rows = pd.DataFrame([
            {'close': 100.0, 'trend': 85, 'osc': 0},
            {'close': 100.0, 'trend': 85, 'osc': 0},
            {'close': 100.0, 'trend': 85, 'osc': 0},
            {'close': 100.0, 'trend': 85, 'osc': 70},
            {'close': 100.0, 'trend': 85, 'osc': 70},
            {'close': 100.0, 'trend': 85, 'osc': 70},
        ])
        source = FrameIndicatorSource(rows)
        venue = PaperVenue()
        engine = StrategyEngine(_sustained_config(), source, venue)
        signals = []
        while source.advance():
            signals.append(engine.on_bar().signal)
            venue.fill_market_orders(100.0)
            for handle, price in venue.drain_fills():
                engine.on_fill(handle, price)
        self.assertEqual(signals.count(Signal.ENTER_SHORT.value), 1)
        self.assertEqual(signals[3], Signal.ENTER_SHORT.value)
        entries = [e for e in engine.events if e.kind == 'entry_submitted']
        self.assertEqual(len(entries), 1)

    def test_rejected_entry_keeps_gate_armed(self) -> None:
        rows = pd.DataFrame([
            {'close': 100.0, 'trend': 85, 'osc': 0},
            {'close': 100.0, 'trend': 85, 'osc': 0},
            {'close': 100.0, 'trend': 85, 'osc': 0},
            {'close': 100.0, 'trend': 60, 'osc': 70},
            {'close': 100.0, 'trend': 60, 'osc': 70},
        ])
        source = FrameIndicatorSource(rows)
        venue = PaperVenue(reject={'submit'})
        engine = StrategyEngine(_sustained_config(), source, venue)
        for _ in range(4):
            source.advance()
            report = engine.on_bar()
        self.assertEqual(report.signal, Signal.ENTER_SHORT.value)
        self.assertIsNotNone(report.rejection)
        self.assertTrue(engine.current_state().gate_armed)

        # Only two of the last three bars confirm now, but the gate stays armed.
        venue.reject = set()
        source.advance()
        report = engine.on_bar()
        self.assertEqual(report.signal, Signal.ENTER_SHORT.value)
        self.assertIsNone(report.rejection)
        state = engine.current_state()
        self.assertEqual(state.confirmation_count, 0)
        self.assertFalse(state.gate_armed)


class TestExitDecisions(unittest.TestCase):
    def setUp(self) -> None:
        self.cfg = config_from_dict({
            'name': 'exits',
            'direction': 'long',
            'trend_filter': {'conditions': [{'series': 'close', 'op': '>', 'ref': 'sma'}]},
            'trigger': [{'series': 'osc', 'cross': 'up', 'ref': 20}],
            'exit': {
                'filter': [{'series': 'close', 'op': '<=', 'ref': 'sma'}],
                'trigger': [{'series': 'osc', 'cross': 'down', 'ref': 80}],
            },
        })
        self.evaluator = SignalEvaluator(self.cfg)
        self.position = Position(side=Side.LONG, quantity=1, entry_price=4000.0, take_profit_price=4200.0)

    def _evaluate(self, rows):
        return self.evaluator.evaluate(_source(rows), self.position, self.evaluator.new_counter())

    def test_filter_reversal_has_priority(self) -> None:
        rows = [{'close': 4100, 'sma': 4000, 'osc': 90}, {'close': 4000, 'sma': 4300, 'osc': 70}]
        self.assertEqual(self._evaluate(rows), Signal.EXIT_ON_FILTER)

    def test_take_profit_before_trigger(self) -> None:
        rows = [{'close': 4100, 'sma': 4000, 'osc': 90}, {'close': 4200, 'sma': 4000, 'osc': 70}]
        self.assertEqual(self._evaluate(rows), Signal.TAKE_PROFIT)

    def test_opposing_trigger(self) -> None:
        rows = [{'close': 4100, 'sma': 4000, 'osc': 90}, {'close': 4150, 'sma': 4000, 'osc': 80}]
        self.assertEqual(self._evaluate(rows), Signal.EXIT_LONG)

    def test_hold_while_nothing_fires(self) -> None:
        rows = [{'close': 4100, 'sma': 4000, 'osc': 50}, {'close': 4150, 'sma': 4000, 'osc': 60}]
        self.assertEqual(self._evaluate(rows), Signal.HOLD)

    def test_entry_needs_filter_and_trigger_on_same_bar(self) -> None:
        flat = Position()
        rows = [{'close': 4100, 'sma': 4200, 'osc': 10}, {'close': 4100, 'sma': 4200, 'osc': 30}]
        self.assertEqual(self.evaluator.evaluate(_source(rows), flat, self.evaluator.new_counter()), Signal.HOLD)
        rows = [{'close': 4100, 'sma': 4000, 'osc': 10}, {'close': 4100, 'sma': 4000, 'osc': 30}]
        self.assertEqual(self.evaluator.evaluate(_source(rows), flat, self.evaluator.new_counter()), Signal.ENTER_LONG)


if __name__ == '__main__':
    unittest.main()
