import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from trendgate.errors import UnreachableLevel
from trendgate.execution.models import Side
from trendgate.strategy.risk import (
    Objective,
    breakeven_level,
    level_for_target_pnl,
    percent_stop_level,
    target_reached,
)
from trendgate.utils.pricing import unrealized_pnl

import unittest


class TestStopLossTakeProfit(unittest.TestCase):
    def test_long_stop_for_money_loss(self) -> None:
        """4000 - 3000 / 20 = 3850."""
        level = level_for_target_pnl(4000.0, Side.LONG, 3000, 20, 0.25)
        self.assertEqual(level, 3850.0)

    def test_short_stop_for_money_loss(self) -> None:
        level = level_for_target_pnl(4000.0, Side.SHORT, 3000, 20, 0.25)
        self.assertEqual(level, 4150.0)

    def test_take_profit_levels(self) -> None:
        long_tp = level_for_target_pnl(4000.0, Side.LONG, 4000, 20, 0.25, objective=Objective.GAIN)
        short_tp = level_for_target_pnl(4000.0, Side.SHORT, 4000, 20, 0.25, objective=Objective.GAIN)
        self.assertEqual(long_tp, 4200.0)
        self.assertEqual(short_tp, 3800.0)

    def test_level_is_tight(self) -> None:
        anchor, target, point_value, tick = 4012.3, 1000, 50, 0.25
        for side in (Side.LONG, Side.SHORT):
            for objective in (Objective.LOSS, Objective.GAIN):
                level = level_for_target_pnl(anchor, side, target, point_value, tick, objective=objective)
                step = tick * side.sign * (-1 if objective is Objective.LOSS else 1)
                reached = abs(unrealized_pnl(anchor, level, side.sign, point_value))
                closer = abs(unrealized_pnl(anchor, level - step, side.sign, point_value))
                self.assertGreaterEqual(reached, target)
                self.assertLess(closer, target)

    def test_scan_starts_from_current_close(self) -> None:
        level = level_for_target_pnl(4000.0, Side.LONG, 3000, 20, 0.25, start_price=3900.0)
        self.assertEqual(level, 3850.0)

    def test_unreachable_within_step_bound(self) -> None:
        with self.assertRaises(UnreachableLevel) as ctx:
            level_for_target_pnl(4000.0, Side.LONG, 3000, 20, 0.25, max_steps=10)
        self.assertEqual(ctx.exception.steps, 10)

    def test_unreachable_before_zero_price(self) -> None:
        with self.assertRaises(UnreachableLevel):
            level_for_target_pnl(10.0, Side.LONG, 1_000_000, 1, 0.25)

    def test_invalid_arguments(self) -> None:
        with self.assertRaises(ValueError):
            level_for_target_pnl(4000.0, Side.FLAT, 3000, 20, 0.25)
        with self.assertRaises(ValueError):
            level_for_target_pnl(4000.0, Side.LONG, 0, 20, 0.25)

    def test_percent_stop(self) -> None:
        self.assertEqual(percent_stop_level(4000.0, Side.LONG, 2.0, 0.25), 3920.0)
        self.assertEqual(percent_stop_level(4000.0, Side.SHORT, 2.0, 0.25), 4080.0)
        self.assertEqual(percent_stop_level(4001.0, Side.LONG, 0.5, 0.25), 3981.0)

    def test_breakeven_level(self) -> None:
        self.assertEqual(breakeven_level(4000.0, Side.LONG, 4, 0.25), 4001.0)
        self.assertEqual(breakeven_level(4000.0, Side.SHORT, 4, 0.25), 3999.0)
        self.assertEqual(breakeven_level(4000.0, Side.LONG, 0, 0.25), 4000.0)

    def test_breakeven_level_off_grid_rounds_toward_profit(self) -> None:
        self.assertEqual(breakeven_level(4000.1, Side.LONG, 0, 0.25), 4000.25)
        self.assertEqual(breakeven_level(4000.1, Side.SHORT, 0, 0.25), 4000.0)
        self.assertEqual(breakeven_level(4000.1, Side.SHORT, 4, 0.25), 3999.0)

    def test_target_reached(self) -> None:
        self.assertTrue(target_reached(4200.0, Side.LONG, 4200.0))
        self.assertFalse(target_reached(4199.75, Side.LONG, 4200.0))
        self.assertTrue(target_reached(3800.0, Side.SHORT, 3800.0))
        self.assertFalse(target_reached(3800.0, Side.SHORT, None))


if __name__ == '__main__':
    unittest.main()
