import os
import sys
import tempfile

import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from trendgate.data.indicators import FrameIndicatorSource, load_indicator_csv

import unittest


class TestFrameIndicatorSource(unittest.TestCase):
    def setUp(self) -> None:
        self.source = FrameIndicatorSource(pd.DataFrame({
            'close': [10.0, 11.0, 12.0],
            'sma': [float('nan'), 10.5, 11.5],
        }))

    def test_no_value_before_first_bar(self) -> None:
        self.assertIsNone(self.source.reading('close', 0))

    def test_lookback_follows_cursor(self) -> None:
        self.source.advance()
        self.source.advance()
        self.assertEqual(self.source.reading('close', 0), 11.0)
        self.assertEqual(self.source.reading('close', 1), 10.0)
        self.assertIsNone(self.source.reading('close', 2))
        self.assertIsNone(self.source.reading('sma', 1))
        self.assertEqual(self.source.remaining, 1)

    def test_advance_stops_at_end(self) -> None:
        self.assertEqual(sum(1 for _ in iter(self.source.advance, False)), 3)
        self.assertFalse(self.source.advance())
        self.assertEqual(self.source.reading('close', 0), 12.0)

    def test_unknown_series(self) -> None:
        self.source.advance()
        with self.assertRaises(KeyError):
            self.source.reading('rsi', 0)
        self.assertFalse(self.source.has_series('rsi'))

    def test_append_extends_history(self) -> None:
        source = FrameIndicatorSource(columns=['close'])
        self.assertTrue(source.has_series('close'))
        source.append({'close': 5.0})
        source.append({'close': 6.0})
        self.assertEqual(source.reading('close', 0), 6.0)
        self.assertEqual(source.reading('close', 1), 5.0)
        self.assertEqual(source.bar_index, 1)

    def test_append_keeps_bounded_history(self) -> None:
        source = FrameIndicatorSource(columns=['close'], max_rows=3)
        for close in (1.0, 2.0, 3.0, 4.0, 5.0):
            source.append({'close': close})
        self.assertEqual(len(source.frame), 3)
        self.assertEqual(source.bar_index, 4)
        self.assertEqual(source.reading('close', 0), 5.0)
        self.assertEqual(source.reading('close', 2), 3.0)
        self.assertIsNone(source.reading('close', 3))


class TestIndicatorCsv(unittest.TestCase):
    def test_load_localises_and_sorts(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'series.csv')
            with open(path, 'w', encoding='utf-8') as fh:
                fh.write("time,close,osc\n")
                fh.write("2024-01-02 10:00,101.0,30\n")
                fh.write("2024-01-02 09:00,100.0,\n")
            df = load_indicator_csv(path, 'Europe/Brussels')
        self.assertEqual(list(df['close']), [100.0, 101.0])
        self.assertEqual(str(df.index.tz), 'Europe/Brussels')
        source = FrameIndicatorSource(df)
        source.advance()
        self.assertIsNone(source.reading('osc', 0))
        self.assertEqual(source.timestamp, pd.Timestamp('2024-01-02 09:00', tz='Europe/Brussels'))

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_indicator_csv('/nonexistent/series.csv')


if __name__ == '__main__':
    unittest.main()
