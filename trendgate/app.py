"""
Application entry point.

This module defines a simple command-line interface around the
engine.  ``validate`` loads a configuration and checks that the data
file provides every series it reads.  ``replay`` feeds a CSV of
precomputed indicator series through the engine, one row per bar,
using the in-memory paper venue.  Market orders are filled at the bar
close; stop orders are never matched by the harness.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .config.schema import StrategyConfig, load_config
from .data.indicators import FrameIndicatorSource, check_series, load_indicator_csv
from .execution.engine import StrategyEngine
from .execution.venue import PaperVenue


def _setup_logging(verbose: bool) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def replay(config: StrategyConfig, source: FrameIndicatorSource, venue: Optional[PaperVenue] = None) -> StrategyEngine:
    """Run every remaining row of `source` through a new engine."""
    venue = venue or PaperVenue()
    engine = StrategyEngine(config, source, venue)
    while source.advance():
        report = engine.on_bar()
        if report.rejection:
            logging.warning("Bar %d: %s", report.bar, report.rejection)
        close = source.reading(config.price_series, 0)
        if close is not None:
            venue.fill_market_orders(close)
        for handle, price in venue.drain_fills():
            engine.on_fill(handle, price)
    return engine


def main(argv: Optional[List[str]] = None) -> None:
    """Parse command-line arguments and dispatch to the appropriate mode."""
    parser = argparse.ArgumentParser(description="Bar-driven strategy engine")
    parser.add_argument('mode', choices=['validate', 'replay'], help="Operating mode")
    parser.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    parser.add_argument('--data', default=None, help="CSV of precomputed series (overrides data.csv_path)")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    config = load_config(args.config)
    frame = load_indicator_csv(args.data or config.data.csv_path, config.data.timezone)
    source = FrameIndicatorSource(frame)

    if args.mode == 'validate':
        check_series(source, config.required_series())
        logging.info("Configuration %s is valid for %d bars.", config.name, len(frame))
        return

    logging.info("Replaying %d bars through %s...", len(frame), config.name)
    engine = replay(config, source)
    exits = [e for e in engine.events if e.kind in ('exit_filled', 'stop_filled')]
    logging.info("Replay complete: %d events, %d closed positions, final phase %s.",
                 len(engine.events), len(exits), engine.current_state().phase.name)


if __name__ == '__main__':
    main()
