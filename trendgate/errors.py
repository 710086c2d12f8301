"""
Domain exceptions for the trading core.

Only `ConfigurationError` is fatal: it is raised while an engine is
being constructed and leaves the instance unusable.  Everything else
is recoverable at the bar boundary; the engine records it in the
event log and carries on with the next bar.
"""

from __future__ import annotations

from typing import Optional


class TrendgateError(Exception):
    """Base class for all errors raised by the package."""


class ConfigurationError(TrendgateError):
    """Invalid parameter or missing indicator series at construction."""


class InsufficientHistory(TrendgateError):
    """An indicator lookback is not available yet."""

    def __init__(self, name: str, lookback: int) -> None:
        self.name = name
        self.lookback = lookback
        super().__init__(f"No value for series '{name}' at lookback {lookback}")


class UnreachableLevel(TrendgateError):
    """The target P&L level could not be found within the search bound."""

    def __init__(self, message: str, steps: int = 0) -> None:
        self.steps = steps
        super().__init__(message)


class VenueRejection(TrendgateError):
    """The execution venue refused an order request."""

    def __init__(self, message: str, handle: Optional[str] = None) -> None:
        self.handle = handle
        super().__init__(message)


class DuplicateFillNotification(TrendgateError):
    """A fill arrived for an order that is no longer pending."""

    def __init__(self, handle: str, price: float) -> None:
        self.handle = handle
        self.price = price
        super().__init__(f"Fill for order {handle} at {price} is not pending")
