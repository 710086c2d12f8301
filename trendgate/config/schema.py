"""
Configuration schema and loader.

This module defines dataclasses that mirror the structure of a
strategy YAML file (see the presets under ``configs/``).  The helper
`load_config()` reads a YAML file from disk, fills missing fields with
defaults and returns a validated `StrategyConfig`.

Each preset strategy variant (Aroon, MACD, stochastic, moving
average stacks...) is a configuration of the same rule vocabulary:

- a *condition* compares a series against a constant or another
  series at some lookback,
- a *crossing* checks that a series moved through a reference between
  bar 1 and bar 0,
- a *sustained* condition must hold on every bar of the lookback window
  ``[1..window]`` before the trend filter opens.

Configurations are immutable once built; invalid values raise
`ConfigurationError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union
import yaml

from ..errors import ConfigurationError

Reference = Union[float, str]

OPERATORS = ('>', '>=', '<', '<=', '==')
CROSS_DIRECTIONS = ('up', 'down')
DIRECTIONS = ('long', 'short')
STOP_MODES = ('amount', 'percent')


@dataclass(frozen=True)
class ConditionConfig:
    """``series[lookback] <op> ref[lookback]``.

    Attributes
    ----------
    series : str
        Name of the indicator series on the left-hand side.
    op : str
        One of ``>``, ``>=``, ``<``, ``<=``, ``==``.
    ref : float or str
        A constant, or the name of another series read at the same
        lookback.
    lookback : int
        Bar offset, ``0`` being the current bar.
    """

    series: str
    op: str = '>='
    ref: Reference = 0.0
    lookback: int = 0


@dataclass(frozen=True)
class CrossingConfig:
    """`series` crosses `ref` between bar 1 and bar 0.

    An upward crossing requires ``series[1] < ref[1]`` and
    ``series[0] >= ref[0]``; a downward one mirrors it.  Touching the
    reference on the current bar counts as crossing.
    """

    series: str
    direction: str = 'up'
    ref: Reference = 0.0


@dataclass(frozen=True)
class SustainedConfig:
    """A condition that must hold on each of the last `window` bars."""

    condition: ConditionConfig
    window: int = 3


Rule = Union[ConditionConfig, CrossingConfig]


@dataclass(frozen=True)
class TrendFilterConfig:
    conditions: Tuple[ConditionConfig, ...] = ()
    sustained: Optional[SustainedConfig] = None


@dataclass(frozen=True)
class ExitConfig:
    """Rules that close an open position.

    Attributes
    ----------
    filter : tuple of ConditionConfig
        If any of these holds, the filter has reversed and the position
        is closed ("filter signal cancelled the position").
    trigger : tuple of rules
        All must hold on the same bar for an opposing-trigger exit.  An
        empty tuple disables the trigger exit.
    """

    filter: Tuple[ConditionConfig, ...] = ()
    trigger: Tuple[Rule, ...] = ()


@dataclass(frozen=True)
class RiskConfig:
    """Protective stop, take profit and breakeven parameters.

    Attributes
    ----------
    stop_mode : str
        ``amount`` places the initial stop where the position would lose
        `stop_amount` money; ``percent`` places it `stop_pct` percent
        away from the close.
    stop_amount : float
        Money lost at the initial stop.
    stop_pct : float
        Percent distance of the stop in ``percent`` mode.
    fallback_stop_pct : float
        Percent distance used when the money level cannot be found.
    take_profit_amount : float, optional
        Money gained at the take-profit level.  ``None`` disables it.
    breakeven_pct : float, optional
        Favorable move, in percent of the entry price, that shifts the
        stop to breakeven.  ``None`` disables the shift.
    breakeven_offset_ticks : int
        Ticks of profit locked in by the breakeven stop.
    max_search_steps : int
        Upper bound of the tick scan used to find money levels.
    """

    stop_mode: str = 'amount'
    stop_amount: float = 3000.0
    stop_pct: float = 2.0
    fallback_stop_pct: float = 2.0
    take_profit_amount: Optional[float] = None
    breakeven_pct: Optional[float] = None
    breakeven_offset_ticks: int = 100
    max_search_steps: int = 100_000


@dataclass(frozen=True)
class InstrumentConfig:
    """Contract specification.

    Attributes
    ----------
    symbol : str
        Instrument symbol, informational only.
    point_value : float
        Money per point of price movement for one contract.
    tick_size : float
        Minimum price increment; every order price is a multiple of it.
    """

    symbol: str = "NQ"
    point_value: float = 20.0
    tick_size: float = 0.25


@dataclass(frozen=True)
class DataConfig:
    """Where the replay harness finds precomputed series.

    Attributes
    ----------
    csv_path : str
        CSV file with a ``time`` column and one column per series.
    timezone : str
        IANA timezone used to localise naive timestamps.
    """

    csv_path: str = "data/series.csv"
    timezone: str = "UTC"


@dataclass(frozen=True)
class StrategyConfig:
    """Root configuration of one strategy instance."""

    name: str = "strategy"
    direction: str = 'long'
    quantity: int = 1
    max_open_position: int = 1
    price_series: str = 'close'
    instrument: InstrumentConfig = field(default_factory=InstrumentConfig)
    trend_filter: TrendFilterConfig = field(default_factory=TrendFilterConfig)
    trigger: Tuple[Rule, ...] = ()
    exit: ExitConfig = field(default_factory=ExitConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    data: DataConfig = field(default_factory=DataConfig)

    def validate(self) -> 'StrategyConfig':
        """Raise `ConfigurationError` if any parameter is invalid."""
        if self.direction not in DIRECTIONS:
            raise ConfigurationError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")
        if self.quantity <= 0:
            raise ConfigurationError(f"quantity must be positive, got {self.quantity}")
        if self.max_open_position <= 0 or self.quantity > self.max_open_position:
            raise ConfigurationError(
                f"quantity {self.quantity} exceeds max_open_position {self.max_open_position}"
            )
        if self.instrument.tick_size <= 0:
            raise ConfigurationError(f"tick_size must be positive, got {self.instrument.tick_size}")
        if self.instrument.point_value <= 0:
            raise ConfigurationError(f"point_value must be positive, got {self.instrument.point_value}")
        if not self.trigger:
            raise ConfigurationError("at least one trigger rule is required")

        risk = self.risk
        if risk.stop_mode not in STOP_MODES:
            raise ConfigurationError(f"stop_mode must be one of {STOP_MODES}, got {risk.stop_mode!r}")
        if risk.stop_amount <= 0:
            raise ConfigurationError(f"stop_amount must be positive, got {risk.stop_amount}")
        if risk.stop_pct <= 0 or risk.fallback_stop_pct <= 0:
            raise ConfigurationError("stop_pct and fallback_stop_pct must be positive")
        if risk.take_profit_amount is not None and risk.take_profit_amount <= 0:
            raise ConfigurationError(f"take_profit_amount must be positive, got {risk.take_profit_amount}")
        if risk.breakeven_pct is not None and risk.breakeven_pct <= 0:
            raise ConfigurationError(f"breakeven_pct must be positive, got {risk.breakeven_pct}")
        if risk.breakeven_offset_ticks < 0:
            raise ConfigurationError("breakeven_offset_ticks cannot be negative")
        if risk.max_search_steps <= 0:
            raise ConfigurationError("max_search_steps must be positive")

        rules: List[Rule] = list(self.trend_filter.conditions) + list(self.trigger)
        rules += list(self.exit.filter) + list(self.exit.trigger)
        sustained = self.trend_filter.sustained
        if sustained is not None:
            if sustained.window < 1:
                raise ConfigurationError(f"sustained window must be >= 1, got {sustained.window}")
            rules.append(sustained.condition)
        for rule in rules:
            _validate_rule(rule)
        return self

    def required_series(self) -> FrozenSet[str]:
        """Names of every series the rules read."""
        names = {self.price_series}
        rules: List[Rule] = list(self.trend_filter.conditions) + list(self.trigger)
        rules += list(self.exit.filter) + list(self.exit.trigger)
        if self.trend_filter.sustained is not None:
            rules.append(self.trend_filter.sustained.condition)
        for rule in rules:
            names.add(rule.series)
            if isinstance(rule.ref, str):
                names.add(rule.ref)
        return frozenset(names)


def _validate_rule(rule: Rule) -> None:
    if not rule.series:
        raise ConfigurationError("rule without a series name")
    if isinstance(rule, ConditionConfig):
        if rule.op not in OPERATORS:
            raise ConfigurationError(f"unknown operator {rule.op!r} for series {rule.series!r}")
        if rule.lookback < 0:
            raise ConfigurationError(f"negative lookback for series {rule.series!r}")
    elif rule.direction not in CROSS_DIRECTIONS:
        raise ConfigurationError(f"crossing direction must be one of {CROSS_DIRECTIONS}, got {rule.direction!r}")


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _ref(value: Any) -> Reference:
    if isinstance(value, str):
        return value
    return float(value)


def _parse_condition(raw: Dict[str, Any]) -> ConditionConfig:
    try:
        return ConditionConfig(
            series=str(raw['series']),
            op=str(raw.get('op', '>=')),
            ref=_ref(raw.get('ref', 0.0)),
            lookback=int(raw.get('lookback', 0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid condition {raw!r}: {exc}") from exc


def _parse_rule(raw: Dict[str, Any]) -> Rule:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"rule must be a mapping, got {raw!r}")
    if 'cross' not in raw:
        return _parse_condition(raw)
    try:
        return CrossingConfig(
            series=str(raw['series']),
            direction=str(raw['cross']),
            ref=_ref(raw.get('ref', 0.0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid crossing {raw!r}: {exc}") from exc


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


DEFAULTS: Dict[str, Any] = {
    'name': "strategy",
    'direction': 'long',
    'quantity': 1,
    'max_open_position': 1,
    'price_series': 'close',
    'instrument': {
        'symbol': "NQ",
        'point_value': 20.0,
        'tick_size': 0.25,
    },
    'trend_filter': {
        'conditions': [],
        'sustained': None,
    },
    'trigger': [],
    'exit': {
        'filter': [],
        'trigger': [],
    },
    'risk': {
        'stop_mode': 'amount',
        'stop_amount': 3000.0,
        'stop_pct': 2.0,
        'fallback_stop_pct': 2.0,
        'take_profit_amount': None,
        'breakeven_pct': None,
        'breakeven_offset_ticks': 100,
        'max_search_steps': 100_000,
    },
    'data': {
        'csv_path': "data/series.csv",
        'timezone': "UTC",
    },
}


def config_from_dict(raw: Dict[str, Any]) -> StrategyConfig:
    """Build and validate a `StrategyConfig` from a plain dictionary."""
    merged = _merge_dict(DEFAULTS, raw or {})

    sustained_raw = merged['trend_filter'].get('sustained')
    sustained: Optional[SustainedConfig] = None
    if sustained_raw:
        sustained_raw = dict(sustained_raw)
        window = sustained_raw.pop('window', 3)
        sustained = SustainedConfig(condition=_parse_condition(sustained_raw), window=int(window))

    trend_cfg = TrendFilterConfig(
        conditions=tuple(_parse_condition(c) for c in merged['trend_filter'].get('conditions') or []),
        sustained=sustained,
    )
    exit_cfg = ExitConfig(
        filter=tuple(_parse_condition(c) for c in merged['exit'].get('filter') or []),
        trigger=tuple(_parse_rule(r) for r in merged['exit'].get('trigger') or []),
    )

    risk = merged['risk']
    try:
        risk_cfg = RiskConfig(
            stop_mode=str(risk['stop_mode']),
            stop_amount=float(risk['stop_amount']),
            stop_pct=float(risk['stop_pct']),
            fallback_stop_pct=float(risk['fallback_stop_pct']),
            take_profit_amount=_optional_float(risk.get('take_profit_amount')),
            breakeven_pct=_optional_float(risk.get('breakeven_pct')),
            breakeven_offset_ticks=int(risk['breakeven_offset_ticks']),
            max_search_steps=int(risk['max_search_steps']),
        )
        instrument_cfg = InstrumentConfig(
            symbol=str(merged['instrument']['symbol']),
            point_value=float(merged['instrument']['point_value']),
            tick_size=float(merged['instrument']['tick_size']),
        )
        cfg = StrategyConfig(
            name=str(merged['name']),
            direction=str(merged['direction']).lower(),
            quantity=int(merged['quantity']),
            max_open_position=int(merged['max_open_position']),
            price_series=str(merged['price_series']),
            instrument=instrument_cfg,
            trend_filter=trend_cfg,
            trigger=tuple(_parse_rule(r) for r in merged.get('trigger') or []),
            exit=exit_cfg,
            risk=risk_cfg,
            data=DataConfig(**merged['data']),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc
    return cfg.validate()


def load_config(path: str) -> StrategyConfig:
    """Load a strategy configuration from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    StrategyConfig
        A validated configuration.  Missing fields are filled with the
        defaults defined in the dataclasses.
    """
    with open(path, "r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}
    return config_from_dict(raw)
