"""
Indicator reading source.

Indicator values are computed elsewhere and consumed here as named
numeric series.  `FrameIndicatorSource` wraps a `pandas.DataFrame`
(one row per bar, one column per series, oldest row first) and exposes
the lookback accessor used by the signal evaluator:

```
reading(name, lookback) -> float or None
```

A lookback of ``0`` is the current bar.  Lookbacks beyond the
available history, and NaN cells, yield ``None``.

The CSV loader expects the schema

```
time,close,filter_sma,stoch_d,...
```

where only `time` is mandatory.  Timestamps are converted to the
configured timezone.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Iterable, Mapping, Optional, Protocol
import pandas as pd

from ..errors import ConfigurationError


class IndicatorSource(Protocol):
    """What the engine needs from an indicator provider."""

    def reading(self, name: str, lookback: int = 0) -> Optional[float]:
        ...

    def has_series(self, name: str) -> bool:
        ...


class FrameIndicatorSource:
    """Serve precomputed series from a DataFrame, one bar at a time.

    Parameters
    ----------
    frame : pandas.DataFrame
        Rows ordered oldest first.  The index is used as the bar
        timestamp when it is a `DatetimeIndex`.
    columns : iterable of str, optional
        Series names of an initially empty source that is extended
        live with `append()`.
    max_rows : int, optional
        Rows kept by `append()`.  Older rows are dropped, so lookbacks
        beyond `max_rows - 1` read as missing.
    """

    def __init__(self, frame: Optional[pd.DataFrame] = None, columns: Optional[Iterable[str]] = None,
                 max_rows: Optional[int] = None) -> None:
        if frame is None:
            frame = pd.DataFrame(columns=list(columns or []), dtype=float)
        if max_rows is not None and max_rows < 1:
            raise ValueError(f"max_rows must be positive, got {max_rows}")
        self.frame = frame.copy()
        self.max_rows = max_rows
        self._cursor = -1
        self._dropped = 0

    @property
    def bar_index(self) -> int:
        """Position of the current bar, ``-1`` before the first bar."""
        return self._cursor + self._dropped if self._cursor >= 0 else -1

    @property
    def remaining(self) -> int:
        return len(self.frame) - self._cursor - 1

    @property
    def timestamp(self) -> Optional[pd.Timestamp]:
        if self._cursor < 0 or not isinstance(self.frame.index, pd.DatetimeIndex):
            return None
        return self.frame.index[self._cursor]

    def has_series(self, name: str) -> bool:
        return name in self.frame.columns

    def advance(self) -> bool:
        """Move to the next row.  Returns `False` when the frame is exhausted."""
        if self._cursor + 1 >= len(self.frame):
            return False
        self._cursor += 1
        return True

    def append(self, values: Mapping[str, float], timestamp: Optional[pd.Timestamp] = None) -> None:
        """Extend the frame by one bar and make it the current bar."""
        index = [timestamp] if timestamp is not None else [self._dropped + len(self.frame)]
        row = pd.DataFrame([dict(values)], index=index)
        if self.frame.empty:
            columns = list(dict.fromkeys(list(self.frame.columns) + list(row.columns)))
            self.frame = row.reindex(columns=columns)
        else:
            self.frame = pd.concat([self.frame, row])
        if self.max_rows is not None and len(self.frame) > self.max_rows:
            excess = len(self.frame) - self.max_rows
            self.frame = self.frame.iloc[excess:]
            self._dropped += excess
        self._cursor = len(self.frame) - 1

    def reading(self, name: str, lookback: int = 0) -> Optional[float]:
        """Value of series `name` `lookback` bars before the current one."""
        if name not in self.frame.columns:
            raise KeyError(f"Unknown series: {name}")
        idx = self._cursor - lookback
        if lookback < 0 or idx < 0:
            return None
        value = self.frame[name].iat[idx]
        if value is None:
            return None
        value = float(value)
        if math.isnan(value):
            return None
        return value


def check_series(source: IndicatorSource, names: Iterable[str]) -> None:
    """Raise `ConfigurationError` if any required series is missing."""
    missing = sorted(name for name in names if not source.has_series(name))
    if missing:
        raise ConfigurationError(f"Indicator source lacks required series: {missing}")


def load_indicator_csv(path: str, timezone: str = "UTC") -> pd.DataFrame:
    """Load precomputed indicator series from a CSV file.

    Parameters
    ----------
    path : str
        CSV file with a `time` column.
    timezone : str
        IANA timezone used to localise naive timestamps.

    Returns
    -------
    pandas.DataFrame
        Numeric columns indexed by timezone-aware timestamps, sorted
        oldest first.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Indicator CSV not found: {file_path}")

    df = pd.read_csv(file_path)
    if "time" not in df.columns:
        raise ValueError(f"Unrecognized CSV format in {file_path}: missing 'time' column")
    df["time"] = pd.to_datetime(df["time"], errors="raise")
    df = df.set_index("time").sort_index()
    if df.index.tz is None:
        df.index = df.index.tz_localize(timezone)
    else:
        df.index = df.index.tz_convert(timezone)
    return df.apply(pd.to_numeric, errors="coerce")
