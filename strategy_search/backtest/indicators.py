# strategy_search/backtest/indicators.py
"""
Stateless technical indicators over daily price arrays.

Every function returns an ``IndicatorSeries``: a float array the same length as
its input plus ``first_valid``, the first index with enough history. Reading a
point through ``at(i)`` yields ``None`` before that index, so "not yet
available" is an explicit state instead of NaN leaking into arithmetic.

No value at index ``i`` depends on inputs after ``i``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy.lib.stride_tricks import sliding_window_view

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


@dataclass(frozen=True)
class IndicatorSeries:
    values: np.ndarray
    first_valid: int

    def __len__(self) -> int:
        return int(len(self.values))

    def defined(self, i: int) -> bool:
        if i < self.first_valid or i < 0 or i >= len(self.values):
            return False
        return bool(np.isfinite(self.values[i]))

    def at(self, i: int) -> Optional[float]:
        """Value at ``i`` or ``None`` while the indicator is still warming up."""
        if not self.defined(i):
            return None
        return float(self.values[i])

    def mask(self) -> np.ndarray:
        """Boolean array marking defined points."""
        out = np.isfinite(self.values)
        out[: min(self.first_valid, len(out))] = False
        return out


@dataclass(frozen=True)
class MACDResult:
    macd: IndicatorSeries
    signal: IndicatorSeries
    histogram: IndicatorSeries


@dataclass(frozen=True)
class BollingerBands:
    upper: IndicatorSeries
    middle: IndicatorSeries
    lower: IndicatorSeries


def _as_array(data: ArrayLike) -> np.ndarray:
    return np.asarray(data, dtype=float)


def _undefined(n: int) -> IndicatorSeries:
    return IndicatorSeries(np.full(n, np.nan), n)


def _trailing_windows(x: np.ndarray, period: int) -> np.ndarray:
    # one row per complete window, row k ends at index k + period - 1
    return sliding_window_view(x, period)


def _wilder(seed: float, tail: np.ndarray, period: int) -> np.ndarray:
    """Wilder smoothing: seed, then avg = (avg*(n-1) + x) / n for each x in tail."""
    s = pd.Series(np.concatenate(([seed], tail)))
    return s.ewm(alpha=1.0 / period, adjust=False).mean().to_numpy()


def sma(data: ArrayLike, period: int) -> IndicatorSeries:
    x = _as_array(data)
    n = len(x)
    if period <= 0 or n < period:
        return _undefined(n)
    values = np.full(n, np.nan)
    values[period - 1:] = _trailing_windows(x, period).mean(axis=1)
    return IndicatorSeries(values, period - 1)


def ema(data: ArrayLike, period: int) -> IndicatorSeries:
    """EMA seeded with the first value: ema[i] = (x[i] - ema[i-1]) * k + ema[i-1], k = 2 / (period + 1)."""
    x = _as_array(data)
    n = len(x)
    if n == 0:
        return _undefined(0)
    k = 2.0 / (period + 1.0)
    out = np.empty(n)
    prev = float(x[0])
    out[0] = prev
    for i, price in enumerate(x[1:].tolist(), start=1):
        prev = (price - prev) * k + prev
        out[i] = prev
    return IndicatorSeries(out, 0)


def rsi(closes: ArrayLike, period: int) -> IndicatorSeries:
    """Wilder RSI, seeded with the simple mean of the first ``period`` changes.

    100 when the average loss is zero and there has been a gain, 50 for a
    completely flat window.
    """
    c = _as_array(closes)
    n = len(c)
    if period <= 0 or n < period + 1:
        return _undefined(n)

    delta = np.diff(c)
    gains = np.clip(delta, 0.0, None)
    losses = np.clip(-delta, 0.0, None)

    avg_gain = _wilder(float(gains[:period].mean()), gains[period:], period)
    avg_loss = _wilder(float(losses[:period].mean()), losses[period:], period)

    with np.errstate(divide="ignore", invalid="ignore"):
        out = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    out = np.where(avg_loss == 0.0, np.where(avg_gain == 0.0, 50.0, 100.0), out)

    values = np.full(n, np.nan)
    values[period:] = out
    return IndicatorSeries(values, period)


def true_range(highs: ArrayLike, lows: ArrayLike, closes: ArrayLike) -> np.ndarray:
    h = _as_array(highs)
    lo = _as_array(lows)
    c = _as_array(closes)
    if len(c) == 0:
        return np.empty(0)
    tr = h - lo
    prev_close = c[:-1]
    tr[1:] = np.maximum.reduce([
        tr[1:],
        np.abs(h[1:] - prev_close),
        np.abs(lo[1:] - prev_close),
    ])
    return tr


def atr(highs: ArrayLike, lows: ArrayLike, closes: ArrayLike, period: int) -> IndicatorSeries:
    """Wilder ATR of the true range, first defined at ``period - 1``."""
    tr = true_range(highs, lows, closes)
    n = len(tr)
    if period <= 0 or n < period:
        return _undefined(n)
    smoothed = _wilder(float(tr[:period].mean()), tr[period:], period)
    values = np.full(n, np.nan)
    values[period - 1:] = smoothed
    return IndicatorSeries(values, period - 1)


def macd(closes: ArrayLike, fast: int, slow: int, signal: int) -> MACDResult:
    """MACD line, signal line and histogram.

    The signal line is the EMA of the MACD line starting at ``slow - 1``; all three
    series share that first defined index.
    """
    c = _as_array(closes)
    n = len(c)
    if slow <= 0 or n < slow:
        empty = _undefined(n)
        return MACDResult(empty, empty, empty)

    start = slow - 1
    line = ema(c, fast).values - ema(c, slow).values
    line_vals = np.full(n, np.nan)
    line_vals[start:] = line[start:]
    sig_vals = np.full(n, np.nan)
    sig_vals[start:] = ema(line[start:], signal).values
    return MACDResult(
        IndicatorSeries(line_vals, start),
        IndicatorSeries(sig_vals, start),
        IndicatorSeries(line_vals - sig_vals, start),
    )


def bollinger(closes: ArrayLike, period: int, std_dev: float) -> BollingerBands:
    """SMA midline +/- ``std_dev`` population standard deviations."""
    c = _as_array(closes)
    n = len(c)
    if period <= 0 or n < period:
        empty = _undefined(n)
        return BollingerBands(empty, empty, empty)
    windows = _trailing_windows(c, period)
    first = period - 1
    mid = np.full(n, np.nan)
    sd = np.full(n, np.nan)
    mid[first:] = windows.mean(axis=1)
    sd[first:] = windows.std(axis=1, ddof=0)
    return BollingerBands(
        IndicatorSeries(mid + std_dev * sd, first),
        IndicatorSeries(mid, first),
        IndicatorSeries(mid - std_dev * sd, first),
    )


__all__ = [
    "IndicatorSeries",
    "MACDResult",
    "BollingerBands",
    "sma",
    "ema",
    "rsi",
    "true_range",
    "atr",
    "macd",
    "bollinger",
]
