# strategy_search/backtest/regime.py
"""
Coarse market-regime labels from a reference symbol's trailing closes.

A label needs ``lookback + min_extra_history`` closes; shorter histories are
``unknown``. With enough history:

- momentum = close / close ``lookback - 1`` bars ago - 1
- volatility = annualized RMS of the daily returns inside the lookback window
- trending bull: momentum above the trend cut-off with close > SMA20 > SMA50
  (``volatile_bull`` when volatility exceeds the trend volatility cut-off)
- trending bear: the mirror image
- otherwise ``high_volatility``, then ``ranging`` for flat momentum, then mild bull/bear
"""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from strategy_search.backtest import indicators as ind
from strategy_search.config import RegimeThresholds

TRADING_DAYS = 252

UNKNOWN = "unknown"
REGIMES = (
    "strong_bull",
    "volatile_bull",
    "strong_bear",
    "volatile_bear",
    "high_volatility",
    "ranging",
    "mild_bull",
    "mild_bear",
    UNKNOWN,
)


def _classify(
    momentum: float,
    volatility: float,
    close: float,
    sma20: float,
    sma50: float,
    t: RegimeThresholds,
) -> str:
    if momentum > t.trend_momentum and close > sma20 > sma50:
        return "volatile_bull" if volatility > t.trend_volatility else "strong_bull"
    if momentum < -t.trend_momentum and close < sma20 < sma50:
        return "volatile_bear" if volatility > t.trend_volatility else "strong_bear"
    if volatility > t.high_volatility:
        return "high_volatility"
    if abs(momentum) < t.ranging_momentum:
        return "ranging"
    return "mild_bull" if momentum > 0 else "mild_bear"


def regime_series(
    closes: Sequence[float] | np.ndarray,
    lookback: int,
    thresholds: RegimeThresholds | None = None,
) -> List[str]:
    """Regime label at every index, each using only closes up to that index."""
    t = thresholds or RegimeThresholds()
    c = np.asarray(closes, dtype=float)
    n = len(c)
    labels = [UNKNOWN] * n
    first = lookback + t.min_extra_history - 1
    if lookback < 2 or n <= first:
        return labels

    sma20 = ind.sma(c, 20).values
    sma50 = ind.sma(c, 50).values
    with np.errstate(divide="ignore", invalid="ignore"):
        rets = np.diff(c) / c[:-1]
        # rets[j] is the return into bar j + 1; the window for bar i is rets[i-lookback+1 : i]
        ms = sliding_window_view(rets * rets, lookback - 1).mean(axis=1)
        momentum = np.full(n, np.nan)
        momentum[lookback - 1:] = c[lookback - 1:] / c[: n - lookback + 1] - 1.0

    for i in range(first, n):
        vol = math.sqrt(ms[i - lookback + 1]) * math.sqrt(TRADING_DAYS)
        labels[i] = _classify(float(momentum[i]), vol, float(c[i]), float(sma20[i]), float(sma50[i]), t)
    return labels


def detect_market_regime(
    closes: Sequence[float] | np.ndarray,
    lookback: int = 50,
    thresholds: RegimeThresholds | None = None,
) -> str:
    """Regime label for the last close of ``closes``."""
    labels = regime_series(closes, lookback, thresholds)
    return labels[-1] if labels else UNKNOWN


__all__ = ["REGIMES", "UNKNOWN", "regime_series", "detect_market_regime"]
