# strategy_search/backtest/signals.py
"""
Composite entry signal built from eight bounded factors.

Factors (each in [-1, 1]):
- technical:   RSI zone (+0.8 oversold / -0.8 overbought / linear between) plus
               +/-0.3 for the direction of the MACD histogram
- momentum:    10x short + 5x medium rate of change
- volatility:  0.5 - 20 * ATR% (calm names score higher)
- volume:      half the excess of today's volume over the prior 20-day average
- sentiment:   10x the 5-day return
- pattern:     +0.6 below the lower Bollinger band, -0.6 above the upper band
- breadth:     +/-0.5 for price vs. the short SMA plus +/-0.5 vs. the medium SMA
- correlation: mean reversion toward the Bollinger midline

score = sum(factor * weight); confidence = share of factors agreeing beyond
+/-0.2 times |score|. Before ``SIGNAL_WARMUP`` bars the signal is neutral.

``compute_signals`` evaluates every index of a symbol in one vectorized pass; it
never reads ahead, so its value at ``i`` equals ``generate_signal(bars, p, i)``.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from strategy_search.backtest import indicators as ind
from strategy_search.data.market import SymbolSeries

SIGNAL_WARMUP = 60
VOLUME_LOOKBACK = 20
SENTIMENT_LOOKBACK = 5
AGREEMENT_LEVEL = 0.2

FACTOR_NAMES = (
    "technical",
    "momentum",
    "volatility",
    "volume",
    "sentiment",
    "pattern",
    "breadth",
    "correlation",
)


@dataclass(frozen=True)
class StrategyParams:
    """Typed view of one genome's values, resolved once per backtest."""

    max_position_pct: float = 0.05
    max_positions: int = 20
    atr_mult_stop: float = 1.5
    atr_mult_target: float = 4.0
    buy_threshold: float = 0.12
    confidence_min: float = 0.28

    technical_weight: float = 0.2
    momentum_weight: float = 0.2
    volatility_weight: float = 0.1
    volume_weight: float = 0.1
    sentiment_weight: float = 0.1
    pattern_weight: float = 0.1
    breadth_weight: float = 0.1
    correlation_weight: float = 0.1

    rsi_period: int = 14
    rsi_oversold: int = 30
    rsi_overbought: int = 70
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_period: int = 20
    bb_std_dev: float = 2.0
    atr_period: int = 14
    sma_short: int = 10
    sma_medium: int = 50
    regime_lookback: int = 50
    momentum_short: int = 5
    momentum_medium: int = 20

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "StrategyParams":
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in values or values[f.name] is None:
                continue
            raw = values[f.name]
            kwargs[f.name] = int(round(float(raw))) if f.type in ("int", int) else float(raw)
        return cls(**kwargs)

    def weights(self) -> np.ndarray:
        return np.array([
            self.technical_weight,
            self.momentum_weight,
            self.volatility_weight,
            self.volume_weight,
            self.sentiment_weight,
            self.pattern_weight,
            self.breadth_weight,
            self.correlation_weight,
        ])


@dataclass(frozen=True)
class Signal:
    score: float
    confidence: float


NEUTRAL = Signal(0.0, 0.0)


@dataclass(frozen=True)
class SignalSeries:
    score: np.ndarray
    confidence: np.ndarray
    atr: ind.IndicatorSeries
    factors: np.ndarray  # shape (len(FACTOR_NAMES), n)

    def at(self, i: int) -> Signal:
        return Signal(float(self.score[i]), float(self.confidence[i]))


def _clip(x: np.ndarray) -> np.ndarray:
    return np.clip(x, -1.0, 1.0)


def _lagged_ratio(c: np.ndarray, lag: int) -> np.ndarray:
    """c[i] / c[i - lag] - 1, zero where i < lag."""
    out = np.zeros(len(c))
    if lag <= 0 or lag >= len(c):
        return out
    with np.errstate(divide="ignore", invalid="ignore"):
        out[lag:] = c[lag:] / c[:-lag] - 1.0
    return np.nan_to_num(out, nan=0.0, posinf=0.0, neginf=0.0)


def _technical(c: np.ndarray, p: StrategyParams) -> np.ndarray:
    r = ind.rsi(c, p.rsi_period)
    rv = r.values
    tech = np.where(
        rv < p.rsi_oversold,
        0.8,
        np.where(rv > p.rsi_overbought, -0.8, (50.0 - rv) / 50.0),
    )
    tech = np.where(r.mask(), tech, 0.0)

    hist = ind.macd(c, p.macd_fast, p.macd_slow, p.macd_signal).histogram
    direction = np.zeros(len(c))
    start = hist.first_valid + 1
    if start < len(c):
        direction[start:] = 0.3 * np.sign(np.diff(hist.values[start - 1:]))
    return _clip(tech + np.nan_to_num(direction))


def _momentum(c: np.ndarray, p: StrategyParams) -> np.ndarray:
    out = _clip(_lagged_ratio(c, p.momentum_short) * 10.0 + _lagged_ratio(c, p.momentum_medium) * 5.0)
    ready = max(p.momentum_short, p.momentum_medium)
    out[: min(ready, len(c))] = 0.0
    return out


def _volatility(c: np.ndarray, a: ind.IndicatorSeries) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        pct = a.values / c
    ok = a.mask() & (a.values > 0.0) & (c > 0.0)
    return np.where(ok, _clip(0.5 - pct * 20.0), 0.0)


def _volume(v: np.ndarray) -> np.ndarray:
    n = len(v)
    out = np.zeros(n)
    if n <= VOLUME_LOOKBACK:
        return out
    prior_avg = sliding_window_view(v, VOLUME_LOOKBACK).mean(axis=1)[: n - VOLUME_LOOKBACK]
    cur = v[VOLUME_LOOKBACK:]
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = cur / prior_avg
    out[VOLUME_LOOKBACK:] = np.where(prior_avg > 0.0, _clip((ratio - 1.0) * 0.5), 0.0)
    return out


def _bands(c: np.ndarray, bb: ind.BollingerBands) -> Tuple[np.ndarray, np.ndarray]:
    ok = bb.middle.mask()
    upper, mid, lower = bb.upper.values, bb.middle.values, bb.lower.values

    pattern = np.where(c < lower, 0.6, np.where(c > upper, -0.6, 0.0))
    pattern = np.where(ok, pattern, 0.0)

    width = upper - mid
    width = np.where(width != 0.0, width, 1.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        deviation = (c - mid) / width
    correlation = np.where(ok, _clip(-deviation * 0.5), 0.0)
    return pattern, correlation


def _breadth(c: np.ndarray, p: StrategyParams) -> np.ndarray:
    short = ind.sma(c, p.sma_short)
    medium = ind.sma(c, p.sma_medium)
    ok = short.mask() & medium.mask()
    raw = 0.5 * np.sign(c - short.values) + 0.5 * np.sign(c - medium.values)
    return np.where(ok, _clip(np.nan_to_num(raw)), 0.0)


def compute_signals(bars: SymbolSeries, params: StrategyParams) -> SignalSeries:
    """Score and confidence for every bar of ``bars`` (neutral during warm-up)."""
    p = params
    c = np.asarray(bars.close, dtype=float)
    n = len(c)

    a = ind.atr(bars.high, bars.low, c, p.atr_period)
    pattern, correlation = _bands(c, ind.bollinger(c, p.bb_period, p.bb_std_dev))

    factors = np.vstack([
        _technical(c, p),
        _momentum(c, p),
        _volatility(c, a),
        _volume(np.asarray(bars.volume, dtype=float)),
        _clip(_lagged_ratio(c, SENTIMENT_LOOKBACK) * 10.0),
        pattern,
        _breadth(c, p),
        correlation,
    ])

    score = p.weights() @ factors
    positive = (factors > AGREEMENT_LEVEL).sum(axis=0)
    negative = (factors < -AGREEMENT_LEVEL).sum(axis=0)
    agreement = np.maximum(positive, negative) / float(len(FACTOR_NAMES))
    confidence = agreement * np.abs(score)

    warm = min(SIGNAL_WARMUP, n)
    score[:warm] = 0.0
    confidence[:warm] = 0.0
    return SignalSeries(score=score, confidence=confidence, atr=a, factors=factors)


def generate_signal(bars: SymbolSeries, params: StrategyParams, idx: int) -> Signal:
    """Signal for one symbol at local index ``idx`` using bars up to and including ``idx``."""
    if idx < SIGNAL_WARMUP:
        return NEUTRAL
    if idx >= len(bars):
        raise IndexError(f"{bars.symbol}: index {idx} beyond {len(bars)} bars")
    return compute_signals(bars.head(idx + 1), params).at(idx)


__all__ = [
    "SIGNAL_WARMUP",
    "FACTOR_NAMES",
    "StrategyParams",
    "Signal",
    "SignalSeries",
    "compute_signals",
    "generate_signal",
]
