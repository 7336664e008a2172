# strategy_search/backtest/metrics.py
"""
Performance metrics for one simulated run.

Input contracts:
- equity: sequence of account values, first point = initial capital
- daily_returns: one simple return per simulated bar
- trades: closed ``Trade`` records (``pnl`` and ``holding_days`` are used)

Conventions:
- standard deviations are population (ddof=0); with fewer than two returns the
  std-dev is taken as 1 so ratios stay finite
- Sharpe = (mean * 252) / (std * sqrt(252)), no risk-free rate
- Sortino uses the root-mean-square of the negative returns (1 when there are none)
- CAGR compounds total return over len(daily_returns) / 252 years
- max drawdown is a positive fraction of the running peak

All functions are numpy-only and safe on empty inputs.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, List, Mapping, Sequence

import numpy as np

from strategy_search.backtest.results import RegimePerformance, Trade

TRADING_DAYS = 252

logger = logging.getLogger("backtest.metrics")


def _to_float(x, default=0.0):
    try:
        v = float(x)
    except (TypeError, ValueError):
        return default
    if np.isnan(v) or np.isinf(v):
        return default
    return v


def _as_array(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=float)


# ---------- Path metrics ----------

def max_drawdown(equity: Sequence[float] | np.ndarray) -> float:
    """max over the curve of (running_peak - equity) / running_peak."""
    eq = _as_array(equity)
    if len(eq) == 0:
        return 0.0
    peak = np.maximum.accumulate(eq)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peak > 0, (peak - eq) / peak, 0.0)
    return float(max(0.0, np.nanmax(dd)))


def total_return(equity: Sequence[float] | np.ndarray, initial_capital: float) -> float:
    eq = _as_array(equity)
    if len(eq) == 0 or initial_capital <= 0:
        return 0.0
    return float((eq[-1] - initial_capital) / initial_capital)


def _std(r: np.ndarray) -> float:
    if len(r) < 2:
        return 1.0
    return float(r.std(ddof=0))


def sharpe_ratio(daily_returns: Sequence[float] | np.ndarray) -> float:
    r = _as_array(daily_returns)
    mean = float(r.mean()) if len(r) else 0.0
    sd = _std(r)
    if sd <= 0:
        return 0.0
    return float((mean * TRADING_DAYS) / (sd * math.sqrt(TRADING_DAYS)))


def sortino_ratio(daily_returns: Sequence[float] | np.ndarray) -> float:
    r = _as_array(daily_returns)
    mean = float(r.mean()) if len(r) else 0.0
    neg = r[r < 0]
    down = float(math.sqrt(np.mean(neg * neg))) if len(neg) else 1.0
    if down <= 0:
        return 0.0
    return float((mean * TRADING_DAYS) / (down * math.sqrt(TRADING_DAYS)))


def cagr(total_ret: float, periods: int) -> float:
    years = periods / TRADING_DAYS
    if years <= 0:
        return 0.0
    growth = 1.0 + float(total_ret)
    if growth <= 0:
        return -1.0
    try:
        return float(growth ** (1.0 / years) - 1.0)
    except OverflowError:
        logger.debug("CAGR overflow for total_return=%s over %s periods", total_ret, periods)
        return 0.0


def calmar_ratio(cagr_value: float, mdd: float) -> float:
    if mdd <= 0:
        return 0.0
    return float(cagr_value / mdd)


# ---------- Trade summaries ----------

def profit_factor(pnls: Iterable[float]) -> float:
    """gross profit / |gross loss|; inf when there are only winners, 0 with no profit."""
    arr = np.array([_to_float(p) for p in pnls], dtype=float)
    gp = float(arr[arr > 0].sum())
    gl = float(abs(arr[arr <= 0].sum()))
    if gl > 0:
        return gp / gl
    return math.inf if gp > 0 else 0.0


def summarize_trades(trades: Sequence[Trade]) -> Dict[str, float]:
    if not trades:
        return {"trades": 0, "win_rate": 0.0, "profit_factor": 0.0, "avg_holding_days": 0.0}
    pnls = [t.pnl for t in trades]
    wins = sum(1 for p in pnls if p > 0)
    holds = np.array([_to_float(t.holding_days) for t in trades], dtype=float)
    return {
        "trades": int(len(trades)),
        "win_rate": float(wins / len(trades)),
        "profit_factor": profit_factor(pnls),
        "avg_holding_days": float(holds.mean()),
    }


def regime_performance(returns_by_regime: Mapping[str, List[float]]) -> Dict[str, RegimePerformance]:
    """Per-regime (sum of daily returns, regime-local Sharpe) for regimes with data."""
    out: Dict[str, RegimePerformance] = {}
    for regime, rets in returns_by_regime.items():
        if not rets:
            continue
        r = _as_array(rets)
        sd = float(r.std(ddof=0))
        mean = float(r.mean())
        sharpe = (mean * TRADING_DAYS) / (sd * math.sqrt(TRADING_DAYS)) if sd > 0 else 0.0
        out[regime] = RegimePerformance(total_return=float(r.sum()), sharpe=float(sharpe), days=int(len(r)))
    return out


__all__ = [
    "TRADING_DAYS",
    "max_drawdown",
    "total_return",
    "sharpe_ratio",
    "sortino_ratio",
    "cagr",
    "calmar_ratio",
    "profit_factor",
    "summarize_trades",
    "regime_performance",
]
