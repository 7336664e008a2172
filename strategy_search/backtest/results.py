# strategy_search/backtest/results.py
"""
Result records produced by the backtest engine.

CONTRACT
- ``Trade``: one closed round trip; ``exit_reason`` is "stop", "target" or "end".
- ``BacktestResult``: immutable summary of one run. ``trades`` is the closed
  trade count; ``trade_log`` holds the trades themselves. ``equity`` starts at
  the initial capital and gains one point per simulated bar; ``daily_returns``
  has one entry per simulated bar.
- ``empty_result()``: the sentinel for a run without usable reference data
  (total return -1, ratios -10, drawdown 1, no trades, empty curves).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


def _json_float(x: float) -> Optional[float]:
    x = float(x)
    return x if math.isfinite(x) else None


@dataclass(frozen=True)
class Trade:
    symbol: str
    entry_idx: int
    exit_idx: int
    entry_price: float
    exit_price: float
    shares: int
    holding_days: int
    pnl: float
    exit_reason: str = "end"

    @property
    def return_pct(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return self.exit_price / self.entry_price - 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "entry_idx": self.entry_idx,
            "exit_idx": self.exit_idx,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "shares": self.shares,
            "holding_days": self.holding_days,
            "pnl": self.pnl,
            "return_pct": self.return_pct,
            "exit_reason": self.exit_reason,
        }


@dataclass(frozen=True)
class RegimePerformance:
    total_return: float
    sharpe: float
    days: int = 0


@dataclass(frozen=True)
class BacktestResult:
    total_return: float
    sharpe: float
    sortino: float
    calmar: float
    max_drawdown: float
    win_rate: float
    profit_factor: float
    trades: int
    avg_holding_days: float
    equity: Tuple[float, ...] = ()
    daily_returns: Tuple[float, ...] = ()
    regime_performance: Mapping[str, RegimePerformance] = field(default_factory=dict)
    cagr: float = 0.0
    trade_log: Tuple[Trade, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.trades == 0 and not self.equity

    def summary(self) -> Dict[str, Any]:
        """Scalar metrics only (no curves)."""
        return {
            "total_return": _json_float(self.total_return),
            "sharpe": _json_float(self.sharpe),
            "sortino": _json_float(self.sortino),
            "calmar": _json_float(self.calmar),
            "cagr": _json_float(self.cagr),
            "max_drawdown": _json_float(self.max_drawdown),
            "win_rate": _json_float(self.win_rate),
            "profit_factor": _json_float(self.profit_factor),
            "trades": int(self.trades),
            "avg_holding_days": _json_float(self.avg_holding_days),
        }

    def to_dict(self, include_curves: bool = True) -> Dict[str, Any]:
        out = self.summary()
        out["regime_performance"] = {
            k: {"return": _json_float(v.total_return), "sharpe": _json_float(v.sharpe), "days": v.days}
            for k, v in self.regime_performance.items()
        }
        if include_curves:
            out["equity"] = [_json_float(x) for x in self.equity]
            out["daily_returns"] = [_json_float(x) for x in self.daily_returns]
            out["trade_log"] = [t.to_dict() for t in self.trade_log]
        return out


def empty_result() -> BacktestResult:
    return BacktestResult(
        total_return=-1.0,
        sharpe=-10.0,
        sortino=-10.0,
        calmar=-10.0,
        max_drawdown=1.0,
        win_rate=0.0,
        profit_factor=0.0,
        trades=0,
        avg_holding_days=0.0,
    )


__all__ = ["Trade", "RegimePerformance", "BacktestResult", "empty_result"]
