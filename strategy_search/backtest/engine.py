# strategy_search/backtest/engine.py
"""
Multi-symbol daily backtest driven by the composite signal.

CONTRACT
- ``run_backtest(market, params, start_idx, end_idx)`` walks reference-calendar
  indices ``start_idx .. end_idx - 1``. For each bar:
    1. label the regime from the reference closes up to the bar
    2. exits: stop if low <= stop (checked first), else target if high >= target;
       the fill is at the bound
    3. entries (while below ``max_positions``): symbols without a position whose
       signal clears ``buy_threshold`` and ``confidence_min`` and whose ATR is
       defined, best score first; shares = floor(cash * max_position_pct / close);
       stop/target = close -/+ ATR * multiple
    4. mark equity = cash + open shares at the close; append the bar's return to
       the curve and to the regime's bucket
  Positions still open after the last bar are closed at the last close inside
  the window.
- A reference series shorter than ``end_idx`` (or an empty window) returns
  ``empty_result()`` instead of raising.
- Pure function of its inputs: identical inputs give identical results.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from strategy_search.backtest import metrics as M
from strategy_search.backtest.regime import regime_series
from strategy_search.backtest.results import BacktestResult, Trade, empty_result
from strategy_search.backtest.signals import SIGNAL_WARMUP, SignalSeries, StrategyParams, compute_signals
from strategy_search.config import RegimeThresholds
from strategy_search.data.market import MarketData, SymbolSeries

logger = logging.getLogger("backtest.engine")

DEFAULT_CAPITAL = 100_000.0


@dataclass
class _Position:
    entry_price: float
    shares: int
    entry_idx: int
    stop: float
    target: float


def _resolve_params(params: StrategyParams | Mapping[str, Any]) -> StrategyParams:
    if isinstance(params, StrategyParams):
        return params
    return StrategyParams.from_mapping(params)


def _close_at(series: SymbolSeries, idx: int) -> Optional[float]:
    local = series.local_index(idx)
    if local is None:
        return None
    return float(series.close[local])


def run_backtest(
    market: MarketData,
    params: StrategyParams | Mapping[str, Any],
    start_idx: int = 60,
    end_idx: Optional[int] = None,
    *,
    initial_capital: float = DEFAULT_CAPITAL,
    regime_thresholds: Optional[RegimeThresholds] = None,
) -> BacktestResult:
    p = _resolve_params(params)
    if market is None or market.reference_symbol not in market:
        return empty_result()
    ref = market.reference
    if end_idx is None:
        end_idx = len(ref) + ref.offset
    if len(ref) + ref.offset < end_idx or end_idx <= start_idx or start_idx < 0:
        logger.debug(
            "Reference %s too short for window [%s, %s): %d bars",
            market.reference_symbol, start_idx, end_idx, len(ref),
        )
        return empty_result()

    # signals never read ahead, so one pass per symbol over its full history is safe
    signals: Dict[str, SignalSeries] = {
        sym: compute_signals(series, p) for sym, series in market.series.items()
    }
    regimes = regime_series(ref.close, p.regime_lookback, regime_thresholds)

    cash = float(initial_capital)
    equity: List[float] = [cash]
    daily_returns: List[float] = []
    regime_returns: Dict[str, List[float]] = {}
    trades: List[Trade] = []
    positions: Dict[str, _Position] = {}

    for idx in range(start_idx, end_idx):
        regime = regimes[idx - ref.offset]
        bucket = regime_returns.setdefault(regime, [])

        # ---- exits ----
        for sym in list(positions):
            pos = positions[sym]
            series = market[sym]
            local = series.local_index(idx)
            if local is None:
                continue
            exit_price: Optional[float] = None
            reason = ""
            if series.low[local] <= pos.stop:
                exit_price, reason = pos.stop, "stop"
            elif series.high[local] >= pos.target:
                exit_price, reason = pos.target, "target"
            if exit_price is None:
                continue
            cash += pos.shares * exit_price
            trades.append(Trade(
                symbol=sym,
                entry_idx=pos.entry_idx,
                exit_idx=idx,
                entry_price=pos.entry_price,
                exit_price=exit_price,
                shares=pos.shares,
                holding_days=idx - pos.entry_idx,
                pnl=(exit_price - pos.entry_price) * pos.shares,
                exit_reason=reason,
            ))
            del positions[sym]

        # ---- entries ----
        if len(positions) < p.max_positions:
            candidates = []
            for sym, series in market.series.items():
                if sym in positions:
                    continue
                local = series.local_index(idx)
                if local is None or local < SIGNAL_WARMUP:
                    continue
                sig = signals[sym]
                score = float(sig.score[local])
                if score < p.buy_threshold or float(sig.confidence[local]) < p.confidence_min:
                    continue
                atr_now = sig.atr.at(local)
                if atr_now is None:
                    continue
                candidates.append((score, sym, float(series.close[local]), atr_now))

            # stable: equal scores keep universe order
            candidates.sort(key=lambda c: c[0], reverse=True)
            for score, sym, price, atr_now in candidates[: p.max_positions - len(positions)]:
                if price <= 0:
                    continue
                shares = int(math.floor(cash * p.max_position_pct / price))
                cost = shares * price
                if shares <= 0 or cost > cash:
                    continue
                positions[sym] = _Position(
                    entry_price=price,
                    shares=shares,
                    entry_idx=idx,
                    stop=price - atr_now * p.atr_mult_stop,
                    target=price + atr_now * p.atr_mult_target,
                )
                cash -= cost

        # ---- mark to market ----
        marked = cash
        for sym, pos in positions.items():
            px = _close_at(market[sym], idx)
            if px is not None:
                marked += pos.shares * px
        prev = equity[-1]
        equity.append(marked)
        ret = (marked - prev) / prev if prev != 0 else 0.0
        daily_returns.append(ret)
        bucket.append(ret)

    # ---- force-close at the end of the window ----
    for sym, pos in positions.items():
        series = market[sym]
        last_local = min(end_idx - 1 - series.offset, len(series) - 1)
        if last_local < 0:
            continue
        last_price = float(series.close[last_local])
        trades.append(Trade(
            symbol=sym,
            entry_idx=pos.entry_idx,
            exit_idx=end_idx - 1,
            entry_price=pos.entry_price,
            exit_price=last_price,
            shares=pos.shares,
            holding_days=end_idx - pos.entry_idx,
            pnl=(last_price - pos.entry_price) * pos.shares,
            exit_reason="end",
        ))

    tr = M.total_return(equity, initial_capital)
    mdd = M.max_drawdown(equity)
    cagr_value = M.cagr(tr, len(daily_returns))
    trade_stats = M.summarize_trades(trades)

    result = BacktestResult(
        total_return=tr,
        sharpe=M.sharpe_ratio(daily_returns),
        sortino=M.sortino_ratio(daily_returns),
        calmar=M.calmar_ratio(cagr_value, mdd),
        max_drawdown=mdd,
        win_rate=float(trade_stats["win_rate"]),
        profit_factor=float(trade_stats["profit_factor"]),
        trades=int(trade_stats["trades"]),
        avg_holding_days=float(trade_stats["avg_holding_days"]),
        equity=tuple(equity),
        daily_returns=tuple(daily_returns),
        regime_performance=M.regime_performance(regime_returns),
        cagr=cagr_value,
        trade_log=tuple(trades),
    )
    if logger.isEnabledFor(logging.DEBUG) and _env_flag("BACKTEST_TRACE"):
        logger.debug(
            "backtest window=[%d,%d) trades=%d ret=%.4f sharpe=%.3f mdd=%.3f",
            start_idx, end_idx, result.trades, result.total_return, result.sharpe, result.max_drawdown,
        )
    return result


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


__all__ = ["run_backtest", "empty_result", "DEFAULT_CAPITAL"]
