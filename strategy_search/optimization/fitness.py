# strategy_search/optimization/fitness.py
"""
Selection fitness for a backtest result.

- fewer than ``MIN_TRADES`` trades: -1000 + trades (statistically meaningless)
- drawdown above ``MAX_DRAWDOWN``: -500 * drawdown (catastrophic risk)
- otherwise:
    25*Sharpe + 15*Sortino + 20*Calmar + 15*win_rate + 15*total_return
    + 10*(1 - drawdown) + 10*min(profit_factor, 3) + 5*min(trades / 300, 1)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from strategy_search.backtest.results import BacktestResult

MIN_TRADES = 20
MAX_DRAWDOWN = 0.35
FAILED_EVALUATION_FITNESS = -10_000.0


@dataclass(frozen=True)
class FitnessWeights:
    sharpe: float = 25.0
    sortino: float = 15.0
    calmar: float = 20.0
    win_rate: float = 15.0
    total_return: float = 15.0
    drawdown: float = 10.0
    profit_factor: float = 10.0
    profit_factor_cap: float = 3.0
    activity: float = 5.0
    activity_trades: float = 300.0


DEFAULT_WEIGHTS = FitnessWeights()


def fitness_components(result: BacktestResult, weights: FitnessWeights = DEFAULT_WEIGHTS) -> Dict[str, float]:
    w = weights
    return {
        "sharpe": result.sharpe * w.sharpe,
        "sortino": result.sortino * w.sortino,
        "calmar": result.calmar * w.calmar,
        "win_rate": result.win_rate * w.win_rate,
        "total_return": result.total_return * w.total_return,
        "drawdown": (1.0 - result.max_drawdown) * w.drawdown,
        "profit_factor": min(result.profit_factor, w.profit_factor_cap) * w.profit_factor,
        "activity": min(result.trades / w.activity_trades, 1.0) * w.activity,
    }


def calculate_fitness(result: BacktestResult, weights: FitnessWeights = DEFAULT_WEIGHTS) -> float:
    if result.trades < MIN_TRADES:
        return -1000.0 + result.trades
    if result.max_drawdown > MAX_DRAWDOWN:
        return -500.0 * result.max_drawdown
    return float(sum(fitness_components(result, weights).values()))


__all__ = [
    "MIN_TRADES",
    "MAX_DRAWDOWN",
    "FAILED_EVALUATION_FITNESS",
    "FitnessWeights",
    "fitness_components",
    "calculate_fitness",
]
