from __future__ import annotations

import math

import numpy as np
import pytest

from strategy_search.backtest import metrics as M
from strategy_search.backtest.results import Trade


def _trade(pnl: float, hold: int = 5) -> Trade:
    return Trade(
        symbol="AAA",
        entry_idx=0,
        exit_idx=hold,
        entry_price=100.0,
        exit_price=100.0 + pnl,
        shares=1,
        holding_days=hold,
        pnl=pnl,
        exit_reason="target",
    )


def test_max_drawdown_on_increasing_curve_is_zero() -> None:
    assert M.max_drawdown(np.linspace(100, 200, 50)) == 0.0
    assert M.max_drawdown([]) == 0.0


def test_max_drawdown_matches_running_peak_definition() -> None:
    eq = [100, 120, 90, 130, 65, 140]
    expected = max((max(eq[: i + 1]) - v) / max(eq[: i + 1]) for i, v in enumerate(eq))
    assert M.max_drawdown(eq) == pytest.approx(expected)
    assert M.max_drawdown(eq) == pytest.approx(0.5)


def test_sharpe_and_sortino() -> None:
    r = np.array([0.01, -0.02, 0.015, 0.005, -0.01])
    expected = (r.mean() * 252) / (r.std() * math.sqrt(252))
    assert M.sharpe_ratio(r) == pytest.approx(expected)
    neg = r[r < 0]
    down = math.sqrt(np.mean(neg * neg))
    assert M.sortino_ratio(r) == pytest.approx((r.mean() * 252) / (down * math.sqrt(252)))


def test_ratios_stay_finite_on_degenerate_inputs() -> None:
    assert M.sharpe_ratio([]) == 0.0
    assert M.sharpe_ratio([0.0, 0.0, 0.0]) == 0.0
    assert math.isfinite(M.sortino_ratio([0.01, 0.02]))
    assert M.calmar_ratio(0.2, 0.0) == 0.0
    assert M.cagr(-1.5, 252) == -1.0
    assert M.cagr(0.1, 0) == 0.0


def test_cagr_one_year() -> None:
    assert M.cagr(0.21, 252) == pytest.approx(0.21)
    assert M.cagr(0.21, 504) == pytest.approx(0.1)


def test_profit_factor_cases() -> None:
    assert M.profit_factor([10, -5]) == pytest.approx(2.0)
    assert M.profit_factor([10, 5]) == math.inf
    assert M.profit_factor([-1, -2]) == 0.0
    assert M.profit_factor([]) == 0.0


def test_summarize_trades() -> None:
    stats = M.summarize_trades([_trade(10, 2), _trade(-5, 4), _trade(3, 6)])
    assert stats["trades"] == 3
    assert stats["win_rate"] == pytest.approx(2 / 3)
    assert stats["profit_factor"] == pytest.approx(13 / 5)
    assert stats["avg_holding_days"] == pytest.approx(4.0)
    assert M.summarize_trades([])["trades"] == 0


def test_regime_performance_skips_empty_buckets() -> None:
    perf = M.regime_performance({"ranging": [0.01, -0.01, 0.02], "strong_bull": []})
    assert set(perf) == {"ranging"}
    assert perf["ranging"].days == 3
    assert perf["ranging"].total_return == pytest.approx(0.02)
