from __future__ import annotations

import numpy as np
import pytest

from strategy_search.backtest.engine import run_backtest
from strategy_search.backtest.signals import StrategyParams
from tests._market_fixtures import market_from_closes, noisy_closes, rising_closes

TREND_ONLY = dict(
    technical_weight=0.0,
    momentum_weight=0.5,
    volatility_weight=0.0,
    volume_weight=0.0,
    sentiment_weight=0.0,
    pattern_weight=0.0,
    breadth_weight=0.5,
    correlation_weight=0.0,
)


def _noisy_market():
    return market_from_closes(
        {
            "SPY": noisy_closes(320, seed=1),
            "AAA": noisy_closes(320, seed=2, vol=0.025),
            "BBB": noisy_closes(320, seed=3, drift=0.001),
            "CCC": noisy_closes(320, seed=4, vol=0.03),
        }
    )


def _loose_params(**overrides) -> StrategyParams:
    base = dict(buy_threshold=0.05, confidence_min=0.0, max_position_pct=0.2, max_positions=3)
    base.update(overrides)
    return StrategyParams(**base)


def test_short_reference_returns_empty_result() -> None:
    market = market_from_closes({"SPY": rising_closes(50), "AAA": rising_closes(50)})
    res = run_backtest(market, StrategyParams(), start_idx=60, end_idx=100)
    assert res.total_return == -1.0
    assert res.max_drawdown == 1.0
    assert res.trades == 0
    assert res.sharpe == -10.0 and res.sortino == -10.0 and res.calmar == -10.0


def test_empty_window_returns_empty_result() -> None:
    market = market_from_closes({"SPY": rising_closes(200)})
    assert run_backtest(market, StrategyParams(), start_idx=100, end_idx=100).is_empty


def test_backtest_is_deterministic() -> None:
    market = _noisy_market()
    p = _loose_params()
    a = run_backtest(market, p, 60, 320)
    b = run_backtest(market, p, 60, 320)
    assert a == b
    assert a.equity == b.equity
    assert a.trade_log == b.trade_log


def test_flat_prices_open_no_positions() -> None:
    flat = np.full(250, 100.0)
    market = market_from_closes({"SPY": flat, "AAA": flat}, spread=0.0)
    res = run_backtest(market, StrategyParams(), 60, 250)
    assert res.trades == 0
    assert res.total_return == pytest.approx(0.0)
    assert res.max_drawdown == 0.0
    assert len(res.equity) == 250 - 60 + 1


def test_rising_single_symbol_holds_until_end() -> None:
    market = market_from_closes({"SPY": rising_closes(300)})
    p = StrategyParams(
        buy_threshold=0.0,
        confidence_min=0.0,
        max_position_pct=0.5,
        max_positions=1,
        atr_mult_stop=1.5,
        atr_mult_target=1000.0,
        **TREND_ONLY,
    )
    res = run_backtest(market, p, 60, 300)
    assert res.trades == 1
    assert res.total_return > 0.0
    trade = res.trade_log[0]
    assert trade.entry_idx == 60
    assert trade.exit_reason == "end"
    assert trade.exit_idx == 299
    assert trade.exit_price == pytest.approx(100.0 + 0.5 * 299)
    assert res.max_drawdown == 0.0


def test_stop_has_priority_and_fills_at_bound() -> None:
    closes = rising_closes(200)
    closes[120:] = 100.0  # gap down through the stop
    market = market_from_closes({"SPY": closes})
    p = StrategyParams(
        buy_threshold=0.0,
        confidence_min=0.0,
        max_position_pct=0.5,
        max_positions=1,
        atr_mult_stop=1.5,
        atr_mult_target=1000.0,
        **TREND_ONLY,
    )
    res = run_backtest(market, p, 60, 121)
    first = res.trade_log[0]
    assert first.exit_reason == "stop"
    assert first.exit_idx == 120
    assert first.exit_price > closes[120]  # filled at the stop level, not the bar's low
    assert first.pnl < 0


def test_equity_and_returns_shapes_and_drawdown_consistency() -> None:
    market = _noisy_market()
    res = run_backtest(market, _loose_params(), 60, 320)
    assert len(res.equity) == len(res.daily_returns) + 1 == 320 - 60 + 1
    eq = np.asarray(res.equity)
    peak = np.maximum.accumulate(eq)
    assert res.max_drawdown == pytest.approx(float(((peak - eq) / peak).max()))
    assert 0.0 <= res.win_rate <= 1.0
    assert sum(p.days for p in res.regime_performance.values()) == 320 - 60


def test_position_cap_is_respected() -> None:
    market = _noisy_market()
    res = run_backtest(market, _loose_params(max_positions=1), 60, 320)
    trades = sorted(res.trade_log, key=lambda t: t.entry_idx)
    # with one slot, a new position never opens before the previous one closed
    for prev, nxt in zip(trades, trades[1:]):
        assert nxt.entry_idx >= prev.exit_idx


def test_accepts_plain_mapping_params() -> None:
    market = _noisy_market()
    a = run_backtest(market, _loose_params(), 60, 200)
    b = run_backtest(market, dict(buy_threshold=0.05, confidence_min=0.0, max_position_pct=0.2, max_positions=3), 60, 200)
    assert a == b
