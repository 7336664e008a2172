from __future__ import annotations

import numpy as np
import pytest

from strategy_search.backtest.signals import (
    FACTOR_NAMES,
    NEUTRAL,
    SIGNAL_WARMUP,
    StrategyParams,
    compute_signals,
    generate_signal,
)
from strategy_search.data.market import SymbolSeries
from tests._market_fixtures import make_bars, noisy_closes, rising_closes


def _series(closes, spread: float = 0.25) -> SymbolSeries:
    return SymbolSeries.from_frame("TEST", make_bars(closes, spread=spread))


def test_neutral_before_warmup() -> None:
    bars = _series(rising_closes(120))
    p = StrategyParams()
    for i in (0, 10, SIGNAL_WARMUP - 1):
        assert generate_signal(bars, p, i) == NEUTRAL
    sig = compute_signals(bars, p)
    assert np.all(sig.score[:SIGNAL_WARMUP] == 0.0)
    assert np.all(sig.confidence[:SIGNAL_WARMUP] == 0.0)


def test_generate_signal_rejects_index_past_history() -> None:
    bars = _series(rising_closes(80))
    with pytest.raises(IndexError):
        generate_signal(bars, StrategyParams(), 80)


def test_flat_series_has_zero_confidence() -> None:
    bars = _series(np.full(200, 100.0), spread=0.0)
    sig = compute_signals(bars, StrategyParams())
    assert np.all(sig.confidence == 0.0)
    assert np.all(sig.score == 0.0)
    assert generate_signal(bars, StrategyParams(), 150).confidence == 0.0


def test_factors_bounded_and_confidence_in_unit_interval() -> None:
    bars = _series(noisy_closes(300, vol=0.03))
    sig = compute_signals(bars, StrategyParams())
    assert sig.factors.shape == (len(FACTOR_NAMES), 300)
    assert np.all(np.abs(sig.factors) <= 1.0)
    assert np.all((sig.confidence >= 0.0) & (sig.confidence <= 1.0))
    assert np.all(np.abs(sig.score) <= StrategyParams().weights().sum() + 1e-12)


def test_vectorized_matches_point_in_time() -> None:
    bars = _series(noisy_closes(200, seed=21))
    p = StrategyParams()
    sig = compute_signals(bars, p)
    for i in (60, 75, 120, 199):
        point = generate_signal(bars, p, i)
        assert point.score == pytest.approx(sig.score[i], abs=1e-12)
        assert point.confidence == pytest.approx(sig.confidence[i], abs=1e-12)


def test_rising_series_scores_positive_on_trend_factors() -> None:
    bars = _series(rising_closes(200))
    p = StrategyParams(
        technical_weight=0.0,
        momentum_weight=0.5,
        volatility_weight=0.0,
        volume_weight=0.0,
        sentiment_weight=0.0,
        pattern_weight=0.0,
        breadth_weight=0.5,
        correlation_weight=0.0,
    )
    s = generate_signal(bars, p, 100)
    assert s.score > 0.5
    assert s.confidence > 0.0


def test_params_from_mapping_rounds_integer_fields() -> None:
    p = StrategyParams.from_mapping({"rsi_period": 13.0, "bb_std_dev": 2.2, "unknown": 1})
    assert p.rsi_period == 13 and isinstance(p.rsi_period, int)
    assert p.bb_std_dev == pytest.approx(2.2)
    assert p.macd_fast == 12
