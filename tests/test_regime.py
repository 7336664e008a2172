from __future__ import annotations

import numpy as np

from strategy_search.backtest.regime import REGIMES, UNKNOWN, detect_market_regime, regime_series
from strategy_search.config import RegimeThresholds
from tests._market_fixtures import noisy_closes, rising_closes


def test_short_history_is_unknown() -> None:
    closes = rising_closes(80)
    assert detect_market_regime(closes, lookback=50) == UNKNOWN
    labels = regime_series(rising_closes(150), 50)
    assert all(label == UNKNOWN for label in labels[:99])
    assert labels[99] != UNKNOWN


def test_trend_labels() -> None:
    assert detect_market_regime(rising_closes(200), lookback=50) == "strong_bull"
    falling = 300.0 - 0.5 * np.arange(200)
    assert detect_market_regime(falling, lookback=50) == "strong_bear"
    assert detect_market_regime(np.full(200, 100.0), lookback=50) == "ranging"


def test_thresholds_are_configurable() -> None:
    closes = rising_closes(200)
    strict = RegimeThresholds(trend_momentum=5.0, ranging_momentum=0.01)
    assert detect_market_regime(closes, lookback=50, thresholds=strict) == "mild_bull"
    impatient = RegimeThresholds(min_extra_history=1)
    assert regime_series(closes, 50, impatient)[50] != UNKNOWN


def test_series_matches_point_in_time_detection() -> None:
    closes = noisy_closes(260, seed=2, vol=0.02)
    labels = regime_series(closes, 30)
    for i in (90, 150, 259):
        assert labels[i] == detect_market_regime(closes[: i + 1], lookback=30)
    assert set(labels) <= set(REGIMES)
