from __future__ import annotations

import numpy as np
import pytest

from strategy_search.backtest import indicators as ind


def test_sma_undefined_until_full_window() -> None:
    s = ind.sma([1, 2, 3, 4, 5], 3)
    assert s.first_valid == 2
    assert s.at(0) is None and s.at(1) is None
    assert s.at(2) == pytest.approx(2.0)
    assert s.at(4) == pytest.approx(4.0)
    assert list(s.mask()) == [False, False, True, True, True]


def test_sma_shorter_than_period_is_all_undefined() -> None:
    s = ind.sma([1.0, 2.0], 5)
    assert len(s) == 2
    assert not s.defined(0) and not s.defined(1)


def test_ema_recurrence_seeded_with_first_value() -> None:
    prices = [10.0, 11.0, 12.0, 11.0]
    k = 2.0 / (3 + 1.0)
    expected = [10.0]
    for p in prices[1:]:
        expected.append((p - expected[-1]) * k + expected[-1])
    e = ind.ema(prices, 3)
    assert e.first_valid == 0
    assert np.allclose(e.values, expected)


def test_rsi_extremes_and_flat_window() -> None:
    rising = ind.rsi(np.arange(1.0, 31.0), 14)
    assert rising.first_valid == 14
    assert rising.at(13) is None
    assert rising.at(20) == pytest.approx(100.0)

    flat = ind.rsi(np.full(30, 100.0), 14)
    assert flat.at(29) == pytest.approx(50.0)

    falling = ind.rsi(np.arange(30.0, 0.0, -1.0), 14)
    assert falling.at(25) == pytest.approx(0.0)


def test_rsi_bounded_on_noisy_series() -> None:
    rng = np.random.default_rng(3)
    closes = 100 + np.cumsum(rng.normal(0, 1, 200))
    values = ind.rsi(closes, 14).values[14:]
    assert np.all((values >= 0.0) & (values <= 100.0))


def test_true_range_uses_previous_close() -> None:
    tr = ind.true_range([11, 12, 10], [9, 11, 8], [10, 11.5, 9])
    assert tr[0] == pytest.approx(2.0)  # high - low on the first bar
    assert tr[1] == pytest.approx(2.0)  # |high - prev close|
    assert tr[2] == pytest.approx(3.5)  # |low - prev close|


def test_atr_constant_range() -> None:
    n = 40
    closes = np.full(n, 50.0)
    a = ind.atr(closes + 1.0, closes - 1.0, closes, 14)
    assert a.first_valid == 13
    assert a.at(12) is None
    assert a.at(13) == pytest.approx(2.0)
    assert a.at(n - 1) == pytest.approx(2.0)


def test_macd_shares_first_index_and_histogram_is_difference() -> None:
    rng = np.random.default_rng(11)
    closes = 100 + np.cumsum(rng.normal(0, 1, 120))
    m = ind.macd(closes, 12, 26, 9)
    assert m.macd.first_valid == m.signal.first_valid == m.histogram.first_valid == 25
    assert m.histogram.at(24) is None
    i = 80
    assert m.histogram.at(i) == pytest.approx(m.macd.at(i) - m.signal.at(i))


def test_bollinger_population_std() -> None:
    closes = [1.0, 2.0, 3.0, 4.0]
    bb = ind.bollinger(closes, 4, 2.0)
    sd = float(np.std(closes))
    assert bb.middle.at(3) == pytest.approx(2.5)
    assert bb.upper.at(3) == pytest.approx(2.5 + 2 * sd)
    assert bb.lower.at(3) == pytest.approx(2.5 - 2 * sd)
    assert bb.upper.at(2) is None


def test_no_lookahead() -> None:
    rng = np.random.default_rng(5)
    closes = 100 + np.cumsum(rng.normal(0, 1, 150))
    highs, lows = closes + 1.0, closes - 1.0
    cut = 90
    full = {
        "sma": ind.sma(closes, 20).values,
        "rsi": ind.rsi(closes, 14).values,
        "atr": ind.atr(highs, lows, closes, 14).values,
        "macd": ind.macd(closes, 12, 26, 9).histogram.values,
        "bb": ind.bollinger(closes, 20, 2.0).upper.values,
    }
    part = {
        "sma": ind.sma(closes[:cut], 20).values,
        "rsi": ind.rsi(closes[:cut], 14).values,
        "atr": ind.atr(highs[:cut], lows[:cut], closes[:cut], 14).values,
        "macd": ind.macd(closes[:cut], 12, 26, 9).histogram.values,
        "bb": ind.bollinger(closes[:cut], 20, 2.0).upper.values,
    }
    for name in full:
        assert np.allclose(full[name][:cut], part[name], equal_nan=True), name
