# strategy_search/data/market.py
"""
Immutable, calendar-aligned price history shared by every backtest in a run.

``MarketData`` holds one ``SymbolSeries`` per tradable symbol, all aligned to
the reference symbol's trading calendar. A symbol that lists later than the
reference starts at ``offset`` on that calendar; its own arrays are indexed
locally (``local = idx - offset``). Interior gaps are forward-filled with a
zero-volume bar at the previous close.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from strategy_search.errors import DataInsufficiencyError

logger = logging.getLogger("data.market")

OHLCV_COLUMNS = ("open", "high", "low", "close", "volume")


@dataclass(frozen=True, eq=False)
class SymbolSeries:
    symbol: str
    dates: pd.DatetimeIndex
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray
    offset: int = 0

    def __len__(self) -> int:
        return int(len(self.close))

    def local_index(self, idx: int) -> Optional[int]:
        """Map a reference-calendar index to this series, ``None`` if outside it."""
        local = idx - self.offset
        if local < 0 or local >= len(self.close):
            return None
        return local

    def head(self, n: int) -> "SymbolSeries":
        """First ``n`` bars (what was known at local index ``n - 1``)."""
        return SymbolSeries(
            symbol=self.symbol,
            dates=self.dates[:n],
            open=self.open[:n],
            high=self.high[:n],
            low=self.low[:n],
            close=self.close[:n],
            volume=self.volume[:n],
            offset=self.offset,
        )

    @classmethod
    def from_frame(cls, symbol: str, df: pd.DataFrame, offset: int = 0) -> "SymbolSeries":
        arrays = {}
        for col in OHLCV_COLUMNS:
            arr = df[col].to_numpy(dtype=float, copy=True)
            arr.setflags(write=False)
            arrays[col] = arr
        return cls(symbol=symbol, dates=pd.DatetimeIndex(df.index), offset=int(offset), **arrays)


@dataclass(frozen=True, eq=False)
class MarketData:
    calendar: pd.DatetimeIndex
    reference_symbol: str
    series: Mapping[str, SymbolSeries]

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(self.series.keys())

    @property
    def reference(self) -> SymbolSeries:
        return self.series[self.reference_symbol]

    def __len__(self) -> int:
        return int(len(self.calendar))

    def __contains__(self, symbol: object) -> bool:
        return symbol in self.series

    def __getitem__(self, symbol: str) -> SymbolSeries:
        return self.series[symbol]

    @classmethod
    def from_frames(
        cls,
        frames: Mapping[str, pd.DataFrame],
        reference_symbol: str = "SPY",
    ) -> "MarketData":
        """
        Align normalized OHLCV frames to the reference calendar.
        The reference falls back to the first frame when ``reference_symbol`` is absent.
        """
        usable = {s: df for s, df in frames.items() if df is not None and not df.empty}
        if not usable:
            raise DataInsufficiencyError("No price history supplied")
        ref = reference_symbol if reference_symbol in usable else next(iter(usable))
        if ref != reference_symbol:
            logger.warning("Reference symbol %s unavailable; using %s", reference_symbol, ref)

        calendar = pd.DatetimeIndex(usable[ref].index)
        series: Dict[str, SymbolSeries] = {}
        for symbol, df in usable.items():
            aligned, offset = _align_to_calendar(df, calendar)
            if aligned is None:
                logger.warning("Dropping %s: no overlap with the %s calendar", symbol, ref)
                continue
            series[symbol] = SymbolSeries.from_frame(symbol, aligned, offset)
        return cls(calendar=calendar, reference_symbol=ref, series=series)


def _align_to_calendar(df: pd.DataFrame, calendar: pd.DatetimeIndex) -> Tuple[Optional[pd.DataFrame], int]:
    frame = df.loc[~df.index.duplicated(keep="last"), list(OHLCV_COLUMNS)]
    frame = frame.reindex(calendar)
    valid = frame["close"].notna().to_numpy()
    if not valid.any():
        return None, 0
    first = int(np.argmax(valid))
    frame = frame.iloc[first:].copy()

    close = frame["close"].ffill()
    gap = frame["close"].isna()
    for col in ("open", "high", "low"):
        frame[col] = frame[col].where(~gap, close)
        frame[col] = frame[col].fillna(close)
    frame["close"] = close
    frame["volume"] = frame["volume"].where(~gap, 0.0).fillna(0.0)
    return frame, first


def universe_summary(data: MarketData) -> List[Dict[str, object]]:
    rows: List[Dict[str, object]] = []
    for symbol, s in data.series.items():
        rows.append({
            "symbol": symbol,
            "bars": len(s),
            "offset": s.offset,
            "first": s.dates[0].isoformat() if len(s) else None,
            "last": s.dates[-1].isoformat() if len(s) else None,
        })
    return rows


__all__ = ["SymbolSeries", "MarketData", "OHLCV_COLUMNS", "universe_summary"]
