# strategy_search/data/loader.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Protocol

import pandas as pd

from strategy_search.data.market import OHLCV_COLUMNS, MarketData
from strategy_search.errors import DataInsufficiencyError

logger = logging.getLogger("data.loader")

# Large-cap equities, sector/index ETFs, metals, energy, bonds and international funds.
DEFAULT_UNIVERSE: Dict[str, List[str]] = {
    "precious_metals": ["GLD", "SLV", "IAU", "PPLT"],
    "metal_miners": ["NEM", "GOLD", "FCX", "AEM", "WPM"],
    "energy": ["XLE", "XOM", "CVX", "COP", "USO"],
    "sectors": ["XLF", "XLK", "XLV", "XLI", "XLP", "XLY", "XLB", "XLU"],
    "large_cap": ["AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "META", "TSLA", "JPM", "V", "UNH"],
    "indices": ["SPY", "QQQ", "IWM", "DIA"],
    "bonds": ["TLT", "LQD", "HYG"],
    "international": ["EFA", "EEM", "VEU"],
}


def default_symbols() -> List[str]:
    return [s for group in DEFAULT_UNIVERSE.values() for s in group]


class HistoricalDataProvider(Protocol):
    """Anything that can hand back daily OHLCV bars for one symbol."""

    def get_bars(self, symbol: str, start: str, end: str) -> pd.DataFrame:
        ...


# ---------------------------
# Normalization
# ---------------------------

def to_utc_index(idx_like) -> pd.DatetimeIndex:
    """Return a UTC DatetimeIndex from any datetime-like input."""
    converted = pd.to_datetime(idx_like, errors="coerce", utc=False)
    if isinstance(converted, pd.DatetimeIndex):
        di = converted
    elif isinstance(converted, pd.Series):
        di = pd.DatetimeIndex(converted.array)
    else:
        di = pd.DatetimeIndex(pd.Index(converted))
    if di.tz is None:
        return di.tz_localize("UTC")
    return di.tz_convert("UTC")


def normalize_ohlcv(df: pd.DataFrame | None) -> pd.DataFrame:
    """
    Normalize to columns: open, high, low, close, volume
    UTC DateTimeIndex, ascending sort, numeric types, drop rows without a close.
    """
    if df is None:
        return pd.DataFrame(columns=list(OHLCV_COLUMNS))
    df = df.copy()

    if isinstance(df.columns, pd.MultiIndex):
        df.columns = [str(x[-1]).lower() for x in df.columns]
    else:
        df.columns = [str(c).strip().lower() for c in df.columns]

    alias_map = {
        "open": ("open", "o", "open_price"),
        "high": ("high", "h", "high_price"),
        "low": ("low", "l", "low_price"),
        "close": ("close", "c", "close_price", "adj_close"),
        "volume": ("volume", "v", "vol"),
    }
    ren: Dict[str, str] = {}
    for std, aliases in alias_map.items():
        if std in df.columns:
            continue
        for a in aliases:
            if a in df.columns:
                ren[a] = std
                break
    if ren:
        df = df.rename(columns=ren)

    for c in OHLCV_COLUMNS:
        if c not in df.columns:
            df[c] = pd.NA

    idx_source = df.index
    if not isinstance(df.index, pd.DatetimeIndex):
        for c in ("datetime", "timestamp", "date", "time", "t"):
            if c in df.columns:
                idx_source = df[c]
                df = df.drop(columns=[c])
                break

    try:
        df.index = to_utc_index(idx_source)
    except (TypeError, ValueError):
        logger.warning("Unparseable timestamps; dropping %d rows", len(df))
        return pd.DataFrame(columns=list(OHLCV_COLUMNS))

    df = df[list(OHLCV_COLUMNS)].copy()
    for c in OHLCV_COLUMNS:
        df[c] = pd.to_numeric(df[c], errors="coerce")
    df = df.loc[df.index.notna() & df["close"].notna().to_numpy()]
    df = df.sort_index()
    df = df.loc[~df.index.duplicated(keep="last")].copy()

    # missing intrabar fields fall back to the close
    for c in ("open", "high", "low"):
        df[c] = df[c].fillna(df["close"])
    df["volume"] = df["volume"].fillna(0.0)
    return df


# ---------------------------
# Providers
# ---------------------------

class CsvDirectoryProvider:
    """Reads ``<root>/<SYMBOL>.csv`` files (any column aliases ``normalize_ohlcv`` accepts)."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, symbol: str) -> Path:
        return self.root / f"{symbol.upper()}.csv"

    def get_bars(self, symbol: str, start: str, end: str) -> pd.DataFrame:
        path = self.path_for(symbol)
        if not path.exists():
            raise FileNotFoundError(f"No CSV for {symbol} at {path}")
        df = normalize_ohlcv(pd.read_csv(path))
        lo = pd.Timestamp(start, tz="UTC")
        hi = pd.Timestamp(end, tz="UTC")
        return df.loc[(df.index >= lo) & (df.index <= hi)]


# ---------------------------
# Up-front load
# ---------------------------

def load_market_data(
    provider: HistoricalDataProvider,
    symbols: Iterable[str],
    start: str,
    end: str,
    *,
    min_bars: int = 100,
    reference_symbol: str = "SPY",
    min_symbols: int = 2,
) -> MarketData:
    """
    Fetch every symbol once and build the run's ``MarketData``.

    Symbols with ``min_bars`` or fewer bars, and symbols whose fetch raises, are
    excluded with a log line. Raises ``DataInsufficiencyError`` when fewer than
    ``min_symbols`` remain.
    """
    frames: Dict[str, pd.DataFrame] = {}
    failed: List[str] = []
    symbols = list(dict.fromkeys(symbols))
    for symbol in symbols:
        try:
            df = normalize_ohlcv(provider.get_bars(symbol, start, end))
        except Exception as exc:
            logger.warning("Fetch failed for %s: %s: %s", symbol, type(exc).__name__, exc)
            failed.append(symbol)
            continue
        if len(df) <= min_bars:
            logger.info("Excluding %s: %d bars (need > %d)", symbol, len(df), min_bars)
            failed.append(symbol)
            continue
        frames[symbol] = df

    logger.info("Loaded %d/%d symbols (%d excluded)", len(frames), len(symbols), len(failed))
    if len(frames) < min_symbols:
        raise DataInsufficiencyError(
            f"Only {len(frames)} usable symbols between {start} and {end}; need {min_symbols}"
        )
    data = MarketData.from_frames(frames, reference_symbol=reference_symbol)
    logger.info(
        "Reference %s with %d trading days", data.reference_symbol, len(data.calendar)
    )
    return data


__all__ = [
    "DEFAULT_UNIVERSE",
    "default_symbols",
    "HistoricalDataProvider",
    "CsvDirectoryProvider",
    "normalize_ohlcv",
    "to_utc_index",
    "load_market_data",
]
