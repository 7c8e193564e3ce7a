"""Multi-timeframe candle views.

A view is an immutable mapping of timeframe label ("5m", "15m", "1h",
"4h", "1d") to an ascending candle sequence for one symbol. Models read
candles through pandas frames built once per view and timeframe.
"""

import threading
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd
import structlog

from ..core.types import Candle

logger = structlog.get_logger(__name__)

FRAME_COLUMNS = ["open_time", "open", "high", "low", "close", "volume", "close_time"]


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Convert candles to an OHLCV DataFrame with a RangeIndex.

    Args:
        candles: Ascending candle sequence

    Returns:
        DataFrame with columns open_time, open, high, low, close, volume,
        close_time (empty frame with the same columns for empty input)
    """
    rows = [
        (c.open_time, c.open, c.high, c.low, c.close, c.volume, c.close_time)
        for c in candles
    ]
    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    for col in ("open", "high", "low", "close", "volume"):
        df[col] = df[col].astype(float)
    return df


class MarketView:
    """Multi-timeframe candle view for one symbol."""

    def __init__(self, symbol: str, candles: Optional[Mapping[str, Sequence[Candle]]] = None):
        self.symbol = symbol
        self._candles: Dict[str, List[Candle]] = {
            tf: list(seq) for tf, seq in (candles or {}).items()
        }
        self._frames: Dict[str, pd.DataFrame] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_mapping(cls, symbol: str, data) -> "MarketView":
        """Accept an existing view or a plain timeframe -> candles mapping."""
        if isinstance(data, MarketView):
            return data
        return cls(symbol, data)

    @property
    def timeframes(self) -> List[str]:
        return sorted(self._candles)

    def candles(self, timeframe: str) -> List[Candle]:
        return self._candles.get(timeframe, [])

    def length(self, timeframe: str) -> int:
        return len(self._candles.get(timeframe, ()))

    def has(self, timeframe: str, min_len: int = 1) -> bool:
        return self.length(timeframe) >= min_len

    def frame(self, timeframe: str) -> pd.DataFrame:
        """Cached OHLCV frame for a timeframe. Callers must not mutate it."""
        with self._lock:
            df = self._frames.get(timeframe)
            if df is None:
                df = candles_to_frame(self._candles.get(timeframe, []))
                self._frames[timeframe] = df
            return df

    def last_price(self, timeframe: Optional[str] = None) -> float:
        """Close of the newest candle on the timeframe (or the finest available)."""
        if timeframe is not None:
            seq = self._candles.get(timeframe)
            return seq[-1].close if seq else 0.0
        for seq in self._ordered_sequences():
            if seq:
                return seq[-1].close
        return 0.0

    def last_time(self) -> int:
        """open_time of the newest candle on the finest available timeframe."""
        for seq in self._ordered_sequences():
            if seq:
                return seq[-1].open_time
        return 0

    def _ordered_sequences(self):
        return [self._candles[tf] for tf in sorted(self._candles, key=timeframe_minutes)]


_UNIT_MINUTES = {"m": 1, "h": 60, "d": 1440, "w": 10080}


def timeframe_minutes(timeframe: str) -> int:
    """Minutes in a timeframe label ("15m" -> 15, "4h" -> 240)."""
    try:
        return int(timeframe[:-1]) * _UNIT_MINUTES[timeframe[-1]]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported timeframe: {timeframe}")
