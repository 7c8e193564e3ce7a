"""Higher-timeframe consistency filter."""

from ..core.types import Direction
from ..data.candles import MarketView
from ..features.indicators import calculate_sma, last_value


class HigherTimeframeFilter:
    """Checks a direction against the 4h and daily trend.

    LONG needs the close above the 4h SMA50 and the 1d SMA20; SHORT needs it
    below both. A timeframe without enough bars is neutral.
    """

    def __init__(self, checks=(("4h", 50), ("1d", 20))):
        self.checks = tuple(checks)

    def is_consistent(self, direction: Direction, view: MarketView) -> bool:
        if direction is Direction.NO_TRADE:
            return False
        for timeframe, period in self.checks:
            if not view.has(timeframe, period):
                continue
            df = view.frame(timeframe)
            sma = last_value(calculate_sma(df["close"], period))
            if sma is None:
                continue
            close = float(df["close"].iloc[-1])
            if direction is Direction.LONG and close <= sma:
                return False
            if direction is Direction.SHORT and close >= sma:
                return False
        return True
