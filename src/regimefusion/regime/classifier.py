"""Market regime classifier.

Classifies one symbol's primary-timeframe series into a Regime. Checks run
in a fixed priority order and the first match wins:

1. STRONG_TREND: close deviates > 3% from SMA50 and > 2% from SMA20
2. WEAK_TREND: close deviates > 1.5% from SMA50 and > 1% from SMA20
3. SQUEEZE: current ATR <= 1.2 x the minimum ATR of the last 50 bars
4. VOLATILITY_EXPANSION: mean ATR of the last 5 bars > 1.5 x mean of the
   preceding 15 bars
5. RANGE: default, also returned when data is insufficient. Labelled
   NARROW_RANGE when the high-low width of the last 50 bars is within 4% of
   the low, WIDE_RANGE otherwise
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import numpy as np

from ..config import RegimeConfig
from ..core.types import Direction, Regime
from ..data.candles import MarketView
from ..features.indicators import calculate_atr, calculate_sma, last_value

logger = logging.getLogger(__name__)


@dataclass
class RegimeResult:
    """Result of regime classification."""
    regime: Regime
    trend_bias: Optional[Direction]   # sign of close - SMA50
    reason: str
    metrics: Dict[str, float] = field(default_factory=dict)


class RegimeClassifier:
    """Rule-based regime classifier over the primary timeframe."""

    def __init__(self, cfg: Optional[Union[RegimeConfig, dict]] = None):
        if cfg is None:
            self.cfg = RegimeConfig()
        elif isinstance(cfg, dict):
            self.cfg = RegimeConfig(**cfg)
        else:
            self.cfg = cfg

    def classify(self, symbol: str, view: MarketView) -> Regime:
        """Classify the current regime for ``symbol``."""
        return self.classify_detailed(symbol, view).regime

    def classify_detailed(self, symbol: str, view: MarketView) -> RegimeResult:
        """Classify and return the supporting metrics.

        Args:
            symbol: Trading symbol (used for logging only)
            view: Multi-timeframe view; only the primary timeframe is read

        Returns:
            RegimeResult (RANGE with reason INSUFFICIENT_DATA when the primary
            series is shorter than ``min_candles``)
        """
        cfg = self.cfg
        df = view.frame(cfg.primary_timeframe)
        if len(df) < cfg.min_candles:
            return RegimeResult(Regime.RANGE, None, "INSUFFICIENT_DATA",
                                {"bars": float(len(df))})

        close = df["close"]
        price = float(close.iloc[-1])
        sma20 = last_value(calculate_sma(close, 20))
        sma50 = last_value(calculate_sma(close, 50))
        atr = calculate_atr(df, cfg.atr_period)

        dev20 = _deviation(price, sma20)
        dev50 = _deviation(price, sma50)

        trend_bias = None
        if sma50 is not None and price > sma50:
            trend_bias = Direction.LONG
        elif sma50 is not None and price < sma50:
            trend_bias = Direction.SHORT

        metrics = {
            "price": price,
            "dev_sma20": dev20,
            "dev_sma50": dev50,
            "atr": last_value(atr) or 0.0,
            "range_width": self._range_width(df),
        }

        if dev50 > cfg.strong_sma50_dev and dev20 > cfg.strong_sma20_dev:
            regime, reason = Regime.STRONG_TREND, "MA_DEVIATION_STRONG"
        elif dev50 > cfg.weak_sma50_dev and dev20 > cfg.weak_sma20_dev:
            regime, reason = Regime.WEAK_TREND, "MA_DEVIATION_WEAK"
        elif self._is_squeeze(atr, metrics):
            regime, reason = Regime.SQUEEZE, "ATR_NEAR_MIN"
        elif self._is_expansion(atr, metrics):
            regime, reason = Regime.VOLATILITY_EXPANSION, "ATR_EXPANDING"
        elif metrics["range_width"] <= cfg.range_max_width:
            regime, reason = Regime.RANGE, "NARROW_RANGE"
        else:
            regime, reason = Regime.RANGE, "WIDE_RANGE"

        logger.debug("%s regime=%s reason=%s dev20=%.4f dev50=%.4f",
                     symbol, regime.value, reason, dev20, dev50)
        return RegimeResult(regime, trend_bias, reason, metrics)

    def _is_squeeze(self, atr, metrics: Dict[str, float]) -> bool:
        window = atr.dropna().tail(self.cfg.squeeze_lookback)
        if len(window) == 0:
            return False
        current = float(window.iloc[-1])
        min_atr = float(window.min())
        metrics["atr_min"] = min_atr
        if min_atr <= 0:
            return False
        return current <= min_atr * self.cfg.squeeze_atr_ratio

    def _is_expansion(self, atr, metrics: Dict[str, float]) -> bool:
        n_recent = self.cfg.expansion_recent
        n_base = self.cfg.expansion_base
        values = atr.dropna().to_numpy(dtype=float)
        if len(values) < n_recent + n_base:
            return False
        recent = float(np.mean(values[-n_recent:]))
        base = float(np.mean(values[-(n_recent + n_base):-n_recent]))
        metrics["atr_recent"] = recent
        metrics["atr_base"] = base
        if base <= 0:
            return False
        return recent > base * self.cfg.expansion_ratio

    def _range_width(self, df) -> float:
        window = df.tail(self.cfg.range_lookback)
        low = float(window["low"].min())
        if low <= 0:
            return 0.0
        return (float(window["high"].max()) - low) / low


def _deviation(price: float, ma: Optional[float]) -> float:
    if ma is None or ma <= 0:
        return 0.0
    return abs(price - ma) / ma
