"""Shared pieces for the signal models.

Every model is a plain detector function
``detect(symbol, view, ctx) -> Optional[CandidateSignal]``; the registry
wraps each in a ``SignalModel`` record carrying its id and allowed regimes.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional

import pandas as pd

from ..core.types import CandidateSignal, Direction, ModelId, Regime, SignalCategory
from ..data.candles import MarketView
from ..features.indicators import calculate_atr, last_value


@dataclass(frozen=True)
class DetectionContext:
    """Read-only inputs a detector may use besides its own view.

    Attributes:
        params: Snapshot of the adaptive parameter set
        peers: Other symbols' views, for cross-symbol models
    """
    params: Mapping[str, float] = field(default_factory=dict)
    peers: Mapping[str, MarketView] = field(default_factory=dict)


Detector = Callable[[str, MarketView, DetectionContext], Optional[CandidateSignal]]


@dataclass(frozen=True)
class SignalModel:
    """One signal model: an id, a detector and the regimes it may run in."""
    model_id: ModelId
    detector: Detector
    allowed_regimes: FrozenSet[Regime] = frozenset()

    def allowed_in(self, regime: Regime) -> bool:
        return regime in self.allowed_regimes

    def detect(self, symbol: str, view: MarketView,
               ctx: Optional[DetectionContext] = None) -> Optional[CandidateSignal]:
        return self.detector(symbol, view, ctx or DetectionContext())


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _bounded(value: float, lo: float, hi: float) -> float:
    """clamp, with NaN and infinities mapped to ``lo``."""
    if not math.isfinite(value):
        return lo
    return clamp(value, lo, hi)


def make_candidate(model_id: ModelId, direction: Direction, strength: float,
                   confidence: float, rationale: str, view: MarketView,
                   timeframe: str, category: SignalCategory = SignalCategory.DEFAULT,
                   metadata: Optional[Dict[str, Any]] = None) -> CandidateSignal:
    """Build a candidate with strength clamped to [0, 10] and confidence to [0, 1].

    Non-finite strength or confidence becomes 0.

    Price and timestamp are taken from the newest candle of ``timeframe``.
    """
    candles = view.candles(timeframe)
    price = candles[-1].close if candles else 0.0
    ts = candles[-1].open_time if candles else 0
    meta = dict(metadata or {})
    meta.setdefault("timeframe", timeframe)
    return CandidateSignal(
        model_id=model_id,
        direction=direction,
        strength=round(_bounded(strength, 0.0, 10.0), 4),
        confidence=round(_bounded(confidence, 0.0, 1.0), 4),
        rationale=rationale,
        price=price,
        timestamp=ts,
        category=category,
        metadata=meta,
    )


def atr_pct(df: pd.DataFrame, period: int = 14) -> float:
    """Latest ATR as a percentage of the latest close (0.0 if unavailable)."""
    if len(df) == 0:
        return 0.0
    atr = last_value(calculate_atr(df, period))
    close = float(df["close"].iloc[-1])
    if atr is None or close <= 0:
        return 0.0
    return atr / close * 100.0


def sufficiency_adjust(confidence: float, bars: int, atr_percent: float,
                       few_bars: int, few_mult: float,
                       many_bars: int, many_mult: float,
                       high_vol_pct: float, high_vol_mult: float,
                       low_vol_pct: float = 0.5, low_vol_mult: float = 0.9) -> float:
    """Scale confidence for sample size and volatility context, clamped to [0.1, 1]."""
    if bars < few_bars:
        confidence *= few_mult
    elif bars >= many_bars:
        confidence *= many_mult

    if atr_percent > high_vol_pct:
        confidence *= high_vol_mult
    elif 0 < atr_percent < low_vol_pct:
        confidence *= low_vol_mult

    return clamp(confidence, 0.1, 1.0)


def mean_volume(df: pd.DataFrame, lookback: int, exclude_last: bool = False) -> float:
    """Average volume over the lookback window (0.0 when empty)."""
    vol = df["volume"]
    if exclude_last:
        vol = vol.iloc[:-1]
    window = vol.tail(lookback)
    if len(window) == 0:
        return 0.0
    return float(window.mean())
