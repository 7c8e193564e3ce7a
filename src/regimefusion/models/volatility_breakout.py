"""Volatility-compression breakout on the 15m series.

Three layers must all hold for a signal:
1. Compression: Bollinger width and ATR of the bar before the breakout sit
   in the bottom quartile of the last 100 bars
2. Structure: at least 8 consecutive bars inside the prior 20-bar range and
   no failed breakout among the last 10 of them
3. Breakout quality: body > 0.8 x ATR, volume >= 2x the 20-bar average and
   the same candle colour as the previous bar
"""

from typing import Optional, Tuple

import pandas as pd
import structlog

from ..core.types import CandidateSignal, Direction, ModelId, SignalCategory
from ..data.candles import MarketView
from ..features.indicators import (
    calculate_atr,
    calculate_bb_width,
    last_value,
    percentile_rank,
    volume_ratio,
)
from .common import DetectionContext, atr_pct, make_candidate, sufficiency_adjust

logger = structlog.get_logger(__name__)

MODEL_ID = ModelId.VOLATILITY_BREAKOUT

MIN_BARS = 50
PERCENTILE_BARS = 100
RANGE_BARS = 20
MIN_CONSOLIDATION = 8


def detect(symbol: str, view: MarketView, ctx: DetectionContext) -> Optional[CandidateSignal]:
    m15 = view.frame("15m")
    if len(m15) < MIN_BARS:
        return None

    base = m15.iloc[:-1]
    compressed = is_compressed(base)
    range_high, range_low = consolidation_range(base)
    structured = structure_ready(base, range_high, range_low)
    quality = breakout_quality(m15)
    if not (compressed and structured and quality):
        return None

    last = m15.iloc[-1]
    price = float(last["close"])
    if price > range_high:
        direction = Direction.LONG
    elif price < range_low:
        direction = Direction.SHORT
    else:
        direction = Direction.LONG if price > float(m15["close"].iloc[-2]) else Direction.SHORT

    confidence = sufficiency_adjust(
        0.8, len(m15), atr_pct(m15),
        few_bars=30, few_mult=0.7, many_bars=100, many_mult=1.1,
        high_vol_pct=3.0, high_vol_mult=0.8,
    )
    metadata = {
        "range_high": range_high,
        "range_low": range_low,
        "consolidation_anchor": range_high if direction is Direction.LONG else range_low,
        "score_categories": {"volatility": 1.0, "volume": 2.0, "structure": 2.0},
    }
    return make_candidate(
        MODEL_ID, direction, 9.0, confidence,
        f"Volatility breakout {direction.value} from {range_low:.4f}-{range_high:.4f} range",
        view, "15m", SignalCategory.VOLATILITY_BREAKOUT, metadata,
    )


def is_compressed(df: pd.DataFrame) -> bool:
    """Current BB width and ATR both in the bottom quartile of the last 100 bars."""
    if len(df) < PERCENTILE_BARS:
        return False
    widths = calculate_bb_width(df["close"]).tail(PERCENTILE_BARS)
    atrs = calculate_atr(df, 14).tail(PERCENTILE_BARS)
    width_now = last_value(widths)
    atr_now = last_value(atrs)
    if width_now is None or atr_now is None:
        return False
    return percentile_rank(widths, width_now) <= 25.0 and percentile_rank(atrs, atr_now) <= 25.0


def consolidation_range(df: pd.DataFrame) -> Tuple[float, float]:
    """High/low of the 20 bars that end 10 bars before the last bar of ``df``."""
    window = df.iloc[-(RANGE_BARS + 10):-10]
    return float(window["high"].max()), float(window["low"].min())


def structure_ready(df: pd.DataFrame, range_high: float, range_low: float) -> bool:
    inside = (df["high"] <= range_high) & (df["low"] >= range_low)
    consolidation = 0
    for flag in reversed(inside.tolist()):
        if not flag:
            break
        consolidation += 1
    if consolidation < MIN_CONSOLIDATION:
        return False

    recent = df.tail(10)
    next_close = recent["close"].shift(-1)
    false_up = (recent["high"] > range_high) & (next_close <= range_high)
    false_down = (recent["low"] < range_low) & (next_close >= range_low)
    return not bool((false_up | false_down).any())


def breakout_quality(df: pd.DataFrame) -> bool:
    last = df.iloc[-1]
    prev = df.iloc[-2]
    body = abs(float(last["close"] - last["open"]))
    atr = last_value(calculate_atr(df, 14))
    if atr is not None and atr > 0:
        if body <= atr * 0.8:
            return False
    else:
        rng = float(last["high"] - last["low"])
        if rng <= 0 or body / rng <= 0.7:
            return False

    if volume_ratio(df["volume"], RANGE_BARS) < 2.0:
        return False

    return (last["close"] > last["open"]) == (prev["close"] > prev["open"])
