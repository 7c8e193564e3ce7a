"""Trend/momentum resonance across 1h, 15m and 5m.

Three independent confirmations:
- 1h trend: EMA20/50/200 stacked, price > 2.5% away from EMA200 and MACD
  dif/dea on the trend side of zero. With fewer than 200 bars the EMA200
  leg is dropped and EMA50 takes its place
- 15m momentum: RSI in 30-70, body ratio > 0.6, volume >= 1.2x average
- 5m entry: tight 5-bar range, doji, or price inside the Bollinger band

The number of confirmations maps to strength 3 / 7 / 10. A 15m close beyond
the latest swing point in the trend direction adds a structure-break bonus.
"""

from typing import Optional

import pandas as pd
import structlog

from ..core.types import CandidateSignal, Direction, ModelId, SignalCategory
from ..data.candles import MarketView
from ..features.indicators import (
    calculate_atr,
    calculate_bollinger,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    find_swing_points,
    last_value,
    volume_ratio,
)
from .common import DetectionContext, atr_pct, make_candidate

logger = structlog.get_logger(__name__)

MODEL_ID = ModelId.TREND_MOMENTUM_RESONANCE

RESONANCE_STRENGTH = {3: 10.0, 2: 7.0, 1: 3.0}
MIN_DEVIATION = 0.025


def detect(symbol: str, view: MarketView, ctx: DetectionContext) -> Optional[CandidateSignal]:
    h1 = view.frame("1h")
    m15 = view.frame("15m")
    m5 = view.frame("5m")
    if len(h1) < 50 or len(m15) < 20 or len(m5) < 10:
        return None

    direction = _trend_direction(h1, m15)
    if direction is Direction.NO_TRADE:
        return None

    factors = []
    categories = {}
    if _hourly_trend(h1, direction):
        factors.append("1h_trend")
        categories["structure"] = 2.0
    if _momentum_15m(m15):
        factors.append("15m_momentum")
        categories["momentum"] = 2.0
        categories["volume"] = 1.0
    if _entry_5m(m5):
        factors.append("5m_entry")
        categories["volatility"] = 1.0

    count = len(factors)
    if count == 0:
        return None

    strength = RESONANCE_STRENGTH[count]
    category = SignalCategory.DEFAULT
    metadata = {"resonance_count": count, "factors": factors}

    broken = _structure_break(m15, direction)
    if broken is not None:
        strength += 1.0
        category = SignalCategory.STRUCTURAL_BREAK
        metadata["structure_anchor"] = broken
        categories["structure"] = categories.get("structure", 0.0) + 2.0
        factors.append("15m_structure_break")

    tf_strengths = [_timeframe_strength(df) for df in (h1, m15, m5)]
    confidence = min(1.0, count / 3 * 0.6 + sum(tf_strengths) / len(tf_strengths) * 0.4)
    metadata["score_categories"] = categories

    return make_candidate(
        MODEL_ID, direction, strength, confidence,
        f"Trend/momentum resonance on {count} timeframe(s): {', '.join(factors)}",
        view, "15m", category, metadata,
    )


def _trend_direction(h1: pd.DataFrame, m15: pd.DataFrame) -> Direction:
    ema_long = last_value(calculate_ema(h1["close"], min(200, len(h1))))
    price = float(h1["close"].iloc[-1])
    if ema_long is None:
        closes = m15["close"]
        return Direction.LONG if closes.iloc[-1] > closes.iloc[-2] else Direction.SHORT
    if price > ema_long:
        return Direction.LONG
    if price < ema_long:
        return Direction.SHORT
    return Direction.NO_TRADE


def _hourly_trend(h1: pd.DataFrame, direction: Direction) -> bool:
    close = h1["close"]
    ema20 = last_value(calculate_ema(close, 20))
    ema50 = last_value(calculate_ema(close, 50))
    ema200 = last_value(calculate_ema(close, 200)) if len(close) >= 200 else None
    if ema20 is None or ema50 is None:
        return False
    anchor = ema50 if ema200 is None else ema200
    if anchor <= 0:
        return False

    price = float(close.iloc[-1])
    if direction is Direction.LONG:
        stacked = ema20 > ema50 and (ema200 is None or ema50 > ema200) and price > anchor
    else:
        stacked = ema20 < ema50 and (ema200 is None or ema50 < ema200) and price < anchor
    if not stacked:
        return False

    if abs(price - anchor) / anchor <= MIN_DEVIATION:
        return False

    macd = calculate_macd(close)
    dif = last_value(macd["dif"])
    dea = last_value(macd["dea"])
    if dif is None or dea is None:
        return False
    if direction is Direction.LONG:
        return dif > 0 and dea > 0
    return dif < 0 and dea < 0


def _momentum_15m(m15: pd.DataFrame) -> bool:
    rsi = last_value(calculate_rsi(m15["close"], 14))
    if rsi is None or not 30 <= rsi <= 70:
        return False
    last = m15.iloc[-1]
    rng = float(last["high"] - last["low"])
    if rng <= 0 or abs(float(last["close"] - last["open"])) / rng <= 0.6:
        return False
    return volume_ratio(m15["volume"], 20) >= 1.2


def _entry_5m(m5: pd.DataFrame) -> bool:
    recent = m5.tail(5)
    atr = last_value(calculate_atr(m5, 14))
    if atr is not None and atr > 0:
        if (float(recent["high"].max()) - float(recent["low"].min())) / atr < 0.5:
            return True

    last = m5.iloc[-1]
    rng = float(last["high"] - last["low"])
    if rng > 0 and abs(float(last["close"] - last["open"])) / rng < 0.1:
        return True

    if len(m5) >= 20:
        bands = calculate_bollinger(m5["close"], 20, 2.0)
        upper = last_value(bands["upper"])
        lower = last_value(bands["lower"])
        price = float(last["close"])
        if upper is not None and lower is not None:
            return lower * 1.05 < price < upper * 0.95
    return False


def _structure_break(m15: pd.DataFrame, direction: Direction) -> Optional[float]:
    """Swing level broken by the latest 15m close in ``direction``, if any."""
    swing_highs, swing_lows = find_swing_points(m15.iloc[:-1], 2, 2)
    price = float(m15["close"].iloc[-1])
    if direction is Direction.LONG and swing_highs:
        level = swing_highs[-1][1]
        return level if price > level else None
    if direction is Direction.SHORT and swing_lows:
        level = swing_lows[-1][1]
        return level if price < level else None
    return None


def _timeframe_strength(df: pd.DataFrame) -> float:
    pct = atr_pct(df)
    if 1.0 <= pct < 4.0:
        return 0.8
    if pct >= 4.0:
        return 0.6
    return 0.4
