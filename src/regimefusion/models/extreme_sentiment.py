"""Contrarian signal at extreme crowd sentiment, 4h series.

Funding rate and long/short ratio are not part of the candle feed, so both
are proxied from price and volume. The proxies feed a greed and a fear
index in [0, 100]. An index above 85 plus at least one confirmation (RSI
divergence, volume surge, reversal pattern) fades the crowd.
"""

import math
from typing import Optional, Tuple

import pandas as pd
import structlog

from ..core.types import CandidateSignal, Direction, ModelId, SignalCategory
from ..data.candles import MarketView
from ..features.indicators import calculate_atr, calculate_rsi, last_value
from .common import DetectionContext, clamp, make_candidate

logger = structlog.get_logger(__name__)

MODEL_ID = ModelId.EXTREME_SENTIMENT

# Proxied funding never falls below 0.05%, so fear tops out at 75 and only
# greed can cross this level.
EXTREME_LEVEL = 85
CONFIRMATION_MULT = {3: 1.2, 2: 1.1, 1: 0.9, 0: 0.7}


def detect(symbol: str, view: MarketView, ctx: DetectionContext) -> Optional[CandidateSignal]:
    h4 = view.frame("4h")
    if len(h4) < 20:
        return None

    funding = funding_rate_proxy(h4)
    ratio = long_short_ratio_proxy(h4)
    change = price_change(h4, 10)
    greed, fear = sentiment_indices(funding, ratio, change)

    if greed <= EXTREME_LEVEL and fear <= EXTREME_LEVEL:
        return None

    confirmations = {
        "rsi_divergence": has_rsi_divergence(h4),
        "volume_surge": has_volume_surge(h4),
        "reversal_pattern": has_reversal_pattern(h4),
    }
    confirmed = [name for name, ok in confirmations.items() if ok]
    if not confirmed:
        return None

    if greed > EXTREME_LEVEL:
        direction, index, label = Direction.SHORT, greed, "greed"
    else:
        direction, index, label = Direction.LONG, fear, "fear"

    extreme = max(greed, fear)
    if extreme >= 90:
        confidence = 0.9
    elif extreme >= 87:
        confidence = 0.85
    else:
        confidence = 0.75
    confidence *= CONFIRMATION_MULT[len(confirmed)]
    if greed + fear > 160:
        confidence *= 0.8

    metadata = {
        "greed_index": greed,
        "fear_index": fear,
        "funding_proxy": funding,
        "long_short_proxy": ratio,
        "confirmations": confirmed,
        "score_categories": {
            "sentiment": 1.0,
            "momentum": 1.0 if confirmations["rsi_divergence"] else 0.0,
            "volume": 1.0 if confirmations["volume_surge"] else 0.0,
            "structure": 1.0 if confirmations["reversal_pattern"] else 0.0,
        },
    }
    return make_candidate(
        MODEL_ID, direction, 8.0, clamp(confidence, 0.1, 1.0),
        f"Extreme {label} index {index} with {', '.join(confirmed)}",
        view, "4h", SignalCategory.FALSE_BREAKOUT_REVERSAL, metadata,
    )


def funding_rate_proxy(h4: pd.DataFrame) -> float:
    """0.1% base, nudged by the last bar's return and ATR%, clamped to +-0.5%."""
    close = h4["close"]
    rate = 0.001
    prev = float(close.iloc[-2])
    last = float(close.iloc[-1])
    if prev > 0:
        rate += (last - prev) / prev * 0.0005
    atr = last_value(calculate_atr(h4.tail(14), 14))
    if atr is not None and atr > 0 and last > 0:
        rate += atr / last * 0.0002
    return clamp(rate, -0.005, 0.005)


def long_short_ratio_proxy(h4: pd.DataFrame) -> float:
    """1.0 shifted by position in the 20-bar range and by relative volume."""
    window = h4.tail(20)
    high = float(window["high"].max())
    low = float(window["low"].min())
    last = h4.iloc[-1]
    position = 0.5 if high == low else (float(last["close"]) - low) / (high - low)
    ratio = 1.0 + (position - 0.5) * 0.5

    prior = h4["volume"].iloc[-21:-1]
    avg_vol = float(prior.mean()) if len(prior) else 0.0
    if avg_vol > 0:
        ratio += (float(last["volume"]) - avg_vol) / avg_vol * 0.1
    return max(0.1, ratio)


def price_change(df: pd.DataFrame, lookback: int) -> float:
    close = df["close"]
    if len(close) < 2:
        return 0.0
    first = float(close.iloc[-min(lookback, len(close))])
    if first <= 0:
        return 0.0
    return (float(close.iloc[-1]) - first) / first


def sentiment_indices(funding: float, ratio: float, change: float) -> Tuple[int, int]:
    """Greed and fear indices (0-100) from the three proxies."""
    n_funding = clamp((funding + 0.005) / 0.01, 0.0, 1.0)
    n_ratio = clamp(math.log10(ratio + 0.1), 0.0, 1.0)
    n_change = clamp((change + 0.1) / 0.2, 0.0, 1.0)
    greed = round((n_funding * 0.4 + n_ratio * 0.3 + n_change * 0.3) * 100)

    neg_funding = clamp((-funding + 0.005) / 0.01, 0.0, 1.0)
    short_dominance = 1.0 - ratio if ratio < 1 else 0.0
    neg_change = clamp(-change * 5, 0.0, 1.0) if change < 0 else 0.0
    fear = round((neg_funding * 0.4 + short_dominance * 0.3 + neg_change * 0.3) * 100)
    return int(greed), int(fear)


def has_rsi_divergence(h4: pd.DataFrame) -> bool:
    """RSI at the 10-bar price high is below some RSI reading of the last 20 bars."""
    rsi = calculate_rsi(h4["close"], 14)
    if rsi.notna().sum() < 20:
        return False
    recent_close = h4["close"].tail(10)
    high_pos = recent_close[::-1].idxmax()
    rsi_at_high = rsi.loc[high_pos]
    if pd.isna(rsi_at_high):
        return False
    return bool((rsi.tail(20) > rsi_at_high).any())


def has_volume_surge(h4: pd.DataFrame) -> bool:
    avg_vol = float(h4["volume"].mean())
    if avg_vol <= 0:
        return False
    return bool((h4["volume"].tail(5) > avg_vol * 2.5).any())


def has_reversal_pattern(h4: pd.DataFrame) -> bool:
    if len(h4) < 3:
        return False
    c1, c2, c3 = (h4.iloc[i] for i in (-3, -2, -1))
    return _is_hammer(c3) or _is_engulfing(c2, c3) or _is_three_line_strike(c1, c2, c3)


def _is_hammer(c) -> bool:
    body = abs(c["close"] - c["open"])
    upper = c["high"] - max(c["close"], c["open"])
    lower = min(c["close"], c["open"]) - c["low"]
    return body > 0 and lower >= body * 2 and upper <= body * 0.1


def _is_engulfing(prev, cur) -> bool:
    prev_hi, prev_lo = max(prev["close"], prev["open"]), min(prev["close"], prev["open"])
    cur_hi, cur_lo = max(cur["close"], cur["open"]), min(cur["close"], cur["open"])
    covers = cur_lo <= prev_lo and cur_hi >= prev_hi
    bullish = prev["close"] < prev["open"] and cur["close"] > cur["open"]
    bearish = prev["close"] > prev["open"] and cur["close"] < cur["open"]
    return bool(covers and (bullish or bearish))


def _is_three_line_strike(c1, c2, c3) -> bool:
    strong = abs(c3["open"] - c3["close"]) > (c3["high"] - c3["low"]) * 0.7
    down = (all(c["close"] < c["open"] for c in (c1, c2, c3))
            and c2["close"] < c1["close"] and c3["close"] < c2["close"])
    up = (all(c["close"] > c["open"] for c in (c1, c2, c3))
          and c2["close"] > c1["close"] and c3["close"] > c2["close"])
    return bool(strong and (down or up))
