"""Institutional accumulation/distribution footprints on the 1h series.

Accumulation: steady low-volatility grind up with either repeated tests of
the window high or successful buying at the 1d support. Distribution: heavy
volume near the 1d high, a failed breakout, a large high-volume bearish bar
or a 2-sigma volume outlier. Order flow: share of directional bars that
carry > 1.5x average volume.
"""

from typing import Optional

import numpy as np
import pandas as pd
import structlog

from ..core.types import CandidateSignal, Direction, ModelId, SignalCategory
from ..data.candles import MarketView
from .common import DetectionContext, make_candidate, mean_volume

logger = structlog.get_logger(__name__)

MODEL_ID = ModelId.INSTITUTIONAL_FLOW

WINDOW = 50
FLOW_WINDOW = 20


def detect(symbol: str, view: MarketView, ctx: DetectionContext) -> Optional[CandidateSignal]:
    h1 = view.frame("1h")
    d1 = view.frame("1d")
    if len(h1) < FLOW_WINDOW:
        return None

    recent = h1.tail(WINDOW)
    accumulation = len(h1) >= WINDOW and is_accumulation(recent, d1)
    distribution = len(h1) >= WINDOW and is_distribution(recent, d1)
    bullish_flow = flow_bias(h1, bullish=True)
    bearish_flow = flow_bias(h1, bullish=False)

    if accumulation or bullish_flow:
        direction, behaviour, flow = Direction.LONG, accumulation, bullish_flow
        label = "accumulation"
    elif distribution or bearish_flow:
        direction, behaviour, flow = Direction.SHORT, distribution, bearish_flow
        label = "distribution"
    else:
        return None

    strength = 6.0 + (2.0 if behaviour else 0.0) + (1.5 if flow else 0.0)
    if behaviour and flow:
        confidence = 0.9
    elif behaviour or flow:
        confidence = 0.7
    else:
        confidence = 0.5

    categories = {"volume": 2.0 if flow else 1.0}
    if behaviour:
        categories["structure"] = 2.0

    parts = [label] if behaviour else []
    if flow:
        parts.append("volume-weighted flow")
    metadata = {
        label: behaviour,
        "flow": flow,
        "price_volume_corr": price_volume_correlation(recent),
        "volume_poc": volume_point_of_control(recent),
        "score_categories": categories,
    }
    return make_candidate(
        MODEL_ID, direction, strength, confidence,
        f"Institutional {label}: {' + '.join(parts)}",
        view, "1h", SignalCategory.DEFAULT, metadata,
    )


def is_accumulation(recent: pd.DataFrame, d1: pd.DataFrame) -> bool:
    close = recent["close"]
    change = close.pct_change().iloc[1:]
    gradual_up = ((change > 0) & (change.abs() < 0.03)).sum()
    steady = len(change) > 0 and gradual_up / len(change) > 0.4

    avg_range = ((recent["high"] - recent["low"]) / recent["close"]).mean()
    controlled = avg_range < 0.04

    top = float(recent["high"].max())
    resistance_tests = top > 0 and ((top - recent["high"]).abs() / top < 0.015).sum() >= 2

    return bool(steady and controlled and (resistance_tests or _support_buying(recent, d1)))


def _support_buying(recent: pd.DataFrame, d1: pd.DataFrame) -> bool:
    if len(d1) < 20:
        return False
    support = float(d1["low"].tail(20).min())
    if support <= 0:
        return False
    tests = recent[(recent["low"] - support).abs() / support < 0.02]
    if len(tests) == 0:
        return False
    held = (tests["close"] > tests["open"]).sum()
    return held / len(tests) > 0.6


def is_distribution(recent: pd.DataFrame, d1: pd.DataFrame) -> bool:
    avg_vol = mean_volume(recent, FLOW_WINDOW)

    if len(d1) >= 20 and avg_vol > 0:
        daily_high = float(d1["high"].tail(20).max())
        heavy_top = (recent["high"] > daily_high * 0.98) & (recent["volume"] > avg_vol * 2.0)
        if heavy_top.any():
            return True

    if _failed_breakout(recent):
        return True

    if avg_vol > 0:
        rng = (recent["high"] - recent["low"]).replace(0, np.nan)
        body_ratio = (recent["close"] - recent["open"]).abs() / rng
        dump = ((recent["close"] < recent["open"])
                & (recent["volume"] > avg_vol * 2.0)
                & (body_ratio > 0.7))
        if dump.any():
            return True

    vol = recent["volume"]
    std = float(vol.std(ddof=0))
    return std > 0 and bool((vol > vol.mean() + 2.0 * std).any())


def _failed_breakout(recent: pd.DataFrame) -> bool:
    """A bar whose high clears the prior 3 highs by 1% but closes 2% off its high."""
    prior_high = recent["high"].shift(1).rolling(3).max()
    failed = (recent["high"] > prior_high * 1.01) & (recent["close"] < recent["high"] * 0.98)
    return bool(failed.any())


def flow_bias(h1: pd.DataFrame, bullish: bool) -> bool:
    recent = h1.tail(FLOW_WINDOW)
    avg_vol = mean_volume(h1, FLOW_WINDOW)
    if bullish:
        directional = recent[recent["close"] > recent["open"]]
    else:
        directional = recent[recent["close"] < recent["open"]]
    if len(directional) == 0 or avg_vol <= 0:
        return False
    heavy = (directional["volume"] > avg_vol * 1.5).sum()
    return heavy / len(directional) > 0.6


def price_volume_correlation(recent: pd.DataFrame) -> float:
    if len(recent) < 10:
        return 0.0
    price_chg = recent["close"].pct_change()
    vol_chg = recent["volume"].replace(0, np.nan).pct_change()
    corr = price_chg.corr(vol_chg)
    return 0.0 if pd.isna(corr) else float(corr)


def volume_point_of_control(recent: pd.DataFrame) -> float:
    """Typical price (rounded to 2 decimals) with the most traded volume."""
    if len(recent) == 0:
        return 0.0
    typical = ((recent["high"] + recent["low"] + recent["close"]) / 3.0).round(2)
    profile = recent["volume"].groupby(typical).sum()
    return float(profile.idxmax())
