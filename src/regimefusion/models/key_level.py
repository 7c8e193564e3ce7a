"""Key-level battle scenarios on 1h bars around daily levels.

Levels are the high/low of the last 10 completed daily bars. Scenarios are
checked in order and the first match wins:

- STOP_HUNTING: a recent bar pierced a level, price closed back inside and
  volume spiked > 3x; trade the reversal
- SUPPLY_DEMAND_IMBALANCE: >= 3 touches of a level with fading volume;
  trade the breakout side
- TIME_EXHAUSTION: >= 70% of bars inside the range while ATR contracts;
  trade the breakout side
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd
import structlog

from ..core.types import CandidateSignal, Direction, ModelId, SignalCategory
from ..data.candles import MarketView
from ..features.indicators import calculate_atr
from .common import DetectionContext, atr_pct, make_candidate, sufficiency_adjust

logger = structlog.get_logger(__name__)

MODEL_ID = ModelId.KEY_LEVEL_BATTLEGROUNDS

LEVEL_DAYS = 10


@dataclass(frozen=True)
class KeyLevels:
    high: float
    low: float
    prev_high: float
    prev_low: float


SCENARIOS = {
    # name: (strength, base confidence, category)
    "STOP_HUNTING": (7.0, 0.75, SignalCategory.FALSE_BREAKOUT_REVERSAL),
    "SUPPLY_DEMAND_IMBALANCE": (8.0, 0.80, SignalCategory.DEFAULT),
    "TIME_EXHAUSTION": (6.0, 0.70, SignalCategory.DEFAULT),
}


def detect(symbol: str, view: MarketView, ctx: DetectionContext) -> Optional[CandidateSignal]:
    d1 = view.frame("1d")
    h1 = view.frame("1h")
    if len(d1) < 30 or len(h1) < 24:
        return None

    levels = key_levels(d1)
    if levels is None or levels.high <= levels.low:
        return None

    metadata: Dict[str, object] = {
        "level_high": levels.high,
        "level_low": levels.low,
        "prev_day_high": levels.prev_high,
        "prev_day_low": levels.prev_low,
    }

    direction = stop_hunt_direction(h1, levels)
    if direction is not None:
        scenario = "STOP_HUNTING"
        recent = h1.tail(3)
        extreme = float(recent["high"].max()) if direction is Direction.SHORT else float(recent["low"].min())
        metadata["false_breakout_extreme"] = extreme
        categories = {"structure": 3.0, "volume": 2.0}
    elif is_supply_demand_imbalance(h1, levels):
        scenario = "SUPPLY_DEMAND_IMBALANCE"
        direction = _breakout_direction(h1)
        categories = {"structure": 3.0, "volume": 1.0}
    elif is_time_exhaustion(h1, levels):
        scenario = "TIME_EXHAUSTION"
        direction = _breakout_direction(h1)
        categories = {"structure": 2.0, "volatility": 1.0}
    else:
        return None

    strength, base_conf, category = SCENARIOS[scenario]
    confidence = sufficiency_adjust(
        base_conf, len(h1), atr_pct(h1),
        few_bars=20, few_mult=0.7, many_bars=50, many_mult=1.1,
        high_vol_pct=4.0, high_vol_mult=0.8,
    )
    metadata["scenario"] = scenario
    metadata["score_categories"] = categories

    return make_candidate(
        MODEL_ID, direction, strength, confidence,
        f"Key level {scenario.lower()} at {levels.low:.4f}/{levels.high:.4f}",
        view, "1h", category, metadata,
    )


def key_levels(d1: pd.DataFrame) -> Optional[KeyLevels]:
    """Levels from completed daily bars (the last daily bar is the live one)."""
    completed = d1.iloc[:-1]
    if len(completed) < LEVEL_DAYS:
        return None
    window = completed.tail(LEVEL_DAYS)
    prev = completed.iloc[-1]
    return KeyLevels(
        high=float(window["high"].max()),
        low=float(window["low"].min()),
        prev_high=float(prev["high"]),
        prev_low=float(prev["low"]),
    )


def stop_hunt_direction(h1: pd.DataFrame, levels: KeyLevels) -> Optional[Direction]:
    if len(h1) < 20:
        return None
    recent = h1.tail(3)
    broke_high = bool((recent["high"] > levels.high).any())
    broke_low = bool((recent["low"] < levels.low).any())
    if not (broke_high or broke_low):
        return None

    price = float(h1["close"].iloc[-1])
    if not levels.low <= price <= levels.high:
        return None

    avg_vol = float(h1["volume"].mean())
    if avg_vol <= 0 or not bool((recent["volume"] > avg_vol * 3.0).any()):
        return None

    if broke_high and not broke_low:
        return Direction.SHORT
    if broke_low and not broke_high:
        return Direction.LONG
    return Direction.SHORT if price > float(h1["close"].iloc[-2]) else Direction.LONG


def count_touches(h1: pd.DataFrame, levels: KeyLevels) -> int:
    tolerance = (levels.high - levels.low) * 0.005
    touches = 0
    for level in (levels.high, levels.low):
        near = ((h1["high"] - level).abs() <= tolerance) | ((h1["low"] - level).abs() <= tolerance)
        touches += int(near.sum())
    return touches


def is_supply_demand_imbalance(h1: pd.DataFrame, levels: KeyLevels) -> bool:
    if count_touches(h1, levels) < 3:
        return False
    tolerance = (levels.high - levels.low) * 0.01
    engaged = (((h1["high"] - levels.high).abs() <= tolerance)
               | ((h1["low"] - levels.low).abs() <= tolerance)
               | ((h1["high"] >= levels.low) & (h1["low"] <= levels.high)))
    volumes = h1.loc[engaged, "volume"].to_numpy(dtype=float)
    if len(volumes) < 5:
        return False
    half = len(volumes) // 2
    early = float(np.mean(volumes[:half]))
    late = float(np.mean(volumes[half:]))
    return late < early * 0.8


def is_time_exhaustion(h1: pd.DataFrame, levels: KeyLevels) -> bool:
    tolerance = (levels.high - levels.low) * 0.02
    inside = (h1["high"] <= levels.high + tolerance) & (h1["low"] >= levels.low - tolerance)
    if inside.mean() < 0.7:
        return False

    mid = len(h1) // 2
    atr_first = calculate_atr(h1.iloc[:mid], 14).dropna()
    atr_second = calculate_atr(h1.iloc[mid:], 14).dropna()
    if len(atr_first) == 0 or len(atr_second) == 0:
        return False
    return float(atr_second.mean()) < float(atr_first.mean()) * 0.8


def _breakout_direction(h1: pd.DataFrame) -> Direction:
    return Direction.LONG if h1["close"].iloc[-1] > h1["close"].iloc[-2] else Direction.SHORT
