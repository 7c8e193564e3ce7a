"""Category-capped signal score.

Evidence from all contributing signals is pooled per category and each
category is capped on its own, so several models reading the same kind of
evidence cannot stack it past the cap:

    momentum <= 2, structure <= 4, volume <= 2, volatility <= 1, sentiment <= 1

A consistent higher timeframe adds one point; the total is capped at 10.
"""
from typing import Dict, Iterable, Optional, Union

import pandas as pd

from ..config import ScoringConfig
from ..core.types import CandidateSignal, Regime, ScoreBreakdown, ScoreCategory, SignalLevel
from ..features.indicators import calculate_atr

REGIME_CONFIDENCE = {
    Regime.STRONG_TREND: 1.2,
    Regime.WEAK_TREND: 1.0,
    Regime.RANGE: 0.8,
    Regime.SQUEEZE: 0.7,
    Regime.VOLATILITY_EXPANSION: 0.9,
}


class ScoreCalculator:
    """Turns contributing signals into a capped 0-10 score."""

    def __init__(self, cfg: Optional[Union[ScoringConfig, dict]] = None):
        if cfg is None:
            self.cfg = ScoringConfig()
        elif isinstance(cfg, dict):
            self.cfg = ScoringConfig(**cfg)
        else:
            self.cfg = cfg

    @property
    def caps(self) -> Dict[str, float]:
        cfg = self.cfg
        return {
            ScoreCategory.MOMENTUM.value: cfg.momentum_cap,
            ScoreCategory.STRUCTURE.value: cfg.structure_cap,
            ScoreCategory.VOLUME.value: cfg.volume_cap,
            ScoreCategory.VOLATILITY.value: cfg.volatility_cap,
            ScoreCategory.SENTIMENT.value: cfg.sentiment_cap,
        }

    def score(self, signals: Iterable[CandidateSignal], regime: Regime,
              htf_consistent: bool = False, atr_change: float = 0.0) -> ScoreBreakdown:
        """Score the contributing signals.

        Args:
            signals: Signals of the winning direction
            regime: Current regime (confidence adjustment)
            htf_consistent: Higher timeframe agrees with the direction
            atr_change: Relative ATR change (volatility adjustment)

        Returns:
            ScoreBreakdown with capped categories, total, confidence and level
        """
        caps = self.caps
        raw = {name: 0.0 for name in caps}
        for signal in signals:
            for name, points in signal.metadata.get("score_categories", {}).items():
                if name in raw:
                    raw[name] += max(0.0, float(points))

        categories = {name: min(raw[name], caps[name]) for name in caps}
        bonus = self.cfg.htf_bonus if htf_consistent else 0.0
        total = min(self.cfg.max_score, sum(categories.values()) + bonus)

        confidence = (total / self.cfg.max_score
                      * REGIME_CONFIDENCE.get(regime, 1.0)
                      * volatility_adjustment(atr_change))
        confidence = max(0.0, min(1.0, confidence))

        return ScoreBreakdown(
            total=total,
            categories=categories,
            htf_bonus=bonus,
            confidence=confidence,
            level=self.level(total),
        )

    def level(self, score: float) -> SignalLevel:
        if score >= self.cfg.level_1_min:
            return SignalLevel.LEVEL_1
        if score >= self.cfg.level_2_min:
            return SignalLevel.LEVEL_2
        return SignalLevel.LEVEL_3


def volatility_adjustment(atr_change: float) -> float:
    if atr_change > 0.5:
        return 0.7
    if atr_change < -0.3:
        return 0.9
    return 1.0


def atr_change_rate(df: pd.DataFrame, lookback: int = 1, period: int = 14) -> float:
    """Relative change of ATR over ``lookback`` bars, latest vs previous by default.

    Returns 0.0 when there are not enough ATR values.
    """
    atr = calculate_atr(df, period).dropna()
    if len(atr) <= lookback:
        return 0.0
    before = float(atr.iloc[-lookback - 1])
    if before <= 0:
        return 0.0
    return (float(atr.iloc[-1]) - before) / before
