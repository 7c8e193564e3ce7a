"""
Risk / position sizing for validated decisions.

Stops are placed by signal category, targets use a score-dependent
risk:reward ratio, and the position is sized from a fixed risk budget.
``position_size`` is the notional value in quote currency and never
exceeds ``max_position_fraction`` of equity.
"""
import logging
import math
from typing import Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from ..config import RiskConfig
from ..core.types import (
    Candle,
    CandidateSignal,
    Direction,
    FusionResult,
    Regime,
    RiskPlan,
    SignalCategory,
)
from ..data.candles import candles_to_frame
from ..features.indicators import calculate_atr, last_value

logger = logging.getLogger(__name__)

ANCHOR_KEYS = {
    SignalCategory.STRUCTURAL_BREAK: "structure_anchor",
    SignalCategory.FALSE_BREAKOUT_REVERSAL: "false_breakout_extreme",
    SignalCategory.VOLATILITY_BREAKOUT: "consolidation_anchor",
}


def risk_reward_for(score: float) -> float:
    if score >= 8:
        return 3.0
    if score >= 6:
        return 2.5
    return 2.0


def leverage_for(score: float) -> int:
    if score >= 8:
        return 20
    if score >= 6:
        return 10
    return 5


class RiskSizer:
    """Stop, target, leverage and position size for one decision."""

    def __init__(self, config: Optional[Union[RiskConfig, dict]] = None):
        if config is None:
            self.config = RiskConfig()
        elif isinstance(config, dict):
            self.config = RiskConfig(**config)
        else:
            self.config = config

    def stop_loss(self, direction: Direction, entry: float, atr: float,
                  category: SignalCategory = SignalCategory.DEFAULT,
                  anchor: Optional[float] = None,
                  default_multiplier: float = 1.5) -> Tuple[float, str]:
        """
        Place the stop for a signal category.

        Anchored stops sit k x ATR beyond the anchor on the far side from the
        entry (k = 1.5 structural break, 0.5 false breakout, 0.3 volatility
        breakout). Without an anchor, or if the anchored stop lands on the
        wrong side of the entry, the stop is entry -/+ ATR x default_multiplier.

        Returns:
            Tuple of (stop_price, explanation)
        """
        cfg = self.config
        sign = direction.sign
        default = entry - sign * atr * default_multiplier

        k = {
            SignalCategory.STRUCTURAL_BREAK: cfg.structural_atr_mult,
            SignalCategory.FALSE_BREAKOUT_REVERSAL: cfg.false_breakout_atr_mult,
            SignalCategory.VOLATILITY_BREAKOUT: cfg.breakout_atr_mult,
        }.get(category)
        if k is None or anchor is None or anchor <= 0:
            return default, f"default {default_multiplier:.2f}xATR"

        stop = anchor - atr * k if entry > anchor else anchor + atr * k
        if (stop - entry) * sign >= 0:
            return default, f"default {default_multiplier:.2f}xATR (anchor on wrong side)"
        return stop, f"{category.value.lower()} anchor {anchor:.4f} +/- {k:.1f}xATR"

    def position_size(self, equity: float, entry: float, stop: float,
                      regime: Regime, confidence: float) -> Tuple[float, str]:
        """
        Notional position size.

        size = equity x base_risk x regime_factor x confidence / stop_pct,
        capped at equity x max_position_fraction. A non-positive stop
        distance falls back to ``fallback_stop_pct`` of the entry.

        Returns:
            Tuple of (notional, explanation)
        """
        cfg = self.config
        if not (equity > 0 and entry > 0):
            return 0.0, "Invalid equity or entry"

        cap = equity * cfg.max_position_fraction
        stop_distance = abs(entry - stop)
        if not (stop_distance > 0) or not math.isfinite(stop_distance):
            stop_distance = entry * cfg.fallback_stop_pct

        factor = cfg.regime_risk_factors.get(regime.value, 1.0)
        confidence = min(1.0, max(0.0, confidence)) if math.isfinite(confidence) else 0.0
        risk_amount = equity * cfg.base_risk_fraction * max(0.0, factor) * confidence
        quantity = risk_amount / stop_distance
        notional = quantity * entry
        if not math.isfinite(notional):
            notional = cap
        size = min(max(0.0, notional), cap)

        explanation = (
            f"notional={size:.2f} (raw {notional:.2f}, cap {cap:.2f}), "
            f"risk={risk_amount:.2f}, stop_dist={stop_distance:.6f}"
        )
        return size, explanation

    def size(self, decision: FusionResult, regime: Regime, score: float,
             candles: Union[Sequence[Candle], pd.DataFrame],
             equity: float,
             confidence: Optional[float] = None,
             params: Optional[Mapping[str, float]] = None) -> RiskPlan:
        """Full risk plan for a fused decision.

        Args:
            decision: Fused, validated decision
            regime: Current regime
            score: 0-10 fused score (sets risk:reward and leverage)
            candles: Candles used for entry price and ATR
            equity: Account equity
            confidence: Confidence for sizing (defaults to decision.confidence)
            params: Adaptive parameter snapshot (ATR stop multiplier)
        """
        direction = decision.decision
        if direction is Direction.NO_TRADE:
            return RiskPlan(explanation="No trade")

        df = candles if isinstance(candles, pd.DataFrame) else candles_to_frame(candles)
        if len(df) == 0:
            return RiskPlan(explanation="No candles")

        entry = float(df["close"].iloc[-1])
        atr = last_value(calculate_atr(df, self.config.atr_period))
        if atr is None or atr <= 0:
            atr = entry * self.config.fallback_stop_pct

        params = params or {}
        default_mult = params.get("atr_stop_loss_multiplier", 1.5)
        lead = _lead_signal(decision.contributing)
        category = lead.category if lead else SignalCategory.DEFAULT
        anchor = None
        if lead is not None and category in ANCHOR_KEYS:
            anchor = lead.metadata.get(ANCHOR_KEYS[category])

        stop, stop_note = self.stop_loss(direction, entry, atr, category, anchor, default_mult)
        rr = risk_reward_for(score)
        take_profit = entry + direction.sign * abs(entry - stop) * rr

        conf = decision.confidence if confidence is None else confidence
        notional, size_note = self.position_size(equity, entry, stop, regime, conf)

        plan = RiskPlan(
            stop_loss=stop,
            take_profit=take_profit,
            position_size=notional,
            quantity=notional / entry if entry > 0 else 0.0,
            leverage=leverage_for(score),
            risk_reward=rr,
            explanation=f"stop: {stop_note}; rr={rr:.1f}; {size_note}",
        )
        logger.debug("Risk plan %s: %s", direction.value, plan.explanation)
        return plan


def _lead_signal(signals: Sequence[CandidateSignal]) -> Optional[CandidateSignal]:
    """Contributing signal with the largest strength x confidence (ties by model id)."""
    if not signals:
        return None
    return max(signals, key=lambda s: (s.weighted_strength, s.model_id.value))
