"""
Signal fusion engine.

Aggregates candidate signals into one directional decision:
1. Partition candidates by direction
2. Per direction, sum strength x confidence x model weight x regime multiplier
3. Confidence grows with the number of signals, min(1, n / 6 * 0.5)
4. A direction wins only if it leads the other by more than ``margin``

Sums use math.fsum, so the result does not depend on input order.
"""
import logging
import math
from typing import Dict, Iterable, List, Mapping, Optional, Union

from ..config import FusionConfig
from ..core.types import (
    CandidateSignal,
    Direction,
    FusionResult,
    Regime,
    SignalCategory,
)

logger = logging.getLogger(__name__)

BREAKOUT_CATEGORIES = frozenset({SignalCategory.VOLATILITY_BREAKOUT, SignalCategory.STRUCTURAL_BREAK})


def weight_key(model_id) -> str:
    """Adaptive parameter name holding a model's weight."""
    return f"weight.{getattr(model_id, 'value', model_id)}"


def _sort_key(signal: CandidateSignal):
    return (signal.model_id.value, signal.direction.value, signal.strength,
            signal.confidence, signal.timestamp, signal.price)


class SignalFusionEngine:
    """Confidence-weighted fusion of candidate signals."""

    def __init__(self, cfg: Optional[Union[FusionConfig, dict]] = None):
        if cfg is None:
            self.cfg = FusionConfig()
        elif isinstance(cfg, dict):
            self.cfg = FusionConfig(**cfg)
        else:
            self.cfg = cfg

    def regime_multiplier(self, signal: CandidateSignal, regime: Regime,
                          trend_bias: Optional[Direction] = None) -> float:
        """Per-signal regime adjustment.

        STRONG_TREND boosts only the trend-aligned direction; RANGE dampens
        only breakout-type signals; the other regimes scale every signal.
        """
        cfg = self.cfg
        if regime is Regime.STRONG_TREND:
            return cfg.strong_trend_mult if signal.direction is trend_bias else 1.0
        if regime is Regime.WEAK_TREND:
            return cfg.weak_trend_mult
        if regime is Regime.RANGE:
            return cfg.range_mult if signal.category in BREAKOUT_CATEGORIES else 1.0
        if regime is Regime.VOLATILITY_EXPANSION:
            return cfg.expansion_mult
        if regime is Regime.SQUEEZE:
            return cfg.squeeze_mult
        return 1.0

    def fuse(
        self,
        candidates: Iterable[CandidateSignal],
        regime: Regime,
        trend_bias: Optional[Direction] = None,
        params: Optional[Mapping[str, float]] = None,
        price: Optional[float] = None,
        atr: Optional[float] = None,
    ) -> FusionResult:
        """Fuse candidates into one decision.

        Args:
            candidates: Gated candidate signals (any order)
            regime: Current regime
            trend_bias: Direction of the prevailing trend (for STRONG_TREND)
            params: Adaptive parameter snapshot (model weights, ATR multipliers)
            price: Entry reference for the preliminary stop/target
            atr: ATR for the preliminary stop/target

        Returns:
            FusionResult; NO_TRADE with zero strength and confidence when
            there are no candidates
        """
        signals = sorted(candidates, key=_sort_key)
        params = params or {}

        if not signals:
            return FusionResult(
                decision=Direction.NO_TRADE,
                aggregated_strength=0.0,
                confidence=0.0,
                rationale="No candidate signals",
                metrics={"long": 0.0, "short": 0.0, "signals": 0.0},
            )

        by_dir: Dict[Direction, List[CandidateSignal]] = {Direction.LONG: [], Direction.SHORT: []}
        for s in signals:
            if s.direction in by_dir:
                by_dir[s.direction].append(s)

        totals = {
            d: math.fsum(
                s.strength * s.confidence
                * params.get(weight_key(s.model_id), 1.0)
                * self.regime_multiplier(s, regime, trend_bias)
                for s in group
            )
            for d, group in by_dir.items()
        }
        long_total = totals[Direction.LONG]
        short_total = totals[Direction.SHORT]

        count = len(by_dir[Direction.LONG]) + len(by_dir[Direction.SHORT])
        confidence = min(1.0, count / self.cfg.max_signals * self.cfg.count_confidence_scale)

        if long_total - short_total > self.cfg.margin:
            decision = Direction.LONG
        elif short_total - long_total > self.cfg.margin:
            decision = Direction.SHORT
        else:
            decision = Direction.NO_TRADE

        if decision is Direction.NO_TRADE:
            contributing: List[CandidateSignal] = []
            rationale = f"No clear direction: long {long_total:.2f}, short {short_total:.2f}"
        else:
            contributing = by_dir[decision]
            win, lose = (long_total, short_total) if decision is Direction.LONG else (short_total, long_total)
            models = ", ".join(s.model_id.value for s in contributing)
            rationale = f"{decision.value} dominates {win:.2f} vs {lose:.2f} [{models}]"

        result = FusionResult(
            decision=decision,
            aggregated_strength=abs(long_total - short_total),
            confidence=confidence,
            rationale=rationale,
            contributing=tuple(contributing),
            metrics={"long": long_total, "short": short_total, "signals": float(count)},
        )

        if decision is not Direction.NO_TRADE and price and atr and atr > 0:
            winner = long_total if decision is Direction.LONG else short_total
            stop_mult = params.get("atr_stop_loss_multiplier", 1.5)
            tp_mult = params.get("atr_take_profit_multiplier", 2.0)
            sign = decision.sign
            result.stop_loss = price - sign * atr * stop_mult
            result.take_profit = price + sign * atr * tp_mult * (winner / 10.0)

        logger.info("Fusion %s regime=%s long=%.3f short=%.3f conf=%.3f",
                    decision.value, regime.value, long_total, short_total, confidence)
        return result
