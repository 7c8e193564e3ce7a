"""
Secondary validation of a fused decision.

Five independent checks, all required:
- price action: latest bar agrees with the direction
- volume: latest volume >= 1.2x the 20-bar average
- time: generation time is outside the caller's unsafe window
- structure: direction agrees with the 50-period SMA, unless the score is
  high enough (>= 7) to justify a counter-trend trade
- strength: score >= 4
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Union

import pandas as pd

from ..config import ValidatorConfig
from ..core.types import Candle, Direction, FusionResult
from ..data.candles import candles_to_frame
from ..features.indicators import calculate_sma, last_value

logger = logging.getLogger(__name__)

SafeWindowFn = Callable[[str, datetime], bool]


def always_safe(symbol: str, when: datetime) -> bool:
    return True


@dataclass
class ValidationResult:
    """Per-check outcome of a validation pass."""
    passed: bool
    checks: Dict[str, bool] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    @property
    def passed_count(self) -> int:
        return sum(1 for ok in self.checks.values() if ok)


class SignalValidator:
    """Validates fused decisions against recent candles."""

    def __init__(self, cfg: Optional[Union[ValidatorConfig, dict]] = None,
                 is_safe_window: Optional[SafeWindowFn] = None):
        if cfg is None:
            self.cfg = ValidatorConfig()
        elif isinstance(cfg, dict):
            self.cfg = ValidatorConfig(**cfg)
        else:
            self.cfg = cfg
        self.is_safe_window = is_safe_window or always_safe

    def validate(self, result: FusionResult,
                 candles: Union[Sequence[Candle], pd.DataFrame],
                 score: Optional[float] = None,
                 symbol: str = "",
                 when: Optional[datetime] = None) -> bool:
        """True if every check passes."""
        return self.validate_detailed(result, candles, score, symbol, when).passed

    def validate_detailed(self, result: FusionResult,
                          candles: Union[Sequence[Candle], pd.DataFrame],
                          score: Optional[float] = None,
                          symbol: str = "",
                          when: Optional[datetime] = None) -> ValidationResult:
        """Run all checks and report each outcome.

        Args:
            result: Fused decision
            candles: Candles of the validation timeframe, ascending
            score: Fused 0-10 score (defaults to the capped aggregated strength)
            symbol: Symbol passed to the safe-window callable
            when: Signal generation time (defaults to now, UTC)
        """
        df = candles if isinstance(candles, pd.DataFrame) else candles_to_frame(candles)
        direction = result.decision

        if direction is Direction.NO_TRADE:
            return ValidationResult(False, {}, ["no_trade"])
        if len(df) < self.cfg.min_candles:
            return ValidationResult(False, {}, ["insufficient_candles"])

        if score is None:
            score = min(10.0, result.aggregated_strength)
        when = when or datetime.now(timezone.utc)

        checks = {
            "price_action": self._price_action(df, direction),
            "volume": self._volume(df),
            "time_window": bool(self.is_safe_window(symbol, when)),
            "structure": self._structure(df, direction, score),
            "strength": score >= self.cfg.min_score,
        }
        failures = [name for name, ok in checks.items() if not ok]
        passed = not failures

        if passed:
            logger.debug("%s %s validated (score=%.1f)", symbol, direction.value, score)
        else:
            logger.info("%s %s failed validation: %s", symbol, direction.value, failures)
        return ValidationResult(passed, checks, failures)

    def _price_action(self, df: pd.DataFrame, direction: Direction) -> bool:
        if len(df) < 3:
            return True
        last = df.iloc[-1]
        prev_close = float(df["close"].iloc[-2])
        if direction is Direction.LONG:
            return bool(last["close"] > last["open"] or last["close"] > prev_close)
        return bool(last["close"] < last["open"] or last["close"] < prev_close)

    def _volume(self, df: pd.DataFrame) -> bool:
        n = self.cfg.volume_lookback
        if len(df) < n:
            return True
        avg = float(df["volume"].tail(n).mean())
        if avg <= 0:
            return False
        return float(df["volume"].iloc[-1]) >= avg * self.cfg.volume_ratio_min

    def _structure(self, df: pd.DataFrame, direction: Direction, score: float) -> bool:
        if score >= self.cfg.counter_trend_min_score:
            return True
        if len(df) < self.cfg.trend_period:
            return True
        sma = last_value(calculate_sma(df["close"], self.cfg.trend_period))
        if sma is None:
            return True
        price = float(df["close"].iloc[-1])
        if direction is Direction.LONG:
            return price > sma
        return price < sma


CONFIDENCE_CHECKS = ("price_action", "volume", "structure")


def validation_confidence(score: float, result: ValidationResult) -> float:
    """Confidence of a validated decision.

    score / 10, boosted 10% for each of the price action, volume and
    structure checks that passed, capped at 1. A failed validation is 0.
    """
    if not result.passed:
        return 0.0
    boosted = sum(1 for name in CONFIDENCE_CHECKS if result.checks.get(name))
    return min(1.0, score / 10.0 * (1.1 ** boosted))
