"""Core types for the regime fusion engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Regime(str, Enum):
    """Market regime classes."""
    STRONG_TREND = "STRONG_TREND"
    WEAK_TREND = "WEAK_TREND"
    RANGE = "RANGE"
    SQUEEZE = "SQUEEZE"
    VOLATILITY_EXPANSION = "VOLATILITY_EXPANSION"


class Direction(str, Enum):
    """Trade direction. NO_TRADE only appears on fusion output."""
    LONG = "LONG"
    SHORT = "SHORT"
    NO_TRADE = "NO_TRADE"

    @property
    def sign(self) -> int:
        if self is Direction.LONG:
            return 1
        if self is Direction.SHORT:
            return -1
        return 0

    def opposite(self) -> "Direction":
        if self is Direction.LONG:
            return Direction.SHORT
        if self is Direction.SHORT:
            return Direction.LONG
        return Direction.NO_TRADE


class ModelId(str, Enum):
    """Signal model identifiers."""
    TREND_MOMENTUM_RESONANCE = "TREND_MOMENTUM_RESONANCE"
    INSTITUTIONAL_FLOW = "INSTITUTIONAL_FLOW"
    VOLATILITY_BREAKOUT = "VOLATILITY_BREAKOUT"
    KEY_LEVEL_BATTLEGROUNDS = "KEY_LEVEL_BATTLEGROUNDS"
    EXTREME_SENTIMENT = "EXTREME_SENTIMENT"
    CORRELATION_ARBITRAGE = "CORRELATION_ARBITRAGE"


class SignalCategory(str, Enum):
    """Stop-placement family of a signal."""
    STRUCTURAL_BREAK = "STRUCTURAL_BREAK"
    FALSE_BREAKOUT_REVERSAL = "FALSE_BREAKOUT_REVERSAL"
    VOLATILITY_BREAKOUT = "VOLATILITY_BREAKOUT"
    DEFAULT = "DEFAULT"


class ScoreCategory(str, Enum):
    """Score buckets. Each bucket is capped independently."""
    MOMENTUM = "momentum"
    STRUCTURE = "structure"
    VOLUME = "volume"
    VOLATILITY = "volatility"
    SENTIMENT = "sentiment"


class LifecycleState(str, Enum):
    """Signal lifecycle states."""
    SETUP = "SETUP"
    TRIGGERED = "TRIGGERED"
    CONFIRMED = "CONFIRMED"
    INVALIDATED = "INVALIDATED"
    COOLDOWN = "COOLDOWN"


class SignalLevel(str, Enum):
    """Severity level derived from the fused score."""
    LEVEL_1 = "LEVEL_1"
    LEVEL_2 = "LEVEL_2"
    LEVEL_3 = "LEVEL_3"


@dataclass(frozen=True)
class Candle:
    """Single OHLCV bar. Times are epoch milliseconds."""
    symbol: str
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int = 0

    @property
    def body(self) -> float:
        """Absolute body size."""
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        """High - low range (floored to avoid division by zero)."""
        return max(self.high - self.low, 1e-10)

    @property
    def body_ratio(self) -> float:
        return self.body / self.range

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


@dataclass(frozen=True)
class CandidateSignal:
    """One model's directional opinion for the current cycle.

    strength is in [0, 10] and confidence in [0, 1]; constructors clamp
    through ``make_candidate`` rather than here so that frozen instances
    always hold what the caller passed.
    """
    model_id: ModelId
    direction: Direction
    strength: float
    confidence: float
    rationale: str
    price: float
    timestamp: int
    category: SignalCategory = SignalCategory.DEFAULT
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def weighted_strength(self) -> float:
        return self.strength * self.confidence


@dataclass
class RiskPlan:
    """Stop, target, size and leverage for a decision."""
    stop_loss: float = 0.0
    take_profit: float = 0.0
    position_size: float = 0.0
    quantity: float = 0.0
    leverage: int = 1
    risk_reward: float = 0.0
    explanation: str = ""


@dataclass
class FusionResult:
    """Output of one fusion pass."""
    decision: Direction
    aggregated_strength: float
    confidence: float
    rationale: str
    contributing: Tuple[CandidateSignal, ...] = ()
    position_size: float = 0.0
    stop_loss: float = 0.0
    take_profit: float = 0.0
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def is_trade(self) -> bool:
        return self.decision is not Direction.NO_TRADE


@dataclass
class ScoreBreakdown:
    """Capped per-category score and the confidence derived from it."""
    total: float
    categories: Dict[str, float] = field(default_factory=dict)
    htf_bonus: float = 0.0
    confidence: float = 0.0
    level: SignalLevel = SignalLevel.LEVEL_3


@dataclass
class LifecycleEntry:
    """Live lifecycle record for one signal identity."""
    state: LifecycleState
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    reason: str = ""
    trigger_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class PerformanceRecord:
    """Realized performance sample fed back by the trade tracker."""
    win_rate: float
    profit_factor: float
    sharpe_ratio: float
    max_drawdown: float
    period: str
    timestamp: datetime


@dataclass
class Decision:
    """Final per-symbol decision handed to collaborators."""
    symbol: str
    direction: Direction
    strength: float
    confidence: float
    score: float
    level: SignalLevel
    regime: Regime
    entry_price: float
    stop_loss: float
    take_profit: float
    position_size: float
    leverage: int
    rationale: str
    contributing_models: List[ModelId] = field(default_factory=list)
    generated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "strength": self.strength,
            "confidence": self.confidence,
            "score": self.score,
            "level": self.level.value,
            "regime": self.regime.value,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "position_size": self.position_size,
            "leverage": self.leverage,
            "rationale": self.rationale,
            "contributing_models": [m.value for m in self.contributing_models],
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }
