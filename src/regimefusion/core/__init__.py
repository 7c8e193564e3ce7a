from .types import (
    Candle,
    CandidateSignal,
    Decision,
    Direction,
    FusionResult,
    LifecycleEntry,
    LifecycleState,
    ModelId,
    PerformanceRecord,
    Regime,
    RiskPlan,
    ScoreBreakdown,
    ScoreCategory,
    SignalCategory,
    SignalLevel,
)

__all__ = [
    "Candle",
    "CandidateSignal",
    "Decision",
    "Direction",
    "FusionResult",
    "LifecycleEntry",
    "LifecycleState",
    "ModelId",
    "PerformanceRecord",
    "Regime",
    "RiskPlan",
    "ScoreBreakdown",
    "ScoreCategory",
    "SignalCategory",
    "SignalLevel",
]
