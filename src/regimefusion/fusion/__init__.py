from .engine import SignalFusionEngine, weight_key
from .scoring import ScoreCalculator
from .validator import SignalValidator, ValidationResult

__all__ = ["SignalFusionEngine", "weight_key", "ScoreCalculator", "SignalValidator", "ValidationResult"]
