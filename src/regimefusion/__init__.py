"""Regime-aware multi-model signal fusion engine."""

from .config import EngineConfig, load_config
from .context import EngineContext
from .core.types import Candle, CandidateSignal, Decision, Direction, ModelId, Regime
from .data.candles import MarketView
from .pipeline import SignalPipeline

__version__ = "0.1.0"

__all__ = [
    "Candle",
    "CandidateSignal",
    "Decision",
    "Direction",
    "EngineConfig",
    "EngineContext",
    "MarketView",
    "ModelId",
    "Regime",
    "SignalPipeline",
    "load_config",
]
