"""Signal models.

Each model is a detector function plus the set of regimes the gate lets it
run in. ``build_models`` is the single place the list is assembled.
"""

from typing import Dict, Iterable, List, Optional

from ..core.types import ModelId
from ..regime.gate import RegimeGate
from . import (
    correlation_arbitrage,
    extreme_sentiment,
    institutional_flow,
    key_level,
    trend_momentum,
    volatility_breakout,
)
from .common import DetectionContext, Detector, SignalModel

DETECTORS: Dict[ModelId, Detector] = {
    ModelId.TREND_MOMENTUM_RESONANCE: trend_momentum.detect,
    ModelId.INSTITUTIONAL_FLOW: institutional_flow.detect,
    ModelId.VOLATILITY_BREAKOUT: volatility_breakout.detect,
    ModelId.KEY_LEVEL_BATTLEGROUNDS: key_level.detect,
    ModelId.EXTREME_SENTIMENT: extreme_sentiment.detect,
    ModelId.CORRELATION_ARBITRAGE: correlation_arbitrage.detect,
}


def build_models(gate: Optional[RegimeGate] = None,
                 enabled: Optional[Iterable[str]] = None) -> List[SignalModel]:
    """Assemble the model list in ModelId order.

    Args:
        gate: Regime gate supplying each model's allowed regimes
        enabled: Model names to include (None = all)
    """
    gate = gate or RegimeGate()
    wanted = None if enabled is None else {ModelId(m) for m in enabled}
    return [
        SignalModel(model_id, detector, gate.regimes_for(model_id))
        for model_id, detector in DETECTORS.items()
        if wanted is None or model_id in wanted
    ]


__all__ = ["DETECTORS", "DetectionContext", "SignalModel", "build_models"]
