from .classifier import RegimeClassifier, RegimeResult
from .gate import RegimeGate

__all__ = ["RegimeClassifier", "RegimeResult", "RegimeGate"]
