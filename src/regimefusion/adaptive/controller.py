"""Adaptive parameter controller.

Keeps the process-wide parameter set and retunes it from realized trade
performance. Every adjustment moves one step toward a hard bound, so
repeated optimisation can never drift past the bounds.

Rules applied by ``optimize`` over the last 7 days of samples:
- mean win rate < 45%: confirmation threshold +1 (max 3)
- mean win rate > 65%: confirmation threshold -1 (min 1)
- mean Sharpe < 0.8: ATR stop multiplier +0.2 (max 2.0)
- max drawdown > 15%: every model weight -0.1 (min 0.5)
"""

import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple, Union

from ..config import AdaptiveConfig
from ..core.types import ModelId, PerformanceRecord, SignalLevel
from ..fusion.engine import weight_key
from ..lifecycle.manager import utc_now

logger = logging.getLogger(__name__)

THRESHOLD = "signal_confirmation_threshold"
STOP_MULT = "atr_stop_loss_multiplier"
TP_MULT = "atr_take_profit_multiplier"


def cooldown_key(level: SignalLevel) -> str:
    return f"cooldown_hours.{level.value}"


class AdaptiveParameterController:
    """Thread-safe adaptive parameter set with a bounded performance history."""

    def __init__(self, cfg: Optional[Union[AdaptiveConfig, dict]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        if cfg is None:
            self.cfg = AdaptiveConfig()
        elif isinstance(cfg, dict):
            self.cfg = AdaptiveConfig(**cfg)
        else:
            self.cfg = cfg
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._history: Deque[PerformanceRecord] = deque(maxlen=self.cfg.history_size)
        self._params: Dict[str, float] = self.defaults()
        self._last_fingerprint: Optional[Tuple] = None

    def defaults(self) -> Dict[str, float]:
        cfg = self.cfg
        params = {
            THRESHOLD: float(cfg.signal_confirmation_threshold),
            STOP_MULT: cfg.atr_stop_loss_multiplier,
            TP_MULT: cfg.atr_take_profit_multiplier,
            cooldown_key(SignalLevel.LEVEL_1): cfg.cooldown_hours_level_1,
            cooldown_key(SignalLevel.LEVEL_2): cfg.cooldown_hours_level_2,
            cooldown_key(SignalLevel.LEVEL_3): cfg.cooldown_hours_level_3,
        }
        for model_id in ModelId:
            params[weight_key(model_id)] = cfg.model_weight
        return params

    def _bounds(self, name: str) -> Tuple[float, float]:
        cfg = self.cfg
        if name == THRESHOLD:
            return cfg.threshold_min, cfg.threshold_max
        if name == STOP_MULT:
            return 0.0, cfg.stop_multiplier_max
        if name.startswith("weight."):
            return cfg.weight_min, max(cfg.model_weight, cfg.weight_min)
        return 0.0, float("inf")

    # -- parameter access --------------------------------------------------

    def get(self, name: str, default: Optional[float] = None) -> float:
        with self._lock:
            if name in self._params:
                return self._params[name]
        if default is None:
            raise KeyError(f"Unknown parameter: {name}")
        return default

    def set(self, name: str, value: float) -> float:
        """Set a parameter, clamped to its bounds. Returns the stored value."""
        lo, hi = self._bounds(name)
        clamped = min(hi, max(lo, float(value)))
        with self._lock:
            self._params[name] = clamped
        return clamped

    def weight(self, model_id: ModelId) -> float:
        return self.get(weight_key(model_id), self.cfg.model_weight)

    def cooldown_hours(self, level: SignalLevel) -> float:
        return self.get(cooldown_key(level), self.cfg.cooldown_hours_level_3)

    def snapshot(self) -> Dict[str, float]:
        """Consistent copy of every parameter."""
        with self._lock:
            return dict(self._params)

    def reset(self) -> None:
        """Restore defaults and clear the performance history."""
        with self._lock:
            self._params = self.defaults()
            self._history.clear()
            self._last_fingerprint = None
        logger.info("Adaptive parameters reset to defaults")

    # -- feedback loop -----------------------------------------------------

    def record(self, sample: PerformanceRecord) -> None:
        """Append a performance sample; the oldest is dropped past history_size."""
        with self._lock:
            self._history.append(sample)

    def history(self) -> List[PerformanceRecord]:
        with self._lock:
            return list(self._history)

    def optimize(self) -> Dict[str, float]:
        """Apply the tuning rules to the recent window.

        Returns:
            Mapping of changed parameter -> new value (empty when nothing
            changed, the history is empty, or the window is unchanged since
            the last call)
        """
        cfg = self.cfg
        with self._lock:
            cutoff = self._clock() - timedelta(days=cfg.window_days)
            window = [r for r in self._history if r.timestamp >= cutoff]
            if not window:
                return {}

            fingerprint = tuple(
                (r.timestamp, r.win_rate, r.profit_factor, r.sharpe_ratio, r.max_drawdown)
                for r in window
            )
            if fingerprint == self._last_fingerprint:
                return {}
            self._last_fingerprint = fingerprint

            win_rate = sum(r.win_rate for r in window) / len(window)
            sharpe = sum(r.sharpe_ratio for r in window) / len(window)
            drawdown = max(r.max_drawdown for r in window)

            before = dict(self._params)
            params = self._params

            if win_rate < cfg.low_win_rate:
                params[THRESHOLD] = min(cfg.threshold_max, params[THRESHOLD] + 1)
            elif win_rate > cfg.high_win_rate:
                params[THRESHOLD] = max(cfg.threshold_min, params[THRESHOLD] - 1)

            if sharpe < cfg.min_sharpe:
                params[STOP_MULT] = min(cfg.stop_multiplier_max,
                                        round(params[STOP_MULT] + cfg.stop_multiplier_step, 6))

            if drawdown > cfg.max_drawdown:
                for name in params:
                    if name.startswith("weight."):
                        params[name] = max(cfg.weight_min, round(params[name] - cfg.weight_step, 6))

            changes = {k: v for k, v in params.items() if before.get(k) != v}

        if changes:
            logger.info("Adaptive parameters updated (win=%.2f sharpe=%.2f dd=%.2f): %s",
                        win_rate, sharpe, drawdown, changes)
        return changes
