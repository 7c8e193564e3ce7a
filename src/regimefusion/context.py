"""Shared engine context.

One context is created per process and handed to the pipeline. It owns the
adaptive parameter set, the lifecycle table, the clock and the account
equity; all of these are safe to share across worker threads.
"""

import threading
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional, Union

from .adaptive.controller import AdaptiveParameterController
from .config import EngineConfig
from .data.candles import MarketView
from .fusion.validator import SafeWindowFn, always_safe
from .lifecycle.manager import LifecycleManager, utc_now
from .regime.classifier import RegimeResult


class EngineContext:
    """Process-wide state shared by every pipeline run.

    Args:
        config: Engine configuration (defaults if None)
        clock: Time source, injectable for tests
        is_safe_window: Callable(symbol, time) -> bool used by the validator
        account_equity: Equity used for position sizing
        peer_views: symbol -> MarketView for cross-symbol models
    """

    def __init__(self, config: Optional[Union[EngineConfig, dict]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 is_safe_window: Optional[SafeWindowFn] = None,
                 account_equity: Optional[float] = None,
                 peer_views: Optional[Mapping[str, MarketView]] = None):
        if config is None:
            config = EngineConfig()
        elif isinstance(config, dict):
            config = EngineConfig.from_dict(config)
        self.config = config
        self.clock = clock or utc_now
        self.is_safe_window = is_safe_window or always_safe
        self.account_equity = (config.pipeline.default_equity
                               if account_equity is None else account_equity)

        self.params = AdaptiveParameterController(config.adaptive, clock=self.clock)
        self.lifecycle = LifecycleManager(config.lifecycle, clock=self.clock)

        self._lock = threading.Lock()
        self._peer_views: Dict[str, MarketView] = dict(peer_views or {})
        self._regimes: Dict[str, RegimeResult] = {}

    def now(self) -> datetime:
        return self.clock()

    def peers(self) -> Dict[str, MarketView]:
        with self._lock:
            return dict(self._peer_views)

    def set_peer_views(self, views: Mapping[str, MarketView]) -> None:
        with self._lock:
            self._peer_views.update(views)

    def remember_regime(self, symbol: str, result: RegimeResult) -> None:
        with self._lock:
            self._regimes[symbol] = result

    def last_regime(self, symbol: str) -> Optional[RegimeResult]:
        with self._lock:
            return self._regimes.get(symbol)
