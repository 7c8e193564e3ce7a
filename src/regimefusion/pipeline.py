"""Per-symbol signal pipeline.

One evaluation runs:

    classify -> gate -> detect -> lifecycle admission -> fuse -> score
             -> validate -> trigger -> size -> Decision

Models the gate rejects are never run, and their live lifecycle entries for
the symbol are invalidated. A model that raises is logged and skipped. A
Decision is emitted once the winning side has at least
``signal_confirmation_threshold`` contributing signals, or one of its
signals has been triggered that many times (lifecycle CONFIRMED). Expired
lifecycle entries are swept at the start of every evaluation.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from .adaptive.controller import THRESHOLD, cooldown_key
from .context import EngineContext
from .core.types import Candle, CandidateSignal, Decision, Direction, LifecycleState
from .data.candles import MarketView
from .features.indicators import calculate_atr, last_value
from .filters.mtf import HigherTimeframeFilter
from .fusion.engine import SignalFusionEngine
from .fusion.scoring import ScoreCalculator, atr_change_rate
from .fusion.validator import SignalValidator, validation_confidence
from .lifecycle.manager import identity_of
from .models import build_models
from .models.common import DetectionContext, SignalModel
from .regime.classifier import RegimeClassifier
from .regime.gate import RegimeGate
from .strategy.risk import RiskSizer

logger = structlog.get_logger(__name__)

CandleFetcher = Callable[[str, str, int], Sequence[Candle]]


class SignalPipeline:
    """Wires the engines together for one process-wide context."""

    def __init__(self, context: Optional[EngineContext] = None,
                 models: Optional[Iterable[SignalModel]] = None):
        self.context = context or EngineContext()
        cfg = self.context.config

        self.classifier = RegimeClassifier(cfg.regime)
        self.gate = RegimeGate(cfg.gate)
        if models is None:
            models = build_models(self.gate, cfg.models.enabled)
        self.models: List[SignalModel] = list(models)
        self.fusion = SignalFusionEngine(cfg.fusion)
        self.scorer = ScoreCalculator(cfg.scoring)
        self.validator = SignalValidator(cfg.validator, self.context.is_safe_window)
        self.sizer = RiskSizer(cfg.risk)
        self.htf_filter = HigherTimeframeFilter()

    def evaluate(self, symbol: str, view) -> Optional[Decision]:
        """Evaluate one symbol.

        Args:
            symbol: Trading symbol
            view: MarketView, or a mapping of timeframe -> candles

        Returns:
            Decision, or None when there is nothing to trade
        """
        ctx = self.context
        view = MarketView.from_mapping(symbol, view)
        primary = ctx.config.regime.primary_timeframe
        now = ctx.now()
        ctx.lifecycle.cleanup_expired()

        regime_result = self.classifier.classify_detailed(symbol, view)
        ctx.remember_regime(symbol, regime_result)
        regime = regime_result.regime

        allowed, rejected = self.gate.partition(self.models, regime)
        for model in rejected:
            ctx.lifecycle.invalidate_model(symbol, model.model_id,
                                           f"gated out in {regime.value}")

        params = ctx.params.snapshot()
        detection = DetectionContext(params=params, peers=ctx.peers())
        candidates = self._detect(symbol, view, allowed, detection)
        if not candidates:
            logger.debug("no_candidates", symbol=symbol, regime=regime.value)
            return None

        df = view.frame(primary)
        price = view.last_price(primary) or None
        atr = last_value(calculate_atr(df, ctx.config.risk.atr_period)) if len(df) else None
        result = self.fusion.fuse(candidates, regime, regime_result.trend_bias,
                                  params, price, atr)
        if not result.is_trade:
            return None

        htf_ok = self.htf_filter.is_consistent(result.decision, view)
        breakdown = self.scorer.score(result.contributing, regime, htf_ok,
                                      atr_change_rate(df))

        validation = self.validator.validate_detailed(result, df, breakdown.total, symbol, now)
        keys = [identity_of(symbol, s) for s in result.contributing]
        if not validation.passed:
            reason = "validation failed: " + ", ".join(validation.failures)
            for key in keys:
                ctx.lifecycle.invalidate(key, reason)
            return None

        threshold = params.get(THRESHOLD, ctx.config.adaptive.signal_confirmation_threshold)
        states = [ctx.lifecycle.trigger(key, confirmation_threshold=threshold) for key in keys]
        confirmed = (len(keys) >= threshold
                     or any(s is LifecycleState.CONFIRMED for s in states))
        if not confirmed:
            logger.info("awaiting_confirmation", symbol=symbol,
                        direction=result.decision.value, signals=len(keys), threshold=threshold)
            return None

        plan = self.sizer.size(result, regime, breakdown.total, df, ctx.account_equity,
                               confidence=breakdown.confidence, params=params)

        decision = Decision(
            symbol=symbol,
            direction=result.decision,
            strength=result.aggregated_strength,
            confidence=validation_confidence(breakdown.total, validation),
            score=breakdown.total,
            level=breakdown.level,
            regime=regime,
            entry_price=float(df["close"].iloc[-1]),
            stop_loss=plan.stop_loss,
            take_profit=plan.take_profit,
            position_size=plan.position_size,
            leverage=plan.leverage,
            rationale=f"{result.rationale}; {plan.explanation}",
            contributing_models=[s.model_id for s in result.contributing],
            generated_at=now,
        )

        hours = params.get(cooldown_key(breakdown.level), 0.0)
        for key in keys:
            ctx.lifecycle.cooldown(key, hours, f"{breakdown.level.value} decision emitted")

        logger.info("decision", symbol=symbol, direction=decision.direction.value,
                    score=decision.score, level=decision.level.value,
                    regime=regime.value, size=round(decision.position_size, 2))
        return decision

    def _detect(self, symbol: str, view: MarketView, models: Iterable[SignalModel],
                detection: DetectionContext) -> List[CandidateSignal]:
        """Run each allowed model in isolation and admit its signal to the lifecycle."""
        lifecycle = self.context.lifecycle
        out: List[CandidateSignal] = []
        for model in models:
            try:
                signal = model.detect(symbol, view, detection)
            except Exception:
                logger.warning("model_failed", symbol=symbol,
                               model=model.model_id.value, exc_info=True)
                continue
            if signal is None or signal.direction is Direction.NO_TRADE:
                continue

            key = identity_of(symbol, signal)
            if not lifecycle.can_process(key):
                logger.debug("signal_suppressed", symbol=symbol, key=key)
                continue
            lifecycle.setup(key)
            out.append(signal)
        return out

    def evaluate_many(self, symbols: Iterable[str], get_candles: CandleFetcher,
                      max_workers: Optional[int] = None) -> Dict[str, Decision]:
        """Fetch candles and evaluate several symbols in parallel.

        Every symbol's view is also published as a peer for the cross-symbol
        model. A symbol whose fetch or evaluation fails is logged and left out.

        Args:
            symbols: Symbols to evaluate
            get_candles: Callable(symbol, timeframe, limit) -> candles
            max_workers: Thread count (defaults to pipeline.max_workers)

        Returns:
            symbol -> Decision for the symbols that produced one
        """
        pipeline_cfg = self.context.config.pipeline
        views = self._fetch_views(symbols, get_candles, pipeline_cfg.timeframes,
                                  pipeline_cfg.candle_limit)
        self.context.set_peer_views(views)

        decisions: Dict[str, Decision] = {}
        if not views:
            return decisions

        workers = max_workers or pipeline_cfg.max_workers
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_symbol = {
                executor.submit(self.evaluate, symbol, view): symbol
                for symbol, view in views.items()
            }
            for future in as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    decision = future.result()
                except Exception:
                    logger.error("evaluation_failed", symbol=symbol, exc_info=True)
                    continue
                if decision is not None:
                    decisions[symbol] = decision
        return decisions

    def _fetch_views(self, symbols: Iterable[str], get_candles: CandleFetcher,
                     timeframes: Sequence[str], limit: int) -> Dict[str, MarketView]:
        views: Dict[str, MarketView] = {}
        for symbol in symbols:
            try:
                candles: Mapping[str, Sequence[Candle]] = {
                    tf: list(get_candles(symbol, tf, limit)) for tf in timeframes
                }
            except Exception:
                logger.error("candle_fetch_failed", symbol=symbol, exc_info=True)
                continue
            views[symbol] = MarketView(symbol, candles)
        return views
