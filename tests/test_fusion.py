"""Tests for signal fusion, scoring and validation."""

import itertools
from datetime import datetime, timezone

import numpy as np
import pandas as pd
import pytest

from regimefusion.core.types import (
    CandidateSignal,
    Direction,
    FusionResult,
    ModelId,
    Regime,
    SignalCategory,
    SignalLevel,
)
from regimefusion.fusion import ScoreCalculator, SignalFusionEngine, SignalValidator
from regimefusion.fusion.engine import weight_key
from regimefusion.fusion.scoring import atr_change_rate, volatility_adjustment
from regimefusion.fusion.validator import validation_confidence


def make_signal(model_id: ModelId, direction: Direction, strength: float, confidence: float,
                category: SignalCategory = SignalCategory.DEFAULT,
                score_categories=None) -> CandidateSignal:
    """Helper to create candidate signals."""
    return CandidateSignal(
        model_id=model_id,
        direction=direction,
        strength=strength,
        confidence=confidence,
        rationale="test",
        price=100.0,
        timestamp=1_700_000_000_000,
        category=category,
        metadata={"score_categories": score_categories or {}},
    )


def make_frame(closes, volumes=None, opens=None) -> pd.DataFrame:
    """Helper to create an OHLCV frame."""
    closes = np.asarray(closes, dtype=float)
    opens = closes if opens is None else np.asarray(opens, dtype=float)
    volumes = np.full(len(closes), 100.0) if volumes is None else np.asarray(volumes, dtype=float)
    return pd.DataFrame({
        "open": opens,
        "high": np.maximum(opens, closes) + 0.5,
        "low": np.minimum(opens, closes) - 0.5,
        "close": closes,
        "volume": volumes,
    })


def long_result(strength: float = 6.0) -> FusionResult:
    return FusionResult(Direction.LONG, strength, 0.5, "test")


class TestFusionEngine:
    """Direction, strength and confidence of fused output."""

    def test_no_candidates(self):
        """Zero candidates is NO_TRADE with zero strength and confidence."""
        result = SignalFusionEngine().fuse([], Regime.RANGE)
        assert result.decision == Direction.NO_TRADE
        assert result.aggregated_strength == 0.0
        assert result.confidence == 0.0
        assert result.contributing == ()

    def test_range_long_dominates(self):
        """LONG 8/0.9 against SHORT 3/0.5 in RANGE fuses to LONG."""
        signals = [
            make_signal(ModelId.KEY_LEVEL_BATTLEGROUNDS, Direction.LONG, 8, 0.9),
            make_signal(ModelId.CORRELATION_ARBITRAGE, Direction.SHORT, 3, 0.5),
        ]
        result = SignalFusionEngine().fuse(signals, Regime.RANGE)
        assert result.decision == Direction.LONG
        assert result.metrics["long"] == pytest.approx(7.2)
        assert result.metrics["short"] == pytest.approx(1.5)
        assert result.aggregated_strength == pytest.approx(5.7)
        assert [s.model_id for s in result.contributing] == [ModelId.KEY_LEVEL_BATTLEGROUNDS]

    def test_within_margin_is_no_trade(self):
        """A lead of at most the margin is not enough."""
        signals = [
            make_signal(ModelId.KEY_LEVEL_BATTLEGROUNDS, Direction.LONG, 5, 1.0),
            make_signal(ModelId.CORRELATION_ARBITRAGE, Direction.SHORT, 3, 1.0),
        ]
        result = SignalFusionEngine().fuse(signals, Regime.RANGE)
        assert result.decision == Direction.NO_TRADE
        assert result.contributing == ()

    def test_short_wins(self):
        """SHORT wins symmetrically."""
        signals = [make_signal(ModelId.INSTITUTIONAL_FLOW, Direction.SHORT, 9, 0.8)]
        result = SignalFusionEngine().fuse(signals, Regime.VOLATILITY_EXPANSION)
        assert result.decision == Direction.SHORT
        assert result.metrics["short"] == pytest.approx(9 * 0.8 * 1.3)

    def test_order_independent(self):
        """Every permutation of the inputs gives the same result."""
        signals = [
            make_signal(ModelId.TREND_MOMENTUM_RESONANCE, Direction.LONG, 7.3, 0.61),
            make_signal(ModelId.INSTITUTIONAL_FLOW, Direction.LONG, 6.1, 0.7),
            make_signal(ModelId.KEY_LEVEL_BATTLEGROUNDS, Direction.SHORT, 4.4, 0.33),
            make_signal(ModelId.EXTREME_SENTIMENT, Direction.SHORT, 8.0, 0.17),
        ]
        engine = SignalFusionEngine()
        baseline = engine.fuse(signals, Regime.SQUEEZE)
        for perm in itertools.permutations(signals):
            result = engine.fuse(list(perm), Regime.SQUEEZE)
            assert result.decision == baseline.decision
            assert result.aggregated_strength == baseline.aggregated_strength
            assert result.confidence == baseline.confidence
            assert result.contributing == baseline.contributing

    def test_idempotent(self):
        """Fusing the same set twice gives identical output."""
        signals = [
            make_signal(ModelId.TREND_MOMENTUM_RESONANCE, Direction.LONG, 7, 0.8),
            make_signal(ModelId.VOLATILITY_BREAKOUT, Direction.LONG, 9, 0.6,
                        SignalCategory.VOLATILITY_BREAKOUT),
        ]
        engine = SignalFusionEngine()
        assert engine.fuse(signals, Regime.WEAK_TREND) == engine.fuse(signals, Regime.WEAK_TREND)

    def test_confidence_from_count(self):
        """Three signals give min(1, 3/6 * 0.5)."""
        signals = [
            make_signal(m, Direction.LONG, 5, 0.5)
            for m in (ModelId.TREND_MOMENTUM_RESONANCE, ModelId.INSTITUTIONAL_FLOW,
                      ModelId.KEY_LEVEL_BATTLEGROUNDS)
        ]
        assert SignalFusionEngine().fuse(signals, Regime.RANGE).confidence == pytest.approx(0.25)

    def test_strong_trend_boosts_aligned_side_only(self):
        """Only the trend-bias direction gets the 1.5 multiplier."""
        signals = [
            make_signal(ModelId.TREND_MOMENTUM_RESONANCE, Direction.LONG, 6, 1.0),
            make_signal(ModelId.KEY_LEVEL_BATTLEGROUNDS, Direction.SHORT, 6, 1.0),
        ]
        engine = SignalFusionEngine()
        result = engine.fuse(signals, Regime.STRONG_TREND, trend_bias=Direction.LONG)
        assert result.metrics["long"] == pytest.approx(9.0)
        assert result.metrics["short"] == pytest.approx(6.0)
        assert result.decision == Direction.LONG

        neutral = engine.fuse(signals, Regime.STRONG_TREND, trend_bias=None)
        assert neutral.decision == Direction.NO_TRADE

    def test_range_dampens_breakouts(self):
        """RANGE scales breakout signals by 0.8 and leaves others alone."""
        engine = SignalFusionEngine()
        breakout = make_signal(ModelId.VOLATILITY_BREAKOUT, Direction.LONG, 10, 1.0,
                               SignalCategory.VOLATILITY_BREAKOUT)
        reversal = make_signal(ModelId.KEY_LEVEL_BATTLEGROUNDS, Direction.LONG, 10, 1.0,
                               SignalCategory.FALSE_BREAKOUT_REVERSAL)
        assert engine.regime_multiplier(breakout, Regime.RANGE) == 0.8
        assert engine.regime_multiplier(reversal, Regime.RANGE) == 1.0

    def test_model_weights(self):
        """Adaptive weights scale each contribution."""
        signals = [make_signal(ModelId.INSTITUTIONAL_FLOW, Direction.LONG, 10, 1.0)]
        params = {weight_key(ModelId.INSTITUTIONAL_FLOW): 0.5}
        result = SignalFusionEngine().fuse(signals, Regime.RANGE, params=params)
        assert result.metrics["long"] == pytest.approx(5.0)

    def test_preliminary_stop_and_target(self):
        """Price and ATR give a preliminary stop and target."""
        signals = [make_signal(ModelId.INSTITUTIONAL_FLOW, Direction.LONG, 10, 1.0)]
        result = SignalFusionEngine().fuse(signals, Regime.RANGE, price=100.0, atr=2.0)
        assert result.stop_loss == pytest.approx(97.0)
        assert result.take_profit == pytest.approx(104.0)


class TestScoreCalculator:
    """Category caps and derived confidence."""

    def test_categories_capped_independently(self):
        """Pooled evidence never exceeds a category cap."""
        signals = [
            make_signal(ModelId.TREND_MOMENTUM_RESONANCE, Direction.LONG, 8, 0.8,
                        score_categories={"momentum": 2, "structure": 3}),
            make_signal(ModelId.INSTITUTIONAL_FLOW, Direction.LONG, 8, 0.8,
                        score_categories={"momentum": 2, "structure": 3, "volume": 1}),
        ]
        breakdown = ScoreCalculator().score(signals, Regime.WEAK_TREND)
        assert breakdown.categories["momentum"] == 2.0
        assert breakdown.categories["structure"] == 4.0
        assert breakdown.categories["volume"] == 1.0
        assert breakdown.total == 7.0
        assert breakdown.level == SignalLevel.LEVEL_2

    def test_total_capped_at_ten(self):
        """All caps plus the bonus stop at 10."""
        full = {"momentum": 5, "structure": 5, "volume": 5, "volatility": 5, "sentiment": 5}
        signals = [make_signal(ModelId.INSTITUTIONAL_FLOW, Direction.LONG, 8, 0.8,
                               score_categories=full)]
        breakdown = ScoreCalculator().score(signals, Regime.WEAK_TREND, htf_consistent=True)
        assert breakdown.total == 10.0
        assert breakdown.htf_bonus == 1.0
        assert breakdown.level == SignalLevel.LEVEL_1
        assert breakdown.confidence == pytest.approx(1.0)

    def test_regime_and_volatility_adjust_confidence(self):
        """Confidence = score/10 x regime factor x volatility factor."""
        signals = [make_signal(ModelId.KEY_LEVEL_BATTLEGROUNDS, Direction.LONG, 8, 0.8,
                               score_categories={"structure": 4, "momentum": 1})]
        breakdown = ScoreCalculator().score(signals, Regime.RANGE, atr_change=0.6)
        assert breakdown.confidence == pytest.approx(0.5 * 0.8 * 0.7)

    def test_unknown_categories_ignored(self):
        """Tags outside the five buckets do not count."""
        signals = [make_signal(ModelId.KEY_LEVEL_BATTLEGROUNDS, Direction.LONG, 8, 0.8,
                               score_categories={"luck": 9})]
        assert ScoreCalculator().score(signals, Regime.RANGE).total == 0.0

    def test_levels(self):
        """Level thresholds at 8 and 6."""
        calc = ScoreCalculator()
        assert calc.level(8.0) == SignalLevel.LEVEL_1
        assert calc.level(6.0) == SignalLevel.LEVEL_2
        assert calc.level(5.9) == SignalLevel.LEVEL_3

    def test_volatility_adjustment(self):
        """Expanding ATR cuts hardest."""
        assert volatility_adjustment(0.6) == 0.7
        assert volatility_adjustment(-0.4) == 0.9
        assert volatility_adjustment(0.1) == 1.0

    def test_atr_change_rate_short_input(self):
        """Too few bars gives zero change."""
        assert atr_change_rate(make_frame([100.0] * 10)) == 0.0

    def test_atr_change_rate_last_bar(self):
        """Change is measured between the last two ATR values."""
        df = make_frame([100.0] * 20 + [120.0])
        assert atr_change_rate(df) == pytest.approx(19.5 / 14)
        assert volatility_adjustment(atr_change_rate(df)) == 0.7


class TestSignalValidator:
    """The five secondary checks."""

    def rising_frame(self, last_volume: float = 200.0) -> pd.DataFrame:
        closes = [100 + 0.2 * i for i in range(60)]
        opens = [c - 0.1 for c in closes]
        volumes = [100.0] * 59 + [last_volume]
        return make_frame(closes, volumes, opens)

    def test_all_checks_pass(self):
        """A bullish bar on volume above a rising SMA passes."""
        result = SignalValidator().validate_detailed(long_result(), self.rising_frame(), score=6.0)
        assert result.passed
        assert result.passed_count == 5
        assert result.failures == []

    def test_no_trade_fails(self):
        """NO_TRADE never validates."""
        result = FusionResult(Direction.NO_TRADE, 0.0, 0.0, "none")
        assert not SignalValidator().validate(result, self.rising_frame(), score=9.0)

    def test_insufficient_candles(self):
        """Fewer than five candles fails."""
        detail = SignalValidator().validate_detailed(long_result(), make_frame([1, 2, 3, 4]), 9.0)
        assert not detail.passed
        assert detail.failures == ["insufficient_candles"]

    def test_low_volume_fails(self):
        """Last volume under 1.2x average fails the volume check."""
        detail = SignalValidator().validate_detailed(
            long_result(), self.rising_frame(last_volume=110.0), score=6.0)
        assert not detail.checks["volume"]
        assert "volume" in detail.failures

    def test_unsafe_window_fails(self):
        """The injected safe-window callable is consulted."""
        validator = SignalValidator(is_safe_window=lambda symbol, when: False)
        detail = validator.validate_detailed(long_result(), self.rising_frame(), 6.0,
                                             "BTCUSDT", datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert detail.failures == ["time_window"]

    def test_counter_trend_needs_high_score(self):
        """SHORT under a rising SMA50 passes structure only with score >= 7."""
        closes = [100 + 0.2 * i for i in range(59)] + [111.0]
        opens = [c + 0.1 for c in closes[:-1]] + [112.0]
        volumes = [100.0] * 59 + [200.0]
        df = make_frame(closes, volumes, opens)
        short = FusionResult(Direction.SHORT, 6.0, 0.5, "test")
        validator = SignalValidator()
        assert not validator.validate_detailed(short, df, 6.0).checks["structure"]
        assert validator.validate_detailed(short, df, 7.0).checks["structure"]

    def test_weak_score_fails(self):
        """Score below 4 fails the strength check."""
        detail = SignalValidator().validate_detailed(long_result(), self.rising_frame(), 3.9)
        assert detail.failures == ["strength"]

    def test_validation_confidence(self):
        """score/10 boosted 10% each for price action, volume and structure, capped at 1."""
        detail = SignalValidator().validate_detailed(long_result(), self.rising_frame(), 6.0)
        assert validation_confidence(6.0, detail) == pytest.approx(0.6 * 1.1 ** 3)
        assert validation_confidence(10.0, detail) == 1.0

    def test_failed_validation_has_zero_confidence(self):
        """A decision that fails any check carries no confidence."""
        detail = SignalValidator().validate_detailed(long_result(), self.rising_frame(100.0), 6.0)
        assert not detail.passed
        assert validation_confidence(6.0, detail) == 0.0
