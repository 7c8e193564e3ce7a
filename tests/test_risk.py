"""Tests for stop placement and position sizing."""

import math

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
)
from regimefusion.strategy import RiskSizer, leverage_for, risk_reward_for


def make_frame(n: int = 40, price: float = 100.0, spread: float = 1.0) -> pd.DataFrame:
    """Helper: flat frame with a constant 2 x spread bar range (ATR -> 2 x spread)."""
    closes = np.full(n, price)
    return pd.DataFrame({
        "open": closes,
        "high": closes + spread,
        "low": closes - spread,
        "close": closes,
        "volume": np.full(n, 100.0),
    })


def make_result(direction: Direction, category: SignalCategory = SignalCategory.DEFAULT,
                metadata=None, confidence: float = 1.0) -> FusionResult:
    signal = CandidateSignal(ModelId.KEY_LEVEL_BATTLEGROUNDS, direction, 8.0, 0.8, "test",
                             100.0, 0, category, metadata or {})
    return FusionResult(direction, 8.0, confidence, "test", (signal,))


class TestStopPlacement:
    """Category-specific stops."""

    def test_default_stop(self):
        """No category: entry minus ATR x multiplier."""
        stop, _ = RiskSizer().stop_loss(Direction.LONG, 100.0, 2.0)
        assert stop == pytest.approx(97.0)
        stop, _ = RiskSizer().stop_loss(Direction.SHORT, 100.0, 2.0)
        assert stop == pytest.approx(103.0)

    def test_structural_break(self):
        """Structure anchor minus 1.5 ATR."""
        stop, note = RiskSizer().stop_loss(Direction.LONG, 100.0, 2.0,
                                           SignalCategory.STRUCTURAL_BREAK, anchor=98.0)
        assert stop == pytest.approx(95.0)
        assert "anchor" in note

    def test_false_breakout_short(self):
        """Extreme plus 0.5 ATR above a short entry."""
        stop, _ = RiskSizer().stop_loss(Direction.SHORT, 100.0, 2.0,
                                        SignalCategory.FALSE_BREAKOUT_REVERSAL, anchor=101.0)
        assert stop == pytest.approx(102.0)

    def test_volatility_breakout(self):
        """Consolidation level minus 0.3 ATR for a long breakout."""
        stop, _ = RiskSizer().stop_loss(Direction.LONG, 100.0, 2.0,
                                        SignalCategory.VOLATILITY_BREAKOUT, anchor=99.0)
        assert stop == pytest.approx(98.4)

    def test_missing_anchor_falls_back(self):
        """A category without an anchor uses the default stop."""
        stop, note = RiskSizer().stop_loss(Direction.LONG, 100.0, 2.0,
                                           SignalCategory.STRUCTURAL_BREAK, anchor=None)
        assert stop == pytest.approx(97.0)
        assert "default" in note

    def test_wrong_side_anchor_falls_back(self):
        """An anchored stop above a long entry is replaced by the default."""
        stop, _ = RiskSizer().stop_loss(Direction.LONG, 100.0, 2.0,
                                        SignalCategory.FALSE_BREAKOUT_REVERSAL, anchor=100.5)
        assert stop == pytest.approx(97.0)


class TestPositionSize:
    """Sizing and the hard cap."""

    def test_basic_size(self):
        """equity x 2% x factor x confidence / stop%, as notional."""
        size, _ = RiskSizer().position_size(10_000, 100.0, 95.0, Regime.WEAK_TREND, 0.5)
        # risk 100, stop 5 -> 20 units -> 2000 notional, capped at 500
        assert size == pytest.approx(500.0)

        size, _ = RiskSizer().position_size(10_000, 100.0, 50.0, Regime.RANGE, 0.5)
        # risk 10000*0.02*0.7*0.5 = 70, stop 50 -> 1.4 units -> 140 notional
        assert size == pytest.approx(140.0)

    @pytest.mark.parametrize("entry,stop,confidence", [
        (100.0, 100.0, 1.0),            # zero stop distance
        (100.0, 99.9999999, 1.0),       # tiny stop distance
        (1e-9, 0.0, 1.0),               # tiny price
        (100.0, 90.0, 50.0),            # confidence out of range
        (100.0, float("nan"), 1.0),     # NaN stop
        (100.0, 90.0, float("inf")),    # infinite confidence
    ])
    def test_never_exceeds_cap(self, entry, stop, confidence):
        """Adversarial inputs stay within 5% of equity."""
        for regime in Regime:
            size, _ = RiskSizer().position_size(10_000, entry, stop, regime, confidence)
            assert math.isfinite(size)
            assert 0.0 <= size <= 500.0 + 1e-9

    def test_non_positive_equity_or_entry(self):
        """Zero or negative equity or entry gives zero size."""
        assert RiskSizer().position_size(0, 100.0, 95.0, Regime.RANGE, 1.0)[0] == 0.0
        assert RiskSizer().position_size(-5, 100.0, 95.0, Regime.RANGE, 1.0)[0] == 0.0
        assert RiskSizer().position_size(1000, 0.0, 95.0, Regime.RANGE, 1.0)[0] == 0.0


class TestRiskPlan:
    """Full plan from a fused decision."""

    def test_bands(self):
        """Risk:reward and leverage bands by score."""
        assert (risk_reward_for(8), leverage_for(8)) == (3.0, 20)
        assert (risk_reward_for(6), leverage_for(6)) == (2.5, 10)
        assert (risk_reward_for(5.9), leverage_for(5.9)) == (2.0, 5)

    def test_plan_uses_lead_signal_anchor(self):
        """The contributing signal's anchor sets the stop; target follows risk:reward."""
        result = make_result(Direction.SHORT, SignalCategory.FALSE_BREAKOUT_REVERSAL,
                             {"false_breakout_extreme": 101.0})
        plan = RiskSizer().size(result, Regime.RANGE, 8.0, make_frame(), 10_000)
        assert plan.stop_loss == pytest.approx(102.0)
        assert plan.take_profit == pytest.approx(94.0)
        assert plan.leverage == 20
        assert plan.risk_reward == 3.0
        assert 0 < plan.position_size <= 500.0
        assert plan.quantity == pytest.approx(plan.position_size / 100.0)

    def test_plan_params_multiplier(self):
        """The adaptive stop multiplier drives default stops."""
        plan = RiskSizer().size(make_result(Direction.LONG), Regime.RANGE, 5.0, make_frame(),
                                10_000, params={"atr_stop_loss_multiplier": 2.0})
        assert plan.stop_loss == pytest.approx(96.0)
        assert plan.take_profit == pytest.approx(108.0)

    def test_no_trade_plan(self):
        """NO_TRADE gets an empty plan."""
        plan = RiskSizer().size(FusionResult(Direction.NO_TRADE, 0, 0, "none"),
                                Regime.RANGE, 9.0, make_frame(), 10_000)
        assert plan.position_size == 0.0
