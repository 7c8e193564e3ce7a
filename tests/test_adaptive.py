"""Tests for the adaptive parameter controller."""

from datetime import datetime, timedelta, timezone

import pytest

from regimefusion.adaptive import AdaptiveParameterController
from regimefusion.core.types import ModelId, PerformanceRecord, SignalLevel

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_record(win_rate: float = 0.55, sharpe: float = 1.2, drawdown: float = 0.05,
                age_days: float = 1.0) -> PerformanceRecord:
    """Helper to create performance samples relative to NOW."""
    return PerformanceRecord(
        win_rate=win_rate,
        profit_factor=1.5,
        sharpe_ratio=sharpe,
        max_drawdown=drawdown,
        period="1d",
        timestamp=NOW - timedelta(days=age_days),
    )


@pytest.fixture
def controller():
    return AdaptiveParameterController(clock=lambda: NOW)


class TestDefaults:
    """Initial parameter set and access."""

    def test_defaults(self, controller):
        """Every documented parameter is present."""
        params = controller.snapshot()
        assert params["signal_confirmation_threshold"] == 2
        assert params["atr_stop_loss_multiplier"] == 1.5
        assert params["atr_take_profit_multiplier"] == 2.0
        assert controller.weight(ModelId.EXTREME_SENTIMENT) == 1.0
        assert controller.cooldown_hours(SignalLevel.LEVEL_1) == 2.0
        assert controller.cooldown_hours(SignalLevel.LEVEL_2) == 1.0
        assert controller.cooldown_hours(SignalLevel.LEVEL_3) == 4.0

    def test_unknown_parameter(self, controller):
        """Unknown names raise unless a default is given."""
        with pytest.raises(KeyError):
            controller.get("nope")
        assert controller.get("nope", 7.0) == 7.0

    def test_set_is_bounded(self, controller):
        """Manual updates respect the same bounds as optimisation."""
        assert controller.set("signal_confirmation_threshold", 10) == 3
        assert controller.set("atr_stop_loss_multiplier", 5.0) == 2.0
        assert controller.set("weight.INSTITUTIONAL_FLOW", 0.1) == 0.5

    def test_snapshot_is_a_copy(self, controller):
        """Mutating a snapshot leaves the controller alone."""
        snap = controller.snapshot()
        snap["signal_confirmation_threshold"] = 99
        assert controller.get("signal_confirmation_threshold") == 2


class TestOptimize:
    """Feedback rules."""

    def test_empty_history_is_noop(self, controller):
        """optimize() on no samples changes nothing and does not raise."""
        before = controller.snapshot()
        assert controller.optimize() == {}
        assert controller.snapshot() == before

    def test_low_win_rate_raises_threshold_by_one(self, controller):
        """A 40% win rate adds exactly one to the threshold."""
        controller.record(make_record(win_rate=0.40))
        changes = controller.optimize()
        assert changes["signal_confirmation_threshold"] == 3
        assert controller.get("signal_confirmation_threshold") == 3

    def test_threshold_capped_at_three(self, controller):
        """Repeated low win rates never push past 3."""
        for _ in range(5):
            controller.record(make_record(win_rate=0.40))
            controller.optimize()
        assert controller.get("signal_confirmation_threshold") == 3

    def test_high_win_rate_lowers_threshold(self, controller):
        """A 70% win rate lowers the threshold, floored at 1."""
        for _ in range(4):
            controller.record(make_record(win_rate=0.70))
            controller.optimize()
        assert controller.get("signal_confirmation_threshold") == 1

    def test_low_sharpe_widens_stop(self, controller):
        """Sharpe below 0.8 adds 0.2 to the stop multiplier, capped at 2.0."""
        controller.record(make_record(sharpe=0.5))
        controller.optimize()
        assert controller.get("atr_stop_loss_multiplier") == pytest.approx(1.7)
        for _ in range(5):
            controller.record(make_record(sharpe=0.5))
            controller.optimize()
        assert controller.get("atr_stop_loss_multiplier") == pytest.approx(2.0)

    def test_drawdown_reduces_all_weights(self, controller):
        """Drawdown above 15% lowers every weight by 0.1, floored at 0.5."""
        controller.record(make_record(drawdown=0.2))
        controller.optimize()
        assert all(controller.weight(m) == pytest.approx(0.9) for m in ModelId)
        for _ in range(10):
            controller.record(make_record(drawdown=0.2))
            controller.optimize()
        assert all(controller.weight(m) == pytest.approx(0.5) for m in ModelId)

    def test_unchanged_window_is_idempotent(self, controller):
        """Re-running on the same samples changes nothing."""
        controller.record(make_record(win_rate=0.40, sharpe=0.5))
        first = controller.optimize()
        assert first
        snapshot = controller.snapshot()
        assert controller.optimize() == {}
        assert controller.snapshot() == snapshot

    def test_old_samples_ignored(self, controller):
        """Samples older than seven days do not count."""
        controller.record(make_record(win_rate=0.10, age_days=8))
        assert controller.optimize() == {}
        assert controller.get("signal_confirmation_threshold") == 2

    def test_history_bounded(self, controller):
        """At most 30 samples are kept."""
        for i in range(40):
            controller.record(make_record(age_days=i / 10))
        assert len(controller.history()) == 30

    def test_reset(self, controller):
        """reset restores defaults and clears history."""
        controller.record(make_record(win_rate=0.40))
        controller.optimize()
        controller.reset()
        assert controller.get("signal_confirmation_threshold") == 2
        assert controller.history() == []
