"""Tests for the economic calendar and the higher-timeframe filter."""

from datetime import datetime, timedelta, timezone

from regimefusion.core.types import Candle, Direction
from regimefusion.data.candles import MarketView
from regimefusion.filters import EconomicCalendar, EconomicEvent, HigherTimeframeFilter, Impact
from regimefusion.filters.calendar import base_currency

T0 = datetime(2024, 3, 1, 13, 30, tzinfo=timezone.utc)


def make_candles(closes, spread: float = 1.0, step_ms: int = 14_400_000):
    """Helper to create a candle series."""
    return [
        Candle("BTCUSDT", i * step_ms, c, c + spread, c - spread, c, 100.0)
        for i, c in enumerate(closes)
    ]


class TestEconomicCalendar:
    """Safe-window logic."""

    def test_base_currency(self):
        """Quote suffixes are stripped."""
        assert base_currency("BTCUSDT") == "BTC"
        assert base_currency("ethusd") == "ETH"
        assert base_currency("XRP") == "XRP"

    def test_no_events_is_safe(self):
        """Empty calendar never blocks."""
        assert EconomicCalendar().is_safe_window("BTCUSDT", T0)

    def test_high_impact_within_window_blocks(self):
        """A HIGH event 20 minutes away blocks; 45 minutes away does not."""
        cal = EconomicCalendar()
        cal.add_event("BTC", EconomicEvent(T0 + timedelta(minutes=20), "CPI", Impact.HIGH))
        assert not cal.is_safe_window("BTCUSDT", T0)
        assert not cal.is_safe_window("BTCUSDT", T0 + timedelta(minutes=45))
        assert cal.is_safe_window("BTCUSDT", T0 - timedelta(minutes=45))
        assert cal.is_safe_window("ETHUSDT", T0)

    def test_lower_impact_does_not_block(self):
        """MEDIUM events are only warnings."""
        cal = EconomicCalendar()
        cal.add_event("BTC", EconomicEvent(T0, "PMI", Impact.MEDIUM))
        assert cal.is_safe_window("BTCUSDT", T0)
        assert [e.name for e in cal.upcoming_events("BTCUSDT", T0)] == ["PMI"]

    def test_upcoming_events_window(self):
        """Only events within an hour are listed, in time order."""
        cal = EconomicCalendar()
        cal.add_event("BTC", EconomicEvent(T0 + timedelta(minutes=50), "FOMC", Impact.HIGH))
        cal.add_event("BTC", EconomicEvent(T0 - timedelta(minutes=10), "NFP", Impact.HIGH))
        cal.add_event("BTC", EconomicEvent(T0 + timedelta(hours=3), "GDP", Impact.HIGH))
        assert [e.name for e in cal.upcoming_events("BTCUSDT", T0)] == ["NFP", "FOMC"]

    def test_clear_events(self):
        """Cleared currencies are safe again."""
        cal = EconomicCalendar()
        cal.add_event("BTC", EconomicEvent(T0, "CPI", Impact.HIGH))
        cal.clear_events("BTC")
        assert cal.is_safe_window("BTCUSDT", T0)


class TestHigherTimeframeFilter:
    """Consistency with the 4h and daily trend."""

    def test_rising_higher_timeframes(self):
        """LONG is consistent in an uptrend, SHORT is not."""
        view = MarketView("BTCUSDT", {
            "4h": make_candles([100 + i for i in range(60)]),
            "1d": make_candles([100 + 2 * i for i in range(30)], step_ms=86_400_000),
        })
        htf = HigherTimeframeFilter()
        assert htf.is_consistent(Direction.LONG, view)
        assert not htf.is_consistent(Direction.SHORT, view)

    def test_missing_series_is_neutral(self):
        """No higher-timeframe data does not block either side."""
        view = MarketView("BTCUSDT", {"1h": make_candles([100.0] * 10)})
        htf = HigherTimeframeFilter()
        assert htf.is_consistent(Direction.LONG, view)
        assert htf.is_consistent(Direction.SHORT, view)
        assert not htf.is_consistent(Direction.NO_TRADE, view)
