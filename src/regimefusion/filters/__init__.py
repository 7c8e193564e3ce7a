"""Pre-trade filters."""

from .calendar import EconomicCalendar, EconomicEvent, Impact
from .mtf import HigherTimeframeFilter

__all__ = ["EconomicCalendar", "EconomicEvent", "HigherTimeframeFilter", "Impact"]
