"""Economic calendar filter.

Blocks signals around high-impact macro events. Events are stored per base
currency ("BTCUSDT" -> "BTC"); a symbol is unsafe to trade while a HIGH
impact event lies within 30 minutes either side of the signal time.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List

import structlog

logger = structlog.get_logger(__name__)

BLOCK_WINDOW = timedelta(minutes=30)
WARN_WINDOW = timedelta(minutes=60)


class Impact(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class EconomicEvent:
    time: datetime
    name: str
    impact: Impact = Impact.MEDIUM


def base_currency(symbol: str) -> str:
    upper = symbol.upper()
    for quote in ("USDT", "USD"):
        if upper.endswith(quote) and len(upper) > len(quote):
            return upper[: -len(quote)]
    return upper


class EconomicCalendar:
    """Thread-safe event store with a safe-window check."""

    def __init__(self):
        self._events: Dict[str, List[EconomicEvent]] = {}
        self._lock = threading.Lock()

    def add_event(self, currency: str, event: EconomicEvent) -> None:
        with self._lock:
            self._events.setdefault(currency.upper(), []).append(event)
        logger.debug("economic_event_added", currency=currency.upper(),
                     name=event.name, time=event.time.isoformat(), impact=event.impact.value)

    def clear_events(self, currency: str) -> None:
        with self._lock:
            self._events.pop(currency.upper(), None)

    def events_for(self, symbol: str) -> List[EconomicEvent]:
        with self._lock:
            return list(self._events.get(base_currency(symbol), ()))

    def is_safe_window(self, symbol: str, when: datetime) -> bool:
        """False if a HIGH impact event for the symbol is within +/-30 minutes."""
        for event in self.events_for(symbol):
            if event.impact is Impact.HIGH and abs(event.time - when) <= BLOCK_WINDOW:
                logger.warning("high_impact_event_window", symbol=symbol,
                               event=event.name, time=event.time.isoformat())
                return False
        return True

    def upcoming_events(self, symbol: str, when: datetime) -> List[EconomicEvent]:
        """Events of any impact within +/-60 minutes, ordered by time."""
        near = [e for e in self.events_for(symbol) if abs(e.time - when) <= WARN_WINDOW]
        return sorted(near, key=lambda e: e.time)
