"""Signal lifecycle state machine.

    SETUP -> TRIGGERED -> CONFIRMED
      any -> INVALIDATED   (validation failed or gate rejected the model)
      any -> COOLDOWN      (explicit duration, evicted when it expires)

Every entry expires (default 4h after its last transition). Lookups evict
expired entries, so an identity whose entry expired behaves as brand-new.
A signal may be processed only when it has no live entry or its entry is in
SETUP, TRIGGERED or CONFIRMED.
"""
import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Union

from ..config import LifecycleConfig
from ..core.types import CandidateSignal, LifecycleEntry, LifecycleState

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

PROCESSABLE = frozenset({LifecycleState.SETUP, LifecycleState.TRIGGERED, LifecycleState.CONFIRMED})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def signal_identity(symbol: str, model_id, price: float, timestamp: int) -> str:
    """Deterministic identity key: symbol, model, price to 4 decimals, bar time."""
    model = getattr(model_id, "value", model_id)
    return f"{symbol}_{model}_{price:.4f}_{timestamp}"


def identity_of(symbol: str, signal: CandidateSignal) -> str:
    return signal_identity(symbol, signal.model_id, signal.price, signal.timestamp)


class LifecycleManager:
    """Thread-safe lifecycle table keyed by signal identity."""

    def __init__(self, cfg: Optional[Union[LifecycleConfig, dict]] = None,
                 clock: Optional[Clock] = None):
        if cfg is None:
            self.cfg = LifecycleConfig()
        elif isinstance(cfg, dict):
            self.cfg = LifecycleConfig(**cfg)
        else:
            self.cfg = cfg
        self._clock = clock or utc_now
        self._entries: Dict[str, LifecycleEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def size(self) -> int:
        """Number of live entries (expired ones are evicted first)."""
        self.cleanup_expired()
        return len(self)

    def _ttl(self, hours: Optional[float] = None) -> timedelta:
        return timedelta(hours=self.cfg.default_ttl_hours if hours is None else hours)

    def _live(self, key: str, now: datetime) -> Optional[LifecycleEntry]:
        """Live entry for key; evicts it if expired. Caller holds the lock."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(now):
            del self._entries[key]
            return None
        return entry

    def _transition(self, key: str, entry: Optional[LifecycleEntry], state: LifecycleState,
                    now: datetime, reason: str, ttl: timedelta) -> LifecycleEntry:
        if entry is None:
            entry = LifecycleEntry(state, now, now, now + ttl, reason)
        else:
            entry = replace(entry, state=state, updated_at=now, expires_at=now + ttl, reason=reason)
        self._entries[key] = entry
        return entry

    def get_state(self, key: str) -> Optional[LifecycleEntry]:
        """Copy of the live entry, or None."""
        with self._lock:
            entry = self._live(key, self._clock())
            return replace(entry) if entry is not None else None

    def can_process(self, key: str) -> bool:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry is None or entry.state in PROCESSABLE

    def setup(self, key: str, reason: str = "first sighting") -> LifecycleEntry:
        """Register a sighting. Existing live entries are left unchanged."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                entry = self._transition(key, None, LifecycleState.SETUP, now, reason, self._ttl())
            return replace(entry)

    def trigger(self, key: str, reason: str = "fusion and validation passed",
                confirmation_threshold: Optional[float] = None) -> LifecycleState:
        """SETUP/TRIGGERED -> TRIGGERED.

        Each call counts one trigger. With ``auto_confirm`` on and a
        threshold given, the entry moves to CONFIRMED once the count reaches
        it. Entries in INVALIDATED or COOLDOWN are left untouched.
        """
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is not None and entry.state not in PROCESSABLE:
                return entry.state
            if entry is not None and entry.state is LifecycleState.CONFIRMED:
                entry = replace(entry, trigger_count=entry.trigger_count + 1, updated_at=now)
                self._entries[key] = entry
                return entry.state

            entry = self._transition(key, entry, LifecycleState.TRIGGERED, now, reason, self._ttl())
            entry.trigger_count += 1
            if (self.cfg.auto_confirm and confirmation_threshold is not None
                    and entry.trigger_count >= confirmation_threshold):
                entry = self._transition(key, entry, LifecycleState.CONFIRMED, now,
                                         f"confirmed after {entry.trigger_count} triggers", self._ttl())
            return entry.state

    def confirm(self, key: str, reason: str = "secondary confirmation") -> bool:
        """TRIGGERED -> CONFIRMED. Returns False for any other state."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None or entry.state is not LifecycleState.TRIGGERED:
                return False
            self._transition(key, entry, LifecycleState.CONFIRMED, now, reason, self._ttl())
            return True

    def invalidate(self, key: str, reason: str, ttl_hours: Optional[float] = None) -> None:
        """Any state -> INVALIDATED (creates the entry if needed)."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            self._transition(key, entry, LifecycleState.INVALIDATED, now, reason, self._ttl(ttl_hours))
        logger.info("Signal %s invalidated: %s", key, reason)

    def invalidate_model(self, symbol: str, model_id, reason: str) -> int:
        """Invalidate every processable live entry of one model for a symbol.

        Returns:
            Number of entries invalidated
        """
        prefix = f"{symbol}_{getattr(model_id, 'value', model_id)}_"
        with self._lock:
            now = self._clock()
            keys = [k for k in list(self._entries) if k.startswith(prefix)]
            changed = 0
            for key in keys:
                entry = self._live(key, now)
                if entry is not None and entry.state in PROCESSABLE:
                    self._transition(key, entry, LifecycleState.INVALIDATED, now, reason, self._ttl())
                    changed += 1
        if changed:
            logger.info("Invalidated %d %s entries for %s: %s",
                        changed, getattr(model_id, "value", model_id), symbol, reason)
        return changed

    def cooldown(self, key: str, hours: float, reason: str = "cooldown") -> None:
        """Any state -> COOLDOWN for ``hours``; the entry is evicted afterwards."""
        if hours < 0:
            raise ValueError(f"Cooldown hours must be >= 0, got {hours}")
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            self._transition(key, entry, LifecycleState.COOLDOWN, now, reason, timedelta(hours=hours))
        logger.debug("Signal %s cooling down for %.2fh", key, hours)

    def cleanup_expired(self) -> int:
        """Evict every expired entry regardless of state. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("Evicted %d expired lifecycle entries", len(expired))
        return len(expired)
