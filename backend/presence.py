"""
Time-windowed "who is watching right now" tracking.

Two interchangeable trackers:
  - PresenceTracker keeps an in-process map and resets on restart.
  - StoragePresenceTracker derives the count from the ledger's
    last_seen_at column, so every server instance sees the same number.
"""
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from timeutils import utcnow

DEFAULT_WINDOW_MS = 120_000  # Four missed 30s heartbeats


class PresenceTracker:
    """
    In-process presence registry.

    Entries map a viewer identity to (last_seen, scope). Every read evicts
    entries older than the window before answering.
    """

    def __init__(
        self,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.window_ms = window_ms
        self.clock = clock
        self._entries: Dict[str, Tuple[datetime, Optional[str]]] = {}
        self.lock = threading.Lock()

    def track(self, identity: str, at_time: Optional[datetime] = None, scope: Optional[str] = None):
        """Record or overwrite the last-seen time for an identity."""
        seen = at_time or self.clock()
        with self.lock:
            self._entries[identity] = (seen, scope)

    def _evict(self, window_ms: int) -> None:
        cutoff = self.clock() - timedelta(milliseconds=window_ms)
        stale = [key for key, (seen, _) in self._entries.items() if seen < cutoff]
        for key in stale:
            del self._entries[key]

    def count_active(self, window_ms: Optional[int] = None, scope: Optional[str] = None) -> int:
        """Evict stale entries, then count the rest (optionally for one scope)."""
        with self.lock:
            self._evict(window_ms or self.window_ms)
            if scope is None:
                return len(self._entries)
            return sum(1 for _, entry_scope in self._entries.values() if entry_scope == scope)

    def active_identities(self, window_ms: Optional[int] = None) -> List[str]:
        with self.lock:
            self._evict(window_ms or self.window_ms)
            return sorted(self._entries)

    def clear(self):
        with self.lock:
            self._entries.clear()


class StoragePresenceTracker:
    """Presence derived from AttendanceLedger.last_seen_at; track() is a no-op."""

    def __init__(self, ledger, window_ms: int = DEFAULT_WINDOW_MS):
        self.ledger = ledger
        self.window_ms = window_ms

    def track(self, identity: str, at_time: Optional[datetime] = None, scope: Optional[str] = None):
        # The ledger upsert already stamped last_seen_at.
        return None

    def count_active(self, window_ms: Optional[int] = None, scope: Optional[str] = None) -> int:
        return self.ledger.count_recent(window_ms or self.window_ms, branch=scope)

    def clear(self):
        return None
