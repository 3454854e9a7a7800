"""In-memory odds cache with time-based staleness and per-key throttling.

The cache holds the most recent payload for each resource key together with
the time it was fetched.  It answers two independent questions from that one
timestamp:

    1. Is the entry *fresh*?  ``now - fetched_at < ttl``, where the TTL
       depends on the resource class (the sports list changes rarely, event
       lists change often).
    2. Is the key *throttled*?  ``now - fetched_at < min_interval``, a short
       hard floor on re-fetch frequency regardless of TTL.

Layout
------
The sports list is a singleton resource and lives in its own slot under
:data:`SPORTS_LIST_KEY`; every other key is a per-sport event list held in a
dict.  Stale entries are never evicted by reads, so callers may fall back to
:meth:`StalenessCache.get_stale` while a refresh is pending.

All reads and writes go through one ``threading.Lock``; the refresh loop
writes from a scheduler thread while request handlers read concurrently.
Nothing here performs I/O and nothing here raises: a missing entry is a
normal outcome.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

#: Resource key of the singleton sports-list entry.
SPORTS_LIST_KEY = "sports"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheEntry:
    """A payload and the moment it was fetched.  Replaced, never mutated."""

    timestamp: datetime
    payload: Any

    def age(self, now: datetime) -> float:
        """Seconds elapsed between the fetch and ``now``."""
        return (now - self.timestamp).total_seconds()


@dataclass(frozen=True)
class CachePolicy:
    """Per-resource-class freshness windows, in seconds."""

    primary_ttl: float = 3600.0       # sports list: 1 hour
    secondary_ttl: float = 300.0      # events per sport: 5 minutes
    min_fetch_interval: float = 1.0   # floor between fetches of one key

    def ttl_for(self, key: str) -> float:
        return self.primary_ttl if key == SPORTS_LIST_KEY else self.secondary_ttl


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class StalenessCache:
    """
    Key-addressed store of ``(payload, fetched_at)`` with freshness queries.

    Usage::

        cache = StalenessCache()
        cache.put("basketball_nba", events)
        cache.get_if_fresh("basketball_nba")           # events, for 5 minutes
        cache.should_throttle("basketball_nba")        # True for 1 second
    """

    def __init__(self, policy: Optional[CachePolicy] = None, clock: Optional[Clock] = None):
        self.policy = policy or CachePolicy()
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._sports: Optional[CacheEntry] = None
        self._events: Dict[str, CacheEntry] = {}

    # ------------------------------------------------------------------
    # Slot access (caller holds the lock)
    # ------------------------------------------------------------------

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        if key == SPORTS_LIST_KEY:
            return self._sports
        return self._events.get(key)

    def _store(self, key: str, entry: CacheEntry) -> None:
        if key == SPORTS_LIST_KEY:
            self._sports = entry
        else:
            self._events[key] = entry

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get_if_fresh(self, key: str, ttl: Optional[float] = None) -> Optional[Any]:
        """
        Return the cached payload if it is younger than ``ttl`` seconds.

        ``ttl`` defaults to the TTL of the key's resource class.  An entry
        whose age equals the TTL is already expired.  Stale entries are left
        in place for :meth:`get_stale`.
        """
        if ttl is None:
            ttl = self.policy.ttl_for(key)
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                return None
            if entry.age(self._clock()) < ttl:
                return entry.payload
            return None

    def get_stale(self, key: str) -> Optional[Any]:
        """Return the cached payload regardless of age."""
        with self._lock:
            entry = self._lookup(key)
        return entry.payload if entry is not None else None

    def entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._lookup(key)

    def age(self, key: str) -> Optional[float]:
        """Seconds since ``key`` was last written, or ``None`` if absent."""
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                return None
            return entry.age(self._clock())

    def put(self, key: str, payload: Any) -> None:
        """Create or replace the entry for ``key`` stamped with the current time."""
        with self._lock:
            self._store(key, CacheEntry(timestamp=self._clock(), payload=payload))

    def should_throttle(self, key: str, min_interval: Optional[float] = None) -> bool:
        """
        True if ``key`` was written less than ``min_interval`` seconds ago.

        A key that has never been cached is never throttled, so the first
        fetch of a new resource always goes through.
        """
        if min_interval is None:
            min_interval = self.policy.min_fetch_interval
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                return False
            return entry.age(self._clock()) < min_interval

    def invalidate(self, key: str) -> None:
        """Drop the entry for ``key``.  Unknown keys are ignored."""
        with self._lock:
            if key == SPORTS_LIST_KEY:
                self._sports = None
            else:
                self._events.pop(key, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._sports = None
            self._events.clear()

    def keys(self) -> List[str]:
        """Per-sport keys currently held, fresh or stale, sorted."""
        with self._lock:
            return sorted(self._events)

    def summary(self) -> Dict[str, Any]:
        """Entry ages and freshness for the status endpoint."""
        with self._lock:
            now = self._clock()
            slots = list(self._events.items())
            if self._sports is not None:
                slots.insert(0, (SPORTS_LIST_KEY, self._sports))
            entries = {
                key: {
                    "fetched_at": entry.timestamp.isoformat(),
                    "age_seconds": round(entry.age(now), 3),
                    "fresh": entry.age(now) < self.policy.ttl_for(key),
                }
                for key, entry in slots
            }
        return {"entries": len(entries), "resources": entries}

    # ------------------------------------------------------------------
    # Typed accessors for the two resource classes
    # ------------------------------------------------------------------

    def cache_sports(self, sports: list) -> None:
        self.put(SPORTS_LIST_KEY, sports)

    def get_cached_sports(self) -> Optional[list]:
        return self.get_if_fresh(SPORTS_LIST_KEY)

    def cache_events(self, sport_key: str, events: list) -> None:
        self.put(sport_key, events)

    def get_cached_events(self, sport_key: str) -> Optional[list]:
        return self.get_if_fresh(sport_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events) + (1 if self._sports is not None else 0)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._lookup(key) is not None
