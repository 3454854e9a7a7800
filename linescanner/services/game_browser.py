"""
Read-through access to sports and events for request handlers.

Reads go to the cache first and only reach the provider on a miss.  When the
provider fails and an expired entry is still held, the expired payload is
served instead (stale-while-revalidate) and the background loop is left to
catch up.  Every sport a caller reads successfully is registered with the
refresh coordinator so later passes keep it warm.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from linescanner.core.errors import FetchError
from linescanner.core.fetch_interface import ResourceFetcher, SportType
from linescanner.core.staleness_cache import SPORTS_LIST_KEY, StalenessCache
from linescanner.services.refresh import RefreshCoordinator

logger = logging.getLogger(__name__)


@dataclass
class CachedRead:
    """A payload plus where it came from."""

    payload: Any
    source: str             # "cache", "upstream", or "stale"
    age_seconds: Optional[float] = None


class GameBrowser:
    """Cache-first reads of the sports list and per-sport event lists."""

    def __init__(
        self,
        cache: StalenessCache,
        fetcher: ResourceFetcher,
        coordinator: Optional[RefreshCoordinator] = None,
    ):
        self._cache = cache
        self._fetcher = fetcher
        self._coordinator = coordinator

    def get_sports(self) -> CachedRead:
        cached = self._cache.get_cached_sports()
        if cached is not None:
            return CachedRead(cached, "cache", self._cache.age(SPORTS_LIST_KEY))
        return self._fetch_through(SPORTS_LIST_KEY, self._fetcher.fetch_primary)

    def get_events(self, sport_key: str) -> CachedRead:
        """
        Events for one sport.

        A key fetched less than the throttle interval ago is served from the
        cache even if its TTL has passed, so rapid repeat requests never hit
        the provider twice for the same sport.

        Only a sport that produced a payload is registered with the
        coordinator; a failed read leaves the refresh set untouched.
        """
        read = self._read_events(sport_key)
        if self._coordinator is not None:
            self._coordinator.watch(sport_key)
        return read

    def _read_events(self, sport_key: str) -> CachedRead:
        cached = self._cache.get_cached_events(sport_key)
        if cached is not None:
            return CachedRead(cached, "cache", self._cache.age(sport_key))

        if self._cache.should_throttle(sport_key):
            stale = self._cache.get_stale(sport_key)
            if stale is not None:
                logger.debug("Events for %s throttled; serving cached copy", sport_key)
                return CachedRead(stale, "stale", self._cache.age(sport_key))

        return self._fetch_through(
            sport_key, lambda: self._fetcher.fetch_secondary(sport_key)
        )

    def force_refresh(self, sport_key: Optional[str] = None) -> CachedRead:
        """
        Drop cached data and refetch.

        With a ``sport_key`` only that sport is refetched.  Without one the
        whole cache is cleared, the sports list is refetched, and then every
        sport that was cached before the clear.
        """
        if sport_key is not None:
            self._cache.invalidate(sport_key)
            return self.get_events(sport_key)

        previously_cached = self._cache.keys()
        self._cache.invalidate_all()
        sports = self.get_sports()
        for key in previously_cached:
            self.get_events(key)
        return sports

    def _fetch_through(self, key: str, fetch) -> CachedRead:
        try:
            payload = fetch()
        except FetchError as exc:
            stale = self._cache.get_stale(key)
            if stale is None:
                raise
            logger.warning(
                "Fetch of %s failed (%s); serving stale copy", key, exc.kind.value
            )
            return CachedRead(stale, "stale", self._cache.age(key))

        self._cache.put(key, payload)
        return CachedRead(payload, "upstream", 0.0)


def sports_as_dicts(sports: List[SportType]) -> List[Dict[str, str]]:
    return [sport.to_dict() for sport in sports]
