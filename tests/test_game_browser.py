"""
Tests for cache-first reads with stale fallback.
Run with: pytest tests/test_game_browser.py -v
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from linescanner.core.errors import FetchError
from linescanner.core.fetch_interface import ResourceFetcher, SportType
from linescanner.core.staleness_cache import SPORTS_LIST_KEY, CachePolicy, StalenessCache
from linescanner.services.game_browser import GameBrowser
from linescanner.services.refresh import RefreshCoordinator


class _Clock:
    def __init__(self):
        self.now = datetime(2025, 3, 1, 19, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def cache(clock):
    return StalenessCache(clock=clock)


@pytest.fixture
def fetcher():
    f = MagicMock(spec=ResourceFetcher)
    f.fetch_primary.return_value = [SportType("basketball_nba", "NBA")]
    f.fetch_secondary.side_effect = lambda key: [{"id": f"{key}-1"}]
    return f


@pytest.fixture
def coordinator():
    return MagicMock()


@pytest.fixture
def browser(cache, fetcher, coordinator):
    return GameBrowser(cache, fetcher, coordinator)


# ---------------------------------------------------------------------------
# Sports list
# ---------------------------------------------------------------------------

class TestSports:

    def test_miss_fetches_and_caches(self, browser, cache, fetcher):
        read = browser.get_sports()

        assert read.source == "upstream"
        assert read.payload == [SportType("basketball_nba", "NBA")]
        assert cache.get_cached_sports() == read.payload
        fetcher.fetch_primary.assert_called_once()

    def test_hit_serves_cache(self, browser, fetcher, clock):
        browser.get_sports()
        clock.advance(1800)
        read = browser.get_sports()

        assert read.source == "cache"
        assert read.age_seconds == 1800
        fetcher.fetch_primary.assert_called_once()

    def test_failure_with_stale_copy_serves_stale(self, browser, fetcher, clock):
        browser.get_sports()
        clock.advance(3601)
        fetcher.fetch_primary.side_effect = FetchError.transport_error()

        read = browser.get_sports()

        assert read.source == "stale"
        assert read.payload == [SportType("basketball_nba", "NBA")]

    def test_failure_with_cold_cache_raises(self, browser, fetcher, cache):
        fetcher.fetch_primary.side_effect = FetchError.invalid_credentials()

        with pytest.raises(FetchError):
            browser.get_sports()
        assert SPORTS_LIST_KEY not in cache


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class TestEvents:

    def test_registers_interest(self, browser, coordinator):
        browser.get_events("basketball_nba")
        coordinator.watch.assert_called_once_with("basketball_nba")

    def test_miss_then_hit(self, browser, fetcher, clock):
        first = browser.get_events("basketball_nba")
        clock.advance(120)
        second = browser.get_events("basketball_nba")

        assert first.source == "upstream"
        assert second.source == "cache"
        assert second.payload == [{"id": "basketball_nba-1"}]
        fetcher.fetch_secondary.assert_called_once_with("basketball_nba")

    def test_expired_entry_is_refetched(self, browser, fetcher, clock):
        browser.get_events("basketball_nba")
        clock.advance(300)
        read = browser.get_events("basketball_nba")

        assert read.source == "upstream"
        assert fetcher.fetch_secondary.call_count == 2

    def test_throttled_key_serves_cached_copy(self, clock, fetcher):
        # TTL shorter than the throttle floor, so an expired entry can still be throttled
        cache = StalenessCache(
            policy=CachePolicy(secondary_ttl=0.5, min_fetch_interval=1.0), clock=clock
        )
        browser = GameBrowser(cache, fetcher)
        browser.get_events("basketball_nba")
        clock.advance(0.7)

        read = browser.get_events("basketball_nba")

        assert read.source == "stale"
        fetcher.fetch_secondary.assert_called_once()

    def test_failed_read_does_not_register_interest(self, browser, fetcher, coordinator):
        fetcher.fetch_secondary.side_effect = FetchError.transport_error()

        with pytest.raises(FetchError):
            browser.get_events("bogus_sport")
        coordinator.watch.assert_not_called()

    def test_failed_reads_of_unknown_keys_leave_refresh_set_unchanged(self, cache, fetcher):
        coordinator = RefreshCoordinator(cache, fetcher, scheduler_factory=MagicMock())
        browser = GameBrowser(cache, fetcher, coordinator)
        browser.get_events("basketball_nba")
        fetcher.fetch_secondary.side_effect = FetchError.transport_error()

        for i in range(50):
            with pytest.raises(FetchError):
                browser.get_events(f"bogus_{i}")

        assert coordinator.secondary_keys() == ["basketball_nba"]
        assert coordinator.status()["watched"] == ["basketball_nba"]

    def test_throttled_key_cleared_mid_read_is_fetched(self, browser, cache, fetcher, monkeypatch):
        def throttled_then_cleared(key, min_interval=None):
            cache.invalidate(key)
            return True

        monkeypatch.setattr(cache, "should_throttle", throttled_then_cleared)

        read = browser.get_events("basketball_nba")

        assert read.source == "upstream"
        assert read.payload == [{"id": "basketball_nba-1"}]

    def test_rate_limited_serves_stale(self, browser, fetcher, clock):
        browser.get_events("basketball_nba")
        clock.advance(600)
        fetcher.fetch_secondary.side_effect = FetchError.rate_limited()

        read = browser.get_events("basketball_nba")

        assert read.source == "stale"
        assert read.age_seconds == 600


# ---------------------------------------------------------------------------
# Force refresh
# ---------------------------------------------------------------------------

class TestForceRefresh:

    def test_single_sport(self, browser, fetcher, clock):
        browser.get_events("basketball_nba")
        clock.advance(5)

        read = browser.force_refresh("basketball_nba")

        assert read.source == "upstream"
        assert fetcher.fetch_secondary.call_count == 2

    def test_everything_refetches_previously_cached(self, browser, cache, fetcher, clock):
        browser.get_sports()
        browser.get_events("basketball_nba")
        browser.get_events("icehockey_nhl")
        clock.advance(5)

        read = browser.force_refresh()

        assert read.source == "upstream"
        assert fetcher.fetch_primary.call_count == 2
        assert fetcher.fetch_secondary.call_count == 4
        assert cache.keys() == ["basketball_nba", "icehockey_nhl"]
        assert cache.age("basketball_nba") == 0
