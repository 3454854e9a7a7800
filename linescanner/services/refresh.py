"""
Background refresh loop that keeps cached odds data from going stale.

Polls on a fixed tick (default: every 60 seconds) and runs a refresh pass
when the previous completed pass is older than the active refresh interval
(default: 5 minutes).  The short tick keeps the loop responsive to
foreground events while upstream calls stay rare.

One pass:

    1. Skip entirely if the last completed pass is too recent.
    2. Refresh the sports list.
    3. Refresh the event list of every sport a consumer is watching or has
       cached before, skipping throttled keys and pausing between fetches to
       stay under the provider's per-second limit.
    4. Any failure aborts the pass and counts against the retry budget.
       After ``max_attempts`` consecutive failed passes the loop disables
       itself until ``start()`` is called again.

Design:
    - Runs as an APScheduler interval job on a private ``BackgroundScheduler``
      (``max_instances=1``, ``coalesce=True``).
    - A non-blocking lock guarantees at most one pass at a time, including
      manual ``refresh_now()`` calls.
    - ``stop()`` sets a ``threading.Event`` checked at every suspension point
      (each fetch and each pacing delay), so cancellation is prompt.
    - Each fetch runs on a worker thread bounded by ``fetch_timeout``; a
      timed-out or cancelled fetch is abandoned along with its worker, and
      its result never reaches the cache.
    - Writes to one key are last-fetch-to-complete-wins.  Fetches are not
      sequence-tagged; passes never overlap, so only a manual
      ``GameBrowser`` read racing a pass can reorder writes for a key.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from linescanner.core.errors import FetchError
from linescanner.core.fetch_interface import ResourceFetcher
from linescanner.core.refresh_config import RefreshConfig
from linescanner.core.staleness_cache import (
    SPORTS_LIST_KEY,
    Clock,
    StalenessCache,
    utcnow,
)

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "odds_refresh"

# Granularity at which an in-flight fetch re-checks for cancellation.
_CANCEL_POLL_SEC = 0.1


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

class CoordinatorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    REFRESHING = "refreshing"


class PassOutcome(str, Enum):
    """What a single tick or manual refresh ended up doing."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED_IDLE = "skipped_idle"        # loop not running
    SKIPPED_BUSY = "skipped_busy"        # another pass in progress
    SKIPPED_RECENT = "skipped_recent"    # inside the active refresh interval


@dataclass(frozen=True)
class RefreshState:
    """Point-in-time view of the coordinator for status displays."""

    state: CoordinatorState
    is_running: bool
    is_refreshing_now: bool
    last_refresh_completed_at: Optional[datetime]
    consecutive_failure_count: int
    disabled: bool
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["state"] = self.state.value
        out["last_refresh_completed_at"] = (
            self.last_refresh_completed_at.isoformat()
            if self.last_refresh_completed_at else None
        )
        return out


class _PassCancelled(Exception):
    """Raised inside a pass when stop() was requested."""


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class RefreshCoordinator:
    """
    Drives periodic refresh of a :class:`StalenessCache` from a
    :class:`ResourceFetcher`.

    Usage::

        coordinator = RefreshCoordinator(cache, OddsAPIClient(api_key))
        coordinator.watch("basketball_nba")
        coordinator.on_foreground()    # host app became active
        ...
        coordinator.on_background()    # host app went to background
    """

    def __init__(
        self,
        cache: StalenessCache,
        fetcher: ResourceFetcher,
        config: Optional[RefreshConfig] = None,
        scheduler_factory: Optional[Callable[[], Any]] = None,
        clock: Optional[Clock] = None,
    ):
        if not isinstance(fetcher, ResourceFetcher):
            raise TypeError(
                f"fetcher must implement ResourceFetcher, got {type(fetcher).__name__}"
            )
        self._cache = cache
        self._fetcher = fetcher
        self._cfg = config or RefreshConfig()
        self._scheduler_factory = scheduler_factory or BackgroundScheduler
        self._clock = clock or utcnow

        self._executor: Optional[ThreadPoolExecutor] = None  # created on first fetch
        self._lifecycle_lock = threading.Lock()  # serializes start/stop
        self._pass_lock = threading.Lock()       # held for the duration of a pass
        self._state_lock = threading.RLock()     # guards the fields below

        self._scheduler: Optional[Any] = None
        self._cancel = threading.Event()
        self._running = False
        self._refreshing = False
        self._disabled = False
        self._failures = 0
        self._last_completed: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._watched: Set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Start (or restart) the periodic loop.

        Any previous loop is fully stopped first.  Resets the failure count
        and clears the disabled flag.  The first tick fires immediately.
        """
        with self._lifecycle_lock:
            self._stop_locked()

            scheduler = self._scheduler_factory()
            with self._state_lock:
                self._cancel = threading.Event()
                self._failures = 0
                self._disabled = False
                self._last_error = None
                self._running = True
                self._scheduler = scheduler

            scheduler.add_job(
                self.tick,
                IntervalTrigger(seconds=self._cfg.tick_interval),
                id=REFRESH_JOB_ID,
                name="Odds Cache Refresh",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                next_run_time=utcnow(),
            )
            scheduler.start()

        logger.info(
            "Background refresh started: tick every %ss, pass at most every %ss",
            self._cfg.tick_interval,
            self._cfg.active_refresh_interval,
        )

    def stop(self) -> None:
        """Stop the loop.  A no-op when already idle."""
        with self._lifecycle_lock:
            stopped = self._stop_locked()
        if stopped:
            logger.info("Background refresh stopped")

    def _stop_locked(self) -> bool:
        with self._state_lock:
            if not self._running:
                return False
            scheduler, self._scheduler = self._scheduler, None
            self._running = False
            self._failures = 0
            self._last_error = None
            self._cancel.set()
        # Waits for a running pass, which exits at its next suspension point.
        _shutdown(scheduler, wait=True)
        return True

    def on_foreground(self) -> None:
        self.start()

    def on_background(self) -> None:
        self.stop()

    def shutdown(self) -> None:
        """Stop the loop and release worker threads.  Called on process exit."""
        self.stop()
        with self._state_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Interest registration
    # ------------------------------------------------------------------

    def watch(self, key: str) -> None:
        """Mark a sport key as of interest so every pass refreshes it."""
        if key == SPORTS_LIST_KEY:
            return
        with self._state_lock:
            self._watched.add(key)

    def unwatch(self, key: str) -> None:
        with self._state_lock:
            self._watched.discard(key)

    def secondary_keys(self) -> List[str]:
        """Keys refreshed after the sports list: watched plus already cached."""
        with self._state_lock:
            watched = set(self._watched)
        return sorted(watched.union(self._cache.keys()))

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def tick(self) -> PassOutcome:
        """Scheduler entry point.  Never raises."""
        with self._state_lock:
            if not self._running:
                return PassOutcome.SKIPPED_IDLE
            cancel = self._cancel
        return self._run_pass(cancel, force=False)

    def refresh_now(self, force: bool = True) -> PassOutcome:
        """
        Run one pass on the calling thread.

        ``force`` bypasses the active-refresh-interval gate but never the
        one-pass-at-a-time rule.  Works whether or not the loop is running.
        """
        with self._state_lock:
            cancel = self._cancel if self._running else threading.Event()
        return self._run_pass(cancel, force=force)

    def _run_pass(self, cancel: threading.Event, force: bool) -> PassOutcome:
        if not self._pass_lock.acquire(blocking=False):
            logger.debug("Refresh pass already in progress; tick skipped")
            return PassOutcome.SKIPPED_BUSY
        try:
            if not force and self._completed_recently():
                return PassOutcome.SKIPPED_RECENT

            with self._state_lock:
                self._refreshing = True
            started = time.monotonic()
            logger.info("Refresh pass started")

            try:
                refreshed = self._execute_pass(cancel)
            except _PassCancelled:
                logger.info("Refresh pass cancelled")
                return PassOutcome.CANCELLED
            except Exception as exc:
                if cancel.is_set():
                    logger.info("Refresh pass cancelled (%s)", exc)
                    return PassOutcome.CANCELLED
                self._record_failure(exc)
                return PassOutcome.FAILED

            self._record_success()
            logger.info(
                "Refresh pass complete: %d resources refreshed in %.1fs",
                refreshed, time.monotonic() - started,
            )
            return PassOutcome.COMPLETED
        finally:
            with self._state_lock:
                self._refreshing = False
            self._pass_lock.release()

    def _execute_pass(self, cancel: threading.Event) -> int:
        sports = self._call(cancel, SPORTS_LIST_KEY, self._fetcher.fetch_primary)
        self._cache.put(SPORTS_LIST_KEY, sports)
        refreshed = 1

        listed = {sport.key for sport in sports}
        keys = []
        for key in self.secondary_keys():
            if key in listed:
                keys.append(key)
            else:
                logger.debug("Not refreshing %s: no longer in the sports list", key)

        fetched_any = False
        for key in keys:
            if cancel.is_set():
                raise _PassCancelled()
            if self._cache.should_throttle(key):
                logger.debug("Skipping %s: fetched under %ss ago", key, self._cfg.min_fetch_interval)
                continue
            if fetched_any and self._cfg.pacing_delay > 0:
                if cancel.wait(self._cfg.pacing_delay):
                    raise _PassCancelled()

            events = self._call(cancel, key, self._fetcher.fetch_secondary, key)
            self._cache.put(key, events)
            refreshed += 1
            fetched_any = True

        return refreshed

    def _call(self, cancel: threading.Event, resource: str, fn: Callable, *args):
        """Run ``fn`` on a worker thread, bounded by timeout and cancellation."""
        if cancel.is_set():
            raise _PassCancelled()

        executor = self._worker_pool()
        future = executor.submit(fn, *args)
        deadline = time.monotonic() + self._cfg.fetch_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._abandon(executor, future)
                raise FetchError.transport_error(
                    f"fetch timed out after {self._cfg.fetch_timeout}s",
                    resource=resource,
                )
            done, _ = wait([future], timeout=min(_CANCEL_POLL_SEC, remaining),
                           return_when=FIRST_COMPLETED)
            if done:
                return future.result()
            if cancel.is_set():
                self._abandon(executor, future)
                raise _PassCancelled()

    def _worker_pool(self) -> ThreadPoolExecutor:
        with self._state_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="odds-fetch"
                )
            return self._executor

    def _abandon(self, executor: ThreadPoolExecutor, future) -> None:
        """
        Give up on an unfinished fetch.

        A fetch that is already running may never return and would pin the
        pool's worker, so the pool is retired and the next fetch gets a new one.
        """
        if future.cancel():
            return
        with self._state_lock:
            if self._executor is executor:
                self._executor = None
        executor.shutdown(wait=False)
        logger.debug("Abandoned in-flight fetch; worker pool replaced")

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _completed_recently(self) -> bool:
        with self._state_lock:
            last = self._last_completed
        if last is None:
            return False
        return (self._clock() - last).total_seconds() < self._cfg.active_refresh_interval

    def _record_success(self) -> None:
        with self._state_lock:
            self._failures = 0
            self._last_error = None
            self._last_completed = self._clock()

    def _record_failure(self, exc: Exception) -> None:
        with self._state_lock:
            self._failures += 1
            failures = self._failures
            self._last_error = _describe(exc)
            give_up = self._running and failures >= self._cfg.max_attempts

        if isinstance(exc, FetchError):
            logger.warning(
                "Background refresh failed (%s, %d/%d): %s",
                exc.kind.value, failures, self._cfg.max_attempts, exc,
            )
        else:
            logger.warning(
                "Background refresh failed (%d/%d): %r",
                failures, self._cfg.max_attempts, exc,
                exc_info=exc,
            )

        if give_up:
            logger.error(
                "Too many refresh failures (%d), stopping background updates", failures
            )
            self._halt()

    def _halt(self) -> None:
        """Auto-stop from inside a pass.  Keeps the failure count visible."""
        with self._state_lock:
            scheduler, self._scheduler = self._scheduler, None
            self._running = False
            self._disabled = True
            self._cancel.set()
        # Called from the job thread: waiting would join ourselves.
        _shutdown(scheduler, wait=False)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> CoordinatorState:
        with self._state_lock:
            if self._refreshing:
                return CoordinatorState.REFRESHING
            if self._running:
                return CoordinatorState.RUNNING
            return CoordinatorState.IDLE

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    @property
    def is_refreshing_now(self) -> bool:
        with self._state_lock:
            return self._refreshing

    @property
    def is_disabled(self) -> bool:
        with self._state_lock:
            return self._disabled

    @property
    def last_refresh_completed_at(self) -> Optional[datetime]:
        with self._state_lock:
            return self._last_completed

    @property
    def consecutive_failure_count(self) -> int:
        with self._state_lock:
            return self._failures

    def snapshot(self) -> RefreshState:
        with self._state_lock:
            return RefreshState(
                state=self.state,
                is_running=self._running,
                is_refreshing_now=self._refreshing,
                last_refresh_completed_at=self._last_completed,
                consecutive_failure_count=self._failures,
                disabled=self._disabled,
                last_error=self._last_error,
            )

    def status(self) -> Dict[str, Any]:
        """Coordinator status for the admin endpoint."""
        out = self.snapshot().to_dict()
        out["next_tick_at"] = None
        with self._state_lock:
            scheduler = self._scheduler
            out["watched"] = sorted(self._watched)
        if scheduler is not None:
            job = scheduler.get_job(REFRESH_JOB_ID)
            next_run = getattr(job, "next_run_time", None)
            if isinstance(next_run, datetime):
                out["next_tick_at"] = next_run.isoformat()
        return out


def _shutdown(scheduler, wait: bool) -> None:
    if scheduler is None:
        return
    try:
        scheduler.shutdown(wait=wait)
    except SchedulerNotRunningError:
        pass


def _describe(exc: Exception) -> str:
    if isinstance(exc, FetchError):
        return f"{exc.kind.value}: {exc}"
    return f"{type(exc).__name__}: {exc}"
