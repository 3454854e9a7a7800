"""Refresh-engine configuration: every tunable interval in one place.

:class:`RefreshConfig` is a frozen dataclass.  Defaults match the values the
mobile client shipped with; :meth:`RefreshConfig.from_env` overlays
environment variables so a deployment can retune TTLs or pacing without a
code change.

Typical usage::

    from linescanner.core.refresh_config import RefreshConfig

    cfg = RefreshConfig.from_env()
    cache = StalenessCache(policy=cfg.cache_policy())

    # Tighter loop for a demo:
    from dataclasses import replace
    demo_cfg = replace(cfg, active_refresh_interval=30.0)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final, Mapping, Optional

from linescanner.core.staleness_cache import CachePolicy

DEFAULT_BASE_URL: Final[str] = "https://api.the-odds-api.com/v4"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


@dataclass(frozen=True)
class RefreshConfig:
    """Immutable bundle of cache and refresh-loop settings.

    Attributes:
        api_key: The Odds API key.  ``None`` makes every fetch fail with
            ``invalid_credentials`` instead of refusing to start.
        base_url: Upstream API root.

        --- Cache ---
        sports_ttl: Seconds the sports list stays fresh (1 hour).
        events_ttl: Seconds a per-sport event list stays fresh (5 minutes).
        min_fetch_interval: Hard floor between two fetches of the same key.

        --- Refresh loop ---
        tick_interval: Seconds between scheduler ticks.
        active_refresh_interval: Minimum seconds between two completed
            passes; ticks inside this window are skipped.
        pacing_delay: Pause between two secondary fetches within a pass.
        max_attempts: Consecutive failed passes before the loop disables
            itself.
        fetch_timeout: Upper bound on a single fetch call.
        http_timeout: Socket timeout handed to ``requests``.
        autostart: Start the loop when the host application boots.
    """

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL

    sports_ttl: float = 3600.0
    events_ttl: float = 300.0
    min_fetch_interval: float = 1.0

    tick_interval: float = 60.0
    active_refresh_interval: float = 300.0
    pacing_delay: float = 1.5
    max_attempts: int = 3
    fetch_timeout: float = 30.0
    http_timeout: float = 10.0
    autostart: bool = True

    def __post_init__(self):
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RefreshConfig":
        """Build a config from environment variables (``os.environ`` by default)."""
        env = os.environ if env is None else env
        return cls(
            api_key=env.get("THE_ODDS_API_KEY") or None,
            base_url=env.get("ODDS_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            sports_ttl=_env_float(env, "SPORTS_CACHE_TTL_SEC", 3600.0),
            events_ttl=_env_float(env, "EVENTS_CACHE_TTL_SEC", 300.0),
            min_fetch_interval=_env_float(env, "MIN_FETCH_INTERVAL_SEC", 1.0),
            tick_interval=_env_float(env, "REFRESH_TICK_SEC", 60.0),
            active_refresh_interval=_env_float(env, "ACTIVE_REFRESH_INTERVAL_SEC", 300.0),
            pacing_delay=_env_float(env, "REFRESH_PACING_SEC", 1.5),
            max_attempts=_env_int(env, "REFRESH_MAX_ATTEMPTS", 3),
            fetch_timeout=_env_float(env, "FETCH_TIMEOUT_SEC", 30.0),
            http_timeout=_env_float(env, "HTTP_TIMEOUT_SEC", 10.0),
            autostart=env.get("AUTOSTART_REFRESH", "true").strip().lower() in _TRUTHY,
        )

    def cache_policy(self) -> CachePolicy:
        return CachePolicy(
            primary_ttl=self.sports_ttl,
            secondary_ttl=self.events_ttl,
            min_fetch_interval=self.min_fetch_interval,
        )
