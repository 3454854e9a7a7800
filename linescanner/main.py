"""
FastAPI application for LineScanner
Serves cached sports/events and hosts the background odds refresh loop
"""

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Optional
import logging
import os

from dotenv import load_dotenv

from linescanner.auth import verify_admin_api_key
from linescanner.core.errors import FetchError, FetchErrorKind
from linescanner.core.fetch_interface import ResourceFetcher
from linescanner.core.refresh_config import RefreshConfig
from linescanner.core.staleness_cache import StalenessCache
from linescanner.schemas import (
    EventsResponse,
    MessageResponse,
    RefreshStatusResponse,
    RefreshTriggerResponse,
    SportsListResponse,
)
from linescanner.services.game_browser import GameBrowser, sports_as_dicts
from linescanner.services.odds import OddsAPIClient
from linescanner.services.refresh import RefreshCoordinator

load_dotenv()

# Logging setup
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Upstream failure kind -> HTTP status returned to our own clients
_FETCH_ERROR_STATUS = {
    FetchErrorKind.INVALID_CREDENTIALS: 502,
    FetchErrorKind.MALFORMED_RESPONSE: 502,
    FetchErrorKind.RATE_LIMITED: 503,
    FetchErrorKind.TRANSPORT_ERROR: 504,
}


def create_app(
    config: Optional[RefreshConfig] = None,
    fetcher: Optional[ResourceFetcher] = None,
    scheduler_factory: Optional[Callable[[], Any]] = None,
) -> FastAPI:
    """
    Composition root: builds one cache, fetcher, coordinator and browser
    and hangs them off ``app.state``.
    """
    cfg = config or RefreshConfig.from_env()
    cache = StalenessCache(policy=cfg.cache_policy())
    if fetcher is None:
        fetcher = OddsAPIClient(
            api_key=cfg.api_key, base_url=cfg.base_url, timeout=cfg.http_timeout
        )
    coordinator = RefreshCoordinator(
        cache, fetcher, config=cfg, scheduler_factory=scheduler_factory
    )
    browser = GameBrowser(cache, fetcher, coordinator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        logger.info("🚀 Starting LineScanner")
        if cfg.api_key is None:
            logger.warning("THE_ODDS_API_KEY not set; upstream fetches will fail")
        if cfg.autostart:
            coordinator.on_foreground()

        yield

        logger.info("👋 Shutting down LineScanner")
        coordinator.shutdown()

    app = FastAPI(
        title="LineScanner",
        description="Odds cache and background refresh service",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.cache = cache
    app.state.fetcher = fetcher
    app.state.coordinator = coordinator
    app.state.browser = browser

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o for o in os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if o],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    @app.exception_handler(FetchError)
    async def fetch_error_handler(request: Request, exc: FetchError):
        logger.warning("Upstream fetch failed for %s: %r", request.url.path, exc)
        return JSONResponse(
            status_code=_FETCH_ERROR_STATUS[exc.kind],
            content={"detail": str(exc), "kind": exc.kind.value, "resource": exc.resource},
        )

    _register_routes(app)
    return app


def _status_payload(app: FastAPI) -> dict:
    status = app.state.coordinator.status()
    status["cache"] = app.state.cache.summary()
    get_quota = getattr(app.state.fetcher, "get_quota", None)
    status["quota"] = get_quota() if callable(get_quota) else None
    return status


def _register_routes(app: FastAPI) -> None:

    # ========================================================================
    # PUBLIC ENDPOINTS
    # ========================================================================

    @app.get("/")
    async def root():
        """Health check"""
        return {
            "app": "LineScanner",
            "version": "1.0.0",
            "status": "operational",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        coordinator = app.state.coordinator
        health = {"status": "healthy", "refresh": coordinator.state.value}
        if coordinator.is_disabled:
            health["status"] = "degraded"
            health["refresh"] = "disabled"
        return health

    @app.get("/api/sports", response_model=SportsListResponse)
    def get_sports():
        read = app.state.browser.get_sports()
        return {
            "sports": sports_as_dicts(read.payload),
            "source": read.source,
            "age_seconds": read.age_seconds,
        }

    @app.get("/api/sports/{sport_key}/events", response_model=EventsResponse)
    def get_events(sport_key: str):
        read = app.state.browser.get_events(sport_key)
        return {
            "sport_key": sport_key,
            "events": read.payload,
            "source": read.source,
            "age_seconds": read.age_seconds,
        }

    @app.get("/api/refresh/status", response_model=RefreshStatusResponse)
    async def get_refresh_status():
        return _status_payload(app)

    # ========================================================================
    # ADMIN ENDPOINTS
    # ========================================================================

    @app.post("/admin/lifecycle/foreground", response_model=RefreshStatusResponse)
    def app_foreground(user: str = Depends(verify_admin_api_key)):
        """Host app became active: (re)start background refresh."""
        app.state.coordinator.on_foreground()
        logger.info("Foreground signal from %s", user)
        return _status_payload(app)

    @app.post("/admin/lifecycle/background", response_model=RefreshStatusResponse)
    def app_background(user: str = Depends(verify_admin_api_key)):
        """Host app went to background: stop background refresh."""
        app.state.coordinator.on_background()
        logger.info("Background signal from %s", user)
        return _status_payload(app)

    @app.post("/admin/refresh", response_model=RefreshTriggerResponse)
    def trigger_refresh(user: str = Depends(verify_admin_api_key)):
        """Run one refresh pass now, ignoring the active refresh interval."""
        outcome = app.state.coordinator.refresh_now(force=True)
        logger.info("Manual refresh by %s: %s", user, outcome.value)
        return {"outcome": outcome.value, "status": _status_payload(app)}

    @app.delete("/admin/cache", response_model=MessageResponse)
    async def clear_cache(user: str = Depends(verify_admin_api_key)):
        app.state.cache.invalidate_all()
        logger.info("Cache cleared by %s", user)
        return {"message": "Cache cleared"}

    @app.delete("/admin/cache/{key}", response_model=MessageResponse)
    async def invalidate_key(key: str, user: str = Depends(verify_admin_api_key)):
        app.state.cache.invalidate(key)
        logger.info("Cache entry %s invalidated by %s", key, user)
        return {"message": f"Invalidated {key}"}


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
