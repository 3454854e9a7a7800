"""
Pydantic response schemas for the LineScanner API.

Using explicit schemas instead of raw dicts keeps the OpenAPI docs accurate
and stops internal fields (worker handles, raw exceptions) from leaking into
responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Sports and events
# ---------------------------------------------------------------------------

class SportResponse(BaseModel):
    key: str = Field(..., description='Provider sport key, e.g. "basketball_nba"')
    display_name: str


class SportsListResponse(BaseModel):
    sports: List[SportResponse]
    source: Literal["cache", "upstream", "stale"]
    age_seconds: Optional[float] = None


class EventsResponse(BaseModel):
    sport_key: str
    events: List[Dict[str, Any]]
    source: Literal["cache", "upstream", "stale"]
    age_seconds: Optional[float] = None


# ---------------------------------------------------------------------------
# Refresh status
# ---------------------------------------------------------------------------

class CacheResourceStatus(BaseModel):
    fetched_at: datetime
    age_seconds: float
    fresh: bool


class CacheStatus(BaseModel):
    entries: int
    resources: Dict[str, CacheResourceStatus]


class RefreshStatusResponse(BaseModel):
    """
    Everything a client needs for a refresh indicator.

    Show "Refreshing..." while ``is_refreshing_now``, "Last updated ..." from
    ``last_refresh_completed_at``, and a stale/disabled badge when
    ``disabled`` is set.
    """

    state: Literal["idle", "running", "refreshing"]
    is_running: bool
    is_refreshing_now: bool
    last_refresh_completed_at: Optional[datetime] = None
    consecutive_failure_count: int = Field(..., ge=0)
    disabled: bool
    last_error: Optional[str] = None
    next_tick_at: Optional[datetime] = None
    watched: List[str] = []
    cache: CacheStatus
    quota: Optional[Dict[str, Optional[int]]] = None


class RefreshTriggerResponse(BaseModel):
    outcome: Literal[
        "completed", "failed", "cancelled",
        "skipped_idle", "skipped_busy", "skipped_recent",
    ]
    status: RefreshStatusResponse


class MessageResponse(BaseModel):
    message: str
