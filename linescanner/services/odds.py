"""
The Odds API integration for the sports list and per-sport event schedules.
https://the-odds-api.com/

Error classification
--------------------
Every failure is raised as a :class:`~linescanner.core.errors.FetchError`
so callers never see a ``requests`` exception:

  invalid_credentials:
      No API key configured, or the API answered 401 / 403.
  rate_limited:
      HTTP 429.
  transport_error:
      Connection failures, socket timeouts, any other non-2xx status.
  malformed_response:
      Body is not JSON, or not the list shape the endpoint promises.

Quota usage (``x-requests-used`` / ``x-requests-remaining``) is logged on
every successful call and kept on the client for the status endpoint.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from linescanner.core.errors import FetchError
from linescanner.core.fetch_interface import ResourceFetcher, SportType
from linescanner.core.refresh_config import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)

# Warn once remaining requests drop below this.
LOW_QUOTA_WARNING = 10


class OddsAPIClient(ResourceFetcher):
    """Client for The Odds API v4, implementing :class:`ResourceFetcher`."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests
        self.requests_used: Optional[int] = None
        self.requests_remaining: Optional[int] = None

    # ------------------------------------------------------------------
    # ResourceFetcher
    # ------------------------------------------------------------------

    def fetch_primary(self) -> List[SportType]:
        """
        Fetch in-season sports.

        Inactive sports and outright-only markets (futures such as
        ``basketball_nba_championship_winner``) are skipped because they carry
        no event schedule.  The result is sorted by display name.
        """
        data = self._get("/sports", resource="sports")

        sports: List[SportType] = []
        for row in data:
            if not isinstance(row, dict) or "key" not in row:
                raise FetchError.malformed_response(
                    "sports row missing 'key'", resource="sports"
                )
            if row.get("active") is False or row.get("has_outrights") is True:
                continue
            key = str(row["key"])
            sports.append(SportType(key=key, display_name=str(row.get("title") or key)))

        sports.sort(key=lambda s: s.display_name)
        logger.info("Odds API: %d sports available", len(sports))
        return sports

    def fetch_secondary(self, key: str) -> List[Dict[str, Any]]:
        """Fetch upcoming and live events for one sport key."""
        data = self._get(f"/sports/{key}/events", resource=key)
        for row in data:
            if not isinstance(row, dict) or "id" not in row:
                raise FetchError.malformed_response(
                    "event row missing 'id'", resource=key
                )
        logger.info("Odds API: %d events fetched for %s", len(data), key)
        return data

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get(self, path: str, resource: str, params: Optional[Dict] = None) -> List[Any]:
        if not self.api_key:
            raise FetchError.invalid_credentials(
                "THE_ODDS_API_KEY not set", resource=resource
            )

        query = {"apiKey": self.api_key}
        if params:
            query.update(params)

        try:
            response = self._http.get(
                f"{self.base_url}{path}", params=query, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise FetchError.transport_error(
                f"timed out after {self.timeout}s", resource=resource
            ) from e
        except requests.exceptions.RequestException as e:
            raise FetchError.transport_error(str(e), resource=resource) from e

        status = response.status_code
        if status in (401, 403):
            raise FetchError.invalid_credentials(
                "API key rejected", resource=resource, status_code=status
            )
        if status == 429:
            raise FetchError.rate_limited(
                "request quota exceeded", resource=resource, status_code=status
            )
        if not 200 <= status < 300:
            raise FetchError.transport_error(
                f"unexpected HTTP {status}", resource=resource, status_code=status
            )

        self._record_quota(response.headers)

        try:
            data = response.json()
        except ValueError as e:
            raise FetchError.malformed_response(
                "response body is not JSON", resource=resource, status_code=status
            ) from e

        if not isinstance(data, list):
            raise FetchError.malformed_response(
                f"expected a JSON list, got {type(data).__name__}",
                resource=resource,
                status_code=status,
            )

        return data

    def _record_quota(self, headers) -> None:
        used = _parse_int(headers.get("x-requests-used"))
        remaining = _parse_int(headers.get("x-requests-remaining"))
        if used is not None:
            self.requests_used = used
        if remaining is not None:
            self.requests_remaining = remaining
        if used is not None or remaining is not None:
            logger.debug("Odds API quota: %s used, %s remaining", used, remaining)
        if remaining is not None and remaining < LOW_QUOTA_WARNING:
            logger.warning("Odds API quota low (%d remaining)", remaining)

    def get_quota(self) -> Dict[str, Optional[int]]:
        return {"used": self.requests_used, "remaining": self.requests_remaining}


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
