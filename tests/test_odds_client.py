"""
Tests for The Odds API client and its error classification.
Run with: pytest tests/test_odds_client.py -v
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from linescanner.core.errors import FetchError, FetchErrorKind
from linescanner.core.fetch_interface import SportType
from linescanner.services.odds import OddsAPIClient


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _response(status=200, body=None, headers=None, bad_json=False):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    if bad_json:
        resp.json.side_effect = ValueError("Expecting value")
    else:
        resp.json.return_value = body
    return resp


SPORTS_BODY = [
    {"key": "basketball_nba", "group": "Basketball", "title": "NBA",
     "active": True, "has_outrights": False},
    {"key": "americanfootball_nfl", "group": "American Football", "title": "NFL",
     "active": True, "has_outrights": False},
    {"key": "basketball_nba_championship_winner", "group": "Basketball",
     "title": "NBA Championship Winner", "active": True, "has_outrights": True},
    {"key": "baseball_mlb", "group": "Baseball", "title": "MLB",
     "active": False, "has_outrights": False},
]

EVENTS_BODY = [
    {"id": "e1", "sport_key": "basketball_nba", "commence_time": "2025-03-01T00:00:00Z",
     "home_team": "Boston Celtics", "away_team": "Miami Heat"},
]


@pytest.fixture
def client():
    return OddsAPIClient(api_key="test-key", base_url="https://odds.example/v4", timeout=3)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestFetchPrimary:

    def test_maps_and_filters_sports(self, client):
        with patch("linescanner.services.odds.requests.get",
                   return_value=_response(body=SPORTS_BODY)) as get:
            sports = client.fetch_primary()

        assert sports == [
            SportType(key="basketball_nba", display_name="NBA"),
            SportType(key="americanfootball_nfl", display_name="NFL"),
        ]
        url = get.call_args.args[0]
        assert url == "https://odds.example/v4/sports"
        assert get.call_args.kwargs["params"] == {"apiKey": "test-key"}
        assert get.call_args.kwargs["timeout"] == 3

    def test_missing_title_falls_back_to_key(self, client):
        body = [{"key": "icehockey_nhl"}]
        with patch("linescanner.services.odds.requests.get", return_value=_response(body=body)):
            sports = client.fetch_primary()
        assert sports == [SportType(key="icehockey_nhl", display_name="icehockey_nhl")]

    def test_row_without_key_is_malformed(self, client):
        body = [{"title": "NBA"}]
        with patch("linescanner.services.odds.requests.get", return_value=_response(body=body)):
            with pytest.raises(FetchError) as exc:
                client.fetch_primary()
        assert exc.value.kind == FetchErrorKind.MALFORMED_RESPONSE


class TestFetchSecondary:

    def test_returns_event_records(self, client):
        with patch("linescanner.services.odds.requests.get",
                   return_value=_response(body=EVENTS_BODY)) as get:
            events = client.fetch_secondary("basketball_nba")

        assert events == EVENTS_BODY
        assert get.call_args.args[0] == "https://odds.example/v4/sports/basketball_nba/events"

    def test_event_without_id_is_malformed(self, client):
        with patch("linescanner.services.odds.requests.get",
                   return_value=_response(body=[{"home_team": "X"}])):
            with pytest.raises(FetchError) as exc:
                client.fetch_secondary("basketball_nba")
        assert exc.value.kind == FetchErrorKind.MALFORMED_RESPONSE
        assert exc.value.resource == "basketball_nba"

    def test_records_quota_headers(self, client):
        headers = {"x-requests-used": "120", "x-requests-remaining": "380"}
        with patch("linescanner.services.odds.requests.get",
                   return_value=_response(body=EVENTS_BODY, headers=headers)):
            client.fetch_secondary("basketball_nba")

        assert client.get_quota() == {"used": 120, "remaining": 380}


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class TestErrorClassification:

    def test_missing_api_key(self):
        client = OddsAPIClient(api_key=None)
        with patch("linescanner.services.odds.requests.get") as get:
            with pytest.raises(FetchError) as exc:
                client.fetch_primary()
        assert exc.value.kind == FetchErrorKind.INVALID_CREDENTIALS
        get.assert_not_called()

    @pytest.mark.parametrize("status,kind", [
        (401, FetchErrorKind.INVALID_CREDENTIALS),
        (403, FetchErrorKind.INVALID_CREDENTIALS),
        (429, FetchErrorKind.RATE_LIMITED),
        (500, FetchErrorKind.TRANSPORT_ERROR),
        (404, FetchErrorKind.TRANSPORT_ERROR),
    ])
    def test_http_status(self, client, status, kind):
        with patch("linescanner.services.odds.requests.get",
                   return_value=_response(status=status, body={"message": "nope"})):
            with pytest.raises(FetchError) as exc:
                client.fetch_secondary("basketball_nba")
        assert exc.value.kind == kind
        assert exc.value.status_code == status

    def test_timeout_is_transport_error(self, client):
        with patch("linescanner.services.odds.requests.get",
                   side_effect=requests.exceptions.ReadTimeout("slow")):
            with pytest.raises(FetchError) as exc:
                client.fetch_primary()
        assert exc.value.kind == FetchErrorKind.TRANSPORT_ERROR
        assert exc.value.kind.is_transient

    def test_connection_error_is_transport_error(self, client):
        with patch("linescanner.services.odds.requests.get",
                   side_effect=requests.exceptions.ConnectionError("dns")):
            with pytest.raises(FetchError) as exc:
                client.fetch_primary()
        assert exc.value.kind == FetchErrorKind.TRANSPORT_ERROR

    def test_non_json_body(self, client):
        with patch("linescanner.services.odds.requests.get",
                   return_value=_response(bad_json=True)):
            with pytest.raises(FetchError) as exc:
                client.fetch_primary()
        assert exc.value.kind == FetchErrorKind.MALFORMED_RESPONSE

    def test_object_instead_of_list(self, client):
        with patch("linescanner.services.odds.requests.get",
                   return_value=_response(body={"data": []})):
            with pytest.raises(FetchError) as exc:
                client.fetch_primary()
        assert exc.value.kind == FetchErrorKind.MALFORMED_RESPONSE
        assert not exc.value.kind.is_transient


def test_custom_session_is_used():
    session = MagicMock()
    session.get.return_value = _response(body=EVENTS_BODY)
    client = OddsAPIClient(api_key="k", session=session)

    assert client.fetch_secondary("basketball_nba") == EVENTS_BODY
    session.get.assert_called_once()
