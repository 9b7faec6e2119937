from datetime import datetime
from zoneinfo import ZoneInfo

import httplib2
import pytest
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from therapy_booking.errors import CalendarError, ProviderAuthError, TransientProviderError
from therapy_booking.services.google_calendar import GoogleCalendarClient

IST = ZoneInfo('Asia/Kolkata')
TIME_MIN = datetime(2025, 1, 10, 0, 0, tzinfo=IST)
TIME_MAX = datetime(2025, 1, 11, 0, 0, tzinfo=IST)
CREDS = {'access_token': 'old-token', 'refresh_token': 'refresh', 'scope': 'calendar'}


def http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({'status': status}), b'{}')


class FakeRequest:
    def __init__(self, outcome) -> None:
        self.outcome = outcome

    def execute(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeEvents:
    def __init__(self, outcomes: list) -> None:
        self.outcomes = outcomes
        self.calls: list[dict] = []

    def list(self, **kwargs) -> FakeRequest:
        self.calls.append(kwargs)
        return FakeRequest(self.outcomes.pop(0))


class FakeService:
    def __init__(self, events: FakeEvents) -> None:
        self._events = events

    def events(self) -> FakeEvents:
        return self._events


@pytest.fixture
def api():
    """(client, events, tokens used per service build, refresh calls)."""
    events = FakeEvents([])
    tokens: list[str] = []
    refreshes: list[dict] = []

    def factory(credentials: Credentials) -> FakeService:
        tokens.append(credentials.token)
        return FakeService(events)

    client = GoogleCalendarClient('client-id', 'client-secret', service_factory=factory)

    def fake_refresh(creds: dict) -> dict:
        refreshes.append(creds)
        return {**creds, 'access_token': 'new-token', 'token_expires_at': '2025-01-10 10:00:00'}

    client.refresh_access_token = fake_refresh
    return client, events, tokens, refreshes


def test_list_events_maps_google_resources(api) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [{'items': [
        {'id': 'e1', 'summary': 'Dentist', 'status': 'confirmed',
         'start': {'dateTime': '2025-01-10T10:00:00+05:30'}, 'end': {'dateTime': '2025-01-10T11:00:00+05:30'}},
        {'id': 'e2', 'start': {'date': '2025-01-10'}, 'end': {'date': '2025-01-11'}},
    ]}]

    raw, creds = client.list_events(CREDS, TIME_MIN, TIME_MAX)

    assert raw == [
        {'start': '2025-01-10T10:00:00+05:30', 'end': '2025-01-10T11:00:00+05:30', 'title': 'Dentist',
         'status': 'confirmed', 'event_id': 'e1', 'source': 'google_calendar'},
        {'start': '2025-01-10', 'end': '2025-01-11', 'title': 'Busy',
         'status': 'confirmed', 'event_id': 'e2', 'source': 'google_calendar'},
    ]
    assert creds == CREDS
    assert refreshes == []
    assert events.calls[0]['singleEvents'] is True
    assert events.calls[0]['timeMin'] == TIME_MIN.isoformat()


def test_list_events_follows_pages(api) -> None:
    client, events, tokens, refreshes = api
    page = {'start': {'date': '2025-01-10'}, 'end': {'date': '2025-01-11'}}
    events.outcomes = [{'items': [page], 'nextPageToken': 'p2'}, {'items': [page]}]

    raw, _ = client.list_events(CREDS, TIME_MIN, TIME_MAX)

    assert len(raw) == 2
    assert events.calls[1]['pageToken'] == 'p2'


def test_unauthorized_refreshes_once_and_retries_once(api) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [http_error(401), {'items': []}]

    raw, creds = client.list_events(CREDS, TIME_MIN, TIME_MAX)

    assert raw == []
    assert len(refreshes) == 1
    assert tokens == ['old-token', 'new-token']
    assert creds['access_token'] == 'new-token'
    assert creds['refresh_token'] == 'refresh'


def test_unauthorized_after_refresh_means_expired_connection(api) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [http_error(401), http_error(401)]

    with pytest.raises(ProviderAuthError):
        client.list_events(CREDS, TIME_MIN, TIME_MAX)

    assert len(refreshes) == 1


@pytest.mark.parametrize('status', [429, 500, 503])
def test_rate_limits_and_server_errors_are_transient(api, status: int) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [http_error(status)]

    with pytest.raises(TransientProviderError):
        client.list_events(CREDS, TIME_MIN, TIME_MAX)

    assert refreshes == []


def test_network_failure_is_transient(api) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [TimeoutError('timed out')]

    with pytest.raises(TransientProviderError):
        client.list_events(CREDS, TIME_MIN, TIME_MAX)


def test_other_api_errors_are_not_transient(api) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [http_error(404)]

    with pytest.raises(CalendarError) as exc_info:
        client.list_events(CREDS, TIME_MIN, TIME_MAX)

    assert not isinstance(exc_info.value, TransientProviderError)


def test_missing_access_token_is_refreshed_first(api) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [{'items': []}]

    client.list_events({'refresh_token': 'refresh'}, TIME_MIN, TIME_MAX)

    assert tokens == ['new-token']


def test_revoked_refresh_token_raises_provider_auth_error(monkeypatch) -> None:
    def revoked(self, request):
        raise RefreshError('invalid_grant: Token has been expired or revoked.')

    monkeypatch.setattr(Credentials, 'refresh', revoked)
    client = GoogleCalendarClient('client-id', 'client-secret')

    with pytest.raises(ProviderAuthError):
        client.refresh_access_token(CREDS)


def test_unreachable_token_endpoint_is_transient(monkeypatch) -> None:
    def unreachable(self, request):
        raise TransportError('connection reset')

    monkeypatch.setattr(Credentials, 'refresh', unreachable)
    client = GoogleCalendarClient('client-id', 'client-secret')

    with pytest.raises(TransientProviderError):
        client.refresh_access_token(CREDS)


def test_refresh_without_refresh_token(monkeypatch) -> None:
    client = GoogleCalendarClient('client-id', 'client-secret')

    with pytest.raises(ProviderAuthError):
        client.refresh_access_token({'access_token': 'a'})


def test_token_refreshed_up_front_is_not_refreshed_again_on_unauthorized(api) -> None:
    client, events, tokens, refreshes = api
    events.outcomes = [http_error(401), {'items': []}]

    with pytest.raises(ProviderAuthError):
        client.list_events({'refresh_token': 'refresh'}, TIME_MIN, TIME_MAX)

    assert len(refreshes) == 1
    assert tokens == ['new-token']
