"""
backend/therapy_booking/services/google_calendar.py

Google Calendar client for psychologists' connected calendars.

Handles:
- Access token refresh
- Listing events of a time range (as busy-interval candidates)

Credentials travel as the dict stored on the psychologist row:
    {"access_token", "refresh_token", "scope", "token_expires_at"}
"""

import logging
from datetime import datetime
from functools import lru_cache

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import settings
from ..errors import CalendarError, ProviderAuthError, TransientProviderError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

HTTP_TIMEOUT_SECONDS = 15
PAGE_SIZE = 250

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


def _default_service_factory(credentials: Credentials):
    """Build Google Calendar API service client."""
    # max_refresh_attempts=0: a 401 comes back to list_events, which
    # refreshes exactly once itself
    http = AuthorizedHttp(
        credentials,
        http=httplib2.Http(timeout=HTTP_TIMEOUT_SECONDS),
        max_refresh_attempts=0,
    )
    return build("calendar", "v3", http=http, cache_discovery=False)


class GoogleCalendarClient:
    """Narrow Google Calendar client: refresh + list events."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_uri: str = "https://oauth2.googleapis.com/token",
        service_factory=None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.service_factory = service_factory or _default_service_factory

    def _credentials(self, creds: dict) -> Credentials:
        return Credentials(
            token=creds.get("access_token"),
            refresh_token=creds.get("refresh_token"),
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES,
        )

    def refresh_access_token(self, creds: dict) -> dict:
        """
        Refresh an expired access token.

        Returns:
            Copy of creds with new access_token / token_expires_at

        Raises:
            ProviderAuthError: refresh token revoked or invalid (reconnect needed)
            TransientProviderError: token endpoint unreachable
        """
        if not creds.get("refresh_token"):
            raise ProviderAuthError("No refresh token stored")

        credentials = Credentials(
            token=None,
            refresh_token=creds["refresh_token"],
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )

        try:
            credentials.refresh(Request())
        except RefreshError as e:
            if getattr(e, "retryable", False):
                raise TransientProviderError(f"Token refresh failed: {e}") from e
            logger.error(f"Token refresh failed: {e}")
            raise ProviderAuthError(f"Token refresh failed: {e}") from e
        except TransportError as e:
            raise TransientProviderError(f"Token endpoint unreachable: {e}") from e

        expires_at = None
        if credentials.expiry:
            expires_at = credentials.expiry.strftime("%Y-%m-%d %H:%M:%S")

        return {
            **creds,
            "access_token": credentials.token,
            "token_expires_at": expires_at,
        }

    def list_events(
        self,
        creds: dict,
        time_min: datetime,
        time_max: datetime,
        calendar_id: str = "primary",
    ) -> tuple[list[dict], dict]:
        """
        List events overlapping [time_min, time_max).

        A 401 refreshes the access token once and retries once; a token
        refreshed up front (none stored) is not refreshed again.

        Returns:
            (raw events {start, end, title, status, event_id, source},
             credentials actually used, refreshed or not)

        Raises:
            ProviderAuthError: refresh failed, or 401 persisted after refresh
            TransientProviderError: network error, 429 or 5xx
            CalendarError: any other API failure
        """
        refreshed = False
        if not creds.get("access_token"):
            creds = self.refresh_access_token(creds)
            refreshed = True

        try:
            items = self._fetch(creds, time_min, time_max, calendar_id)
        except HttpError as e:
            if e.resp.status != 401:
                raise self._translate(e) from e
            if refreshed:
                raise ProviderAuthError("Freshly refreshed access token rejected") from e
            logger.info("Calendar access token rejected, refreshing once")
            creds = self.refresh_access_token(creds)
            try:
                items = self._fetch(creds, time_min, time_max, calendar_id)
            except HttpError as retry_error:
                if retry_error.resp.status == 401:
                    raise ProviderAuthError("Access token rejected after refresh") from retry_error
                raise self._translate(retry_error) from retry_error

        return [_to_raw(item) for item in items], creds

    def _fetch(self, creds: dict, time_min: datetime, time_max: datetime, calendar_id: str) -> list[dict]:
        service = self.service_factory(self._credentials(creds))
        items: list[dict] = []
        page_token = None
        try:
            while True:
                response = service.events().list(
                    calendarId=calendar_id,
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=PAGE_SIZE,
                    pageToken=page_token,
                ).execute()
                items.extend(response.get("items", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    return items
        except (httplib2.HttpLib2Error, OSError) as e:
            raise TransientProviderError(f"Calendar request failed: {e}") from e

    @staticmethod
    def _translate(error: HttpError) -> CalendarError:
        status = error.resp.status
        if status in TRANSIENT_STATUSES:
            return TransientProviderError(f"Calendar API returned {status}")
        logger.error(f"Calendar API error: {error}")
        return CalendarError(f"Calendar API returned {status}")


def _to_raw(item: dict) -> dict:
    """Google event resource → raw busy event."""
    start = item.get("start", {})
    end = item.get("end", {})
    return {
        "start": start.get("dateTime") or start.get("date"),
        "end": end.get("dateTime") or end.get("date"),
        "title": item.get("summary") or "Busy",
        "status": item.get("status") or "confirmed",
        "event_id": item.get("id"),
        "source": "google_calendar",
    }


@lru_cache
def get_calendar_client() -> GoogleCalendarClient:
    """FastAPI dependency / shared client built from settings."""
    return GoogleCalendarClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        token_uri=settings.google_token_uri,
    )
