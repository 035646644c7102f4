import logging
import threading
import time
from typing import Any
from urllib.parse import quote

import requests

from .errors import SyncTokenExpired, TransportError, decode_json

logger = logging.getLogger(__name__)

CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Refresh the access token this many seconds before Google expires it.
_TOKEN_EXPIRY_MARGIN = 60


class GoogleCalendarClient:
    """Google Calendar REST client authenticated with an OAuth refresh token.

    Covers incremental listing with sync tokens and event
    insert/patch/delete on one calendar.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        base_url: str = CALENDAR_API_URL,
        token_url: str = GOOGLE_TOKEN_URL,
        timeout: tuple[float, float] = (10, 60),
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.base_url = base_url.rstrip("/")
        self.token_url = token_url
        self.timeout = timeout
        self._thread_local = threading.local()
        self._token_lock = threading.Lock()
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = requests.Session()
        return self._thread_local.session

    def _get_access_token(self, force: bool = False) -> str:
        """Return a valid access token, exchanging the refresh token if needed."""
        with self._token_lock:
            if (
                not force
                and self._access_token
                and time.monotonic() < self._token_expires_at
            ):
                return self._access_token
            try:
                response = self._get_session().post(
                    self.token_url,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": self.refresh_token,
                        "grant_type": "refresh_token",
                    },
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except requests.RequestException as exc:
                raise TransportError.from_requests("calendar", exc) from exc
            data = decode_json("calendar", response)
            self._access_token = data["access_token"]
            self._token_expires_at = (
                time.monotonic()
                + int(data.get("expires_in", 3600))
                - _TOKEN_EXPIRY_MARGIN
            )
            logger.debug("Refreshed Google access token")
            return self._access_token

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> requests.Response:
        """
        Make an authenticated request; retries once after a 401 with a
        freshly exchanged token.

        Raises:
            TransportError: On connection errors, timeouts and non-2xx replies.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        for attempt in (1, 2):
            token = self._get_access_token(force=attempt == 2)
            try:
                response = self._get_session().request(
                    method,
                    url,
                    params=params,
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self.timeout,
                )
                if response.status_code == 401 and attempt == 1:
                    continue
                response.raise_for_status()
            except requests.RequestException as exc:
                raise TransportError.from_requests("calendar", exc) from exc
            return response
        raise TransportError("calendar", "unauthorized", 401)  # pragma: no cover

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            path += f"/{quote(event_id, safe='')}"
        return path

    def list_changes(
        self, calendar_id: str, sync_token: str | None = None
    ) -> tuple[list[dict[str, Any]], str | None]:
        """
        List events changed since *sync_token* (all events when ``None``).

        Pages through ``nextPageToken`` until the listing ends.

        Returns:
            ``(events, next_sync_token)``; cancelled events are included
            with ``status == "cancelled"``.

        Raises:
            SyncTokenExpired: If Google answers 410 Gone for *sync_token*.
            TransportError: For any other failure.
        """
        events: list[dict[str, Any]] = []
        params: dict[str, Any] = {"maxResults": 250, "showDeleted": True}
        if sync_token:
            params["syncToken"] = sync_token

        while True:
            try:
                response = self._request(
                    "GET", self._events_path(calendar_id), params=params
                )
            except TransportError as exc:
                if exc.status == 410 and sync_token:
                    raise SyncTokenExpired() from exc
                raise
            data = decode_json("calendar", response)
            events.extend(data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return events, data.get("nextSyncToken")
            params["pageToken"] = page_token

    def insert_event(
        self, calendar_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Create an event; returns the event resource (``id``, ``updated``)."""
        response = self._request("POST", self._events_path(calendar_id), body=body)
        return decode_json("calendar", response)

    def patch_event(
        self, calendar_id: str, event_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Patch only the given fields of an event."""
        response = self._request(
            "PATCH", self._events_path(calendar_id, event_id), body=body
        )
        return decode_json("calendar", response)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event; an event that is already gone is not an error."""
        try:
            self._request(
                "DELETE", self._events_path(calendar_id, event_id)
            )
        except TransportError as exc:
            if exc.status in (404, 410):
                logger.debug("Event %s already deleted", event_id)
                return
            raise
