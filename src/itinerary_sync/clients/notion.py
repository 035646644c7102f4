import threading
from datetime import datetime
from typing import Any, Iterator

import requests

from .errors import TransportError, decode_json

NOTION_API_URL = "https://api.notion.com/v1"


class NotionClient:
    """Minimal Notion REST client for the itinerary database of a trip.

    Only the calls the sync engine needs: query rows edited after a
    timestamp, create a row, update (or archive) a row.
    """

    def __init__(
        self,
        token: str,
        version: str = "2022-06-28",
        base_url: str = NOTION_API_URL,
        timeout: tuple[float, float] = (10, 60),
    ):
        self.token = token
        self.version = version
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.token}",
                "Notion-Version": self.version,
                "Content-Type": "application/json",
            }
        )
        return session

    def _request(
        self, method: str, path: str, payload: dict | None = None
    ) -> dict[str, Any]:
        """
        Make an authenticated request and return the decoded JSON body.

        Raises:
            TransportError: On connection errors, timeouts, non-2xx replies
                and bodies that are not JSON.
        """
        try:
            response = self._get_session().request(
                method,
                f"{self.base_url}/{path.lstrip('/')}",
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError.from_requests("workspace", exc) from exc
        return decode_json("workspace", response)

    def query_modified_since(
        self, database_id: str, after: datetime
    ) -> Iterator[dict[str, Any]]:
        """
        Yield every row of *database_id* edited after *after*.

        Follows ``has_more``/``next_cursor`` until the result set is
        exhausted.  Rows come oldest edit first.

        Raises:
            TransportError: If any page of the query fails.
        """
        payload: dict[str, Any] = {
            "filter": {
                "timestamp": "last_edited_time",
                "last_edited_time": {"after": after.isoformat()},
            },
            "sorts": [
                {"timestamp": "last_edited_time", "direction": "ascending"}
            ],
            "page_size": 100,
        }
        while True:
            data = self._request(
                "POST", f"databases/{database_id}/query", payload
            )
            yield from data.get("results", [])
            if not data.get("has_more") or not data.get("next_cursor"):
                return
            payload["start_cursor"] = data["next_cursor"]

    def create_page(
        self, database_id: str, properties: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Create a row in *database_id*.

        Returns:
            The created page object (``id``, ``last_edited_time`` ...).
        """
        return self._request(
            "POST",
            "pages",
            {"parent": {"database_id": database_id}, "properties": properties},
        )

    def update_page(
        self,
        page_id: str,
        properties: dict[str, Any] | None = None,
        archived: bool | None = None,
    ) -> dict[str, Any]:
        """
        Update only the given properties of a row, or (un)archive it.
        """
        payload: dict[str, Any] = {}
        if properties:
            payload["properties"] = properties
        if archived is not None:
            payload["archived"] = archived
        return self._request("PATCH", f"pages/{page_id}", payload)
