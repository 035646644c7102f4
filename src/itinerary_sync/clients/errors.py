"""Exceptions raised by the external store clients."""

from typing import Any

import requests


class TransportError(RuntimeError):
    """A call to an external store failed (unreachable, timeout, non-2xx).

    Attributes:
        store: ``"workspace"`` or ``"calendar"``.
        status: HTTP status code when the server answered.
    """

    def __init__(
        self, store: str, message: str, status: int | None = None
    ) -> None:
        super().__init__(f"{store}: {message}")
        self.store = store
        self.status = status

    @classmethod
    def from_requests(
        cls, store: str, exc: requests.RequestException
    ) -> "TransportError":
        response = getattr(exc, "response", None)
        status = response.status_code if response is not None else None
        detail = str(exc)
        if response is not None:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                error = body.get("error")
                if isinstance(error, dict):
                    error = error.get("message")
                detail = body.get("message") or error or detail
        return cls(store, detail, status)


class SyncTokenExpired(TransportError):
    """The calendar reported the incremental sync token as gone (HTTP 410)."""

    def __init__(self, message: str = "sync token expired") -> None:
        super().__init__("calendar", message, 410)


def decode_json(store: str, response: requests.Response) -> Any:
    """Return the decoded JSON body of a successful *response*.

    Raises:
        TransportError: If the body is not valid JSON.
    """
    try:
        return response.json()
    except ValueError as exc:
        raise TransportError(
            store, f"invalid JSON in response: {exc}", response.status_code
        ) from exc
