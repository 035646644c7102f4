"""Pydantic models for the canonical trip documents.

- ``ItineraryItem``: one scheduled entry of a trip, with its bindings to
  the workspace row and the calendar event that mirror it.
- ``Trip``: the root document; owns its items and the sync cursors for
  both external stores.

Documents are stored with camelCase keys (``externalWorkspaceItemId``,
``lastSyncedAt`` ...) and accessed in Python by their snake_case names.
All models are frozen; mutations go through ``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

#: Item fields that carry itinerary content (everything else is metadata).
CONTENT_FIELDS: tuple[str, ...] = (
    "title",
    "date",
    "time",
    "location",
    "category",
)

#: Item attribute holding the foreign id for each external store.
BINDING_FIELDS: dict[str, str] = {
    "workspace": "external_workspace_item_id",
    "calendar": "external_calendar_event_id",
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_document(self) -> dict:
        """Serialize with camelCase keys and ISO 8601 timestamps."""
        return self.model_dump(mode="json", by_alias=True)


class ItineraryItem(_Document):
    """A single itinerary entry.

    Attributes:
        key: Logical key, unique within the trip.
        title: Display title.
        date: Day of the entry, ``YYYY-MM-DD`` or empty.
        time: Local start time, ``HH:MM`` or empty for all-day entries.
        location: Free text or URL.
        category: One of the workspace ``Type`` options (food, hotel ...).
        created_at: When the canonical record was first written.
        updated_at: Timestamp that conflict resolution compares against.
        version: Bumped on every content mutation.
        external_workspace_item_id: Bound workspace row id.
        external_calendar_event_id: Bound calendar event id.
        archived: Soft-deleted (cancelled) entries stay in the document.
        archived_at: When the entry was archived.
    """

    key: str
    title: str = ""
    date: str = ""
    time: str = ""
    location: str = ""
    category: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = EPOCH
    version: int = 0
    external_workspace_item_id: str | None = None
    external_calendar_event_id: str | None = None
    archived: bool = False
    archived_at: datetime | None = None

    def binding(self, store: str) -> str | None:
        """Return the foreign id bound for *store* (``"workspace"``/``"calendar"``)."""
        return getattr(self, BINDING_FIELDS[store])

    def content(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in CONTENT_FIELDS}


class Trip(_Document):
    """Root container of an itinerary.

    ``last_synced_at`` is the workspace polling watermark and
    ``external_calendar_sync_token`` the calendar cursor; both only move
    when a reconciliation batch commits.
    """

    id: str
    title: str = ""
    timezone: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    external_workspace_page_id: str | None = None
    external_workspace_database_id: str | None = None
    external_calendar_id: str | None = None
    external_calendar_channel_id: str | None = None
    external_calendar_sync_token: str | None = None
    last_synced_at: datetime | None = None
    calendar_synced_at: datetime | None = None
    items: dict[str, ItineraryItem] = Field(default_factory=dict)

    @property
    def has_workspace(self) -> bool:
        return bool(self.external_workspace_database_id)

    @property
    def has_calendar(self) -> bool:
        return bool(self.external_calendar_id)
