"""Propagation of committed canonical writes to the mirror stores.

For each committed write the ``Propagator`` forwards the new values to
every enabled mirror the trip is connected to, except the store the
change came from:

- no binding for the target: create the remote record, then persist the
  returned id as the item's binding;
- binding present: send only the changed fields;
- archived item: archive the workspace row / delete the calendar event.

After every mirror write the mirror's own modification time is recorded
on the canonical item (``TripStore.record_mirror``) so the echo that the
mirror reports later is not strictly newer than the canonical record.

Failures are logged per target and never undo the canonical write; the
canonical store stays the source of truth while a mirror lags behind.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from itinerary_sync.canonical.models import CONTENT_FIELDS, ItineraryItem, Trip
from itinerary_sync.canonical.store import ItemWrite, TripStore
from itinerary_sync.sync.mapper import (
    calendar_event_body,
    calendar_fields,
    parse_timestamp,
    workspace_properties,
)
from itinerary_sync.sync.models import Source

if TYPE_CHECKING:
    from itinerary_sync.clients.gcal import GoogleCalendarClient
    from itinerary_sync.clients.notion import NotionClient

logger = logging.getLogger(__name__)


class Propagator:
    """Forward canonical writes to the workspace and calendar mirrors.

    Args:
        store: Canonical store (for trip bindings and mirror bookkeeping).
        workspace: Notion client, or ``None`` when workspace sync is disabled.
        calendar: Google Calendar client, or ``None`` when disabled.
        default_timezone: Event timezone for trips without their own.
    """

    def __init__(
        self,
        store: TripStore,
        workspace: NotionClient | None = None,
        calendar: GoogleCalendarClient | None = None,
        default_timezone: str = "Asia/Taipei",
    ) -> None:
        self.store = store
        self.workspace = workspace
        self.calendar = calendar
        self.default_timezone = default_timezone

    def targets(self, trip: Trip, origin: Source) -> list[Source]:
        """Mirrors a write originating from *origin* must reach."""
        targets = []
        if (
            origin is not Source.WORKSPACE
            and self.workspace is not None
            and trip.has_workspace
        ):
            targets.append(Source.WORKSPACE)
        if (
            origin is not Source.CALENDAR
            and self.calendar is not None
            and trip.has_calendar
        ):
            targets.append(Source.CALENDAR)
        return targets

    def propagate(self, write: ItemWrite, origin: Source) -> list[str]:
        """Forward *write* to every target mirror.

        Returns:
            One warning per target that failed (empty when all succeeded).
        """
        if not write.created and not write.changed_fields:
            return []

        trip = self.store.get_trip(write.trip_id)
        warnings: list[str] = []
        for target in self.targets(trip, origin):
            push = (
                self._push_workspace
                if target is Source.WORKSPACE
                else self._push_calendar
            )
            try:
                push(trip, write)
            except Exception as exc:
                # The canonical write stands; the next edit catches the mirror up.
                logger.warning(
                    "Propagating %s/%s to %s failed: %s",
                    write.trip_id,
                    write.item.key,
                    target.value,
                    exc,
                )
                warnings.append(f"{target.value}: {exc}")
        return warnings

    # ------------------------------------------------------------------
    # Workspace
    # ------------------------------------------------------------------

    def _push_workspace(self, trip: Trip, write: ItemWrite) -> None:
        item = write.item
        page_id = item.external_workspace_item_id

        if item.archived:
            if page_id is None:
                return
            page = self.workspace.update_page(page_id, archived=True)
            self._record(trip, item, Source.WORKSPACE, page_id, page)
            logger.info("Archived workspace row %s (%s)", page_id, item.key)
            return

        if page_id is None:
            page = self.workspace.create_page(
                trip.external_workspace_database_id,
                workspace_properties(item.content(), key=item.key),
            )
            self._record(trip, item, Source.WORKSPACE, page["id"], page)
            logger.info("Created workspace row %s for %s", page["id"], item.key)
            return

        revived = "archived" in write.changed_fields
        fields = _changed_content(item, write.changed_fields)
        if not fields and not revived:
            return
        page = self.workspace.update_page(
            page_id,
            properties=workspace_properties(fields),
            archived=False if revived else None,
        )
        self._record(trip, item, Source.WORKSPACE, page_id, page)
        logger.info(
            "Updated workspace row %s (%s): %s",
            page_id,
            item.key,
            ", ".join(sorted(fields)) or "restored",
        )

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    def _push_calendar(self, trip: Trip, write: ItemWrite) -> None:
        item = write.item
        event_id = item.external_calendar_event_id
        timezone = trip.timezone or self.default_timezone

        if item.archived:
            if event_id is None:
                return
            self.calendar.delete_event(trip.external_calendar_id, event_id)
            logger.info("Deleted calendar event %s (%s)", event_id, item.key)
            return

        if event_id is None:
            if not item.date:
                logger.debug("Item %s has no date; not on the calendar", item.key)
                return
            event = self.calendar.insert_event(
                trip.external_calendar_id,
                calendar_event_body(item.content(), item.key, timezone),
            )
            self._record(trip, item, Source.CALENDAR, event["id"], event)
            logger.info(
                "Created calendar event %s for %s", event["id"], item.key
            )
            return

        revived = "archived" in write.changed_fields
        if revived:
            body = calendar_event_body(item.content(), item.key, timezone)
            body["status"] = "confirmed"
        else:
            fields = calendar_fields(
                item.content(), _changed_content(item, write.changed_fields)
            )
            if not fields:
                return
            body = calendar_event_body(fields, timezone=timezone)
        event = self.calendar.patch_event(
            trip.external_calendar_id, event_id, body
        )
        self._record(trip, item, Source.CALENDAR, event_id, event)
        logger.info("Updated calendar event %s (%s)", event_id, item.key)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record(
        self,
        trip: Trip,
        item: ItineraryItem,
        target: Source,
        external_id: str,
        record: dict,
    ) -> None:
        """Persist the binding and the mirror's modification time."""
        mirrored_at = parse_timestamp(
            record.get("last_edited_time") or record.get("updated")
        )
        self.store.record_mirror(
            trip.id, item.key, target.value, external_id, mirrored_at
        )


def _changed_content(
    item: ItineraryItem, changed_fields: tuple[str, ...]
) -> dict[str, str]:
    return {
        name: getattr(item, name)
        for name in changed_fields
        if name in CONTENT_FIELDS
    }
