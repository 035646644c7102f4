"""Schema-aware field mapping for the external stores.

Translates between canonical item fields (``title``, ``date``, ``time``,
``location``, ``category``) and the record shapes of each store:

- **Workspace rows** (Notion database pages) -- ``Title`` (title),
  ``Date`` (date), ``Time`` (rich_text), ``Location`` (url or rich_text),
  ``Type`` (select), ``FirebaseID`` (rich_text, canonical key
  back-reference) and the page's ``last_edited_time``.
- **Calendar events** (Google Calendar) -- ``summary``, ``start``/``end``
  (``dateTime`` or all-day ``date``), ``location``,
  ``extendedProperties.private`` (``itineraryItemId``, ``category``) and
  the event's ``updated`` time.

Parsers are tolerant: a missing or empty property yields ``""``.  Only a
record without identity (no id, or no modification time where one is
required) raises ``MalformedRecordError``.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from itinerary_sync.sync.models import CandidateChange, ChangeKind, Source

#: Select options of the workspace ``Type`` property.
CATEGORIES = ("transport", "flight", "hotel", "food", "play", "ticket", "star")

#: Private extended property carrying the canonical key on calendar events.
CALENDAR_KEY_PROPERTY = "itineraryItemId"

#: Length of a timed calendar event when the item has no end time.
DEFAULT_EVENT_DURATION = timedelta(hours=1)


class MalformedRecordError(ValueError):
    """An external record lacks the identity needed to reconcile it."""


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by both APIs (``...Z``)."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


# ------------------------------------------------------------------
# Workspace (Notion)
# ------------------------------------------------------------------


def _plain_text(segments: list[dict[str, Any]] | None) -> str:
    parts = []
    for segment in segments or []:
        text = segment.get("plain_text")
        if text is None:
            text = (segment.get("text") or {}).get("content", "")
        parts.append(text)
    return "".join(parts).strip()


def _property(props: dict[str, Any], name: str) -> dict[str, Any]:
    value = props.get(name)
    return value if isinstance(value, dict) else {}


def parse_workspace_properties(props: dict[str, Any]) -> dict[str, str]:
    """Extract canonical content fields from a page's ``properties``.

    Never fails on missing or empty values; they default to ``""``.
    """
    date_prop = _property(props, "Date").get("date") or {}
    location = _property(props, "Location")
    select = _property(props, "Type").get("select") or {}
    return {
        "title": _plain_text(_property(props, "Title").get("title")),
        # A date property with a time component still maps to the day.
        "date": (date_prop.get("start") or "")[:10],
        "time": _plain_text(_property(props, "Time").get("rich_text")),
        "location": location.get("url")
        or _plain_text(location.get("rich_text")),
        "category": select.get("name") or "",
    }


def page_to_candidate(page: dict[str, Any], trip_id: str) -> CandidateChange:
    """Normalize a workspace row into a ``CandidateChange``.

    Archived (trashed) rows become cancellations.  Database queries do
    not return trashed rows, so polling never yields one; a page fetched
    by id can still be archived.

    Raises:
        MalformedRecordError: If the page has no id or no ``last_edited_time``.
    """
    page_id = page.get("id")
    if not page_id:
        raise MalformedRecordError("workspace page without id")
    try:
        timestamp = parse_timestamp(page.get("last_edited_time"))
    except ValueError as exc:
        raise MalformedRecordError(
            f"workspace page {page_id}: bad last_edited_time: {exc}"
        ) from None
    if timestamp is None:
        raise MalformedRecordError(
            f"workspace page {page_id} has no last_edited_time"
        )

    props = page.get("properties") or {}
    key = _plain_text(_property(props, "FirebaseID").get("rich_text")) or None
    if page.get("archived") or page.get("in_trash"):
        return CandidateChange(
            source=Source.WORKSPACE,
            external_id=page_id,
            trip_id=trip_id,
            key=key,
            timestamp=timestamp,
            kind=ChangeKind.CANCEL,
        )
    return CandidateChange(
        source=Source.WORKSPACE,
        external_id=page_id,
        trip_id=trip_id,
        key=key,
        fields=parse_workspace_properties(props),
        timestamp=timestamp,
    )


def _rich_text(value: str) -> dict[str, Any]:
    if not value:
        return {"rich_text": []}
    return {"rich_text": [{"type": "text", "text": {"content": value}}]}


def workspace_properties(
    fields: dict[str, str], key: str | None = None
) -> dict[str, Any]:
    """Build a Notion ``properties`` payload for the given fields only.

    Args:
        fields: Canonical field values to write (any subset).
        key: Canonical key to store in ``FirebaseID``; omitted when ``None``.
    """
    props: dict[str, Any] = {}
    if "title" in fields:
        props["Title"] = {
            "title": [{"type": "text", "text": {"content": fields["title"]}}]
        }
    if "date" in fields:
        props["Date"] = {
            "date": {"start": fields["date"]} if fields["date"] else None
        }
    if "time" in fields:
        props["Time"] = _rich_text(fields["time"])
    if "location" in fields:
        props["Location"] = _rich_text(fields["location"])
    if "category" in fields:
        props["Type"] = {
            "select": {"name": fields["category"]}
            if fields["category"]
            else None
        }
    if key is not None:
        props["FirebaseID"] = _rich_text(key)
    return props


# ------------------------------------------------------------------
# Calendar (Google Calendar)
# ------------------------------------------------------------------


def _local_zone(name: str | None) -> ZoneInfo | None:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def parse_event_fields(
    event: dict[str, Any], default_timezone: str | None = None
) -> dict[str, str]:
    """Extract canonical content fields from a calendar event.

    A timed start is read as wall-clock time in the event's own
    ``start.timeZone`` (falling back to *default_timezone*), since Google
    renders ``dateTime`` in the calendar's zone.  Without a known zone the
    offset of ``dateTime`` is kept.  An all-day start yields an empty
    ``time``.
    """
    start = event.get("start") or {}
    event_date = ""
    event_time = ""
    if start.get("dateTime"):
        try:
            moment = parse_timestamp(start["dateTime"])
        except ValueError:
            moment = None
        if moment is not None:
            zone = _local_zone(start.get("timeZone")) or _local_zone(
                default_timezone
            )
            if zone is not None and moment.tzinfo is not None:
                moment = moment.astimezone(zone)
            event_date = moment.date().isoformat()
            event_time = moment.strftime("%H:%M")
    elif start.get("date"):
        event_date = start["date"]

    private = (event.get("extendedProperties") or {}).get("private") or {}
    return {
        "title": (event.get("summary") or "").strip(),
        "date": event_date,
        "time": event_time,
        "location": (event.get("location") or "").strip(),
        "category": private.get("category") or "",
    }


def event_to_candidate(
    event: dict[str, Any],
    trip_id: str,
    observed_at: datetime,
    default_timezone: str | None = None,
) -> CandidateChange:
    """Normalize a calendar event into a ``CandidateChange``.

    Cancelled events become cancellations; when such an event carries no
    ``updated`` time, *observed_at* is used instead.

    Raises:
        MalformedRecordError: If the event has no id, or a live event has
            no ``updated`` time.
    """
    event_id = event.get("id")
    if not event_id:
        raise MalformedRecordError("calendar event without id")
    try:
        timestamp = parse_timestamp(event.get("updated"))
    except ValueError as exc:
        raise MalformedRecordError(
            f"calendar event {event_id}: bad updated time: {exc}"
        ) from None

    private = (event.get("extendedProperties") or {}).get("private") or {}
    key = private.get(CALENDAR_KEY_PROPERTY) or None

    if event.get("status") == "cancelled":
        return CandidateChange(
            source=Source.CALENDAR,
            external_id=event_id,
            trip_id=trip_id,
            key=key,
            timestamp=timestamp or observed_at,
            kind=ChangeKind.CANCEL,
        )
    if timestamp is None:
        raise MalformedRecordError(f"calendar event {event_id} has no updated time")
    return CandidateChange(
        source=Source.CALENDAR,
        external_id=event_id,
        trip_id=trip_id,
        key=key,
        fields=parse_event_fields(event, default_timezone),
        timestamp=timestamp,
    )


def _event_window(
    day: str, clock: str, timezone: str
) -> tuple[dict[str, str], dict[str, str]]:
    try:
        start_day = date.fromisoformat(day)
    except ValueError:
        raise MalformedRecordError(f"not a calendar date: '{day}'") from None

    if clock:
        try:
            start = datetime.combine(
                start_day, datetime.strptime(clock, "%H:%M").time()
            )
        except ValueError:
            start = None
        if start is not None:
            end = start + DEFAULT_EVENT_DURATION
            return (
                {"dateTime": start.isoformat(), "timeZone": timezone},
                {"dateTime": end.isoformat(), "timeZone": timezone},
            )

    # All-day events end on the following day (exclusive).
    return (
        {"date": start_day.isoformat()},
        {"date": (start_day + timedelta(days=1)).isoformat()},
    )


def calendar_event_body(
    fields: dict[str, str],
    key: str | None = None,
    timezone: str = "Asia/Taipei",
) -> dict[str, Any]:
    """Build an event resource (or patch body) for the given fields only.

    ``date`` and ``time`` are written together as ``start``/``end``; pass
    both whenever either changes.  An unparsable ``time`` makes the event
    all-day.

    Raises:
        MalformedRecordError: If ``date`` is present but not ``YYYY-MM-DD``.
    """
    body: dict[str, Any] = {}
    if "title" in fields:
        body["summary"] = fields["title"]
    if "location" in fields:
        body["location"] = fields["location"]
    if fields.get("date"):
        body["start"], body["end"] = _event_window(
            fields["date"], fields.get("time", ""), timezone
        )

    private: dict[str, str] = {}
    if key is not None:
        private[CALENDAR_KEY_PROPERTY] = key
    if "category" in fields:
        private["category"] = fields["category"]
    if private:
        body["extendedProperties"] = {"private": private}
    return body


def calendar_fields(
    content: dict[str, str], changed: Iterable[str] | None = None
) -> dict[str, str]:
    """Select the item fields to send to the calendar.

    With *changed* ``None`` every field is sent (creation).  ``date`` and
    ``time`` travel together because they form one ``start`` value.
    """
    if changed is None:
        return dict(content)
    names = set(changed)
    if names & {"date", "time"}:
        names |= {"date", "time"}
    return {name: content[name] for name in names if name in content}
