"""Change ingestion.

Three producers normalize changes into ``CandidateChange`` objects:

- ``CanonicalIngestor`` -- subscribed to the canonical store; turns every
  direct item edit into exactly one canonical candidate (timestamp = the
  store's commit time) and hands the committed write to propagation.
- ``WorkspaceIngestor`` -- pulls workspace rows edited since the trip's
  ``lastSyncedAt`` watermark (minus a small lookback).
- ``CalendarIngestor`` -- pulls calendar events changed since the trip's
  stored sync token (full listing when there is none).

Pulls are restartable: each returns the candidates plus the cursor values
the reconciliation batch should commit, and nothing is persisted here.
A malformed record is logged and skipped; a transport failure propagates
to the caller so the cursor stays where it was.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from itinerary_sync.canonical.models import CONTENT_FIELDS, EPOCH, Trip, utcnow
from itinerary_sync.canonical.store import ItemWrite
from itinerary_sync.sync.mapper import (
    MalformedRecordError,
    event_to_candidate,
    page_to_candidate,
)
from itinerary_sync.sync.models import (
    CandidateChange,
    ChangeKind,
    Resolution,
    Source,
    SyncAction,
    SyncResult,
)

if TYPE_CHECKING:
    from itinerary_sync.clients.gcal import GoogleCalendarClient
    from itinerary_sync.clients.notion import NotionClient
    from itinerary_sync.sync.propagation import Propagator
    from itinerary_sync.sync.resolver import ConflictResolver

logger = logging.getLogger(__name__)


@dataclass
class Pull:
    """Result of one incremental fetch from an external store.

    Attributes:
        candidates: Normalized changes, in the order the store returned them.
        skipped: Results for records that were malformed.
        cursor: Trip cursor values to commit with the batch.
    """

    candidates: list[CandidateChange] = field(default_factory=list)
    skipped: list[SyncResult] = field(default_factory=list)
    cursor: dict[str, Any] = field(default_factory=dict)


def _skip(source: Source, record: dict[str, Any], exc: Exception) -> SyncResult:
    logger.warning("Skipping malformed %s record: %s", source.value, exc)
    return SyncResult(
        external_id=str(record.get("id") or ""),
        action=SyncAction.FAILED,
        success=False,
        error=str(exc),
    )


class CanonicalIngestor:
    """Store listener for direct canonical edits.

    Args:
        resolver: Conflict resolver (canonical candidates always apply).
        propagator: Forwards the committed write to the mirrors.
    """

    def __init__(
        self, resolver: ConflictResolver, propagator: Propagator
    ) -> None:
        self.resolver = resolver
        self.propagator = propagator

    @staticmethod
    def candidate_for(write: ItemWrite) -> CandidateChange:
        """The single candidate describing a committed canonical write."""
        item = write.item
        return CandidateChange(
            source=Source.CANONICAL,
            external_id=item.key,
            trip_id=write.trip_id,
            key=item.key,
            fields={
                name: getattr(item, name)
                for name in write.changed_fields
                if name in CONTENT_FIELDS
            },
            timestamp=item.updated_at,
            kind=ChangeKind.CANCEL if write.archived else ChangeKind.UPSERT,
        )

    def __call__(self, write: ItemWrite) -> CandidateChange:
        candidate = self.candidate_for(write)
        if self.resolver.resolve(candidate, write.item) is Resolution.APPLY:
            self.propagator.propagate(write, Source.CANONICAL)
        return candidate


class WorkspaceIngestor:
    """Pull workspace rows edited since the trip's watermark.

    The query starts ``lookback`` before ``lastSyncedAt`` because the
    workspace rounds edit times to the minute; rows fetched twice are
    ignored by conflict resolution.  The next watermark is the time the
    query started.
    """

    def __init__(
        self,
        client: NotionClient,
        lookback: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.lookback = lookback
        self.clock = clock

    def fetch(self, trip: Trip) -> Pull:
        """
        Raises:
            TransportError: If the query fails.
        """
        started = self.clock()
        since = (trip.last_synced_at or EPOCH) - self.lookback
        if since < EPOCH:
            since = EPOCH

        pull = Pull(cursor={"last_synced_at": started})
        for page in self.client.query_modified_since(
            trip.external_workspace_database_id, since
        ):
            try:
                pull.candidates.append(page_to_candidate(page, trip.id))
            except MalformedRecordError as exc:
                pull.skipped.append(_skip(Source.WORKSPACE, page, exc))

        logger.debug(
            "Fetched %d workspace changes for trip %s since %s",
            len(pull.candidates),
            trip.id,
            since.isoformat(),
        )
        return pull


class CalendarIngestor:
    """Pull calendar events changed since the trip's sync token.

    Event times are read in the trip's timezone (or *default_timezone*)
    unless the event names its own.
    """

    def __init__(
        self,
        client: GoogleCalendarClient,
        clock: Callable[[], datetime] = utcnow,
        default_timezone: str | None = None,
    ) -> None:
        self.client = client
        self.clock = clock
        self.default_timezone = default_timezone

    def fetch(self, trip: Trip) -> Pull:
        """
        Raises:
            SyncTokenExpired: If the stored token is no longer valid.
            TransportError: If the listing fails.
        """
        observed_at = self.clock()
        events, next_token = self.client.list_changes(
            trip.external_calendar_id, trip.external_calendar_sync_token
        )

        pull = Pull(cursor={"calendar_synced_at": observed_at})
        if next_token:
            pull.cursor["external_calendar_sync_token"] = next_token
        timezone = trip.timezone or self.default_timezone
        for event in events:
            try:
                pull.candidates.append(
                    event_to_candidate(event, trip.id, observed_at, timezone)
                )
            except MalformedRecordError as exc:
                pull.skipped.append(_skip(Source.CALENDAR, event, exc))

        logger.debug(
            "Fetched %d calendar changes for trip %s (%s)",
            len(pull.candidates),
            trip.id,
            "incremental" if trip.external_calendar_sync_token else "full",
        )
        return pull
