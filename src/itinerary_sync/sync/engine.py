"""Reconciliation batch runner.

The ``ReconciliationRunner`` pulls one external store's changes for a
trip and folds them into the canonical store:

1. Read the trip and its sync cursor.
2. Pull candidate changes since the cursor (``sync.ingest``).
3. Resolve each candidate's item (``sync.binding``) and decide it
   (``sync.resolver``); stage the accepted ones in a ``TripBatch``.
4. Commit every staged mutation together with the advanced cursor as one
   atomic document write.  The commit re-checks each mutation against the
   item as it is at that moment, so a concurrent direct edit with a later
   timestamp is never overwritten.
5. Propagate every committed write to the other mirror.

A transport failure or a failed commit leaves the cursor where it was,
so the next run fetches the same window again; the strict timestamp rule
makes re-applying that window a no-op.  A malformed record is skipped
without aborting the batch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from itinerary_sync.canonical.models import Trip
from itinerary_sync.canonical.store import (
    BatchConflictError,
    ItemWrite,
    StagedMutation,
    TripStore,
)
from itinerary_sync.clients.errors import SyncTokenExpired, TransportError
from itinerary_sync.core.async_utils import gather_limited, run_sync_limited
from itinerary_sync.sync.binding import IdentityBinder
from itinerary_sync.sync.ingest import CalendarIngestor, Pull, WorkspaceIngestor
from itinerary_sync.sync.models import (
    Resolution,
    Source,
    SyncAction,
    SyncReport,
    SyncResult,
)
from itinerary_sync.sync.propagation import Propagator
from itinerary_sync.sync.resolver import ConflictResolver

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _action_for(write: ItemWrite) -> SyncAction:
    if write.created:
        return SyncAction.CREATED
    if write.archived:
        return SyncAction.ARCHIVED
    if write.changed_fields:
        return SyncAction.UPDATED
    # Accepted but identical content: only updated_at moved.
    return SyncAction.IGNORED


class ReconciliationRunner:
    """Run reconciliation batches for trips.

    Args:
        store: Canonical trip store.
        resolver: Conflict resolver (also supplies the commit-time guard).
        propagator: Forwards committed writes to the other mirror.
        workspace: Workspace ingestor, or ``None`` when disabled.
        calendar: Calendar ingestor, or ``None`` when disabled.
    """

    def __init__(
        self,
        store: TripStore,
        resolver: ConflictResolver,
        propagator: Propagator,
        workspace: WorkspaceIngestor | None = None,
        calendar: CalendarIngestor | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.propagator = propagator
        self.workspace = workspace
        self.calendar = calendar
        self.binder = IdentityBinder(store)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def sync_workspace(self, trip_id: str) -> SyncReport:
        """Pull workspace edits for one trip.

        Raises:
            TripNotFoundError: If *trip_id* does not exist.
        """
        trip = self.store.get_trip(trip_id)
        if self.workspace is None or not trip.has_workspace:
            return self._unavailable(trip, Source.WORKSPACE)
        return self._reconcile(trip, Source.WORKSPACE, self.workspace.fetch)

    def sync_calendar(self, trip_id: str) -> SyncReport:
        """Pull calendar changes for one trip.

        An expired sync token is cleared (so the next run lists everything)
        and reported with ``requires_full_resync``.

        Raises:
            TripNotFoundError: If *trip_id* does not exist.
        """
        trip = self.store.get_trip(trip_id)
        if self.calendar is None or not trip.has_calendar:
            return self._unavailable(trip, Source.CALENDAR)
        return self._reconcile(trip, Source.CALENDAR, self.calendar.fetch)

    def sync_calendar_channel(self, channel_id: str) -> SyncReport | None:
        """Reconcile the trip that owns watch channel *channel_id*.

        Returns:
            The report, or ``None`` when no trip is bound to the channel
            or the owning trip has no calendar binding.
        """
        trip = self.store.find_trip_by_channel(channel_id)
        if trip is None:
            logger.warning("No trip bound to calendar channel %s", channel_id)
            return None
        if not trip.has_calendar:
            logger.warning(
                "Trip %s owns calendar channel %s but has no calendar id",
                trip.id,
                channel_id,
            )
            return None
        return self.sync_calendar(trip.id)

    async def run_workspace_poll(
        self, trip_ids: list[str] | None = None
    ) -> list[SyncReport]:
        """Reconcile the workspace of every connected trip concurrently.

        Each trip runs in a worker thread, bounded by the shared
        semaphore (``max_parallel_trips``).  A trip that fails outright is
        reported with its error; the other trips are unaffected.
        """
        if self.workspace is None:
            logger.debug("Workspace sync disabled; skipping poll")
            return []
        if trip_ids is None:
            trip_ids = [t.id for t in self.store.list_trips() if t.has_workspace]
        reports = await gather_limited(
            [run_sync_limited(self._poll_trip, trip_id) for trip_id in trip_ids]
        )
        logger.info(
            "Workspace poll finished: %d trips, %d changes applied",
            len(reports),
            sum(r.applied for r in reports),
        )
        return reports

    def _poll_trip(self, trip_id: str) -> SyncReport:
        started_at = _now()
        try:
            return self.sync_workspace(trip_id)
        except Exception as exc:
            logger.exception("Workspace sync for trip %s failed", trip_id)
            return SyncReport(
                trip_id=trip_id,
                source=Source.WORKSPACE,
                started_at=started_at,
                completed_at=_now(),
                error=f"{type(exc).__name__}: {exc}",
            )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def _reconcile(
        self, trip: Trip, source: Source, fetch: Callable[[Trip], Pull]
    ) -> SyncReport:
        started_at = _now()

        try:
            pull = fetch(trip)
        except SyncTokenExpired:
            logger.warning(
                "Calendar sync token for trip %s expired; cleared for full resync",
                trip.id,
            )
            self.store.clear_calendar_sync_token(trip.id)
            return SyncReport(
                trip_id=trip.id,
                source=source,
                started_at=started_at,
                completed_at=_now(),
                requires_full_resync=True,
                error="sync token expired",
            )
        except TransportError as exc:
            logger.error(
                "Fetching %s changes for trip %s failed: %s",
                source.value,
                trip.id,
                exc,
            )
            return SyncReport(
                trip_id=trip.id,
                source=source,
                started_at=started_at,
                completed_at=_now(),
                error=str(exc),
            )

        results: list[SyncResult] = list(pull.skipped)
        with self.store.batch(trip.id) as batch:
            for candidate in pull.candidates:
                current = self.binder.resolve(candidate)
                key = current.key if current is not None else None
                if self.resolver.resolve(candidate, current) is Resolution.IGNORE:
                    results.append(
                        SyncResult(
                            external_id=candidate.external_id,
                            key=key,
                            action=SyncAction.IGNORED,
                        )
                    )
                    continue
                batch.stage(
                    StagedMutation(
                        source=candidate.source.value,
                        external_id=candidate.external_id,
                        fields=dict(candidate.fields),
                        timestamp=candidate.timestamp,
                        kind=candidate.kind.value,
                        key=key,
                    )
                )
            batch.advance_cursor(**pull.cursor)

            try:
                writes, dropped = batch.commit(self.resolver.commit_guard())
            except (OSError, BatchConflictError) as exc:
                logger.error(
                    "Committing %s batch for trip %s failed: %s",
                    source.value,
                    trip.id,
                    exc,
                )
                return SyncReport(
                    trip_id=trip.id,
                    source=source,
                    results=results,
                    started_at=started_at,
                    completed_at=_now(),
                    error=str(exc),
                )

        for mutation in dropped:
            results.append(
                SyncResult(
                    external_id=mutation.external_id,
                    key=mutation.key,
                    action=SyncAction.IGNORED,
                )
            )
        for write in writes:
            warnings = self.propagator.propagate(write, source)
            results.append(
                SyncResult(
                    external_id=write.external_id or write.item.key,
                    key=write.item.key,
                    action=_action_for(write),
                    error="; ".join(warnings) or None,
                )
            )

        report = SyncReport(
            trip_id=trip.id,
            source=source,
            results=results,
            started_at=started_at,
            completed_at=_now(),
            cursor_advanced=True,
        )
        logger.info(report.summary())
        return report

    @staticmethod
    def _unavailable(trip: Trip, source: Source) -> SyncReport:
        started_at = _now()
        reason = f"{source.value} sync is not configured for trip '{trip.id}'"
        logger.debug(reason)
        return SyncReport(
            trip_id=trip.id,
            source=source,
            started_at=started_at,
            completed_at=started_at,
            error=reason,
        )
