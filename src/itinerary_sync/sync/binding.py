"""Event identity binding.

Maps a record of one external store back to the canonical item it
mirrors.  Resolution order:

1. The foreign-id binding index of the trip (``externalWorkspaceItemId`` /
   ``externalCalendarEventId``), a dict lookup in the store.
2. The canonical key the external record carries as a back-reference
   (``FirebaseID`` on workspace rows, ``itineraryItemId`` on calendar
   events), used when propagation created the record but its binding
   write was lost.

A back-reference is only trusted when the item it names is not already
bound to a *different* external record of the same store.
"""

from __future__ import annotations

import logging

from itinerary_sync.canonical.models import ItineraryItem
from itinerary_sync.canonical.store import TripStore
from itinerary_sync.sync.models import CandidateChange, Source

logger = logging.getLogger(__name__)


class IdentityBinder:
    """Resolve external ids to canonical items of a trip.

    Args:
        store: Canonical trip store that owns the binding index.
    """

    def __init__(self, store: TripStore) -> None:
        self._store = store

    def lookup(
        self,
        trip_id: str,
        source: Source,
        external_id: str,
        key: str | None = None,
    ) -> ItineraryItem | None:
        """Return the bound item, or ``None`` when the record is unbound.

        Args:
            trip_id: Trip to search.
            source: Store the external id belongs to.
            external_id: Record id in *source* (the item key itself for
                ``Source.CANONICAL``).
            key: Back-reference carried by the external record, if any.
        """
        if source is Source.CANONICAL:
            return self._store.get_item(trip_id, external_id)

        item = self._store.find_item_by_binding(
            trip_id, source.value, external_id
        )
        if item is not None or key is None:
            return item

        item = self._store.get_item(trip_id, key)
        if item is None:
            return None
        bound = item.binding(source.value)
        if bound is not None and bound != external_id:
            logger.warning(
                "%s record %s claims item %s, which is bound to %s",
                source.value,
                external_id,
                key,
                bound,
            )
            return None
        return item

    def resolve(self, candidate: CandidateChange) -> ItineraryItem | None:
        """Shortcut for :meth:`lookup` with the fields of *candidate*."""
        return self.lookup(
            candidate.trip_id,
            candidate.source,
            candidate.external_id,
            candidate.key,
        )
