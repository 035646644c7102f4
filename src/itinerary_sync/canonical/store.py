"""Canonical trip store.

One JSON document per trip (``trip_{id}.json``) holding the trip fields
and every itinerary item.  The store is the only writer of these files.

Key design choices:

* **Atomic writes** -- every commit writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.  A reconciliation
  batch (item mutations *and* the sync cursor) is a single replace, so it
  lands completely or not at all.
* **Per-trip locks** -- all read-modify-write cycles for a trip run under
  that trip's lock.  Staged mutations are re-checked against the item as
  it is at commit time (compare-and-set), never blindly overwritten.
* **Binding index** -- a ``{store: {external_id: key}}`` map is built when
  a document is loaded and kept in a cache keyed on the file's mtime, so
  resolving a foreign id is a dict lookup.
* **Change listeners** -- direct edits (``save_item``/``archive_item``)
  notify subscribers after the write, the way a document database fires
  its triggers.  Batch commits and mirror bookkeeping do not notify; the
  reconciliation runner propagates its own writes.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from .models import (
    BINDING_FIELDS,
    CONTENT_FIELDS,
    ItineraryItem,
    Trip,
    utcnow,
)

logger = logging.getLogger(__name__)

_TRIP_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

#: Trip attributes a reconciliation batch may advance.
CURSOR_FIELDS = frozenset(
    {"last_synced_at", "external_calendar_sync_token", "calendar_synced_at"}
)

#: Trip attributes set when external resources are provisioned.
TRIP_BINDING_FIELDS = frozenset(
    {
        "external_workspace_page_id",
        "external_workspace_database_id",
        "external_calendar_id",
        "external_calendar_channel_id",
        "external_calendar_sync_token",
        "timezone",
        "title",
    }
)


class TripNotFoundError(KeyError):
    """No document exists for the requested trip id."""


class ItemNotFoundError(KeyError):
    """The trip has no item with the requested key."""


class BatchConflictError(RuntimeError):
    """A write would bind one external id to two canonical items."""


@dataclass(frozen=True)
class StagedMutation:
    """A create-or-update (or cancel) waiting in a ``TripBatch``.

    Attributes:
        source: External store the change came from.
        external_id: Foreign id in that store; written as the binding.
        fields: New content values (subset of ``CONTENT_FIELDS``).
        timestamp: Source-reported modification time; becomes ``updated_at``.
        kind: ``"upsert"`` or ``"cancel"``.
        key: Canonical key when already known (bound item or back-reference).
    """

    source: str
    external_id: str
    fields: dict[str, str]
    timestamp: datetime
    kind: str = "upsert"
    key: str | None = None


@dataclass(frozen=True)
class ItemWrite:
    """A committed change to one item."""

    trip_id: str
    item: ItineraryItem
    changed_fields: tuple[str, ...]
    created: bool
    origin: str
    external_id: str | None = None

    @property
    def archived(self) -> bool:
        return "archived" in self.changed_fields and self.item.archived


#: Decides, at commit time, whether a staged mutation still applies to
#: the current item (``None`` when unbound).
CommitGuard = Callable[[StagedMutation, "ItineraryItem | None"], bool]
ItemListener = Callable[[ItemWrite], None]


@dataclass
class _CacheEntry:
    mtime_ns: int
    trip: Trip
    index: dict[str, dict[str, str]]


class TripBatch:
    """Unit of work for one trip's reconciliation.

    Stage mutations and cursor updates, then ``commit()`` them as a single
    atomic document write.  Leaving the ``with`` block without committing
    (or with an exception) discards everything staged.
    """

    def __init__(self, store: TripStore, trip_id: str) -> None:
        self._store = store
        self.trip_id = trip_id
        self.mutations: list[StagedMutation] = []
        self.cursor: dict[str, object] = {}
        self.committed = False

    def __enter__(self) -> TripBatch:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        if not self.committed:
            self.mutations.clear()
            self.cursor.clear()
        return False

    def stage(self, mutation: StagedMutation) -> None:
        self.mutations.append(mutation)

    def advance_cursor(self, **fields: object) -> None:
        unknown = set(fields) - CURSOR_FIELDS
        if unknown:
            raise ValueError(f"Not a cursor field: {sorted(unknown)}")
        self.cursor.update(fields)

    def commit(
        self, guard: CommitGuard | None = None
    ) -> tuple[list[ItemWrite], list[StagedMutation]]:
        """Apply every staged mutation and the cursor in one write.

        Returns:
            ``(writes, dropped)`` -- the committed item writes and the
            staged mutations the guard rejected at commit time.
        """
        result = self._store._commit_batch(self, guard)
        self.committed = True
        return result


class TripStore:
    """Load, query and mutate canonical trip documents.

    Args:
        directory: Where the ``trip_*.json`` documents live.
        clock: Source of server-assigned commit times.
    """

    def __init__(
        self,
        directory: Path,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._dir = Path(directory)
        self._clock = clock
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._cache: dict[str, _CacheEntry] = {}
        self._listeners: list[ItemListener] = []

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    def create_trip(self, trip: Trip) -> Trip:
        """Persist a new trip document (bootstrap).

        Raises:
            ValueError: If the id is invalid or the trip already exists.
        """
        path = self._path(trip.id)
        with self._lock(trip.id):
            if path.exists():
                raise ValueError(f"Trip '{trip.id}' already exists")
            self._write(trip)
        logger.info("Created trip %s", trip.id)
        return trip

    def get_trip(self, trip_id: str) -> Trip:
        with self._lock(trip_id):
            return self._load(trip_id).trip

    def list_trips(self) -> list[Trip]:
        if not self._dir.is_dir():
            return []
        trips = []
        for path in sorted(self._dir.glob("trip_*.json")):
            trip_id = path.stem[len("trip_") :]
            try:
                trips.append(self.get_trip(trip_id))
            except TripNotFoundError:
                # Removed between glob and load
                continue
        return trips

    def find_trip_by_channel(self, channel_id: str) -> Trip | None:
        """Return the trip whose calendar watch channel is *channel_id*."""
        for trip in self.list_trips():
            if trip.external_calendar_channel_id == channel_id:
                return trip
        return None

    def update_trip(self, trip_id: str, **fields: object) -> Trip:
        """Set trip-level bindings (workspace/calendar ids, channel, timezone)."""
        unknown = set(fields) - TRIP_BINDING_FIELDS
        if unknown:
            raise ValueError(f"Not a trip binding field: {sorted(unknown)}")
        with self._lock(trip_id):
            trip = self._load(trip_id).trip
            trip = trip.model_copy(
                update={**fields, "updated_at": self._clock()}
            )
            self._write(trip)
        return trip

    def clear_calendar_sync_token(self, trip_id: str) -> None:
        """Drop the calendar cursor so the next fetch is a full listing."""
        with self._lock(trip_id):
            trip = self._load(trip_id).trip
            if trip.external_calendar_sync_token is None:
                return
            self._write(
                trip.model_copy(update={"external_calendar_sync_token": None})
            )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, trip_id: str, key: str) -> ItineraryItem | None:
        return self.get_trip(trip_id).items.get(key)

    def find_item_by_binding(
        self, trip_id: str, store: str, external_id: str
    ) -> ItineraryItem | None:
        """Resolve the item bound to *external_id* in *store*, if any."""
        with self._lock(trip_id):
            entry = self._load(trip_id)
            key = entry.index[store].get(external_id)
            return entry.trip.items.get(key) if key else None

    def save_item(
        self,
        trip_id: str,
        fields: dict[str, str],
        key: str | None = None,
    ) -> ItemWrite:
        """Create or update an item as a direct (user) edit.

        The write is stamped with the store's own commit time and the
        subscribed listeners are notified afterwards.

        Raises:
            ValueError: If *fields* contains a non-content field.
        """
        unknown = set(fields) - set(CONTENT_FIELDS)
        if unknown:
            raise ValueError(f"Not an itinerary field: {sorted(unknown)}")

        with self._lock(trip_id):
            trip = self._load(trip_id).trip
            now = self._clock()
            current = trip.items.get(key) if key else None
            if current is None:
                item = ItineraryItem(
                    key=key or _new_key(),
                    created_at=now,
                    updated_at=now,
                    version=1,
                    **fields,
                )
                write = ItemWrite(
                    trip_id=trip_id,
                    item=item,
                    changed_fields=tuple(sorted(fields)),
                    created=True,
                    origin="canonical",
                )
            else:
                changed = _changed(current, fields)
                if not changed:
                    return ItemWrite(
                        trip_id=trip_id,
                        item=current,
                        changed_fields=(),
                        created=False,
                        origin="canonical",
                    )
                item = current.model_copy(
                    update={
                        **{k: fields[k] for k in changed},
                        "updated_at": now,
                        "version": current.version + 1,
                    }
                )
                write = ItemWrite(
                    trip_id=trip_id,
                    item=item,
                    changed_fields=changed,
                    created=False,
                    origin="canonical",
                )
            self._write(_with_item(trip, item, now))

        self._notify(write)
        return write

    def archive_item(self, trip_id: str, key: str) -> ItemWrite:
        """Soft-delete an item as a direct (user) edit."""
        with self._lock(trip_id):
            trip = self._load(trip_id).trip
            current = trip.items.get(key)
            if current is None:
                raise ItemNotFoundError(f"Trip '{trip_id}' has no item '{key}'")
            if current.archived:
                return ItemWrite(
                    trip_id=trip_id,
                    item=current,
                    changed_fields=(),
                    created=False,
                    origin="canonical",
                )
            now = self._clock()
            item = current.model_copy(
                update={
                    "archived": True,
                    "archived_at": now,
                    "updated_at": now,
                    "version": current.version + 1,
                }
            )
            self._write(_with_item(trip, item, now))

        write = ItemWrite(
            trip_id=trip_id,
            item=item,
            changed_fields=("archived",),
            created=False,
            origin="canonical",
        )
        self._notify(write)
        return write

    def record_mirror(
        self,
        trip_id: str,
        key: str,
        store: str,
        external_id: str,
        mirrored_at: datetime | None = None,
    ) -> ItineraryItem:
        """Persist a binding written by propagation.

        ``updated_at`` is raised to *mirrored_at* (the mirror's own
        last-modified time for the write) when that is later, so the
        mirror's echo never looks strictly newer than the canonical
        record.  ``version`` is unchanged and listeners are not notified.

        Raises:
            ItemNotFoundError: If *key* does not exist.
            BatchConflictError: If *external_id* is bound to another item.
        """
        with self._lock(trip_id):
            entry = self._load(trip_id)
            current = entry.trip.items.get(key)
            if current is None:
                raise ItemNotFoundError(f"Trip '{trip_id}' has no item '{key}'")
            _check_binding(entry.index, store, external_id, key)
            update: dict[str, object] = {BINDING_FIELDS[store]: external_id}
            if mirrored_at is not None and mirrored_at > current.updated_at:
                update["updated_at"] = mirrored_at
            item = current.model_copy(update=update)
            self._write(_with_item(entry.trip, item, entry.trip.updated_at))
        return item

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def batch(self, trip_id: str) -> TripBatch:
        return TripBatch(self, trip_id)

    def _commit_batch(
        self, batch: TripBatch, guard: CommitGuard | None
    ) -> tuple[list[ItemWrite], list[StagedMutation]]:
        writes: list[ItemWrite] = []
        dropped: list[StagedMutation] = []

        with self._lock(batch.trip_id):
            entry = self._load(batch.trip_id)
            items = dict(entry.trip.items)
            index = {store: dict(ids) for store, ids in entry.index.items()}

            for mutation in batch.mutations:
                current = _locate(items, index, mutation)
                if guard is not None and not guard(mutation, current):
                    dropped.append(mutation)
                    continue
                if mutation.kind == "cancel" and current is None:
                    dropped.append(mutation)
                    continue
                write = _apply(batch.trip_id, current, mutation)
                _check_binding(
                    index, mutation.source, mutation.external_id, write.item.key
                )
                items[write.item.key] = write.item
                index[mutation.source][mutation.external_id] = write.item.key
                writes.append(write)

            trip = entry.trip.model_copy(
                update={
                    **batch.cursor,
                    "items": items,
                    "updated_at": self._clock() if writes else entry.trip.updated_at,
                }
            )
            self._write(trip)

        logger.debug(
            "Committed batch for trip %s: %d writes, %d dropped, cursor=%s",
            batch.trip_id,
            len(writes),
            len(dropped),
            sorted(batch.cursor),
        )
        return writes, dropped

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: ItemListener) -> None:
        """Register a callback fired after every direct item edit."""
        self._listeners.append(listener)

    def _notify(self, write: ItemWrite) -> None:
        if not write.changed_fields:
            return
        for listener in self._listeners:
            try:
                listener(write)
            except Exception:
                # The canonical write stands regardless of listeners.
                logger.exception(
                    "Listener failed for %s/%s", write.trip_id, write.item.key
                )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _path(self, trip_id: str) -> Path:
        if not _TRIP_ID_PATTERN.match(trip_id):
            raise ValueError(f"Invalid trip id: '{trip_id}'")
        return self._dir / f"trip_{trip_id}.json"

    def _lock(self, trip_id: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks.setdefault(trip_id, threading.RLock())

    def _load(self, trip_id: str) -> _CacheEntry:
        path = self._path(trip_id)
        try:
            mtime_ns = path.stat().st_mtime_ns
        except FileNotFoundError:
            raise TripNotFoundError(f"Trip '{trip_id}' not found") from None

        cached = self._cache.get(trip_id)
        if cached is not None and cached.mtime_ns == mtime_ns:
            return cached

        with open(path, encoding="utf-8") as fh:
            trip = Trip.model_validate(json.load(fh))
        entry = _CacheEntry(mtime_ns, trip, _build_index(trip))
        self._cache[trip_id] = entry
        return entry

    def _write(self, trip: Trip) -> None:
        """Persist *trip* atomically and refresh the cache."""
        self._dir.mkdir(parents=True, exist_ok=True)
        target = self._path(trip.id)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._dir), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(trip.to_document(), fh, indent=2, ensure_ascii=False)
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._cache[trip.id] = _CacheEntry(
            target.stat().st_mtime_ns, trip, _build_index(trip)
        )

    def iter_items(self, trip_id: str) -> Iterator[ItineraryItem]:
        yield from self.get_trip(trip_id).items.values()


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _new_key() -> str:
    return uuid.uuid4().hex


def _build_index(trip: Trip) -> dict[str, dict[str, str]]:
    index: dict[str, dict[str, str]] = {store: {} for store in BINDING_FIELDS}
    for item in trip.items.values():
        for store in BINDING_FIELDS:
            external_id = item.binding(store)
            if external_id:
                index[store][external_id] = item.key
    return index


def _check_binding(
    index: dict[str, dict[str, str]], store: str, external_id: str, key: str
) -> None:
    bound = index[store].get(external_id)
    if bound is not None and bound != key:
        raise BatchConflictError(
            f"{store} id '{external_id}' is already bound to item '{bound}'"
        )


def _changed(item: ItineraryItem, fields: dict[str, str]) -> tuple[str, ...]:
    return tuple(
        sorted(
            name
            for name, value in fields.items()
            if name in CONTENT_FIELDS and getattr(item, name) != value
        )
    )


def _with_item(trip: Trip, item: ItineraryItem, updated_at: datetime) -> Trip:
    return trip.model_copy(
        update={"items": {**trip.items, item.key: item}, "updated_at": updated_at}
    )


def _locate(
    items: dict[str, ItineraryItem],
    index: dict[str, dict[str, str]],
    mutation: StagedMutation,
) -> ItineraryItem | None:
    """Lookup-before-create: binding index first, then the known key."""
    key = index[mutation.source].get(mutation.external_id)
    if key is not None:
        return items.get(key)
    if mutation.key is not None:
        return items.get(mutation.key)
    return None


def _apply(
    trip_id: str, current: ItineraryItem | None, mutation: StagedMutation
) -> ItemWrite:
    binding = {BINDING_FIELDS[mutation.source]: mutation.external_id}
    content = {k: v for k, v in mutation.fields.items() if k in CONTENT_FIELDS}

    if current is None:
        item = ItineraryItem(
            key=mutation.key or _new_key(),
            created_at=mutation.timestamp,
            updated_at=mutation.timestamp,
            version=1,
            **content,
            **binding,
        )
        return ItemWrite(
            trip_id=trip_id,
            item=item,
            changed_fields=tuple(sorted(content)),
            created=True,
            origin=mutation.source,
            external_id=mutation.external_id,
        )

    if mutation.kind == "cancel":
        changed: tuple[str, ...] = () if current.archived else ("archived",)
        update: dict[str, object] = {
            "archived": True,
            "archived_at": current.archived_at or mutation.timestamp,
        }
    else:
        changed = _changed(current, content)
        update = {k: content[k] for k in changed}
        if current.archived:
            # A newer live version revives a cancelled entry.
            changed = (*changed, "archived")
            update.update(archived=False, archived_at=None)

    item = current.model_copy(
        update={
            **update,
            **binding,
            "updated_at": mutation.timestamp,
            "version": current.version + 1 if changed else current.version,
        }
    )
    return ItemWrite(
        trip_id=trip_id,
        item=item,
        changed_fields=changed,
        created=False,
        origin=mutation.source,
        external_id=mutation.external_id,
    )
