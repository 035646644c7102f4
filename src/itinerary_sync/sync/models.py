"""Pydantic models for the synchronization engine.

Defines the data contracts shared across the sync modules:

- ``Source``: Enum of the three stores a change can originate from.
- ``ChangeKind``: Create-or-update vs. cancellation.
- ``CandidateChange``: Normalized change produced by ingestion.
- ``Resolution``: Outcome of conflict resolution.
- ``SyncAction``: What a reconciliation did with one candidate.
- ``SyncResult``: Outcome of one candidate.
- ``SyncReport``: Aggregate results for one trip/store reconciliation.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class Source(str, Enum):
    """Store a change originated from."""

    CANONICAL = "canonical"
    WORKSPACE = "workspace"
    CALENDAR = "calendar"


class ChangeKind(str, Enum):
    UPSERT = "upsert"
    CANCEL = "cancel"


class Resolution(str, Enum):
    APPLY = "apply"
    IGNORE = "ignore"


class CandidateChange(BaseModel):
    """A normalized, not-yet-applied change from one store.

    Attributes:
        source: Store that reported the change.
        external_id: Record id in that store (the canonical key for
            ``Source.CANONICAL``).
        trip_id: Trip the change belongs to.
        key: Canonical item key to match against when known (for external
            stores, the back-reference the record carries).
        fields: New content values.
        timestamp: Source-reported modification time.
        kind: Upsert or cancellation.
    """

    source: Source
    external_id: str
    trip_id: str
    key: str | None = None
    fields: dict[str, str] = {}
    timestamp: datetime
    kind: ChangeKind = ChangeKind.UPSERT

    model_config = {"frozen": True}


class SyncAction(str, Enum):
    """What happened to one candidate during reconciliation."""

    CREATED = "created"
    UPDATED = "updated"
    ARCHIVED = "archived"
    IGNORED = "ignored"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Result of reconciling one candidate change.

    Attributes:
        external_id: Record id in the source store.
        key: Canonical item key, when one was resolved or created.
        action: What was done.
        success: Whether the candidate was handled without error.
        error: Error message if the candidate was skipped as malformed,
            or a propagation warning.
    """

    external_id: str
    key: str | None = None
    action: SyncAction
    success: bool = True
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one trip/store reconciliation.

    Attributes:
        trip_id: Trip that was reconciled.
        source: Store that was pulled.
        results: Per-candidate outcomes.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
        cursor_advanced: Whether the batch committed and moved the cursor.
        requires_full_resync: The calendar cursor expired and was cleared.
        error: Batch-level failure (transport or commit), if any.
    """

    trip_id: str
    source: Source
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None
    cursor_advanced: bool = False
    requires_full_resync: bool = False
    error: str | None = None

    model_config = {"frozen": True}

    def _by_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action]

    @property
    def created(self) -> list[SyncResult]:
        return self._by_action(SyncAction.CREATED)

    @property
    def updated(self) -> list[SyncResult]:
        return self._by_action(SyncAction.UPDATED)

    @property
    def archived(self) -> list[SyncResult]:
        return self._by_action(SyncAction.ARCHIVED)

    @property
    def ignored(self) -> list[SyncResult]:
        return self._by_action(SyncAction.IGNORED)

    @property
    def failed(self) -> list[SyncResult]:
        return [r for r in self.results if not r.success]

    @property
    def applied(self) -> int:
        return len(self.created) + len(self.updated) + len(self.archived)

    @property
    def ok(self) -> bool:
        return self.error is None

    def summary(self) -> str:
        """Format a one-line summary of the run."""
        status = "ok" if self.ok else f"failed: {self.error}"
        return (
            f"{self.source.value} sync for trip '{self.trip_id}': "
            f"{len(self.created)} created, {len(self.updated)} updated, "
            f"{len(self.archived)} archived, {len(self.ignored)} ignored, "
            f"{len(self.failed)} skipped ({status})"
        )
