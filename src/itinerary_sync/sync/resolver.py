"""Conflict resolution for incoming candidate changes.

Decides whether a candidate change should be applied to the canonical
store:

- ``resolve()``: the pure last-writer-wins decision.
- ``LastWriterWinsResolver``: applies a candidate iff its timestamp is
  strictly newer than the canonical ``updated_at``; ties keep canonical.
- ``CanonicalWinsResolver``: never lets an external edit overwrite a bound
  canonical item; external creations are still accepted.

Both resolvers apply canonical-source candidates unconditionally (they
already are the canonical state) and treat an unbound candidate as a
creation.  A cancellation of an unbound record has nothing to act on and
is ignored.

Echo suppression relies on the strict comparison: a mirror reporting
back a write that propagation made carries a timestamp that is not newer
than what the canonical record already holds.

The ``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from itinerary_sync.canonical.models import ItineraryItem
from itinerary_sync.canonical.store import CommitGuard, StagedMutation
from itinerary_sync.sync.models import (
    CandidateChange,
    ChangeKind,
    Resolution,
    Source,
)

logger = logging.getLogger(__name__)


def resolve(
    candidate: CandidateChange, current_updated_at: datetime | None
) -> Resolution:
    """Last-writer-wins decision for *candidate*.

    Args:
        candidate: The normalized change.
        current_updated_at: ``updated_at`` of the canonical item the
            candidate targets, or ``None`` when no item is bound.

    Returns:
        ``Resolution.APPLY`` or ``Resolution.IGNORE``.
    """
    return _last_writer_wins(
        candidate.source,
        candidate.kind,
        candidate.timestamp,
        current_updated_at,
    )


def _last_writer_wins(
    source: Source,
    kind: ChangeKind,
    timestamp: datetime,
    current_updated_at: datetime | None,
) -> Resolution:
    if source is Source.CANONICAL:
        return Resolution.APPLY
    if current_updated_at is None:
        if kind is ChangeKind.CANCEL:
            return Resolution.IGNORE
        return Resolution.APPLY
    if timestamp > current_updated_at:
        return Resolution.APPLY
    return Resolution.IGNORE


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(
        self,
        candidate: CandidateChange,
        current: ItineraryItem | None,
    ) -> Resolution:
        """Decide whether *candidate* applies to *current*."""
        ...  # pragma: no cover

    def commit_guard(self) -> CommitGuard:
        """Return the same decision in the shape ``TripBatch.commit`` expects."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


class LastWriterWinsResolver:
    """Apply a candidate iff it is strictly newer than the canonical record."""

    def _decide(
        self,
        source: Source,
        kind: ChangeKind,
        timestamp: datetime,
        current: ItineraryItem | None,
    ) -> Resolution:
        return _last_writer_wins(
            source,
            kind,
            timestamp,
            current.updated_at if current is not None else None,
        )

    def resolve(
        self,
        candidate: CandidateChange,
        current: ItineraryItem | None,
    ) -> Resolution:
        resolution = self._decide(
            candidate.source, candidate.kind, candidate.timestamp, current
        )
        if resolution is Resolution.IGNORE:
            logger.debug(
                "Ignoring %s change %s at %s (canonical updated_at=%s)",
                candidate.source.value,
                candidate.external_id,
                candidate.timestamp.isoformat(),
                current.updated_at.isoformat() if current else None,
            )
        return resolution

    def commit_guard(self) -> CommitGuard:
        def _guard(
            mutation: StagedMutation, current: ItineraryItem | None
        ) -> bool:
            return (
                self._decide(
                    Source(mutation.source),
                    ChangeKind(mutation.kind),
                    mutation.timestamp,
                    current,
                )
                is Resolution.APPLY
            )

        return _guard


class CanonicalWinsResolver(LastWriterWinsResolver):
    """Keep canonical content for bound items; accept external creations."""

    def _decide(
        self,
        source: Source,
        kind: ChangeKind,
        timestamp: datetime,
        current: ItineraryItem | None,
    ) -> Resolution:
        if source is not Source.CANONICAL and current is not None:
            return Resolution.IGNORE
        return super()._decide(source, kind, timestamp, current)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    "last-writer-wins": LastWriterWinsResolver,
    "canonical-wins": CanonicalWinsResolver,
}


def create_resolver(strategy: str = "last-writer-wins") -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: ``"last-writer-wins"`` or ``"canonical-wins"``.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
