"""Itinerary synchronization engine.

Keeps the canonical trip store and its two mirrors (the Notion workspace
database and the Google Calendar of a trip) converging on the same
itinerary.

Architecture
------------
Every change, wherever it happens, is normalized into a
``CandidateChange`` and decided by **strict last-writer-wins**: an
external change is applied only when its own modification time is
strictly newer than the canonical ``updatedAt``.  Writes made by
propagation are echoed back by the mirrors with a timestamp that is not
newer, so the echo is ignored and no feedback loop forms.

Modules:

- ``models``      -- ``Source``, ``ChangeKind``, ``CandidateChange``,
  ``Resolution``, ``SyncAction``, ``SyncResult``, ``SyncReport``.
- ``binding``     -- ``IdentityBinder``: external id to canonical item.
- ``mapper``      -- record parsers and payload builders for both mirrors.
- ``resolver``    -- conflict resolution strategies.
- ``ingest``      -- canonical, workspace and calendar change producers.
- ``propagation`` -- ``Propagator``: forwards committed writes to mirrors.
- ``engine``      -- ``ReconciliationRunner``: atomic per-trip batches.
- ``reporter``    -- human-readable and JSON report formatting.

Usage example
-------------
::

    from itinerary_sync.runtime import SyncRuntime

    runtime = SyncRuntime.from_config(config)
    report = runtime.runner.sync_workspace("tokyo-2026")
    print(format_sync_report(report))
"""

from .binding import IdentityBinder
from .engine import ReconciliationRunner
from .ingest import CalendarIngestor, CanonicalIngestor, WorkspaceIngestor
from .models import (
    CandidateChange,
    ChangeKind,
    Resolution,
    Source,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .propagation import Propagator
from .reporter import format_poll_summary, format_sync_report, report_to_json
from .resolver import create_resolver, resolve

__all__ = [
    "CalendarIngestor",
    "CandidateChange",
    "CanonicalIngestor",
    "ChangeKind",
    "IdentityBinder",
    "Propagator",
    "ReconciliationRunner",
    "Resolution",
    "Source",
    "SyncAction",
    "SyncReport",
    "SyncResult",
    "WorkspaceIngestor",
    "create_resolver",
    "format_poll_summary",
    "format_sync_report",
    "report_to_json",
    "resolve",
]
