"""Sync report formatting functions.

- ``format_sync_report`` -- human-readable summary of one reconciliation.
- ``format_poll_summary`` -- one line per trip for a workspace poll.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a reconciliation report as human-readable text.

    Sections are only included when they contain at least one result.
    Ignored records are summarised by count only.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append(
        f"{report.source.value.capitalize()} sync for trip '{report.trip_id}'"
    )
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if report.error:
        lines.append(f"Error: {report.error}")
        if report.requires_full_resync:
            lines.append(
                "The sync token was cleared; the next run performs a full listing."
            )
        lines.append("")

    lines.append(
        f"{len(report.results)} changes: "
        f"{len(report.created)} created, {len(report.updated)} updated, "
        f"{len(report.archived)} archived, {len(report.ignored)} ignored, "
        f"{len(report.failed)} skipped"
    )
    lines.append(
        "Cursor advanced" if report.cursor_advanced else "Cursor unchanged"
    )
    lines.append("")

    sections = (
        ("Created:", report.created),
        ("Updated:", report.updated),
        ("Archived:", report.archived),
    )
    for title, results in sections:
        if not results:
            continue
        lines.append(title)
        for r in results:
            line = f"  {r.external_id} -> {r.key}"
            if r.error:
                line += f" (propagation: {r.error})"
            lines.append(line)
        lines.append("")

    if report.failed:
        lines.append("Skipped:")
        for r in report.failed:
            lines.append(f"  {r.external_id or '?'}: {r.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_poll_summary(reports: list[SyncReport]) -> str:
    """One summary line per trip, for the periodic workspace poll."""
    if not reports:
        return "No trips with a workspace database."
    return "\n".join(r.summary() for r in reports)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with trip info, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "external_id": r.external_id,
            "key": r.key,
            "action": r.action.value,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "trip_id": report.trip_id,
        "source": report.source.value,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "cursor_advanced": report.cursor_advanced,
        "requires_full_resync": report.requires_full_resync,
        "error": report.error,
        "counts": {
            "total": len(report.results),
            "created": len(report.created),
            "updated": len(report.updated),
            "archived": len(report.archived),
            "ignored": len(report.ignored),
            "skipped": len(report.failed),
        },
        "results": results_list,
    }
