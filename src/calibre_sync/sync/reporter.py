"""Sync report formatting functions.

Provides human-readable and machine-readable output for runs:

- ``format_sync_report`` -- full post-run summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import WARNING_SIDECAR_ACTIONS, MaterializeState, SidecarAction

if TYPE_CHECKING:
    from .models import SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete run report as human-readable text.

    Sections are only included when they contain at least one entry.
    Up-to-date books are summarised by count only.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report ({report.command})"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    if report.backup_path:
        lines.append(f"Sidecar backup: {report.backup_path}")
    lines.append("")

    lines.append(
        f"Processed {len(report.processed)} books: "
        f"{len(report.updated)} updated, "
        f"{len(report.sidecar_updates)} sidecar updates, "
        f"{len(report.deleted)} removed, "
        f"{len(report.errors)} errors"
    )
    lines.append("")

    if report.updated:
        lines.append("Updated:")
        for r in report.updated:
            lines.append(f"  {r.filename}")
        lines.append("")

    if report.sidecar_updates:
        lines.append("Sidecars updated:")
        for r in report.sidecar_updates:
            for change in r.sidecar_changes:
                if change.action in WARNING_SIDECAR_ACTIONS:
                    continue
                lines.append(
                    f"  [{change.action.value}] {r.label}: {change.detail}"
                )
        lines.append("")

    if report.deleted:
        lines.append("Removed:")
        for c in report.deleted:
            lines.append(f"  {c.path}")
        lines.append("")

    if report.warnings:
        lines.append("Warnings:")
        for w in report.warnings:
            lines.append(f"  {w}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for e in report.errors:
            lines.append(f"  {e.book}: {e.error}")
        lines.append("")

    if report.skipped:
        lines.append(f"Up to date: {len(report.skipped)} books")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by action type.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Command: {report.command}")
    lines.append("")

    groups: list[tuple[str, list[str]]] = [
        ("EXPORT", [r.filename or r.label for r in report.updated]),
        (
            "RENAME SIDECAR",
            _changes(report, (SidecarAction.RENAME,)),
        ),
        (
            "UPDATE DOC_PATH",
            _changes(report, (SidecarAction.PATCH, SidecarAction.INSERT)),
        ),
        ("REMOVE", [c.path for c in report.deleted]),
    ]

    for label, items in groups:
        if not items:
            continue
        lines.append(f"[{label}]")
        for item in items:
            lines.append(f"  {item}")
        lines.append("")

    if report.warnings:
        lines.append("[WARNING]")
        for w in report.warnings:
            lines.append(f"  {w}")
        lines.append("")

    if report.errors:
        lines.append("[ERROR]")
        for e in report.errors:
            lines.append(f"  {e.book}: {e.error}")
        lines.append("")

    if report.skipped:
        lines.append(f"Up to date: {len(report.skipped)} books")
        lines.append("")

    if not any(items for _, items in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


def _changes(
    report: SyncReport, actions: tuple[SidecarAction, ...]
) -> list[str]:
    return [
        f"{r.label}: {c.detail}"
        for r in report.results
        for c in r.sidecar_changes
        if c.action in actions
    ]


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with run info, counts, and per-record details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "id": r.record_id,
            "title": r.title,
            "filename": r.filename,
            "format": r.fmt,
            "state": r.state.value,
            "sidecar_changes": [
                {
                    "action": c.action.value,
                    "path": c.path,
                    "detail": c.detail,
                    "applied": c.applied,
                }
                for c in r.sidecar_changes
            ],
        }
        if r.errors:
            entry["errors"] = list(r.errors)
        results_list.append(entry)

    return {
        "command": report.command,
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "backup_path": report.backup_path,
        "counts": {
            "processed": len(report.processed),
            "updated": len(report.updated),
            "skipped": len(report.skipped),
            "failed": sum(
                1
                for r in report.results
                if r.state
                in (MaterializeState.MATERIALIZE_FAILED, MaterializeState.NO_FORMAT)
            ),
            "sidecar_updates": len(report.sidecar_updates),
            "removed": len(report.deleted),
            "errors": len(report.errors),
        },
        "results": results_list,
        "removed": [
            {"path": c.path, "success": c.success, "error": c.error}
            for c in report.removed
        ],
        "warnings": list(report.warnings),
        "errors": [e.model_dump() for e in report.errors],
    }
