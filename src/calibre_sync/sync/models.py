"""Pydantic models for the convergence engine.

Defines the data contracts shared by the engine, the sidecar reconciler and
the reporter:

- ``SidecarEntry``: one ``.sdr`` directory found in the sidecar tree.
- ``MaterializeState``: how a record's book file was handled.
- ``SidecarAction`` / ``SidecarChange``: what happened to a sidecar entry.
- ``RecordResult``: outcome of processing one record.
- ``CleanupResult``: outcome of deleting one obsolete target file.
- ``SyncError``: one user-visible error line.
- ``SyncReport``: aggregate results for a full run.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class SidecarEntry(BaseModel):
    """A sidecar directory carrying a correlation id.

    Attributes:
        directory_name: Base name of the directory (``... (42).sdr``).
        full_path: Absolute path of the directory.
        id: Id extracted from ``directory_name``.
        location_file: Path of the metadata file holding ``doc_path``, or
            ``None`` when no recognised file exists (entry cannot be patched).
    """

    directory_name: str
    full_path: str
    id: int
    location_file: str | None = None

    model_config = {"frozen": True}


class MaterializeState(str, Enum):
    """Terminal state of a record's book file for one run."""

    SKIPPED = "skipped"
    MATERIALIZED = "materialized"
    MATERIALIZE_FAILED = "materialize_failed"
    NO_FORMAT = "no_format"


class SidecarAction(str, Enum):
    """Things the reconciler can do (or decline to do) to a sidecar entry."""

    RENAME = "rename"
    PATCH = "patch"
    INSERT = "insert"
    CONFLICT = "conflict"
    AMBIGUOUS = "ambiguous"
    MULTIPLE = "multiple"


MUTATING_SIDECAR_ACTIONS = frozenset(
    {SidecarAction.RENAME, SidecarAction.PATCH, SidecarAction.INSERT}
)

WARNING_SIDECAR_ACTIONS = frozenset(
    {SidecarAction.CONFLICT, SidecarAction.AMBIGUOUS, SidecarAction.MULTIPLE}
)


class SidecarChange(BaseModel):
    """One reconciler decision for one sidecar entry.

    Attributes:
        record_id: Correlation id of the entry.
        action: What was done or declined.
        path: Sidecar directory the action concerns.
        detail: ``old -> new`` for renames/patches, reason for warnings.
        applied: True when the filesystem was actually changed.
    """

    record_id: int
    action: SidecarAction
    path: str
    detail: str = ""
    applied: bool = False

    model_config = {"frozen": True}


class RecordResult(BaseModel):
    """Result of processing one record.

    Attributes:
        record_id: Calibre book id.
        title: Book title.
        filename: Canonical target filename, when a format was resolved.
        fmt: Chosen format tag.
        state: Book file outcome.
        sidecar_changes: Reconciler decisions for this record's sidecars.
        errors: Per-record error messages.
    """

    record_id: int
    title: str
    filename: str | None = None
    fmt: str | None = None
    state: MaterializeState
    sidecar_changes: list[SidecarChange] = []
    errors: list[str] = []

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return f"{self.title} ({self.record_id})"

    @property
    def sidecar_updated(self) -> bool:
        """True when a rename or patch was made (or planned, in dry-run)."""
        return any(
            c.action in MUTATING_SIDECAR_ACTIONS for c in self.sidecar_changes
        )


class CleanupResult(BaseModel):
    """Result of removing one obsolete target file.

    Attributes:
        path: File that was (or would be) deleted.
        success: Whether deletion succeeded (always True in dry-run).
        error: Error message if deletion failed.
    """

    path: str
    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class SyncError(BaseModel):
    """One error line: which book (or file) and what went wrong."""

    book: str
    error: str

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for a full run.

    Attributes:
        command: ``sync`` or ``fix-sidecars``.
        dry_run: Whether this was a dry-run (no changes applied).
        results: Per-record results, in processing order.
        removed: Cleanup results for obsolete target files.
        warnings: Non-fatal anomalies (duplicates, conflicts, ambiguity).
        backup_path: Sidecar snapshot written before the run, if any.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    command: str = "sync"
    dry_run: bool = False
    results: list[RecordResult] = []
    removed: list[CleanupResult] = []
    warnings: list[str] = []
    backup_path: str | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def processed(self) -> list[RecordResult]:
        return self.results

    @property
    def updated(self) -> list[RecordResult]:
        """Records whose book file was (re)materialized."""
        return [
            r for r in self.results if r.state == MaterializeState.MATERIALIZED
        ]

    @property
    def skipped(self) -> list[RecordResult]:
        """Records whose book file was already up to date."""
        return [r for r in self.results if r.state == MaterializeState.SKIPPED]

    @property
    def sidecar_updates(self) -> list[RecordResult]:
        return [r for r in self.results if r.sidecar_updated]

    @property
    def deleted(self) -> list[CleanupResult]:
        return [c for c in self.removed if c.success]

    @property
    def errors(self) -> list[SyncError]:
        """Every record error (one line per message) and failed deletion."""
        errors = [
            SyncError(book=r.label, error=message)
            for r in self.results
            for message in r.errors
        ]
        errors.extend(
            SyncError(book=c.path, error=c.error or "delete failed")
            for c in self.removed
            if not c.success
        )
        return errors

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts.
        """
        lines = [
            f"Sync report ({self.command})"
            + (" (dry run)" if self.dry_run else ""),
            f"  Books processed:  {len(self.processed)}",
            f"  Files updated:    {len(self.updated)}",
            f"  Sidecar updates:  {len(self.sidecar_updates)}",
            f"  Files removed:    {len(self.deleted)}",
            f"  Errors:           {len(self.errors)}",
        ]
        return "\n".join(lines)
