"""Convergence engine that brings the target folder in line with the library.

The ``SyncEngine`` ties together the catalog, the naming template, the
staleness check, the materializer, the sidecar reconciler and cleanup into a
complete run.  It:

1. Creates the target folder and snapshots the sidecar tree (backup).
2. Enumerates records from the catalog.
3. Snapshots the target folder and indexes the sidecar tree, once each.
4. Per record: picks a format, derives the canonical filename, refreshes
   the book file when stale, and reconciles its sidecars.
5. Deletes target files whose names no record produced.
6. Builds and returns a ``SyncReport``.

Error handling is per-record: a single record failure does not abort the
run.  Setup failures (backup, catalog) propagate to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from ..catalog.models import Record
from ..catalog.reader import CalibreCatalog
from ..config import SyncSettings
from ..errors import FileSystemError
from ..naming.template import TemplateRenderer
from .backup import backup_sidecars
from .identity import canonical_filename
from .materializer import materialize, select_format
from .models import (
    WARNING_SIDECAR_ACTIONS,
    MaterializeState,
    RecordResult,
    SidecarEntry,
    SyncReport,
)
from .sidecar import SidecarReconciler, build_sidecar_index
from .snapshot import TargetSnapshot, remove_obsolete
from .staleness import needs_refresh

logger = logging.getLogger(__name__)


class SyncEngine:
    """Run one convergence pass for a library.

    Args:
        settings: Resolved, validated run settings.
        catalog: Catalog to read records from.  Opened and closed by
            ``run()``.
    """

    def __init__(self, settings: SyncSettings, catalog: CalibreCatalog) -> None:
        if settings.target_path is None or settings.sidecar_path is None:
            raise ValueError("target_path and sidecar_path must be set")
        self.settings = settings
        self.catalog = catalog
        self.target_root: Path = settings.target_path.absolute()
        self.sidecar_root: Path = settings.sidecar_path.absolute()
        self.renderer = TemplateRenderer(
            settings.template, settings.field_mappings
        )

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self, dry_run: bool = False) -> SyncReport:
        """Execute a full run.

        Args:
            dry_run: If ``True``, compute and log actions but do not touch
                the filesystem.

        Returns:
            A ``SyncReport`` summarising what was (or would be) done.

        Raises:
            CatalogError: If the catalog cannot be opened or enumerated.
            BackupError: If the pre-run sidecar backup fails.
            FileSystemError: If the target folder cannot be created.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        prefix = "[DRY RUN] " if dry_run else ""
        logger.info(
            "%sSyncing %s -> %s",
            prefix,
            self.catalog.library_path,
            self.target_root,
        )

        self._prepare_target(dry_run)

        backup_path: Path | None = None
        if self.settings.backup_sidecars:
            backup_dir = self.settings.backup_dir or Path.cwd() / ".backups"
            backup_path = backup_sidecars(self.sidecar_root, backup_dir, dry_run)

        results: list[RecordResult] = []
        kept: set[str] = set()

        with self.catalog:
            records = self.catalog.enumerate_records()
            logger.info("Found %d books in Calibre library", len(records))

            snapshot = TargetSnapshot.scan(
                self.target_root, self.settings.supported_extensions
            )
            index = build_sidecar_index(
                self.sidecar_root, self.settings.sidecar_metadata_files
            )
            warnings = duplicate_sidecar_warnings(index)
            reconciler = SidecarReconciler(dry_run=dry_run)

            for record in records:
                try:
                    result = self._sync_record(
                        record, index, reconciler, kept, dry_run
                    )
                except Exception as exc:
                    logger.error("Error syncing %s: %s", record.label, exc)
                    result = RecordResult(
                        record_id=record.id,
                        title=record.title,
                        state=MaterializeState.MATERIALIZE_FAILED,
                        errors=[str(exc)],
                    )
                results.append(result)
                warnings.extend(sidecar_change_warnings(result))

        removed = remove_obsolete(snapshot, kept, dry_run)

        completed_at = datetime.now(timezone.utc).isoformat()
        return SyncReport(
            command="sync",
            dry_run=dry_run,
            results=results,
            removed=removed,
            warnings=warnings,
            backup_path=str(backup_path) if backup_path else None,
            started_at=started_at,
            completed_at=completed_at,
        )

    # ------------------------------------------------------------------
    # Per-record convergence
    # ------------------------------------------------------------------

    def _sync_record(
        self,
        record: Record,
        index: dict[int, list[SidecarEntry]],
        reconciler: SidecarReconciler,
        kept: set[str],
        dry_run: bool,
    ) -> RecordResult:
        """Converge one record; adds its canonical filename to *kept*."""
        fmt = select_format(
            record.formats,
            self.settings.format_preference,
            self.settings.supported_extensions,
        )
        if fmt is None:
            available = ", ".join(record.formats) or "none"
            message = f"No supported format found. Available: {available}"
            logger.error("Skipping %s: %s", record.label, message)
            return RecordResult(
                record_id=record.id,
                title=record.title,
                state=MaterializeState.NO_FORMAT,
                errors=[message],
            )

        filename = canonical_filename(record, self.renderer, fmt)
        # Kept even if export fails so a good older copy survives cleanup.
        kept.add(filename)
        target_path = self.target_root / filename
        errors: list[str] = []

        if needs_refresh(record.last_modified, target_path):
            export = materialize(
                self.catalog, record, target_path, fmt, dry_run
            )
            if export.success:
                state = MaterializeState.MATERIALIZED
            else:
                state = MaterializeState.MATERIALIZE_FAILED
                errors.append(f"Export failed: {export.error}")
        else:
            logger.debug("Up to date: %s", filename)
            state = MaterializeState.SKIPPED

        changes = []
        entries = index.get(record.id)
        if entries:
            outcome = reconciler.reconcile(entries, target_path)
            index[record.id] = outcome.entries
            changes = outcome.changes
            errors.extend(outcome.errors)

        return RecordResult(
            record_id=record.id,
            title=record.title,
            filename=filename,
            fmt=fmt,
            state=state,
            sidecar_changes=changes,
            errors=errors,
        )

    def _prepare_target(self, dry_run: bool) -> None:
        if self.target_root.is_dir():
            return
        if dry_run:
            logger.info("[DRY RUN] Would create target folder %s", self.target_root)
            return
        try:
            self.target_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FileSystemError(
                f"Cannot create target folder {self.target_root}: {exc}",
                path=str(self.target_root),
            ) from exc
        logger.info("Created target folder %s", self.target_root)


def sidecar_change_warnings(result: RecordResult) -> list[str]:
    """Report lines for sidecar actions that were declined."""
    return [
        f"{result.label}: {change.detail} ({change.path})"
        for change in result.sidecar_changes
        if change.action in WARNING_SIDECAR_ACTIONS
    ]


def duplicate_sidecar_warnings(
    index: dict[int, list[SidecarEntry]],
) -> list[str]:
    """One warning per id carried by more than one sidecar directory.

    Every duplicate is still reconciled; nothing is deleted.
    """
    warnings: list[str] = []
    for entry_id, entries in sorted(index.items()):
        if len(entries) < 2:
            continue
        names = ", ".join(e.full_path for e in entries)
        message = f"Multiple sidecars for id {entry_id}: {names}"
        logger.warning("%s", message)
        warnings.append(message)
    return warnings
