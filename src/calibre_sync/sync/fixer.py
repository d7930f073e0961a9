"""Catalog-free sidecar repair.

Points KOReader sidecars at book files that are already in the target
folder, without opening the Calibre library.  Useful after the target folder
was renamed or moved by hand: every book file carrying an id is matched to
the sidecar directories carrying the same id, and those are renamed and
patched exactly as a full sync would.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

from ..config import SyncSettings
from ..errors import FileSystemError
from .backup import backup_sidecars
from .engine import duplicate_sidecar_warnings, sidecar_change_warnings
from .identity import extract_id
from .models import MaterializeState, RecordResult, SyncReport
from .sidecar import SidecarReconciler, build_sidecar_index
from .snapshot import list_artifacts

logger = logging.getLogger(__name__)


def index_book_files(
    root: Path, extensions: tuple[str, ...]
) -> dict[int, list[Path]]:
    """Map id -> book files under *root* carrying that id."""
    books: dict[int, list[Path]] = defaultdict(list)
    for name, paths in list_artifacts(root, extensions).items():
        book_id = extract_id(name, extensions)
        if book_id is None:
            logger.debug("No id in %s; ignoring", name)
            continue
        books[book_id].extend(paths)
    return dict(books)


def fix_sidecars(settings: SyncSettings, dry_run: bool = False) -> SyncReport:
    """Reconcile every sidecar with the book file sharing its id.

    Ids found on more than one book file are ambiguous: they are reported as
    warnings and their sidecars are left alone.  Sidecars with no book file
    are reported too.

    Raises:
        FileSystemError: If the target folder does not exist.
        BackupError: If the pre-run sidecar backup fails.
    """
    if settings.target_path is None or not settings.target_path.is_dir():
        raise FileSystemError(
            f"Target folder does not exist: {settings.target_path}",
            path=str(settings.target_path),
        )
    if settings.sidecar_path is None:
        raise FileSystemError("KOReader docsettings path not set")

    target_root = settings.target_path.absolute()
    sidecar_root = settings.sidecar_path.absolute()
    started_at = datetime.now(timezone.utc).isoformat()

    backup_path: Path | None = None
    if settings.backup_sidecars:
        backup_dir = settings.backup_dir or Path.cwd() / ".backups"
        backup_path = backup_sidecars(sidecar_root, backup_dir, dry_run)

    books = index_book_files(target_root, settings.supported_extensions)
    index = build_sidecar_index(sidecar_root, settings.sidecar_metadata_files)
    logger.info(
        "Found %d book files with ids and %d sidecar ids",
        len(books),
        len(index),
    )

    warnings = duplicate_sidecar_warnings(index)
    reconciler = SidecarReconciler(dry_run=dry_run)
    results: list[RecordResult] = []

    for entry_id, entries in sorted(index.items()):
        paths = books.get(entry_id, [])
        if not paths:
            message = f"No book file for sidecar id {entry_id}: " + ", ".join(
                e.directory_name for e in entries
            )
            logger.warning("%s", message)
            warnings.append(message)
            continue
        if len(paths) > 1:
            message = f"Id {entry_id} is carried by several book files: " + (
                ", ".join(str(p) for p in paths)
            )
            logger.warning("%s; skipping", message)
            warnings.append(message)
            continue

        book = paths[0]
        title = book.stem.rsplit(" (", 1)[0]
        try:
            outcome = reconciler.reconcile(entries, book)
        except Exception as exc:
            logger.error("Error fixing sidecars for %s: %s", book.name, exc)
            results.append(
                RecordResult(
                    record_id=entry_id,
                    title=title,
                    filename=book.name,
                    state=MaterializeState.SKIPPED,
                    errors=[str(exc)],
                )
            )
            continue

        result = RecordResult(
            record_id=entry_id,
            title=title,
            filename=book.name,
            fmt=book.suffix.lstrip(".").upper(),
            state=MaterializeState.SKIPPED,
            sidecar_changes=outcome.changes,
            errors=outcome.errors,
        )
        results.append(result)
        warnings.extend(sidecar_change_warnings(result))

    return SyncReport(
        command="fix-sidecars",
        dry_run=dry_run,
        results=results,
        warnings=warnings,
        backup_path=str(backup_path) if backup_path else None,
        started_at=started_at,
        completed_at=datetime.now(timezone.utc).isoformat(),
    )
