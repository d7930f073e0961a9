"""Pre-run snapshot of the KOReader sidecar tree."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from ..errors import BackupError

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "docsettings-backup-"


def backup_destination(backup_dir: Path, now: datetime | None = None) -> Path:
    """First free ``<backup_dir>/docsettings-backup-<UTC timestamp>[-N]``.

    Runs started within the same second get ``-2``, ``-3``, ... suffixes.
    """
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    base = backup_dir / f"{BACKUP_PREFIX}{stamp}"
    candidate = base
    n = 1
    while candidate.exists():
        n += 1
        candidate = base.with_name(f"{base.name}-{n}")
    return candidate


def backup_sidecars(
    sidecar_root: Path, backup_dir: Path, dry_run: bool = False
) -> Path | None:
    """Copy the whole sidecar tree into a fresh timestamped directory.

    Returns:
        The backup directory, or ``None`` in dry-run mode.

    Raises:
        BackupError: If the copy fails.
    """
    destination = backup_destination(backup_dir)
    if dry_run:
        logger.info(
            "[DRY RUN] Would back up %s to %s", sidecar_root, destination
        )
        return None

    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(sidecar_root, destination)
    except (OSError, shutil.Error) as exc:
        raise BackupError(
            f"Failed to back up {sidecar_root} to {destination}: {exc}"
        ) from exc

    logger.info("Backed up sidecars to %s", destination)
    return destination
