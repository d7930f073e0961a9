"""Target folder snapshot and cleanup.

The snapshot is taken once per run, before any record is processed, and is
only used as the universe for cleanup: anything whose filename is not in the
run's kept set is deleted at the end.  Identity here is the filename alone,
so files without an id are removed too.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from pathlib import Path

from ..file_handler import remove_file
from .models import CleanupResult

logger = logging.getLogger(__name__)


class TargetSnapshot:
    """Book files present in the target folder at the start of a run.

    Args:
        artifacts: Filename -> every path carrying that filename.
    """

    def __init__(self, artifacts: Mapping[str, list[Path]]) -> None:
        self.artifacts = dict(artifacts)

    @classmethod
    def scan(cls, root: Path, extensions: Iterable[str]) -> TargetSnapshot:
        return cls(list_artifacts(root, extensions))

    @property
    def names(self) -> set[str]:
        return set(self.artifacts)

    def obsolete(self, kept: set[str]) -> list[Path]:
        """Paths whose filename is not in *kept*, sorted."""
        return sorted(
            path
            for name, paths in self.artifacts.items()
            if name not in kept
            for path in paths
        )


def list_artifacts(
    root: Path, extensions: Iterable[str]
) -> dict[str, list[Path]]:
    """Collect every file under *root* whose extension is supported.

    Extensions are compared case-insensitively.  A missing *root* yields an
    empty snapshot.

    Returns:
        Mapping of filename -> paths, in sorted order.
    """
    allowed = {ext.lower() for ext in extensions}
    artifacts: dict[str, list[Path]] = defaultdict(list)
    if not root.is_dir():
        return {}

    for path in sorted(root.rglob("*")):
        if path.suffix.lower() in allowed and path.is_file():
            artifacts[path.name].append(path)

    logger.debug("Target snapshot: %d book files under %s", len(artifacts), root)
    return dict(artifacts)


def remove_obsolete(
    snapshot: TargetSnapshot, kept: set[str], dry_run: bool = False
) -> list[CleanupResult]:
    """Delete every snapshot file whose name is not in *kept*.

    One failed deletion is logged and recorded; the others still proceed.
    """
    results: list[CleanupResult] = []
    for path in snapshot.obsolete(kept):
        if dry_run:
            logger.info("[DRY RUN] Would remove obsolete file: %s", path)
            results.append(CleanupResult(path=str(path), success=True))
            continue
        try:
            remove_file(path)
        except OSError as exc:
            logger.error("Failed to remove %s: %s", path, exc)
            results.append(
                CleanupResult(path=str(path), success=False, error=str(exc))
            )
            continue
        logger.info("Removed obsolete file: %s", path)
        results.append(CleanupResult(path=str(path), success=True))
    return results
