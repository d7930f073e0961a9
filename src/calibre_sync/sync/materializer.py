"""Format selection and book file materialization."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from ..catalog.exporter import ExportResult
from ..catalog.models import Record
from ..catalog.reader import CalibreCatalog
from ..errors import CalibreSyncError
from ..file_handler import stamp_times

logger = logging.getLogger(__name__)


def select_format(
    formats: Iterable[str],
    preference: Sequence[str],
    supported_extensions: Iterable[str],
) -> str | None:
    """Pick the format to synchronize for a record.

    The first format in *preference* that the record has and whose extension
    is supported wins.  Supported formats missing from *preference* come
    after it, alphabetically.  ``None`` when nothing is supported.
    """
    supported = {ext.lower().lstrip(".") for ext in supported_extensions}
    available = {fmt.upper() for fmt in formats if fmt.lower() in supported}
    if not available:
        return None
    for fmt in preference:
        if fmt.upper() in available:
            return fmt.upper()
    return sorted(available)[0]


def materialize(
    catalog: CalibreCatalog,
    record: Record,
    target_path: Path,
    fmt: str,
    dry_run: bool = False,
) -> ExportResult:
    """Place *record*'s *fmt* file at *target_path*.

    On success the file is stamped with ``record.last_modified`` (see
    ``stamp_times()``).
    Failures come back as an unsuccessful ``ExportResult``.
    """
    if dry_run:
        logger.info("[DRY RUN] Would export %s -> %s", record.label, target_path)
        return ExportResult(success=True)

    try:
        target_path.parent.mkdir(parents=True, exist_ok=True)
        result = catalog.export_record(record, target_path, fmt)
        if result.success:
            stamp_times(target_path, record.last_modified)
    except (OSError, CalibreSyncError) as exc:
        result = ExportResult(success=False, error=str(exc))

    if result.success:
        logger.info("Exported %s -> %s", record.label, target_path)
    else:
        logger.error("Export failed for %s: %s", record.label, result.error)
    return result
