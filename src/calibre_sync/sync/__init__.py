"""Library-to-device convergence engine.

Public API for synchronising a Calibre library into a folder of book files
while keeping KOReader sidecars attached to their books.

Architecture
------------
Every book file and every sidecar directory carries the Calibre book id as
``(<id>)`` just before its suffix.  The id, never the filename, is the
correlation key: when metadata edits change a book's canonical filename the
engine renames the matching ``.sdr`` directory and patches the ``doc_path``
stored inside it.

Modules:

- ``engine``       -- ``SyncEngine``: orchestrates a full run.
- ``identity``     -- id extraction and canonical filenames.
- ``sidecar``      -- sidecar index, ``doc_path`` patch, reconciler.
- ``snapshot``     -- target folder snapshot and cleanup.
- ``staleness``    -- modification-time freshness check.
- ``materializer`` -- format selection and export.
- ``backup``       -- timestamped copy of the sidecar tree.
- ``fixer``        -- catalog-free sidecar repair.
- ``models``       -- ``RecordResult``, ``SyncReport`` and friends.
- ``reporter``     -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from calibre_sync.catalog import CalibreCatalog, create_exporter
    from calibre_sync.config import load_config
    from calibre_sync.sync import SyncEngine, format_sync_report

    settings = load_config()
    exporter = create_exporter(
        settings.export_mode, settings.library_path, settings.calibredb_path
    )
    engine = SyncEngine(settings, CalibreCatalog(settings.library_path, exporter))

    # Dry-run first to preview changes
    preview = engine.run(dry_run=True)
    print(format_sync_report(preview))

    report = engine.run()
    print(format_sync_report(report))
"""

from .engine import SyncEngine
from .fixer import fix_sidecars
from .identity import canonical_filename, extract_id, sidecar_dirname
from .models import (
    CleanupResult,
    MaterializeState,
    RecordResult,
    SidecarAction,
    SidecarChange,
    SidecarEntry,
    SyncError,
    SyncReport,
)
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .sidecar import SidecarReconciler, build_sidecar_index, patch_doc_path

__all__ = [
    "CleanupResult",
    "MaterializeState",
    "RecordResult",
    "SidecarAction",
    "SidecarChange",
    "SidecarEntry",
    "SidecarReconciler",
    "SyncEngine",
    "SyncError",
    "SyncReport",
    "build_sidecar_index",
    "canonical_filename",
    "extract_id",
    "fix_sidecars",
    "format_dry_run_preview",
    "format_sync_report",
    "patch_doc_path",
    "report_to_json",
    "sidecar_dirname",
]
