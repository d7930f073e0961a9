"""Exception hierarchy for calibre-sync.

Failures are grouped by how far they are allowed to propagate:

- ``ConfigurationError`` -- bad or missing paths/settings.  Raised before
  anything is touched; the CLI exits non-zero.
- ``CatalogError`` -- the Calibre database could not be opened or read, or a
  single export failed.  Fatal only when enumeration itself fails.
- ``FileSystemError`` -- the target folder is missing or cannot be created.
  Per-file failures during a run are recorded in the report instead.
- ``BackupError`` -- the pre-run sidecar snapshot could not be taken.  Raised
  before any record is processed, so it aborts the run.
- ``PatchAmbiguityWarning`` -- a sidecar location file has no recognisable
  ``doc_path`` assignment.  Logged and treated as a no-op.
"""

from __future__ import annotations

__all__ = [
    "BackupError",
    "CalibreSyncError",
    "CatalogError",
    "ConfigurationError",
    "FileSystemError",
    "PatchAmbiguityWarning",
]


class CalibreSyncError(RuntimeError):
    """Base exception for all calibre-sync failures."""


class ConfigurationError(CalibreSyncError, ValueError):
    """Raised when a required path or setting is missing or invalid."""


class CatalogError(CalibreSyncError):
    """Raised when the Calibre catalog cannot be opened, read, or exported from."""


class FileSystemError(CalibreSyncError):
    """Raised when a file operation on the target or sidecar tree fails.

    Args:
        message: Human-readable description.
        path: The path the failing operation was acting on, if known.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class BackupError(CalibreSyncError):
    """Raised when the sidecar tree snapshot cannot be written."""


class PatchAmbiguityWarning(CalibreSyncError, UserWarning):
    """Raised when a location file cannot be patched unambiguously."""
