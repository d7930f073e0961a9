"""Export backends that materialise one record's book file at a target path.

- ``CopyExporter`` copies the file Calibre already stores in the library.
- ``CalibredbExporter`` shells out to ``calibredb export`` so the exported
  file carries Calibre's current metadata.  The export lands in a private
  temporary directory first and is then relocated into place; the temporary
  directory is always removed.

Both return an ``ExportResult`` instead of raising, so one failed export is
recorded against its record and the run moves on.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel

from ..errors import ConfigurationError
from ..file_handler import install_file

if TYPE_CHECKING:
    from .models import Record
    from .reader import CalibreCatalog

logger = logging.getLogger(__name__)

EXPORT_MODES = ("calibredb", "copy")


class ExportResult(BaseModel):
    """Outcome of exporting one record.

    Attributes:
        success: Whether the file is now in place.
        error: Failure reason when ``success`` is False.
    """

    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class Exporter(Protocol):
    def export(
        self,
        catalog: CalibreCatalog,
        record: Record,
        target_path: Path,
        fmt: str,
    ) -> ExportResult: ...


class CopyExporter:
    """Copy the stored book file straight out of the library."""

    def export(
        self,
        catalog: CalibreCatalog,
        record: Record,
        target_path: Path,
        fmt: str,
    ) -> ExportResult:
        source = catalog.book_file(record, fmt)
        if source is None:
            return ExportResult(
                success=False, error=f"No {fmt.upper()} file recorded in library"
            )
        if not source.is_file():
            return ExportResult(
                success=False, error=f"Source file missing: {source}"
            )
        try:
            install_file(source, target_path)
        except OSError as exc:
            return ExportResult(success=False, error=str(exc))
        return ExportResult(success=True)


class CalibredbExporter:
    """Export through the ``calibredb`` command-line tool.

    Args:
        library_path: Calibre library root passed as ``--library-path``.
        executable: ``calibredb`` binary name or path.
        timeout: Seconds to wait for one export.
    """

    def __init__(
        self,
        library_path: Path,
        executable: str = "calibredb",
        timeout: float = 300,
    ) -> None:
        self.library_path = library_path
        self.executable = executable
        self.timeout = timeout

    def export(
        self,
        catalog: CalibreCatalog,
        record: Record,
        target_path: Path,
        fmt: str,
    ) -> ExportResult:
        try:
            with tempfile.TemporaryDirectory(
                prefix=f"calibre-export-{record.id}-"
            ) as tmp:
                tmp_dir = Path(tmp)
                command = self.build_command(record.id, fmt, tmp_dir)
                logger.debug("Running %s", " ".join(command))
                proc = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
                if proc.returncode != 0:
                    detail = proc.stderr.strip() or proc.stdout.strip()
                    return ExportResult(
                        success=False,
                        error=detail
                        or f"calibredb exited with status {proc.returncode}",
                    )

                exported = _find_exported(tmp_dir, fmt)
                if exported is None:
                    return ExportResult(
                        success=False,
                        error=f"No {fmt.upper()} file found after export",
                    )
                install_file(exported, target_path)
        except subprocess.TimeoutExpired:
            return ExportResult(
                success=False,
                error=f"calibredb export timed out after {self.timeout:g}s",
            )
        except (OSError, subprocess.SubprocessError) as exc:
            return ExportResult(success=False, error=str(exc))
        return ExportResult(success=True)

    def build_command(
        self, book_id: int, fmt: str, to_dir: Path
    ) -> list[str]:
        return [
            self.executable,
            "export",
            f"--library-path={self.library_path}",
            f"--formats={fmt.upper()}",
            "--single-dir",
            "--dont-save-cover",
            "--dont-write-opf",
            f"--to-dir={to_dir}",
            str(book_id),
        ]


def create_exporter(
    mode: str, library_path: Path, calibredb_path: str = "calibredb"
) -> Exporter:
    """Build the exporter for *mode* (``calibredb`` or ``copy``).

    Raises:
        ConfigurationError: If *mode* is unknown.
    """
    if mode == "copy":
        return CopyExporter()
    if mode == "calibredb":
        return CalibredbExporter(library_path, executable=calibredb_path)
    raise ConfigurationError(
        f"Unknown export mode '{mode}': expected one of {', '.join(EXPORT_MODES)}"
    )


def _find_exported(export_dir: Path, fmt: str) -> Path | None:
    suffix = f".{fmt.lower()}"
    for path in sorted(export_dir.rglob("*")):
        if path.is_file() and path.suffix.lower() == suffix:
            return path
    return None
