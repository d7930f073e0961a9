"""Unified configuration schema for calibre_sync.

Defines Pydantic models for the YAML config file, with dedicated sections
for paths, file handling, naming, export and logging.  Every section has
defaults, so ``UnifiedConfig()`` (zero-config) is always valid; required
paths may still come from environment variables or CLI arguments.

Usage:
    from calibre_sync.config_schema import build_config

    raw = load_config_files()
    unified = build_config(raw)
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_TEMPLATE = (
    "{#genre} - {author_sort} - {series:|| }{series_index} - {title}"
)

DEFAULT_GENRE_MAPPINGS: dict[str, str] = {
    "Fiction": "0100 - Fiction",
    "Fantasy": "0200 - Fantasy",
    "Science Fiction": "0300 - Science Fiction",
    "Mystery": "0400 - Mystery",
    "Romance": "0500 - Romance",
    "Thriller": "0600 - Thriller",
    "Historical Fiction": "0700 - Historical Fiction",
    "Literary Fiction": "0800 - Literary Fiction",
    "Young Adult": "0900 - Young Adult",
    "Non-Fiction": "1000 - Non-Fiction",
    "Biography": "1100 - Biography",
    "History": "1200 - History",
    "Science": "1300 - Science",
    "Technology": "1400 - Technology",
    "Self-Help": "1500 - Self-Help",
    "Business": "1600 - Business",
    "Reference": "1700 - Reference",
}

DEFAULT_SUPPORTED_EXTENSIONS = (".epub", ".cbz", ".pdf")
DEFAULT_FORMAT_PREFERENCE = ("EPUB", "CBZ", "PDF", "MOBI", "AZW3", "FB2")
DEFAULT_SIDECAR_METADATA_FILES = (
    "metadata.epub.lua",
    "metadata.pdf.lua",
    "metadata.cbz.lua",
    "metadata.mobi.lua",
    "metadata.azw3.lua",
    "metadata.fb2.lua",
)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class PathsConfig(BaseModel):
    """Filesystem locations.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    library: str | None = Field(
        default=None, description="Calibre library root (holds metadata.db)"
    )
    target: str | None = Field(
        default=None, description="Folder receiving the synchronized books"
    )
    sidecars: str | None = Field(
        default=None, description="KOReader docsettings tree"
    )

    model_config = {"frozen": True}


class FilesConfig(BaseModel):
    """Which formats are synchronized and how sidecar location files are found."""

    supported_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_EXTENSIONS),
        description="Book file extensions kept in the target folder",
    )
    format_preference: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FORMAT_PREFERENCE),
        description="Format tags, most preferred first",
    )
    sidecar_metadata_files: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SIDECAR_METADATA_FILES),
        description="Location-file names looked for in each .sdr, first match wins",
    )
    backup_sidecars: bool = Field(
        default=True,
        description="Snapshot the sidecar tree before modifying it",
    )
    backup_dir: str | None = Field(
        default=None, description="Where snapshots go (default: ./.backups)"
    )

    model_config = {"frozen": True}

    @field_validator("supported_extensions")
    @classmethod
    def _normalise_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower() for ext in value]

    @field_validator("format_preference")
    @classmethod
    def _normalise_formats(cls, value: list[str]) -> list[str]:
        return [fmt.upper() for fmt in value]


class NamingConfig(BaseModel):
    """Filename template and per-field value remapping."""

    template: str = Field(default=DEFAULT_TEMPLATE)
    field_mappings: dict[str, dict[str, str]] = Field(
        default_factory=lambda: {"genre": dict(DEFAULT_GENRE_MAPPINGS)}
    )

    model_config = {"frozen": True}


class ExportConfig(BaseModel):
    """How book files are produced from the library."""

    mode: Literal["calibredb", "copy"] = Field(default="calibredb")
    calibredb_path: str = Field(default="calibredb")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json`` records, on stderr and in the file.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log record format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    naming: NamingConfig = Field(default_factory=NamingConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_config_files()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
