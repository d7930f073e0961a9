"""Run configuration for calibre-sync.

Resolves the settings for one run from CLI args, environment variables,
.env files, and the YAML config file, then freezes them into a
``SyncSettings`` value that is passed explicitly to every component.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    CALIBRE_LIBRARY_PATH: Calibre library root (required for ``sync``)
    SYNC_TARGET_PATH: Folder receiving the synchronized books (required)
    KOREADER_DOCSETTINGS_PATH: KOReader docsettings tree (required)
    CALIBRE_SYNC_EXPORT_MODE: ``calibredb`` or ``copy`` (optional)
    CALIBRE_SYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .catalog.exporter import EXPORT_MODES
from .catalog.reader import METADATA_DB
from .config_schema import (
    DEFAULT_FORMAT_PREFERENCE,
    DEFAULT_SIDECAR_METADATA_FILES,
    DEFAULT_SUPPORTED_EXTENSIONS,
    DEFAULT_TEMPLATE,
    UnifiedConfig,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncSettings:
    library_path: Path | None
    target_path: Path | None
    sidecar_path: Path | None
    template: str = DEFAULT_TEMPLATE
    field_mappings: dict[str, dict[str, str]] = field(default_factory=dict)
    supported_extensions: tuple[str, ...] = DEFAULT_SUPPORTED_EXTENSIONS
    format_preference: tuple[str, ...] = DEFAULT_FORMAT_PREFERENCE
    sidecar_metadata_files: tuple[str, ...] = DEFAULT_SIDECAR_METADATA_FILES
    export_mode: str = "calibredb"
    calibredb_path: str = "calibredb"
    backup_sidecars: bool = True
    backup_dir: Path | None = None
    debug: bool = False


def validate_config(
    settings: SyncSettings, require_library: bool = True
) -> None:
    """Validate settings and raise ConfigurationError if unusable.

    All problems are collected and reported together.

    Args:
        settings: SyncSettings instance to validate.
        require_library: False for commands that never open the catalog.

    Raises:
        ConfigurationError: If a required path is missing or a value is invalid.
    """
    errors: list[str] = []

    if require_library:
        library = settings.library_path
        if library is None:
            errors.append(
                "Calibre library path not set. Set CALIBRE_LIBRARY_PATH, "
                "pass --library, or add 'paths.library' to config.yml."
            )
        elif not library.is_dir():
            errors.append(f"Calibre library path does not exist: {library}")
        elif not (library / METADATA_DB).is_file():
            errors.append(f"Calibre {METADATA_DB} not found in: {library}")

    if settings.target_path is None:
        errors.append(
            "Sync target path not set. Set SYNC_TARGET_PATH, "
            "pass --target, or add 'paths.target' to config.yml."
        )
    elif settings.target_path.exists() and not settings.target_path.is_dir():
        errors.append(
            f"Sync target path is not a directory: {settings.target_path}"
        )

    if settings.sidecar_path is None:
        errors.append(
            "KOReader docsettings path not set. Set KOREADER_DOCSETTINGS_PATH, "
            "pass --sidecars, or add 'paths.sidecars' to config.yml."
        )
    elif not settings.sidecar_path.is_dir():
        errors.append(
            f"KOReader docsettings path does not exist: {settings.sidecar_path}"
        )

    bad_exts = [
        ext for ext in settings.supported_extensions if not ext.startswith(".")
    ]
    if bad_exts:
        errors.append(
            f"Supported extensions must start with '.': {', '.join(bad_exts)}"
        )

    if settings.export_mode not in EXPORT_MODES:
        errors.append(
            f"Invalid export mode '{settings.export_mode}': "
            f"must be one of {', '.join(EXPORT_MODES)}"
        )
    elif (
        require_library
        and settings.export_mode == "calibredb"
        and shutil.which(settings.calibredb_path) is None
    ):
        errors.append(
            f"'{settings.calibredb_path}' not found on PATH. Install Calibre's "
            "command-line tools or use export mode 'copy'."
        )

    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def load_config(
    library: str | None = None,
    target: str | None = None,
    sidecars: str | None = None,
    export_mode: str | None = None,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
    require_library: bool = True,
) -> SyncSettings:
    """Load settings with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > unified (YAML) config > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        library: Override Calibre library path.
        target: Override sync target path.
        sidecars: Override KOReader docsettings path.
        export_mode: Override export backend.
        debug: Enable debug logging (CLI flag).
        unified: Parsed YAML configuration; defaults when ``None``.
        require_library: Passed through to ``validate_config()``.

    Returns:
        Validated SyncSettings instance.

    Raises:
        ConfigurationError: If required settings are missing or invalid
            after checking all sources.
    """
    cfg = unified or UnifiedConfig()

    library_raw = (
        library or os.getenv("CALIBRE_LIBRARY_PATH") or cfg.paths.library
    )
    target_raw = target or os.getenv("SYNC_TARGET_PATH") or cfg.paths.target
    sidecars_raw = (
        sidecars
        or os.getenv("KOREADER_DOCSETTINGS_PATH")
        or cfg.paths.sidecars
    )

    final_mode = (
        export_mode
        or os.getenv("CALIBRE_SYNC_EXPORT_MODE")
        or cfg.export.mode
    )

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("CALIBRE_SYNC_DEBUG")
        final_debug = (
            env_debug is not None
            and env_debug.lower() in ("true", "1", "yes", "on")
        )

    backup_dir = _as_path(cfg.files.backup_dir) or Path.cwd() / ".backups"

    settings = SyncSettings(
        library_path=_as_path(library_raw),
        target_path=_as_path(target_raw),
        sidecar_path=_as_path(sidecars_raw),
        template=cfg.naming.template,
        field_mappings={
            name: dict(values)
            for name, values in cfg.naming.field_mappings.items()
        },
        supported_extensions=tuple(cfg.files.supported_extensions),
        format_preference=tuple(cfg.files.format_preference),
        sidecar_metadata_files=tuple(cfg.files.sidecar_metadata_files),
        export_mode=final_mode,
        calibredb_path=cfg.export.calibredb_path,
        backup_sidecars=cfg.files.backup_sidecars,
        backup_dir=backup_dir,
        debug=final_debug,
    )

    validate_config(settings, require_library=require_library)

    return settings


def _as_path(raw: str | None) -> Path | None:
    """Expand ``~`` in a configured path; blank or missing yields ``None``."""
    if raw is None or not raw.strip():
        return None
    return Path(raw.strip()).expanduser()
