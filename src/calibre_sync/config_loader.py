"""
Config file discovery and loading for calibre_sync.

Up to three YAML files are read, lowest precedence first::

    ~/.config/calibre_sync/config.yml          per user
    ./.calibre_sync/config.yml (or .yaml)      per working folder
    $CALIBRE_SYNC_CONFIG                       explicit

A later file overrides an earlier one key by key inside each section, so a
working-folder file can set ``paths.target`` while the library path still
comes from the user file.

On top of plain YAML:

- ``${VAR}`` and ``${VAR:-default}`` in path-valued settings are filled in
  from the environment (after ``.env`` has been loaded).
- ``!include genres.yml`` reads a value-mapping table for
  ``naming.field_mappings`` from its own file, relative to the including one.

Usage:
    from calibre_sync.config_loader import load_config_files

    raw = load_config_files()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CALIBRE_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".calibre_sync"
PROJECT_CONFIG_NAMES = ("config.yml", "config.yaml")

# Settings that hold paths; only these see ${VAR} expansion.
_PATH_SETTINGS: dict[str, tuple[str, ...]] = {
    "paths": ("library", "target", "sidecars"),
    "files": ("backup_dir",),
    "export": ("calibredb_path",),
    "logging": ("file",),
}

_ENV_REFERENCE = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


# ---------------------------------------------------------------------------
# ${VAR} expansion
# ---------------------------------------------------------------------------


def expand_env_refs(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with environment values.

    An unset or empty variable gives its default, or ``""`` without one.
    """
    return _ENV_REFERENCE.sub(
        lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value
    )


def _expand_path_settings(data: dict[str, Any]) -> dict[str, Any]:
    for section, keys in _PATH_SETTINGS.items():
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        data[section] = {
            key: (
                expand_env_refs(value)
                if key in keys and isinstance(value, str)
                else value
            )
            for key, value in values.items()
        }
    return data


# ---------------------------------------------------------------------------
# !include for mapping tables
# ---------------------------------------------------------------------------


class _ConfigFileLoader(yaml.SafeLoader):
    """SafeLoader with ``!include`` for value-mapping tables."""


def _include_mapping_table(
    loader: _ConfigFileLoader, node: yaml.ScalarNode
) -> dict[str, str]:
    """Load ``!include <file>`` as a flat ``{calibre value: replacement}`` table.

    The included file is plain YAML: it cannot include further files.
    """
    relative = Path(loader.construct_scalar(node)).expanduser()
    path = relative if relative.is_absolute() else Path(loader.name).parent / relative

    if not path.is_file():
        raise FileNotFoundError(
            f"Included mapping table not found: {path} (from {loader.name})"
        )
    with open(path, "r", encoding="utf-8") as fh:
        table = yaml.safe_load(fh)

    if table is None:
        return {}
    if not isinstance(table, dict) or any(
        isinstance(v, (dict, list)) or v is None for v in table.values()
    ):
        raise ValueError(
            f"{path}: a mapping table must map each value to one replacement"
        )
    return {str(k): str(v) for k, v in table.items()}


_ConfigFileLoader.add_constructor("!include", _include_mapping_table)


def _read_config_file(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        loader = _ConfigFileLoader(fh)
        try:
            data = loader.get_single_data()
        finally:
            loader.dispose()

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"{path}: expected a mapping of sections, got {type(data).__name__}"
        )
    return data


# ---------------------------------------------------------------------------
# Discovery and merge
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first."""
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())

    project_dir = Path.cwd() / PROJECT_CONFIG_DIR
    candidates.extend(project_dir / name for name in PROJECT_CONFIG_NAMES)
    candidates.append(Path.home() / ".config" / "calibre_sync" / "config.yml")

    return [p for p in candidates if p.is_file()]


def load_config_files() -> dict[str, Any]:
    """Read and merge every discovered config file.

    Returns an empty dict when there is none (zero-config).

    Raises:
        OSError: A config or included file cannot be read.
        ValueError: A file is not a mapping of sections, or an included
            table is not a flat mapping.
        yaml.YAMLError: A file is not valid YAML.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Loading config: %s", path)
        for section, values in _read_config_file(path).items():
            earlier = merged.get(section)
            if isinstance(values, dict) and isinstance(earlier, dict):
                merged[section] = {**earlier, **values}
            else:
                merged[section] = values
    return _expand_path_settings(merged)


# ---------------------------------------------------------------------------
# Starter config
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# calibre-sync configuration
#
# Paths can also be set via environment variables:
#   CALIBRE_LIBRARY_PATH, SYNC_TARGET_PATH, KOREADER_DOCSETTINGS_PATH
# and may reference them here, e.g. target: ${BOOKS_HOME:-~/Books}
#
# paths:
#   library: ~/Calibre Library
#   target: ~/Books
#   sidecars: ~/docsettings
#
# files:
#   supported_extensions: [.epub, .cbz, .pdf]
#   format_preference: [EPUB, CBZ, PDF, MOBI, AZW3, FB2]
#   backup_sidecars: true
#   backup_dir: null
#
# naming:
#   template: "{#genre} - {author_sort} - {series:|| }{series_index} - {title}"
#   field_mappings:
#     genre: !include genres.yml     # Fantasy: "0200 - Fantasy", ...
#
# export:
#   mode: calibredb        # or "copy" to copy files straight from the library
#   calibredb_path: calibredb
#
# logging:
#   level: INFO
#   file: null
#   format: text          # or "json", one object per line
"""


def write_starter_config(path: Path | None = None) -> tuple[Path, bool]:
    """Create a commented starter config unless one is already there.

    Args:
        path: Where to write it.  Without one, an existing discovered config
            is reported, else ``./.calibre_sync/config.yml`` is created.

    Returns:
        ``(config path, created)``.
    """
    if path is None:
        existing = discover_config_files()
        if existing:
            return existing[0], False
        path = Path.cwd() / PROJECT_CONFIG_DIR / PROJECT_CONFIG_NAMES[0]
    elif path.exists():
        return path, False

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path, True
