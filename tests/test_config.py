"""Tests for calibre_sync.config: settings resolution and validation.

Not to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models).
"""

import dataclasses
from pathlib import Path
from unittest.mock import patch

import pytest

from calibre_sync.config import SyncSettings, load_config, validate_config
from calibre_sync.config_schema import UnifiedConfig, build_config
from calibre_sync.errors import ConfigurationError

ENV_VARS = (
    "CALIBRE_LIBRARY_PATH",
    "SYNC_TARGET_PATH",
    "KOREADER_DOCSETTINGS_PATH",
    "CALIBRE_SYNC_EXPORT_MODE",
    "CALIBRE_SYNC_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config()."""

    def test_valid_settings(self, settings):
        validate_config(settings)  # should not raise

    def test_all_problems_reported_together(self):
        settings = SyncSettings(
            library_path=None, target_path=None, sidecar_path=None
        )
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(settings)

        message = str(exc_info.value)
        assert message.startswith("Configuration validation failed:")
        assert "Calibre library path not set" in message
        assert "Sync target path not set" in message
        assert "KOReader docsettings path not set" in message

    def test_library_without_metadata_db(self, settings, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(ConfigurationError, match="metadata.db not found"):
            validate_config(dataclasses.replace(settings, library_path=empty))

    def test_library_not_required(self, settings):
        """fix-sidecars never opens the catalog."""
        configured = dataclasses.replace(settings, library_path=None)
        validate_config(configured, require_library=False)

    def test_target_is_a_file(self, settings, tmp_path):
        not_dir = tmp_path / "file.txt"
        not_dir.write_text("x")
        with pytest.raises(ConfigurationError, match="not a directory"):
            validate_config(dataclasses.replace(settings, target_path=not_dir))

    def test_missing_target_is_allowed(self, settings, tmp_path):
        """The target folder is created on first run."""
        configured = dataclasses.replace(settings, target_path=tmp_path / "new")
        validate_config(configured)

    def test_missing_sidecar_dir(self, settings, tmp_path):
        configured = dataclasses.replace(
            settings, sidecar_path=tmp_path / "absent"
        )
        with pytest.raises(ConfigurationError, match="docsettings path"):
            validate_config(configured)

    def test_extension_without_dot(self, settings):
        configured = dataclasses.replace(
            settings, supported_extensions=(".epub", "pdf")
        )
        with pytest.raises(ConfigurationError, match="must start with '.': pdf"):
            validate_config(configured)

    def test_unknown_export_mode(self, settings):
        configured = dataclasses.replace(settings, export_mode="rsync")
        with pytest.raises(ConfigurationError, match="Invalid export mode"):
            validate_config(configured)

    def test_calibredb_missing_from_path(self, settings):
        configured = dataclasses.replace(settings, export_mode="calibredb")
        with patch("calibre_sync.config.shutil.which", return_value=None):
            with pytest.raises(ConfigurationError, match="not found on PATH"):
                validate_config(configured)

    def test_calibredb_found(self, settings):
        configured = dataclasses.replace(settings, export_mode="calibredb")
        with patch(
            "calibre_sync.config.shutil.which",
            return_value="/usr/bin/calibredb",
        ):
            validate_config(configured)


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() precedence."""

    def _yaml(self, library, target_dir, sidecar_dir, **extra):
        raw = {
            "paths": {
                "library": str(library.root),
                "target": str(target_dir),
                "sidecars": str(sidecar_dir),
            },
            "export": {"mode": "copy"},
        }
        raw.update(extra)
        return build_config(raw)

    def test_yaml_only(self, library, target_dir, sidecar_dir, tmp_path):
        unified = self._yaml(library, target_dir, sidecar_dir)

        settings = load_config(unified=unified)

        assert settings.library_path == library.root
        assert settings.target_path == target_dir
        assert settings.sidecar_path == sidecar_dir
        assert settings.export_mode == "copy"
        assert settings.backup_dir == tmp_path / ".backups"
        assert settings.field_mappings["genre"]["Fantasy"] == "0200 - Fantasy"

    def test_env_beats_yaml(
        self, library, target_dir, sidecar_dir, tmp_path, monkeypatch
    ):
        other = tmp_path / "Other"
        other.mkdir()
        monkeypatch.setenv("SYNC_TARGET_PATH", str(other))
        unified = self._yaml(library, target_dir, sidecar_dir)

        assert load_config(unified=unified).target_path == other

    def test_cli_beats_env(
        self, library, target_dir, sidecar_dir, tmp_path, monkeypatch
    ):
        monkeypatch.setenv("SYNC_TARGET_PATH", str(tmp_path / "env"))
        unified = self._yaml(library, target_dir, sidecar_dir)

        settings = load_config(target=str(target_dir / "cli"), unified=unified)
        assert settings.target_path == target_dir / "cli"

    def test_export_mode_from_env(
        self, library, target_dir, sidecar_dir, monkeypatch
    ):
        monkeypatch.setenv("CALIBRE_SYNC_EXPORT_MODE", "copy")
        settings = load_config(
            library=str(library.root),
            target=str(target_dir),
            sidecars=str(sidecar_dir),
        )
        assert settings.export_mode == "copy"

    @pytest.mark.parametrize(
        "value,expected",
        [("true", True), ("1", True), ("on", True), ("no", False)],
    )
    def test_debug_from_env(
        self, library, target_dir, sidecar_dir, monkeypatch, value, expected
    ):
        monkeypatch.setenv("CALIBRE_SYNC_DEBUG", value)
        unified = self._yaml(library, target_dir, sidecar_dir)
        assert load_config(unified=unified).debug is expected

    def test_debug_flag_wins(self, library, target_dir, sidecar_dir):
        unified = self._yaml(library, target_dir, sidecar_dir)
        assert load_config(debug=True, unified=unified).debug is True

    def test_home_expanded(self, library, target_dir, sidecar_dir, monkeypatch):
        monkeypatch.setenv("HOME", str(target_dir.parent))
        settings = load_config(
            library=str(library.root),
            target="~/Books",
            sidecars=str(sidecar_dir),
            export_mode="copy",
        )
        assert settings.target_path == target_dir

    def test_files_section_applied(self, library, target_dir, sidecar_dir):
        unified = self._yaml(
            library,
            target_dir,
            sidecar_dir,
            files={
                "supported_extensions": [".EPUB"],
                "backup_sidecars": False,
                "backup_dir": "/var/backups/koreader",
            },
        )
        settings = load_config(unified=unified)

        assert settings.supported_extensions == (".epub",)
        assert settings.backup_sidecars is False
        assert settings.backup_dir == Path("/var/backups/koreader")

    def test_nothing_configured_raises(self):
        with pytest.raises(ConfigurationError):
            load_config(unified=UnifiedConfig())

    def test_blank_value_treated_as_unset(self, library, sidecar_dir):
        with pytest.raises(ConfigurationError, match="Sync target path not set"):
            load_config(
                library=str(library.root),
                target="   ",
                sidecars=str(sidecar_dir),
                export_mode="copy",
            )
