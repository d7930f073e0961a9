"""Tests for the calibre-sync command line (cli.py)."""

import json
from unittest.mock import patch

import pytest

from calibre_sync import __version__
from calibre_sync.cli import build_parser, main

ENV_VARS = (
    "CALIBRE_LIBRARY_PATH",
    "SYNC_TARGET_PATH",
    "KOREADER_DOCSETTINGS_PATH",
    "CALIBRE_SYNC_EXPORT_MODE",
    "CALIBRE_SYNC_DEBUG",
    "CALIBRE_SYNC_CONFIG",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """No env, no .env, no config files, no global logging changes."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    with patch("calibre_sync.cli.load_dotenv"), patch(
        "calibre_sync.cli.setup_logging"
    ):
        yield


def _sync_args(library, target_dir, sidecar_dir, *extra):
    return [
        "sync",
        "--library",
        str(library.root),
        "--target",
        str(target_dir),
        "--sidecars",
        str(sidecar_dir),
        "--export-mode",
        "copy",
        *extra,
    ]


# -------------------------------------------------------------------------
# Parser
# -------------------------------------------------------------------------


class TestParser:
    """Tests for build_parser()."""

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args([])
        assert exc_info.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_export_mode_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sync", "--export-mode", "rsync"])

    def test_fix_sidecars_has_no_library_flag(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["fix-sidecars", "--library", "x"])


# -------------------------------------------------------------------------
# sync
# -------------------------------------------------------------------------


class TestSyncCommand:
    """End-to-end runs of ``calibre-sync sync``."""

    def test_sync(self, library, target_dir, sidecar_dir, capsys):
        library.add_book("Foundation")

        code = main(_sync_args(library, target_dir, sidecar_dir, "--no-backup"))

        assert code == 0
        assert [p.name for p in target_dir.iterdir()] == [
            "Asimov, Isaac - Foundation (1).epub"
        ]
        out = capsys.readouterr().out
        assert "Sync report (sync)" in out
        assert "Processed 1 books: 1 updated" in out

    def test_json_output(self, library, target_dir, sidecar_dir, capsys):
        library.add_book("Foundation")

        code = main(
            _sync_args(library, target_dir, sidecar_dir, "--no-backup", "--json")
        )

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["counts"]["updated"] == 1
        assert data["dry_run"] is False

    def test_dry_run(self, library, target_dir, sidecar_dir, capsys):
        library.add_book("Foundation")

        code = main(_sync_args(library, target_dir, sidecar_dir, "--dry-run"))

        assert code == 0
        assert list(target_dir.iterdir()) == []
        assert capsys.readouterr().out.startswith("DRY RUN")

    def test_backup_taken_by_default(
        self, library, target_dir, sidecar_dir, make_sidecar, tmp_path
    ):
        library.add_book("Foundation")
        make_sidecar("Old (1).sdr")

        assert main(_sync_args(library, target_dir, sidecar_dir)) == 0

        (snapshot,) = list((tmp_path / ".backups").iterdir())
        assert (snapshot / "Old (1).sdr").is_dir()

    def test_paths_from_env(
        self, library, target_dir, sidecar_dir, monkeypatch, capsys
    ):
        library.add_book("Foundation")
        monkeypatch.setenv("CALIBRE_LIBRARY_PATH", str(library.root))
        monkeypatch.setenv("SYNC_TARGET_PATH", str(target_dir))
        monkeypatch.setenv("KOREADER_DOCSETTINGS_PATH", str(sidecar_dir))
        monkeypatch.setenv("CALIBRE_SYNC_EXPORT_MODE", "copy")

        assert main(["sync", "--no-backup"]) == 0
        assert len(list(target_dir.iterdir())) == 1

    def test_paths_from_config_file(
        self, library, target_dir, sidecar_dir, tmp_path
    ):
        library.add_book("Foundation")
        config = tmp_path / ".calibre_sync" / "config.yml"
        config.parent.mkdir()
        config.write_text(
            f"paths:\n"
            f"  library: '{library.root}'\n"
            f"  target: '{target_dir}'\n"
            f"  sidecars: '{sidecar_dir}'\n"
            f"naming:\n"
            f"  template: '{{title}}'\n"
            f"export:\n"
            f"  mode: copy\n"
            f"files:\n"
            f"  backup_sidecars: false\n"
        )

        assert main(["sync"]) == 0
        assert [p.name for p in target_dir.iterdir()] == ["Foundation (1).epub"]

    def test_log_format_flag(self, library, target_dir, sidecar_dir):
        library.add_book("Foundation")

        with patch("calibre_sync.cli.setup_logging") as mock_setup:
            main(
                _sync_args(
                    library, target_dir, sidecar_dir, "--no-backup",
                    "--log-format", "json",
                )
            )

        assert mock_setup.call_args.kwargs["log_format"] == "json"

    def test_log_format_from_config_file(self, tmp_path):
        config = tmp_path / ".calibre_sync" / "config.yml"
        config.parent.mkdir()
        config.write_text("logging:\n  format: json\n")

        with patch("calibre_sync.cli.setup_logging") as mock_setup:
            main(["sync"])

        assert mock_setup.call_args.kwargs["log_format"] == "json"

    def test_missing_configuration(self, capsys):
        code = main(["sync"])

        assert code == 1
        err = capsys.readouterr().err
        assert err.startswith("Error: Configuration validation failed")
        assert "Calibre library path not set" in err

    def test_invalid_config_file(self, tmp_path, capsys):
        config = tmp_path / ".calibre_sync" / "config.yml"
        config.parent.mkdir()
        config.write_text("export:\n  mode: rsync\n")

        assert main(["sync"]) == 1
        assert "Invalid config file" in capsys.readouterr().err

    def test_interrupt(self, library, target_dir, sidecar_dir, capsys):
        with patch(
            "calibre_sync.cli.SyncEngine.run", side_effect=KeyboardInterrupt
        ):
            code = main(_sync_args(library, target_dir, sidecar_dir, "--no-backup"))

        assert code == 130
        assert "Interrupted." in capsys.readouterr().err


# -------------------------------------------------------------------------
# fix-sidecars
# -------------------------------------------------------------------------


class TestFixSidecarsCommand:
    def test_runs_without_library(
        self, target_dir, sidecar_dir, make_sidecar, capsys
    ):
        (target_dir / "New (7).epub").write_bytes(b"book")
        make_sidecar("Old (7).sdr")

        code = main(
            [
                "fix-sidecars",
                "--target",
                str(target_dir),
                "--sidecars",
                str(sidecar_dir),
                "--no-backup",
            ]
        )

        assert code == 0
        assert (sidecar_dir / "New (7).sdr").is_dir()
        assert "Sync report (fix-sidecars)" in capsys.readouterr().out


# -------------------------------------------------------------------------
# init-config
# -------------------------------------------------------------------------


class TestInitConfigCommand:
    def test_creates_then_reports_existing(self, tmp_path, capsys):
        assert main(["init-config"]) == 0
        created = tmp_path / ".calibre_sync" / "config.yml"
        assert created.is_file()
        assert f"Created config: {created}" in capsys.readouterr().out

        assert main(["init-config"]) == 0
        assert "Config already exists" in capsys.readouterr().out

    def test_explicit_path(self, tmp_path, capsys):
        target = tmp_path / "conf" / "calibre-sync.yml"

        assert main(["init-config", "--path", str(target)]) == 0
        assert target.is_file()
