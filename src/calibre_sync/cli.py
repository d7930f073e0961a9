"""Command-line interface for calibre-sync.

Commands:
    sync          Synchronize the library into the target folder.
    fix-sidecars  Re-attach KOReader sidecars to existing book files.
    init-config   Write a starter config file.

Reports go to stdout; logs go to stderr (and optionally a log file).
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

from . import __version__
from .catalog import CalibreCatalog, create_exporter
from .config import SyncSettings, load_config
from .config_loader import load_config_files, write_starter_config
from .config_schema import UnifiedConfig, build_config
from .errors import CalibreSyncError, ConfigurationError
from .logger import setup_logging
from .sync import (
    SyncEngine,
    SyncReport,
    fix_sidecars,
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)

logger = logging.getLogger(__name__)

_EPILOG = """
Examples:
  # Preview what a sync would do
  calibre-sync sync --library ~/Calibre\\ Library --target /mnt/onboard/Books \\
      --sidecars /mnt/onboard/.adds/koreader/docsettings --dry-run

  # Sync using paths from .env or .calibre_sync/config.yml
  calibre-sync sync

  # Copy files straight from the library instead of calling calibredb
  calibre-sync sync --export-mode copy

  # Re-attach sidecars after renaming books by hand
  calibre-sync fix-sidecars --target /mnt/onboard/Books --sidecars ./docsettings

  # Create .calibre_sync/config.yml with commented defaults
  calibre-sync init-config
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="calibre-sync",
        description="Synchronize a Calibre library to a folder of books, "
        "keeping KOReader reading state attached.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=_EPILOG,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"calibre-sync version {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser(
        "sync", help="Synchronize the library into the target folder"
    )
    sync.add_argument(
        "--library",
        help="Calibre library path (overrides CALIBRE_LIBRARY_PATH and config files)",
    )
    _add_tree_arguments(sync)
    sync.add_argument(
        "--export-mode",
        choices=("calibredb", "copy"),
        help="How book files are produced (default: calibredb)",
    )
    _add_run_arguments(sync)
    sync.set_defaults(handler=cmd_sync)

    fix = subparsers.add_parser(
        "fix-sidecars",
        help="Point sidecars at the book files already in the target folder",
    )
    _add_tree_arguments(fix)
    _add_run_arguments(fix)
    fix.set_defaults(handler=cmd_fix_sidecars)

    init = subparsers.add_parser(
        "init-config", help="Write a starter config file if none exists"
    )
    init.add_argument(
        "--path",
        help="Where to write it (default: .calibre_sync/config.yml)",
    )
    init.set_defaults(handler=cmd_init_config)

    return parser


def _add_tree_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--target",
        help="Folder receiving the books (overrides SYNC_TARGET_PATH)",
    )
    parser.add_argument(
        "--sidecars",
        help="KOReader docsettings folder (overrides KOREADER_DOCSETTINGS_PATH)",
    )


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without touching any file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-backup",
        action="store_true",
        help="Skip the sidecar backup taken before changes",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON",
    )
    parser.add_argument(
        "--log-file",
        help="Also append log records to this file",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Log record format (default: logging.format from config, else text)",
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_sync(args: argparse.Namespace) -> int:
    settings = _resolve_settings(args, require_library=True)
    exporter = create_exporter(
        settings.export_mode, settings.library_path, settings.calibredb_path
    )
    catalog = CalibreCatalog(settings.library_path, exporter)
    report = SyncEngine(settings, catalog).run(dry_run=args.dry_run)
    _print_report(report, args)
    return 0


def cmd_fix_sidecars(args: argparse.Namespace) -> int:
    settings = _resolve_settings(args, require_library=False)
    report = fix_sidecars(settings, dry_run=args.dry_run)
    _print_report(report, args)
    return 0


def cmd_init_config(args: argparse.Namespace) -> int:
    path, created = write_starter_config(Path(args.path) if args.path else None)
    if created:
        print(f"Created config: {path}")
    else:
        print(f"Config already exists: {path}")
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_settings(
    args: argparse.Namespace, require_library: bool
) -> SyncSettings:
    """Configure logging and load settings with unified precedence.

    CLI args > env vars (.env loaded first) > YAML config > defaults
    """
    # Load .env before YAML so ${VAR} interpolation can use .env values.
    load_dotenv()
    unified = _load_unified_config()

    setup_logging(
        debug=args.verbose,
        log_file=args.log_file or unified.logging.file,
        log_format=args.log_format or unified.logging.format,
        level=unified.logging.level,
    )

    settings = load_config(
        library=getattr(args, "library", None),
        target=args.target,
        sidecars=args.sidecars,
        export_mode=getattr(args, "export_mode", None),
        debug=args.verbose,
        unified=unified,
        require_library=require_library,
    )
    if args.no_backup:
        settings = dataclasses.replace(settings, backup_sidecars=False)
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    return settings


def _load_unified_config() -> UnifiedConfig:
    try:
        return build_config(load_config_files())
    except (OSError, ValueError, yaml.YAMLError) as exc:
        # pydantic ValidationError is a ValueError.
        raise ConfigurationError(f"Invalid config file: {exc}") from exc


def _print_report(report: SyncReport, args: argparse.Namespace) -> None:
    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif report.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_sync_report(report))


def main(argv: list[str] | None = None) -> int:
    """Parse *argv* and run the selected command; returns the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.handler(args)
    except CalibreSyncError as exc:
        logger.debug("Run aborted", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
