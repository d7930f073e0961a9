"""Freshness check for target book files.

A plain modification-time comparison, not a content hash.  The materializer
stamps each file with its record's ``last_modified`` rounded up to a 2 second
step, so an untouched record is never later than its file and is skipped.
Times are compared in whole nanoseconds to avoid float rounding.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from ..file_handler import timestamp_ns


def needs_refresh(last_modified: datetime, target_path: Path) -> bool:
    """True if *target_path* is missing or older than *last_modified*."""
    try:
        target_mtime_ns = target_path.stat().st_mtime_ns
    except FileNotFoundError:
        return True
    return timestamp_ns(last_modified) > target_mtime_ns
