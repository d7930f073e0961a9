"""File handler module: encoding-aware read, atomic write/placement, timestamps.

Thin I/O primitives shared by the materializer, the sidecar reconciler and
cleanup.  Every writer goes through a temporary sibling file plus
``os.replace()`` so readers never observe a half-written book or location
file.
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# File Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a text file with automatic encoding detection.

    UTF-8 is tried first so well-formed files round-trip exactly; anything
    else goes through charset-normalizer.  Defaults to UTF-8 for empty files
    or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        content = str(result)
    return (content, encoding)


# =============================================================================
# Atomic Write / Placement
# =============================================================================


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Atomically replace *path* with *content*.

    Writes to a temporary file in the same directory then calls
    ``os.replace()``.  The temporary file is removed on any failure.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=".", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(encoded)
        os.replace(tmp_path, path)
    except BaseException:
        _discard(tmp_path)
        raise
    return len(encoded)


def install_file(source: Path, target: Path) -> None:
    """Copy *source* into place at *target* atomically.

    The bytes land in a hidden ``.part`` sibling of *target* first, which is
    then renamed over *target*.  An interrupted copy therefore never leaves a
    truncated file under the final name.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(target.parent), prefix=".", suffix=".part"
    )
    os.close(fd)
    try:
        shutil.copyfile(source, tmp_path)
        os.replace(tmp_path, target)
    finally:
        _discard(tmp_path)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# FAT keeps modification times in 2 second steps.
MTIME_STEP_NS = 2_000_000_000


def timestamp_ns(when: datetime) -> int:
    """Exact nanoseconds since the epoch for an aware *when*."""
    return (when - _EPOCH) // timedelta(microseconds=1) * 1000


def stamp_times(path: Path, when: datetime) -> None:
    """Set access and modification time of *path* to *when*, rounded up.

    The stamp is the first multiple of ``MTIME_STEP_NS`` at or after *when*,
    which FAT, exFAT and HFS+ store without truncation.
    """
    ns = -(-timestamp_ns(when) // MTIME_STEP_NS) * MTIME_STEP_NS
    os.utime(path, ns=(ns, ns))


def remove_file(path: Path) -> None:
    """Delete a single file."""
    path.unlink()


def _discard(tmp_path: str) -> None:
    # Clean up temp file; missing is fine (already renamed into place).
    try:
        os.unlink(tmp_path)
    except OSError:
        pass
