"""Correlation ids embedded in filesystem names.

Every synchronized book file and every KOReader sidecar directory carries
the Calibre book id as the last parenthesised number before its suffix::

    Foundation (42).epub        -> 42
    Foundation (42).sdr         -> 42
    Weird (12) (34).sdr         -> 34
    No Id Here.epub             -> None

The id, not the filename, is what ties a sidecar to its book, so renames
driven by metadata edits never lose reading state.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import PurePath

from ..catalog.models import Record
from ..naming.template import (
    MAX_FILENAME_LENGTH,
    TemplateRenderer,
    sanitize_filename,
)

SIDECAR_SUFFIX = ".sdr"

_ID_PATTERN = re.compile(r"\((\d+)\)(\.[A-Za-z0-9]+)$")


def extract_id(
    name: str, suffixes: Iterable[str] | None = None
) -> int | None:
    """Return the id embedded in *name*, or ``None``.

    Args:
        name: A file or directory name (not a path).
        suffixes: If given, only names ending in one of these suffixes
            (compared case-insensitively, e.g. ``.epub``, ``.sdr``) match.
    """
    match = _ID_PATTERN.search(name)
    if match is None:
        return None
    if suffixes is not None:
        allowed = {s.lower() for s in suffixes}
        if match.group(2).lower() not in allowed:
            return None
    value = int(match.group(1))
    return value if value > 0 else None


def canonical_filename(
    record: Record, renderer: TemplateRenderer, fmt: str
) -> str:
    """``render(record) + " (id)." + ext`` -- the record's target filename.

    The rendered base is sanitised and shortened so the whole name fits in
    a single filesystem name component.
    """
    tail = f" ({record.id}).{fmt.lower()}"
    base = sanitize_filename(
        renderer.render(record), MAX_FILENAME_LENGTH - len(tail.encode("utf-8"))
    )
    return f"{base or 'Untitled'}{tail}"


def sidecar_dirname(filename: str) -> str:
    """The sidecar directory name KOReader uses for book *filename*."""
    return PurePath(filename).stem + SIDECAR_SUFFIX
