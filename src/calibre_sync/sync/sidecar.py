"""KOReader sidecar discovery and reconciliation.

KOReader keeps per-book reader state (position, bookmarks, highlights) in a
``<book name>.sdr`` directory whose ``metadata.<ext>.lua`` file is a Lua
table literal::

    -- we can read Lua syntax here!
    return {
        ["doc_path"] = "/mnt/onboard/Books/Foundation (42).epub",
        ["percent_finished"] = 0.42,
        ...
    }

Two signals tie a sidecar to its book: the directory name (KOReader's own
lookup) and the embedded ``doc_path``.  When a book's canonical filename
changes, ``SidecarReconciler`` renames the directory first and then patches
``doc_path``, touching nothing else in the file.

- ``build_sidecar_index()`` -- one walk of the tree, id -> entries.
- ``patch_doc_path()`` -- pure text patch of the location field.
- ``SidecarReconciler`` -- rename + patch for one record's entries.
"""

from __future__ import annotations

import logging
import os
import re
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

from ..errors import PatchAmbiguityWarning
from ..file_handler import read_file_with_encoding, write_file
from .identity import SIDECAR_SUFFIX, extract_id, sidecar_dirname
from .models import (
    MUTATING_SIDECAR_ACTIONS,
    SidecarAction,
    SidecarChange,
    SidecarEntry,
)

logger = logging.getLogger(__name__)

DOC_PATH_KEY = "doc_path"

_DOC_PATH_ASSIGNMENT = re.compile(
    r'(\["' + DOC_PATH_KEY + r'"\]\s*=\s*")((?:[^"\\\n]|\\.)*)(")'
)
_DOC_PATH_KEY = re.compile(r'\["' + DOC_PATH_KEY + r'"\]')
_TABLE_OPEN = re.compile(r"return\s*\{")


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


def build_sidecar_index(
    root: Path, metadata_files: Sequence[str]
) -> dict[int, list[SidecarEntry]]:
    """Walk *root* once and index every ``.sdr`` directory by id.

    ``.sdr`` directories are never descended into.  Directories without an
    id are ignored.  Unreadable directories are skipped with a warning.

    Args:
        root: Sidecar tree root (KOReader ``docsettings``).
        metadata_files: Location-file names to look for, first match wins.

    Returns:
        Mapping of id -> entries carrying that id, in walk order.
    """
    index: dict[int, list[SidecarEntry]] = defaultdict(list)
    stack = [root]

    while stack:
        directory = stack.pop()
        try:
            with os.scandir(directory) as it:
                children = sorted(
                    (e for e in it if e.is_dir(follow_symlinks=False)),
                    key=lambda e: e.name,
                )
        except OSError as exc:
            logger.warning("Could not scan directory %s: %s", directory, exc)
            continue

        subdirs: list[Path] = []
        for child in children:
            if not child.name.endswith(SIDECAR_SUFFIX):
                subdirs.append(Path(child.path))
                continue

            entry_id = extract_id(child.name, (SIDECAR_SUFFIX,))
            if entry_id is None:
                continue
            location = _find_location_file(Path(child.path), metadata_files)
            index[entry_id].append(
                SidecarEntry(
                    directory_name=child.name,
                    full_path=child.path,
                    id=entry_id,
                    location_file=str(location) if location else None,
                )
            )
            logger.debug("Found sidecar %s (id %d)", child.name, entry_id)

        # Reverse so the stack pops subdirectories in name order.
        stack.extend(reversed(subdirs))

    return dict(index)


def _find_location_file(
    sdr_dir: Path, metadata_files: Sequence[str]
) -> Path | None:
    for name in metadata_files:
        candidate = sdr_dir / name
        if candidate.is_file():
            return candidate
    return None


# ---------------------------------------------------------------------------
# Location-field patch
# ---------------------------------------------------------------------------


def lua_escape(value: str) -> str:
    """Escape *value* for use inside a double-quoted Lua string."""
    return (
        value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    )


class DocPathPatch(NamedTuple):
    """Result of ``patch_doc_path()``.

    ``action`` is ``PATCH``, ``INSERT`` or ``None`` (already correct, and
    ``content`` is the input unchanged).  ``assignments`` counts the string
    ``doc_path`` assignments found; only the first is ever patched.
    """

    content: str
    action: SidecarAction | None
    old_value: str | None
    assignments: int


def patch_doc_path(content: str, new_path: str) -> DocPathPatch:
    """Point the ``doc_path`` assignment in *content* at *new_path*.

    Only the quoted value is replaced; every other byte is preserved.  When
    the key is missing entirely, a new assignment is inserted right after the
    opening ``return {``.

    Args:
        content: Full text of a sidecar location file.
        new_path: Absolute path of the book file.

    Raises:
        PatchAmbiguityWarning: If ``doc_path`` is present but not a string,
            or the file has no recognisable table.
    """
    escaped = lua_escape(new_path)
    matches = list(_DOC_PATH_ASSIGNMENT.finditer(content))
    if matches:
        match = matches[0]
        old_value = match.group(2)
        if old_value == escaped:
            return DocPathPatch(content, None, old_value, len(matches))
        patched = content[: match.start(2)] + escaped + content[match.end(2) :]
        return DocPathPatch(patched, SidecarAction.PATCH, old_value, len(matches))

    if _DOC_PATH_KEY.search(content):
        raise PatchAmbiguityWarning(
            "doc_path is present but not assigned a string literal"
        )

    opener = _TABLE_OPEN.search(content)
    if opener is None:
        raise PatchAmbiguityWarning("no 'return {' table found")

    at = opener.end()
    inserted = f'\n    ["{DOC_PATH_KEY}"] = "{escaped}",'
    return DocPathPatch(
        content[:at] + inserted + content[at:], SidecarAction.INSERT, None, 0
    )


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


@dataclass
class ReconcileOutcome:
    """What reconciling one record's sidecar entries did.

    ``entries`` reflects renames that were applied, so callers can replace
    their index entries with it.
    """

    entries: list[SidecarEntry]
    changes: list[SidecarChange] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(c.action in MUTATING_SIDECAR_ACTIONS for c in self.changes)


class SidecarReconciler:
    """Rename sidecar directories and patch their ``doc_path``.

    Args:
        dry_run: If ``True``, log and report planned actions only.
    """

    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def reconcile(
        self, entries: Sequence[SidecarEntry], target_path: Path
    ) -> ReconcileOutcome:
        """Align every entry in *entries* with the book at *target_path*.

        Each entry is handled independently; a failure on one does not stop
        the others.
        """
        outcome = ReconcileOutcome(entries=[])
        expected = sidecar_dirname(target_path.name)
        # Destinations claimed by earlier entries, applied or planned.
        taken: set[Path] = set()

        for entry in entries:
            current = self._rename(entry, expected, taken, outcome)
            self._patch(current, str(target_path), outcome)
            outcome.entries.append(current)

        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _rename(
        self,
        entry: SidecarEntry,
        expected: str,
        taken: set[Path],
        outcome: ReconcileOutcome,
    ) -> SidecarEntry:
        source = Path(entry.full_path)
        if entry.directory_name == expected:
            taken.add(source)
            return entry

        destination = source.parent / expected
        detail = f"{entry.directory_name} -> {expected}"

        occupied = destination.exists() and not _same_directory(source, destination)
        if occupied or destination in taken:
            logger.warning(
                "Cannot rename sidecar %s: %s already exists",
                source,
                expected,
            )
            outcome.changes.append(
                SidecarChange(
                    record_id=entry.id,
                    action=SidecarAction.CONFLICT,
                    path=str(source),
                    detail=f"{expected} already exists",
                )
            )
            return entry

        if self.dry_run:
            logger.info("[DRY RUN] Would rename sidecar: %s", detail)
            taken.add(destination)
            outcome.changes.append(
                SidecarChange(
                    record_id=entry.id,
                    action=SidecarAction.RENAME,
                    path=str(source),
                    detail=detail,
                )
            )
            return entry

        try:
            os.rename(source, destination)
        except OSError as exc:
            logger.error("Failed to rename sidecar %s: %s", source, exc)
            outcome.errors.append(f"Failed to rename sidecar {source}: {exc}")
            return entry

        logger.info("Renamed sidecar: %s", detail)
        taken.add(destination)
        outcome.changes.append(
            SidecarChange(
                record_id=entry.id,
                action=SidecarAction.RENAME,
                path=str(destination),
                detail=detail,
                applied=True,
            )
        )
        location = (
            str(destination / Path(entry.location_file).name)
            if entry.location_file
            else None
        )
        return entry.model_copy(
            update={
                "directory_name": expected,
                "full_path": str(destination),
                "location_file": location,
            }
        )

    def _patch(
        self,
        entry: SidecarEntry,
        new_doc_path: str,
        outcome: ReconcileOutcome,
    ) -> None:
        if entry.location_file is None:
            logger.debug("No location file in %s; nothing to patch", entry.full_path)
            return

        location = Path(entry.location_file)
        try:
            content, encoding = read_file_with_encoding(location)
        except OSError as exc:
            logger.error("Could not read %s: %s", location, exc)
            outcome.errors.append(f"Could not read {location}: {exc}")
            return

        try:
            patched, action, old_value, assignments = patch_doc_path(
                content, new_doc_path
            )
        except PatchAmbiguityWarning as warning:
            logger.warning("Leaving %s untouched: %s", location, warning)
            outcome.changes.append(
                SidecarChange(
                    record_id=entry.id,
                    action=SidecarAction.AMBIGUOUS,
                    path=entry.full_path,
                    detail=str(warning),
                )
            )
            return

        if assignments > 1:
            logger.warning(
                "Found %d doc_path assignments in %s; patching the first",
                assignments,
                location,
            )
            outcome.changes.append(
                SidecarChange(
                    record_id=entry.id,
                    action=SidecarAction.MULTIPLE,
                    path=entry.full_path,
                    detail=f"{assignments} doc_path assignments; first patched",
                )
            )

        if action is None:
            logger.debug("doc_path already correct in %s", location)
            return

        detail = f"{old_value or '(missing)'} -> {new_doc_path}"
        if self.dry_run:
            logger.info("[DRY RUN] Would update doc_path in %s: %s", location, detail)
            outcome.changes.append(
                SidecarChange(
                    record_id=entry.id,
                    action=action,
                    path=entry.full_path,
                    detail=detail,
                )
            )
            return

        try:
            write_file(location, patched, encoding)
        except OSError as exc:
            logger.error("Could not write %s: %s", location, exc)
            outcome.errors.append(f"Could not write {location}: {exc}")
            return

        logger.info("Updated doc_path in %s: %s", location, detail)
        outcome.changes.append(
            SidecarChange(
                record_id=entry.id,
                action=action,
                path=entry.full_path,
                detail=detail,
                applied=True,
            )
        )


def _same_directory(a: Path, b: Path) -> bool:
    # Case-only renames on case-insensitive filesystems.
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False
