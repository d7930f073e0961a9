"""Read-only access to a Calibre library's ``metadata.db``.

``CalibreCatalog`` opens the SQLite database in read-only mode, enumerates
every book with its authors, series and available formats, and enriches each
record with custom-column values.  Custom columns are resolved once per run
into ``CustomField`` definitions; their values are then fetched with one query
per field for all books at once.

The catalog is a context manager so the connection is released on every exit
path::

    with CalibreCatalog(library_path, exporter) as catalog:
        records = catalog.enumerate_records()
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from ..errors import CatalogError
from .models import CustomField, ExtraValue, FieldStorage, Record

if TYPE_CHECKING:
    from .exporter import Exporter, ExportResult

logger = logging.getLogger(__name__)

METADATA_DB = "metadata.db"

_BOOKS_QUERY = """
    SELECT
        b.id,
        b.title,
        b.author_sort,
        b.timestamp,
        b.last_modified,
        b.path,
        b.series_index,
        s.name AS series_name
    FROM books b
    LEFT JOIN books_series_link bsl ON bsl.book = b.id
    LEFT JOIN series s ON s.id = bsl.series
    ORDER BY b.id
"""

_AUTHORS_QUERY = """
    SELECT bal.book, a.name
    FROM books_authors_link bal
    JOIN authors a ON a.id = bal.author
    ORDER BY bal.book, bal.id
"""

_FORMATS_QUERY = """
    SELECT book, format, name
    FROM data
    ORDER BY book, id
"""

_CUSTOM_FIELDS_QUERY = """
    SELECT id, label, name, datatype, is_multiple, normalized
    FROM custom_columns
    WHERE mark_for_delete = 0
    ORDER BY id
"""

# Computed columns have no backing table.
_VIRTUAL_DATATYPES = frozenset({"composite"})


class CalibreCatalog:
    """Enumerate records from a Calibre library.

    Args:
        library_path: Calibre library root (the directory holding
            ``metadata.db``).
        exporter: Backend used by ``export_record()``.  Optional for
            read-only use.
    """

    def __init__(
        self, library_path: Path, exporter: Exporter | None = None
    ) -> None:
        self.library_path = library_path
        self.exporter = exporter
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open ``metadata.db`` read-only.

        Raises:
            CatalogError: If the database is missing or cannot be opened.
        """
        db_path = self.library_path / METADATA_DB
        if not db_path.is_file():
            raise CatalogError(f"Calibre database not found at {db_path}")
        uri = f"{db_path.resolve().as_uri()}?mode=ro"
        try:
            self._conn = sqlite3.connect(uri, uri=True)
        except sqlite3.Error as exc:
            raise CatalogError(
                f"Failed to open Calibre database at {db_path}: {exc}"
            ) from exc
        self._conn.row_factory = sqlite3.Row
        logger.debug("Opened Calibre database %s", db_path)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> CalibreCatalog:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def enumerate_records(self) -> list[Record]:
        """Return every book in the library, ordered by id.

        Raises:
            CatalogError: If the core tables cannot be read.
        """
        conn = self._require_connection()
        try:
            book_rows = conn.execute(_BOOKS_QUERY).fetchall()
            authors = self._group_authors(conn)
            formats = self._group_formats(conn)
        except sqlite3.Error as exc:
            raise CatalogError(f"Failed to read books: {exc}") from exc

        fields = self.list_custom_fields()
        extras: dict[int, dict[str, ExtraValue]] = defaultdict(dict)
        for field in fields:
            for book_id, value in self.custom_field_values(field).items():
                extras[book_id][field.label] = value

        records: list[Record] = []
        for row in book_rows:
            book_id = row["id"]
            book_formats = formats.get(book_id, {})
            records.append(
                Record(
                    id=book_id,
                    title=row["title"] or "",
                    author_sort=row["author_sort"] or "",
                    authors=" & ".join(authors.get(book_id, [])),
                    series=row["series_name"],
                    series_index=row["series_index"],
                    timestamp=_parse_timestamp(row["timestamp"]),
                    last_modified=_parse_timestamp(row["last_modified"])
                    or datetime.fromtimestamp(0, timezone.utc),
                    path=row["path"] or "",
                    formats=tuple(book_formats),
                    format_files=book_formats,
                    extras=extras.get(book_id, {}),
                )
            )

        logger.debug(
            "Enumerated %d records with %d custom fields",
            len(records),
            len(fields),
        )
        return records

    def list_custom_fields(self) -> list[CustomField]:
        """Resolve custom column definitions into ``CustomField`` values.

        Returns an empty list for libraries without custom columns.
        """
        conn = self._require_connection()
        try:
            rows = conn.execute(_CUSTOM_FIELDS_QUERY).fetchall()
        except sqlite3.Error as exc:
            logger.warning("Could not read custom column definitions: %s", exc)
            return []

        fields: list[CustomField] = []
        for row in rows:
            if row["datatype"] in _VIRTUAL_DATATYPES:
                logger.debug("Skipping computed custom field #%s", row["label"])
                continue
            fields.append(
                CustomField(
                    id=row["id"],
                    label=row["label"],
                    name=row["name"],
                    datatype=row["datatype"],
                    is_multiple=bool(row["is_multiple"]),
                    storage=FieldStorage.LINKED
                    if row["normalized"]
                    else FieldStorage.COLUMN,
                )
            )
        return fields

    def custom_field_values(self, field: CustomField) -> dict[int, ExtraValue]:
        """Fetch one custom field's values for all books.

        A missing or unreadable backing table is logged and yields no values.
        """
        conn = self._require_connection()
        if field.storage is FieldStorage.LINKED:
            query = (
                f"SELECT l.book, v.value FROM {field.link_table} l "
                f"JOIN {field.value_table} v ON v.id = l.value "
                "ORDER BY l.book, l.id"
            )
        else:
            query = f"SELECT book, value FROM {field.value_table}"

        try:
            rows = conn.execute(query).fetchall()
        except sqlite3.Error as exc:
            logger.warning(
                "Could not read custom field #%s: %s", field.label, exc
            )
            return {}

        if field.is_multiple:
            grouped: dict[int, list[str]] = defaultdict(list)
            for book_id, value in rows:
                coerced = _coerce_value(value)
                if coerced is not None:
                    grouped[book_id].append(str(coerced))
            return {
                book_id: ", ".join(sorted(values))
                for book_id, values in grouped.items()
            }

        values: dict[int, ExtraValue] = {}
        for book_id, value in rows:
            coerced = _coerce_value(value)
            if coerced is not None:
                values.setdefault(book_id, coerced)
        return values

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def book_file(self, record: Record, fmt: str) -> Path | None:
        """Path of *record*'s stored file in format *fmt*, if Calibre has one."""
        stem = record.format_files.get(fmt.upper())
        if stem is None:
            return None
        return self.library_path / record.path / f"{stem}.{fmt.lower()}"

    def export_record(
        self, record: Record, target_path: Path, fmt: str
    ) -> ExportResult:
        """Materialise *record* in format *fmt* at *target_path*.

        Delegates to the configured exporter backend.
        """
        if self.exporter is None:
            raise CatalogError("No exporter configured for this catalog")
        return self.exporter.export(self, record, target_path, fmt)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise CatalogError("Database not connected")
        return self._conn

    @staticmethod
    def _group_authors(conn: sqlite3.Connection) -> dict[int, list[str]]:
        grouped: dict[int, list[str]] = defaultdict(list)
        for book_id, name in conn.execute(_AUTHORS_QUERY):
            grouped[book_id].append(name)
        return grouped

    @staticmethod
    def _group_formats(
        conn: sqlite3.Connection,
    ) -> dict[int, dict[str, str]]:
        grouped: dict[int, dict[str, str]] = defaultdict(dict)
        for book_id, fmt, name in conn.execute(_FORMATS_QUERY):
            grouped[book_id].setdefault(fmt.upper(), name)
        return grouped


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse a Calibre timestamp (``2024-01-31 10:00:00.123456+00:00``).

    Naive values are taken as UTC.  Unparseable values yield ``None``.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Unrecognised Calibre timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_value(value: object) -> ExtraValue:
    """Narrow a raw SQLite value to ``str | int | None``."""
    match value:
        case None:
            return None
        case bool() as flag:
            return int(flag)
        case int() as number:
            return number
        case float() as number:
            return int(number) if number.is_integer() else f"{number:g}"
        case bytes() as blob:
            return blob.decode("utf-8", errors="replace")
        case _:
            text = str(value)
            return text if text else None
