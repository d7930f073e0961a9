"""Pydantic models for records read from a Calibre library.

- ``Record``: one book, read fresh each run and never mutated.
- ``CustomField``: one user-defined Calibre column, with its storage layout
  resolved once when the catalog is opened.
- ``ExtraValue``: the closed set of value types a custom field can carry on
  a record.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

ExtraValue = str | int | None


class FieldStorage(str, Enum):
    """How a custom column's values are stored in ``metadata.db``.

    ``COLUMN`` fields keep one row per book in ``custom_column_N``
    (``book``, ``value``).  ``LINKED`` fields keep distinct values in
    ``custom_column_N`` and attach them to books through
    ``books_custom_column_N_link``.
    """

    COLUMN = "column"
    LINKED = "linked"


class CustomField(BaseModel):
    """A custom column definition.

    Attributes:
        id: Numeric column id (the ``N`` in ``custom_column_N``).
        label: Lookup key without the ``#`` prefix (e.g. ``genre``).
        name: Display name.
        datatype: Calibre datatype (``text``, ``enumeration``, ``int`` ...).
        is_multiple: True for tag-like fields holding several values.
        storage: Resolved table layout.
    """

    id: int
    label: str
    name: str
    datatype: str
    is_multiple: bool = False
    storage: FieldStorage

    model_config = {"frozen": True}

    @property
    def value_table(self) -> str:
        return f"custom_column_{self.id}"

    @property
    def link_table(self) -> str:
        return f"books_custom_column_{self.id}_link"


class Record(BaseModel):
    """One catalog entry.

    Attributes:
        id: Calibre book id (positive, stable, never reused).
        title: Book title.
        author_sort: Author sort key (e.g. ``Tolkien, J.R.R.``).
        authors: Display authors joined with `` & ``.
        series: Series name, if any.
        series_index: Position within the series.
        timestamp: Date the book was added.
        last_modified: Last metadata/file change recorded by Calibre.
        path: Book directory relative to the library root.
        formats: Available format tags, upper-case (``EPUB``, ``PDF`` ...).
        format_files: Format tag -> file stem inside ``path``.
        extras: Custom field values keyed by label.
    """

    id: int = Field(gt=0)
    title: str
    author_sort: str = ""
    authors: str = ""
    series: str | None = None
    series_index: float | None = None
    timestamp: datetime | None = None
    last_modified: datetime
    path: str = ""
    formats: tuple[str, ...] = ()
    format_files: dict[str, str] = {}
    extras: dict[str, ExtraValue] = {}

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        """``Title (id)`` -- how a record is identified in reports."""
        return f"{self.title} ({self.id})"
