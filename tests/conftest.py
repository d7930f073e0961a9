"""Shared pytest fixtures for calibre-sync tests.

Builds a miniature Calibre library on disk (a real SQLite ``metadata.db``
with the tables the catalog reader uses, plus book files), an empty target
folder and an empty KOReader docsettings tree.
"""

import sqlite3
from contextlib import closing
from pathlib import Path

import pytest

from calibre_sync.config import SyncSettings

CALIBRE_SCHEMA = """
CREATE TABLE books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL DEFAULT 'Unknown',
    sort TEXT,
    timestamp TIMESTAMP,
    series_index REAL NOT NULL DEFAULT 1.0,
    author_sort TEXT,
    path TEXT NOT NULL DEFAULT '',
    last_modified TIMESTAMP
);
CREATE TABLE authors (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    sort TEXT
);
CREATE TABLE books_authors_link (
    id INTEGER PRIMARY KEY,
    book INTEGER NOT NULL,
    author INTEGER NOT NULL
);
CREATE TABLE series (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    sort TEXT
);
CREATE TABLE books_series_link (
    id INTEGER PRIMARY KEY,
    book INTEGER NOT NULL,
    series INTEGER NOT NULL
);
CREATE TABLE data (
    id INTEGER PRIMARY KEY,
    book INTEGER NOT NULL,
    format TEXT NOT NULL,
    uncompressed_size INTEGER NOT NULL DEFAULT 0,
    name TEXT NOT NULL
);
CREATE TABLE custom_columns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    label TEXT NOT NULL,
    name TEXT NOT NULL,
    datatype TEXT NOT NULL,
    mark_for_delete BOOL DEFAULT 0 NOT NULL,
    is_multiple BOOL DEFAULT 0 NOT NULL,
    normalized BOOL NOT NULL
);
CREATE TABLE custom_column_1 (id INTEGER PRIMARY KEY, value TEXT NOT NULL);
CREATE TABLE books_custom_column_1_link (
    id INTEGER PRIMARY KEY,
    book INTEGER NOT NULL,
    value INTEGER NOT NULL
);
CREATE TABLE custom_column_2 (
    id INTEGER PRIMARY KEY,
    book INTEGER,
    value INTEGER NOT NULL
);
CREATE TABLE custom_column_3 (id INTEGER PRIMARY KEY, value TEXT NOT NULL);
CREATE TABLE books_custom_column_3_link (
    id INTEGER PRIMARY KEY,
    book INTEGER NOT NULL,
    value INTEGER NOT NULL
);
INSERT INTO custom_columns (id, label, name, datatype, is_multiple, normalized)
VALUES
    (1, 'genre', 'Genre', 'enumeration', 0, 1),
    (2, 'pages', 'Pages', 'int', 0, 0),
    (3, 'subjects', 'Subjects', 'text', 1, 1),
    (4, 'blurb', 'Blurb', 'composite', 0, 0);
"""

DEFAULT_MODIFIED = "2024-01-01 10:00:00+00:00"

LUA_TEMPLATE = """\
-- we can read Lua syntax here!
return {{
    ["bookmarks"] = {{}},
    ["doc_path"] = "{doc_path}",
    ["percent_finished"] = 0.42,
    ["summary"] = {{
        ["status"] = "reading",
    }},
}}
"""


class CalibreLibrary:
    """A miniature Calibre library rooted at *root*."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.db_path = root / "metadata.db"
        with closing(self._connect()) as conn, conn:
            conn.executescript(CALIBRE_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def add_book(
        self,
        title: str,
        author: str = "Asimov, Isaac",
        series: str | None = None,
        series_index: float = 1.0,
        formats: tuple[str, ...] = ("EPUB",),
        genre: str | None = None,
        pages: int | None = None,
        subjects: tuple[str, ...] = (),
        last_modified: str = DEFAULT_MODIFIED,
        write_files: bool = True,
    ) -> int:
        """Insert a book (and its files); returns the new book id."""
        conn = self._connect()
        try:
            cur = conn.execute(
                "INSERT INTO books (title, sort, timestamp, series_index, "
                "author_sort, path, last_modified) VALUES (?, ?, ?, ?, ?, '', ?)",
                (title, title, DEFAULT_MODIFIED, series_index, author, last_modified),
            )
            book_id = cur.lastrowid
            book_dir = f"{author}/{title} ({book_id})"
            conn.execute(
                "UPDATE books SET path = ? WHERE id = ?", (book_dir, book_id)
            )

            author_id = self._get_or_create(conn, "authors", author)
            conn.execute(
                "INSERT INTO books_authors_link (book, author) VALUES (?, ?)",
                (book_id, author_id),
            )
            if series:
                series_id = self._get_or_create(conn, "series", series)
                conn.execute(
                    "INSERT INTO books_series_link (book, series) VALUES (?, ?)",
                    (book_id, series_id),
                )
            stem = f"{title} - {author}"
            for fmt in formats:
                conn.execute(
                    "INSERT INTO data (book, format, name) VALUES (?, ?, ?)",
                    (book_id, fmt, stem),
                )
                if write_files:
                    path = self.root / book_dir / f"{stem}.{fmt.lower()}"
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_bytes(f"{fmt} bytes of {title}".encode())
            if genre:
                value_id = self._get_or_create(conn, "custom_column_1", genre, "value")
                conn.execute(
                    "INSERT INTO books_custom_column_1_link (book, value) VALUES (?, ?)",
                    (book_id, value_id),
                )
            if pages is not None:
                conn.execute(
                    "INSERT INTO custom_column_2 (book, value) VALUES (?, ?)",
                    (book_id, pages),
                )
            for subject in subjects:
                value_id = self._get_or_create(conn, "custom_column_3", subject, "value")
                conn.execute(
                    "INSERT INTO books_custom_column_3_link (book, value) VALUES (?, ?)",
                    (book_id, value_id),
                )
            conn.commit()
        finally:
            conn.close()
        return book_id

    def set_last_modified(self, book_id: int, value: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "UPDATE books SET last_modified = ? WHERE id = ?", (value, book_id)
            )

    def rename(self, book_id: int, title: str) -> None:
        """Change a title, as a metadata edit in Calibre would."""
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "UPDATE books SET title = ?, last_modified = ? WHERE id = ?",
                (title, "2024-06-01 12:00:00+00:00", book_id),
            )

    def execute(self, sql: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.executescript(sql)

    @staticmethod
    def _get_or_create(
        conn: sqlite3.Connection, table: str, value: str, column: str = "name"
    ) -> int:
        row = conn.execute(
            f"SELECT id FROM {table} WHERE {column} = ?", (value,)
        ).fetchone()
        if row:
            return row[0]
        return conn.execute(
            f"INSERT INTO {table} ({column}) VALUES (?)", (value,)
        ).lastrowid


@pytest.fixture
def library(tmp_path):
    """An empty Calibre library; add books with ``library.add_book()``."""
    return CalibreLibrary(tmp_path / "Calibre Library")


@pytest.fixture
def target_dir(tmp_path):
    path = tmp_path / "Books"
    path.mkdir()
    return path


@pytest.fixture
def sidecar_dir(tmp_path):
    path = tmp_path / "docsettings"
    path.mkdir()
    return path


@pytest.fixture
def settings(library, target_dir, sidecar_dir, tmp_path):
    """Settings for a copy-mode run with a ``{title}`` naming template."""
    return SyncSettings(
        library_path=library.root,
        target_path=target_dir,
        sidecar_path=sidecar_dir,
        template="{title}",
        export_mode="copy",
        backup_sidecars=False,
        backup_dir=tmp_path / "backups",
    )


@pytest.fixture
def make_sidecar(sidecar_dir):
    """Factory: create ``<sidecar_dir>/<subdir>/<name>`` with a location file."""

    def _make(
        name: str,
        doc_path: str = "/old/path.epub",
        subdir: str = "",
        metadata_name: str = "metadata.epub.lua",
        content: str | None = None,
    ) -> Path:
        sdr = sidecar_dir / subdir / name
        sdr.mkdir(parents=True)
        text = content if content is not None else LUA_TEMPLATE.format(doc_path=doc_path)
        (sdr / metadata_name).write_text(text, encoding="utf-8")
        return sdr

    return _make


def snapshot_tree(*roots: Path) -> dict[str, tuple[bytes, int]]:
    """Content and mtime of every file under *roots*, keyed by path."""
    state: dict[str, tuple[bytes, int]] = {}
    for root in roots:
        for path in sorted(root.rglob("*")):
            if path.is_file():
                state[str(path)] = (path.read_bytes(), path.stat().st_mtime_ns)
            else:
                state[str(path)] = (b"<dir>", 0)
    return state


@pytest.fixture
def tree_state():
    """Expose ``snapshot_tree`` to tests."""
    return snapshot_tree
