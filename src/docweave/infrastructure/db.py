"""SQLite persistence: connection management, schema, document repository."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from docweave.models import Document, DocumentChunk, PromotionLevel

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

# Bump on breaking schema changes.
SCHEMA_VERSION = "1"

_SCHEMA_SQL = """\
-- Documents: one row per (tenant, path)
CREATE TABLE IF NOT EXISTS docs (
    id              TEXT PRIMARY KEY,
    tenant_key      TEXT NOT NULL,
    path            TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    doc_type        TEXT NOT NULL DEFAULT '',
    promotion_level TEXT NOT NULL DEFAULT 'standard' CHECK(promotion_level IN (
        'standard','important','critical'
    )),
    content         TEXT NOT NULL DEFAULT '',
    vector          TEXT,
    last_modified   TEXT NOT NULL,
    UNIQUE (tenant_key, path)
);

-- Document chunks
CREATE TABLE IF NOT EXISTS chunks (
    id              TEXT PRIMARY KEY,
    doc_id          TEXT NOT NULL REFERENCES docs(id) ON DELETE CASCADE,
    tenant_key      TEXT NOT NULL,
    chunk_index     INTEGER NOT NULL,
    header_path     TEXT NOT NULL DEFAULT '',
    start_line      INTEGER NOT NULL,
    end_line        INTEGER NOT NULL,
    content         TEXT NOT NULL,
    promotion_level TEXT NOT NULL DEFAULT 'standard',
    vector          TEXT
);

-- Key/value metadata
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_docs_tenant ON docs(tenant_key);
CREATE INDEX IF NOT EXISTS idx_chunks_doc ON chunks(doc_id);
"""


def open_db(db_path: Path | str) -> sqlite3.Connection:
    """Open (or create) a SQLite database with proper PRAGMAs.

    Sets WAL journal mode (persistent per-file) and enables foreign keys
    (per-connection, required on every open). The connection may be shared
    across threads; callers serialize access.

    Returns a connection with ``sqlite3.Row`` row factory.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes if they don't exist.

    Safe to call multiple times (uses IF NOT EXISTS).
    """
    conn.executescript(_SCHEMA_SQL)
    set_meta(conn, "schema_version", SCHEMA_VERSION)


def get_meta(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    """Read a value from the ``meta`` table.

    Returns *default* (``None``) if the key doesn't exist.
    """
    row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    return str(row[0])


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Insert or update a key in the ``meta`` table."""
    conn.execute(
        "INSERT INTO meta (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value),
    )
    conn.commit()


def _dump_vector(vector: list[float] | None) -> str | None:
    return None if vector is None else json.dumps(vector)


def _load_vector(raw: str | None) -> list[float] | None:
    return None if raw is None else [float(v) for v in json.loads(raw)]


def _load_level(raw: str) -> PromotionLevel:
    return PromotionLevel.parse(raw) or PromotionLevel.STANDARD


def _load_timestamp(raw: str) -> datetime:
    ts = datetime.fromisoformat(raw)
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        tenant_key=row["tenant_key"],
        file_path=row["path"],
        title=row["title"],
        doc_type=row["doc_type"],
        promotion_level=_load_level(row["promotion_level"]),
        content=row["content"],
        vector=_load_vector(row["vector"]),
        last_modified=_load_timestamp(row["last_modified"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> DocumentChunk:
    return DocumentChunk(
        id=row["id"],
        document_id=row["doc_id"],
        tenant_key=row["tenant_key"],
        chunk_index=row["chunk_index"],
        header_path=row["header_path"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        content=row["content"],
        promotion_level=_load_level(row["promotion_level"]),
        vector=_load_vector(row["vector"]),
    )


class SQLiteDocumentRepository:
    """``DocumentRepository`` backed by SQLite. Vectors are stored as JSON."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        create_schema(conn)

    @classmethod
    def open(cls, db_path: Path | str) -> SQLiteDocumentRepository:
        return cls(open_db(db_path))

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def get_by_tenant_and_path(self, tenant_key: str, file_path: str) -> Document | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM docs WHERE tenant_key = ? AND path = ?",
                (tenant_key, file_path),
            ).fetchone()
        return None if row is None else _row_to_document(row)

    def get_by_id(self, document_id: str) -> Document | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM docs WHERE id = ?", (document_id,)).fetchone()
        return None if row is None else _row_to_document(row)

    def upsert(self, document: Document) -> Document:
        """Insert or update by (tenant, path); the stored id is kept on conflict."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO docs (id, tenant_key, path, title, doc_type, promotion_level, "
                "content, vector, last_modified) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(tenant_key, path) DO UPDATE SET "
                "title = excluded.title, doc_type = excluded.doc_type, "
                "promotion_level = excluded.promotion_level, content = excluded.content, "
                "vector = excluded.vector, last_modified = excluded.last_modified",
                (
                    document.id,
                    document.tenant_key,
                    document.file_path,
                    document.title,
                    document.doc_type,
                    document.promotion_level.value,
                    document.content,
                    _dump_vector(document.vector),
                    document.last_modified.isoformat(),
                ),
            )
            self._conn.commit()
        stored = self.get_by_tenant_and_path(document.tenant_key, document.file_path)
        return stored if stored is not None else document

    def delete(self, document_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM docs WHERE id = ?", (document_id,))
            self._conn.commit()
        return cur.rowcount > 0

    def delete_chunks(self, document_id: str) -> int:
        with self._lock:
            cur = self._conn.execute("DELETE FROM chunks WHERE doc_id = ?", (document_id,))
            self._conn.commit()
        return cur.rowcount

    def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return
        with self._lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO chunks (id, doc_id, tenant_key, chunk_index, header_path, "
                "start_line, end_line, content, promotion_level, vector) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        c.id,
                        c.document_id,
                        c.tenant_key,
                        c.chunk_index,
                        c.header_path,
                        c.start_line,
                        c.end_line,
                        c.content,
                        c.promotion_level.value,
                        _dump_vector(c.vector),
                    )
                    for c in chunks
                ],
            )
            self._conn.commit()

    def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM chunks WHERE doc_id = ? ORDER BY chunk_index",
                (document_id,),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_all_for_tenant(self, tenant_key: str) -> list[Document]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM docs WHERE tenant_key = ? ORDER BY path",
                (tenant_key,),
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def update_promotion_level(self, document_id: str, level: PromotionLevel) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE docs SET promotion_level = ? WHERE id = ?",
                (level.value, document_id),
            )
            self._conn.execute(
                "UPDATE chunks SET promotion_level = ? WHERE doc_id = ?",
                (level.value, document_id),
            )
            self._conn.commit()
        return cur.rowcount > 0
