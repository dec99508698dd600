"""Repository pattern for all knowledge-store database operations.

Single interface for: knowledge sources, chunks, FTS5 search, vec embeddings and
visitor messages. Vec tables are model-managed (ensure_vec_table); the
repository handles read + write.

Multi-statement changes that readers must never observe half-done (chunk
replacement, status transitions) run inside :meth:`Repository.transaction`.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from ragline.db.models import (
    KnowledgeSource,
    Message,
    SourceOrigin,
    SourceStatus,
    StoredChunk,
    dump_source_meta,
    load_source_meta,
)
from ragline.db.vectors import list_vec_tables

_SOURCE_COLUMNS = (
    "id, project_id, name, origin, content, file_path, metadata, status, "
    "chunk_count, error, error_kind, created_at, updated_at"
)
_CHUNK_COLUMNS = (
    "c.rowid AS rowid, c.source_id, c.chunk_index, c.content, c.context, "
    "c.token_estimate, c.metadata, c.created_at"
)

# FTS terms shorter than this are dropped (stop-word-ish noise).
_MIN_FTS_TERM = 3


class Repository:
    """Data access layer for all knowledge-store entities.

    Wraps an open sqlite3.Connection and provides typed methods for sources,
    chunks, FTS5 search, vec embeddings and messages. The connection is owned
    by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see ragline.db.schema.initialize).
        """
        self._conn = conn
        self._in_tx = False

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one atomic commit; roll back on any exception.

        Nested use joins the outer transaction.
        """
        if self._in_tx:
            yield
            return
        self._in_tx = True
        try:
            yield
            self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise
        finally:
            self._in_tx = False

    def _commit(self) -> None:
        if not self._in_tx:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Knowledge sources
    # ------------------------------------------------------------------

    def add_source(self, source: KnowledgeSource) -> None:
        """Insert a new knowledge source record."""
        self._conn.execute(
            """
            INSERT INTO knowledge_sources
                (id, project_id, name, origin, content, file_path, metadata, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.project_id,
                source.name,
                source.origin.value,
                source.content,
                source.file_path,
                dump_source_meta(source.metadata),
                source.status.value,
            ),
        )
        self._commit()

    def get_source(self, source_id: str) -> KnowledgeSource | None:
        """Return a source by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM knowledge_sources WHERE id = ?",
            (source_id,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, project_id: str | None = None) -> list[KnowledgeSource]:
        """Return sources, newest first, optionally scoped to one project."""
        if project_id is None:
            rows = self._conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM knowledge_sources "
                "ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM knowledge_sources WHERE project_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (project_id,),
            ).fetchall()
        return [_row_to_source(r) for r in rows]

    def update_status(
        self,
        source_id: str,
        status: SourceStatus,
        *,
        chunk_count: int | None = None,
        error: str | None = None,
        error_kind: str | None = None,
    ) -> None:
        """Overwrite the lifecycle columns of a source in one statement.

        Columns not passed are reset to NULL, which keeps the CHECK
        constraints (``chunk_count`` only when ready, ``error`` only when
        failed) satisfied on every transition.
        """
        self._conn.execute(
            """
            UPDATE knowledge_sources
            SET status = ?, chunk_count = ?, error = ?, error_kind = ?,
                updated_at = datetime('now')
            WHERE id = ?
            """,
            (status.value, chunk_count, error, error_kind, source_id),
        )
        self._commit()

    def delete_source(self, source_id: str) -> int:
        """Delete a source together with its chunks, FTS rows and embeddings.

        Returns the number of chunks removed.
        """
        with self.transaction():
            removed = self.delete_chunks_by_source(source_id)
            self._conn.execute("DELETE FROM knowledge_sources WHERE id = ?", (source_id,))
        return removed

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: StoredChunk) -> int:
        """Insert chunk + sync FTS5 index. Returns the new rowid."""
        cur = self._conn.execute(
            """
            INSERT INTO chunks (source_id, chunk_index, content, context, token_estimate, metadata)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.source_id,
                chunk.chunk_index,
                chunk.content,
                chunk.context,
                chunk.token_estimate,
                chunk.metadata,
            ),
        )
        rowid = cur.lastrowid
        # Keep FTS5 in sync with explicit rowid mapping
        self._conn.execute(
            "INSERT INTO chunks_fts(rowid, content, context) VALUES (?, ?, ?)",
            (rowid, chunk.content, chunk.context),
        )
        self._commit()
        return rowid

    def get_chunk_by_rowid(self, rowid: int) -> StoredChunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.rowid = ?",
            (rowid,),
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def list_chunks_by_source(self, source_id: str) -> list[StoredChunk]:
        """Return a source's chunks in ordinal order."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.source_id = ? ORDER BY c.chunk_index",
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_source(self, source_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def delete_chunks_by_source(self, source_id: str) -> int:
        """Delete chunks, FTS entries and embeddings (every vec table) for a source.

        Returns the number of chunk rows deleted.
        """
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM chunks WHERE source_id = ?", (source_id,)
            ).fetchall()
        ]
        if not rowids:
            return 0

        placeholders = ",".join("?" * len(rowids))
        with self.transaction():
            self._conn.execute(
                f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", rowids
            )
            for table in list_vec_tables(self._conn):
                self._conn.execute(
                    f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                    rowids,
                )
            self._conn.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
        return len(rowids)

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(self, table: str, rowid: int, embedding: list[float]) -> None:
        """Insert an embedding into a vec table with explicit rowid = chunk rowid."""
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (rowid, json.dumps(embedding)),
        )
        self._commit()

    def search_vec(
        self,
        table: str,
        embedding: list[float],
        project_id: str,
        limit: int = 10,
    ) -> list[tuple[StoredChunk, float]]:
        """Exact cosine nearest-neighbour search within one project.

        Returns (chunk, cosine_distance) pairs, closest first. Only chunks of
        ``ready`` sources are considered.
        """
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS},
                   vec_distance_cosine(v.embedding, ?) AS distance
            FROM chunks c
            JOIN {table} v ON v.rowid = c.rowid
            JOIN knowledge_sources s ON s.id = c.source_id
            WHERE s.project_id = ? AND s.status = 'ready'
            ORDER BY distance, c.chunk_index
            LIMIT ?
            """,
            (json.dumps(embedding), project_id, limit),
        ).fetchall()
        return [(_row_to_chunk(r), r["distance"]) for r in rows]

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_fts(
        self, query: str, project_id: str, limit: int = 10
    ) -> list[tuple[StoredChunk, float]]:
        """BM25 full-text search over chunk content + context in one project.

        bm25() returns negative values; lower (more negative) = better match.
        """
        fts_query = build_fts_query(query)
        if not fts_query:
            return []
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, bm25(chunks_fts) AS score
            FROM chunks_fts
            JOIN chunks c ON c.rowid = chunks_fts.rowid
            JOIN knowledge_sources s ON s.id = c.source_id
            WHERE chunks_fts MATCH ? AND s.project_id = ? AND s.status = 'ready'
            ORDER BY score
            LIMIT ?
            """,
            (fts_query, project_id, limit),
        ).fetchall()
        return [(_row_to_chunk(r), r["score"]) for r in rows]

    # ------------------------------------------------------------------
    # Visitor messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> None:
        if message.created_at is None:
            self._conn.execute(
                "INSERT INTO messages (project_id, conversation_id, sender_type, content) "
                "VALUES (?, ?, ?, ?)",
                (message.project_id, message.conversation_id, message.sender_type, message.content),
            )
        else:
            self._conn.execute(
                "INSERT INTO messages (project_id, conversation_id, sender_type, content, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    message.project_id,
                    message.conversation_id,
                    message.sender_type,
                    message.content,
                    message.created_at,
                ),
            )
        self._commit()

    def list_message_contents(
        self, project_id: str, days: int, sender_type: str = "customer"
    ) -> list[str]:
        """Return message texts from the last *days* days, oldest first."""
        rows = self._conn.execute(
            """
            SELECT content FROM messages
            WHERE project_id = ? AND sender_type = ?
              AND created_at >= datetime('now', ?)
            ORDER BY created_at, id
            """,
            (project_id, sender_type, f"-{int(days)} days"),
        ).fetchall()
        return [r["content"] for r in rows]


# ------------------------------------------------------------------
# Query helpers
# ------------------------------------------------------------------


def build_fts_query(query: str) -> str:
    """Turn free text into an FTS5 OR-query of quoted terms.

    FTS5 MATCH rejects bare punctuation, so non-word characters are dropped;
    terms shorter than three characters are skipped.
    """
    words = re.sub(r"[^\w\s]", " ", query.lower()).split()
    terms = [w for w in words if len(w) >= _MIN_FTS_TERM]
    return " OR ".join(f'"{t}"' for t in dict.fromkeys(terms))


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_source(row: sqlite3.Row) -> KnowledgeSource:
    return KnowledgeSource(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        origin=SourceOrigin(row["origin"]),
        status=SourceStatus(row["status"]),
        content=row["content"],
        file_path=row["file_path"],
        metadata=load_source_meta(row["metadata"]),
        chunk_count=row["chunk_count"],
        error=row["error"],
        error_kind=row["error_kind"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> StoredChunk:
    return StoredChunk(
        rowid=row["rowid"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        context=row["context"],
        token_estimate=row["token_estimate"],
        metadata=row["metadata"],
        created_at=row["created_at"],
    )
