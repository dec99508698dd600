"""Forward-only migration runner for the knowledge store schema.

Vec tables (vec_chunks_*) are NOT migration-managed — use ensure_vec_table().
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

# status / chunk_count / error invariants are enforced by CHECK constraints.
_V1_SQL = """
CREATE TABLE IF NOT EXISTS knowledge_sources (
    id              TEXT PRIMARY KEY,
    project_id      TEXT NOT NULL,
    name            TEXT NOT NULL,
    origin          TEXT NOT NULL CHECK (origin IN ('text', 'file', 'pdf')),
    content         TEXT,
    file_path       TEXT,
    metadata        TEXT NOT NULL DEFAULT '{}',
    status          TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'processing', 'ready', 'failed')),
    chunk_count     INTEGER CHECK (chunk_count IS NULL OR status = 'ready'),
    error           TEXT CHECK (error IS NULL OR status = 'failed'),
    error_kind      TEXT CHECK (error_kind IS NULL OR status = 'failed'),
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_sources_project ON knowledge_sources(project_id);

CREATE TABLE IF NOT EXISTS chunks (
    source_id       TEXT NOT NULL REFERENCES knowledge_sources(id) ON DELETE CASCADE,
    chunk_index     INTEGER NOT NULL,
    content         TEXT NOT NULL,
    context         TEXT NOT NULL DEFAULT '',
    token_estimate  INTEGER NOT NULL DEFAULT 0,
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (source_id, chunk_index)
);

CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    content, context, tokenize='porter ascii'
);
"""

_V2_SQL = """
CREATE TABLE IF NOT EXISTS messages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT NOT NULL,
    conversation_id TEXT NOT NULL DEFAULT '',
    sender_type     TEXT NOT NULL DEFAULT 'customer',
    content         TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_project_created
    ON messages(project_id, created_at);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here — use ensure_vec_table() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            logger.debug("Applying schema migration v%d", version)
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
