"""Per-embedding-model sqlite-vec virtual table management.

Chunk embeddings live in one ``vec0`` table per embedding model so that a model
change never mixes vectors of different spaces (or lengths) in one index.
"""

from __future__ import annotations

import re
import sqlite3

_VEC_PREFIX = "vec_chunks_"


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"{_VEC_PREFIX}{model_slug}"


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector length (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name.
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    if not vec_table_exists(conn, table):
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])"
        )
        conn.commit()

    return table


def vec_table_for_model(conn: sqlite3.Connection, model: str, dimensions: int) -> str:
    """Shortcut: slug *model* and ensure its vec table exists."""
    return ensure_vec_table(conn, model_to_slug(model), dimensions)


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Return every vec0 table name (one per embedding model ever used)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE ? AND sql LIKE '%vec0%'",
        (f"{_VEC_PREFIX}%",),
    ).fetchall()
    return [r[0] for r in rows]
