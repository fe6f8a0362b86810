"""Per-model sqlite-vec virtual table management.

Each embedding model gets its own ``vec_chunks_<slug>`` table so vectors
from different models can never be compared. Rowids equal ``embeddings.id``.
"""

from __future__ import annotations

import re
import sqlite3

_TABLE_PREFIX = "vec_chunks_"


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "ollama/nomic-embed-text" -> "ollama_nomic_embed_text"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"{_TABLE_PREFIX}{model_slug}"


def _check_slug(model_slug: str) -> None:
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize."
        )


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    """Return True if *table* exists in the database."""
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_chunks_{model_slug}).
    """
    _check_slug(model_slug)
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    conn.execute(
        f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} USING vec0(embedding float[{dimensions}])"
    )
    return table


def drop_vec_table(conn: sqlite3.Connection, model_slug: str) -> None:
    """Drop the vec table for *model_slug* if present."""
    _check_slug(model_slug)
    conn.execute(f"DROP TABLE IF EXISTS {vec_table_name(model_slug)}")


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the names of all vec_chunks_* tables, sorted."""
    rows = conn.execute(
        "SELECT name, sql FROM sqlite_master WHERE type='table' AND name LIKE ? ORDER BY name",
        (f"{_TABLE_PREFIX}%",),
    ).fetchall()
    # vec0 creates shadow tables (vec_chunks_x_chunks, ..._rowids); keep the virtual ones.
    return [
        r["name"]
        for r in rows
        if (r["sql"] or "").upper().startswith("CREATE VIRTUAL TABLE")
    ]
