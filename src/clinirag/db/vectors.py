"""Per-model sqlite-vec virtual table management."""

from __future__ import annotations

import re
import sqlite3

from clinirag.exceptions import ConfigurationError

_DIMENSIONS_RE = re.compile(r"float\[(\d+)\]")


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "gemini/text-embedding-004" -> "gemini_text_embedding_004"
        "huggingface/BAAI/bge-large-en-v1.5" -> "huggingface_baai_bge_large_en_v1_5"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_chunks_{model_slug}"


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def vec_table_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    """Return the declared vector width of *table*, or None if it does not exist."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    if row is None:
        return None
    match = _DIMENSIONS_RE.search(row[0] or "")
    return int(match.group(1)) if match else None


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} (cosine distance) if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 768 for text-embedding-004).

    Returns:
        The table name (vec_chunks_{model_slug}).

    Raises:
        ConfigurationError: If the table exists with a different dimensionality.
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = vec_table_dimensions(conn, table)

    if existing is None and not vec_table_exists(conn, table):
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
    elif existing is not None and existing != dimensions:
        raise ConfigurationError(
            f"Vector table '{table}' stores {existing}-dimensional embeddings, "
            f"but the embedding model is configured for {dimensions}."
        )

    return table
