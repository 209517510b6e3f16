"""Vector store adapter over SQLite + sqlite-vec.

One logical table of chunks keyed by (subject_id, note_id, chunk_index) plus a
per-model vec0 table whose rowid mirrors chunks.rowid. Writes are upserts, so
re-ingesting a note overwrites its chunks instead of duplicating them.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from clinirag.db.connection import Database
from clinirag.db.models import Chunk, RetrievalResult, StoreStats
from clinirag.db.schema import initialize
from clinirag.db.vectors import (
    ensure_vec_table,
    model_to_slug,
    vec_table_dimensions,
    vec_table_exists,
    vec_table_name,
)
from clinirag.exceptions import (
    ConfigurationError,
    EmbeddingDimensionError,
    SearchUnavailableError,
    StoreError,
)

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = "rowid, subject_id, note_id, chunk_index, content, metadata, created_at"
_STATS_SAMPLE = 10


class VectorStore:
    """Similarity-searchable chunk table.

    Wraps an open sqlite3.Connection with the schema initialised (see
    clinirag.db.schema.initialize). The vec table for *model* is created on
    the first upsert; until then ``search()`` reports the index as
    unavailable and callers fall back to ``list_recent()``.

    Args:
        conn: Open connection with sqlite-vec loaded.
        model: Embedding model string; selects the vec table.
        dimensions: Vector width every stored embedding must have.
        batch_size: Maximum chunks written per transaction.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        model: str,
        dimensions: int,
        batch_size: int = 100,
    ) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._conn = conn
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._slug = model_to_slug(model)
        self.vec_table = vec_table_name(self._slug)

        existing = vec_table_dimensions(conn, self.vec_table)
        if existing is not None and existing != dimensions:
            raise ConfigurationError(
                f"Vector table '{self.vec_table}' stores {existing}-dimensional "
                f"embeddings, but '{model}' is configured for {dimensions}."
            )

    @classmethod
    def open(
        cls,
        db_path: Path | str,
        model: str,
        dimensions: int,
        batch_size: int = 100,
    ) -> VectorStore:
        """Open (or create) the database file, run migrations, and wrap it."""
        conn = Database(db_path).connect()
        initialize(conn)
        return cls(conn, model, dimensions, batch_size=batch_size)

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, chunks: list[Chunk]) -> int:
        """Insert or overwrite *chunks* by identity key. Returns the count written.

        Batches larger than ``batch_size`` are written as sequential
        sub-batches inside one transaction, so a failure in any sub-batch
        rolls back the whole call and nothing of it is persisted.

        A note re-chunked into fewer pieces loses its old higher-index rows:
        rows at or above the note's ``chunk_count`` (and above every index
        written here) are deleted in the same transaction.

        Raises:
            EmbeddingDimensionError: If any chunk's embedding has the wrong width.
            StoreError: On any database error.
        """
        if not chunks:
            return 0
        for chunk in chunks:
            if len(chunk.embedding) != self.dimensions:
                raise EmbeddingDimensionError(
                    self.dimensions, len(chunk.embedding), self.model
                )

        try:
            ensure_vec_table(self._conn, self._slug, self.dimensions)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not create vector table: {exc}") from exc

        start = 0
        try:
            with self._conn:
                for start in range(0, len(chunks), self.batch_size):
                    for chunk in chunks[start:start + self.batch_size]:
                        self._write_chunk(chunk)
                for (subject_id, note_id), keep in _note_extents(chunks).items():
                    self._trim_note(subject_id, note_id, keep)
        except sqlite3.Error as exc:
            for chunk in chunks:
                chunk.rowid = None
            raise StoreError(
                f"Upsert failed for batch starting at chunk {start}: {exc}"
            ) from exc
        return len(chunks)

    def _write_chunk(self, chunk: Chunk) -> None:
        rows = self._conn.execute(
            """
            INSERT INTO chunks (subject_id, note_id, chunk_index, content, metadata)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(subject_id, note_id, chunk_index) DO UPDATE SET
                content = excluded.content,
                metadata = excluded.metadata,
                created_at = strftime('%Y-%m-%d %H:%M:%f', 'now')
            RETURNING rowid
            """,
            (
                chunk.subject_id,
                chunk.note_id,
                chunk.chunk_index,
                chunk.content,
                json.dumps(chunk.metadata),
            ),
        ).fetchall()
        rowid = rows[0][0]
        # vec0 has no upsert; replace the vector under the same rowid.
        self._conn.execute(f"DELETE FROM {self.vec_table} WHERE rowid = ?", (rowid,))
        self._conn.execute(
            f"INSERT INTO {self.vec_table}(rowid, embedding) VALUES (?, ?)",
            (rowid, json.dumps(chunk.embedding)),
        )
        chunk.rowid = rowid

    def _trim_note(self, subject_id: str, note_id: str, keep: int) -> None:
        """Delete rows of one note with ``chunk_index >= keep``."""
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM chunks "
                "WHERE subject_id = ? AND note_id = ? AND chunk_index >= ?",
                (subject_id, note_id, keep),
            ).fetchall()
        ]
        if not rowids:
            return
        placeholders = ",".join("?" * len(rowids))
        for table in self._vec_tables():
            self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
        self._conn.execute(
            f"DELETE FROM chunks WHERE rowid IN ({placeholders})",  # noqa: S608
            rowids,
        )
        logger.debug("Trimmed %d stale chunks of note %s", len(rowids), note_id)

    def delete_by_note(self, note_id: str) -> int:
        """Delete every chunk (and vector) of *note_id*. Returns chunks deleted."""
        try:
            with self._conn:
                rowids = [
                    r[0]
                    for r in self._conn.execute(
                        "SELECT rowid FROM chunks WHERE note_id = ?", (note_id,)
                    ).fetchall()
                ]
                if not rowids:
                    return 0
                placeholders = ",".join("?" * len(rowids))
                for table in self._vec_tables():
                    self._conn.execute(
                        f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                        rowids,
                    )
                self._conn.execute("DELETE FROM chunks WHERE note_id = ?", (note_id,))
        except sqlite3.Error as exc:
            raise StoreError(f"Delete failed for note '{note_id}': {exc}") from exc
        logger.info("Deleted %d chunks for note %s", len(rowids), note_id)
        return len(rowids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(
        self,
        query_vector: list[float],
        subject_id: str | None = None,
        limit: int = 5,
        min_similarity: float = 0.5,
    ) -> list[RetrievalResult]:
        """Cosine similarity search, best first, ``similarity > min_similarity``.

        Raises:
            EmbeddingDimensionError: If *query_vector* has the wrong width.
            SearchUnavailableError: If no vector index exists yet or the
                query fails.
        """
        if len(query_vector) != self.dimensions:
            raise EmbeddingDimensionError(self.dimensions, len(query_vector), self.model)
        if not vec_table_exists(self._conn, self.vec_table):
            raise SearchUnavailableError(
                f"No embeddings found for model '{self.model}'. "
                "Run 'clinirag ingest' first to populate the vector index."
            )

        sql = f"""
            SELECT * FROM (
                SELECT c.rowid AS rowid, c.subject_id, c.note_id, c.chunk_index,
                       c.content, c.metadata, c.created_at,
                       vec_to_json(v.embedding) AS embedding,
                       1.0 - vec_distance_cosine(v.embedding, ?) AS similarity
                FROM chunks c
                JOIN {self.vec_table} v ON v.rowid = c.rowid
                WHERE (? IS NULL OR c.subject_id = ?)
            )
            WHERE similarity > ?
            ORDER BY similarity DESC, rowid ASC
            LIMIT ?
        """
        try:
            rows = self._conn.execute(
                sql,
                (json.dumps(query_vector), subject_id, subject_id, min_similarity, limit),
            ).fetchall()
        except sqlite3.Error as exc:
            raise SearchUnavailableError(f"Similarity search failed: {exc}") from exc

        return [
            RetrievalResult(chunk=_row_to_chunk(r), similarity=float(r["similarity"]))
            for r in rows
        ]

    def list_recent(self, subject_id: str | None = None, limit: int = 5) -> list[Chunk]:
        """Most recently written chunks first, optionally for one subject.

        Embeddings are not loaded. This is the fallback path when
        ``search()`` is unavailable or returns nothing.
        """
        try:
            rows = self._conn.execute(
                f"""
                SELECT {_CHUNK_COLUMNS} FROM chunks
                WHERE (? IS NULL OR subject_id = ?)
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (subject_id, subject_id, limit),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Listing recent chunks failed: {exc}") from exc
        return [_row_to_chunk(r) for r in rows]

    def get_chunk(self, subject_id: str, note_id: str, chunk_index: int) -> Chunk | None:
        """Return one chunk with its embedding, or None if the key is not stored."""
        row = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks
            WHERE subject_id = ? AND note_id = ? AND chunk_index = ?
            """,
            (subject_id, note_id, chunk_index),
        ).fetchone()
        if row is None:
            return None
        chunk = _row_to_chunk(row)
        if vec_table_exists(self._conn, self.vec_table):
            vec_row = self._conn.execute(
                f"SELECT vec_to_json(embedding) FROM {self.vec_table} WHERE rowid = ?",
                (chunk.rowid,),
            ).fetchone()
            if vec_row is not None:
                chunk.embedding = json.loads(vec_row[0])
        return chunk

    def count_chunks(self, note_id: str | None = None) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE (? IS NULL OR note_id = ?)",
            (note_id, note_id),
        ).fetchone()[0]

    def stats(self) -> StoreStats:
        """Totals for operational visibility plus a sample of recent chunks."""
        try:
            row = self._conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COUNT(DISTINCT subject_id) AS subjects,
                       COUNT(DISTINCT note_id) AS notes
                FROM chunks
                """
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Reading store stats failed: {exc}") from exc
        return StoreStats(
            total_chunks=row["total"],
            unique_subjects=row["subjects"],
            unique_notes=row["notes"],
            sample_recent=self.list_recent(limit=_STATS_SAMPLE),
        )

    def _vec_tables(self) -> list[str]:
        return [
            r[0]
            for r in self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' "
                "AND name LIKE 'vec_chunks_%' AND sql LIKE 'CREATE VIRTUAL TABLE%'"
            ).fetchall()
        ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _note_extents(chunks: list[Chunk]) -> dict[tuple[str, str], int]:
    """First stale chunk_index per (subject, note) that declares a chunk_count."""
    extents: dict[tuple[str, str], int] = {}
    for chunk in chunks:
        if "chunk_count" not in chunk.metadata:
            continue
        key = (chunk.subject_id, chunk.note_id)
        keep = max(chunk.chunk_count, chunk.chunk_index + 1)
        extents[key] = max(extents.get(key, 0), keep)
    return extents


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    keys = row.keys()
    embedding = json.loads(row["embedding"]) if "embedding" in keys and row["embedding"] else []
    return Chunk(
        rowid=row["rowid"],
        subject_id=row["subject_id"],
        note_id=row["note_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
        embedding=embedding,
    )
