"""Retrieval + context assembly for the downstream prompt.

build_context() never raises for degraded conditions:
  - query embedding fails       -> "no context available" sentinel block
  - similarity search fails or
    finds nothing               -> most recent chunks instead
  - nothing stored at all       -> "no relevant notes" sentinel block
Configuration errors (e.g. a dimension mismatch) still propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from clinirag.config import RetrievalCfg
from clinirag.db.models import Chunk, RetrievalResult
from clinirag.db.repository import VectorStore
from clinirag.exceptions import EmbeddingError, StoreError
from clinirag.rag.embeddings import EmbeddingGateway

logger = logging.getLogger(__name__)

NO_CONTEXT_AVAILABLE = "No clinical context available."
NO_NOTES_FOUND = "No relevant clinical notes found in the database."

_HEADER = "RELEVANT CLINICAL NOTES FROM DATABASE:"
_FOOTER = "END OF CLINICAL NOTES"
_RULE = "=" * 40


@dataclass
class ContextBlock:
    """Formatted context text plus the records it was built from.

    ``results`` holds similarity hits only; it is empty when the block was
    built from the recent-chunks fallback.
    """

    text: str
    record_count: int = 0
    chunks: list[Chunk] = field(default_factory=list)
    results: list[RetrievalResult] = field(default_factory=list)
    used_fallback: bool = False

    @property
    def is_empty(self) -> bool:
        return self.record_count == 0


class ContextAssembler:
    """Embed a query, retrieve matching chunks, and format them as context."""

    def __init__(
        self,
        gateway: EmbeddingGateway,
        store: VectorStore,
        config: RetrievalCfg | None = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._config = config or RetrievalCfg()

    def build_context(
        self,
        query_text: str,
        subject_id: str | None = None,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> ContextBlock:
        limit = limit if limit is not None else self._config.limit
        if min_similarity is None:
            min_similarity = self._config.min_similarity

        try:
            query_vector = self._gateway.embed(query_text, query=True)
        except EmbeddingError as exc:
            logger.warning("Query embedding failed, no context assembled: %s", exc)
            return ContextBlock(text=NO_CONTEXT_AVAILABLE)

        results: list[RetrievalResult] = []
        try:
            results = self._store.search(
                query_vector,
                subject_id=subject_id,
                limit=limit,
                min_similarity=min_similarity,
            )
        except StoreError as exc:
            logger.warning("Similarity search unavailable, using recent notes: %s", exc)

        if results:
            chunks = [r.chunk for r in results]
            return ContextBlock(
                text=format_context(chunks),
                record_count=len(chunks),
                chunks=chunks,
                results=results,
            )

        try:
            chunks = self._store.list_recent(subject_id=subject_id, limit=limit)
        except StoreError as exc:
            logger.warning("Listing recent notes failed: %s", exc)
            chunks = []

        if not chunks:
            return ContextBlock(text=NO_NOTES_FOUND, used_fallback=True)

        logger.info("No similarity matches; using %d most recent chunks", len(chunks))
        return ContextBlock(
            text=format_context(chunks),
            record_count=len(chunks),
            chunks=chunks,
            used_fallback=True,
        )


# ------------------------------------------------------------------
# Formatting
# ------------------------------------------------------------------


def format_context(chunks: list[Chunk]) -> str:
    """Render *chunks* as numbered note records between header and footer banners."""
    if not chunks:
        return NO_NOTES_FOUND

    parts = [f"{_HEADER}\n{_RULE}\n"]
    for n, chunk in enumerate(chunks, start=1):
        parts.append(format_record(n, chunk))
    parts.append(f"{_RULE}\n{_FOOTER}")
    return "\n".join(parts)


def format_record(n: int, chunk: Chunk) -> str:
    meta = chunk.metadata
    lines = [
        f"NOTE {n} ({meta.get('note_type') or 'Unknown'}):",
        f"Date: {meta.get('timestamp') or chunk.created_at or 'Unknown Date'}",
        f"Provider: {_known(meta.get('authoring_party')) or 'Unknown Provider'}",
        f"Organization: {meta.get('organization') or 'Unknown Organization'}",
        f"Note ID: {chunk.note_id}",
        f"Chunk {chunk.chunk_index + 1} of {chunk.chunk_count}",
        f"Content: {chunk.content}",
    ]
    return "\n".join(lines) + "\n"


def _known(value: str | None) -> str | None:
    return None if value in (None, "", "Unknown") else value
