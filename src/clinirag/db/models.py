"""Stored record types for the chunk store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Chunk:
    """One embedded slice of a sanitized note.

    Identity key is (subject_id, note_id, chunk_index).
    """

    subject_id: str
    note_id: str
    chunk_index: int
    content: str
    embedding: list[float] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    rowid: int | None = None  # set by the store; None for unsaved chunks

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.subject_id, self.note_id, self.chunk_index)

    @property
    def chunk_count(self) -> int:
        return int(self.metadata.get("chunk_count") or 1)


@dataclass
class RetrievalResult:
    """A chunk ranked by cosine similarity (1 - cosine distance)."""

    chunk: Chunk
    similarity: float


@dataclass
class StoreStats:
    total_chunks: int = 0
    unique_subjects: int = 0
    unique_notes: int = 0
    sample_recent: list[Chunk] = field(default_factory=list)
