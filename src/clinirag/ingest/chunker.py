"""Fixed character-window chunker with overlap."""

from __future__ import annotations

from clinirag.db.models import Chunk
from clinirag.ingest.resources import SanitizedNote


def chunk_text(text: str, size: int = 1000, overlap: int = 200) -> list[str]:
    """Split *text* into windows of *size* characters sharing *overlap* characters.

    The window advances by ``size - overlap``. Emission stops once the window
    reaches the end of the text, or when the remaining tail is no longer than
    *overlap* (it is already covered by the previous window). Non-empty text
    always yields at least one chunk; empty text yields none.

    Raises:
        ValueError: Unless ``size > overlap >= 0``.
    """
    if overlap < 0 or size <= overlap:
        raise ValueError(
            f"size must be greater than overlap and overlap >= 0 (size={size}, overlap={overlap})"
        )

    segments: list[str] = []
    pos = 0
    length = len(text)
    step = size - overlap

    while pos < length:
        segments.append(text[pos:pos + size])
        pos += step
        if length - pos <= overlap:
            break

    return segments


class TextChunker:
    """Turn accepted SanitizedNotes into Chunk records (embeddings unset).

    Default: 1000 characters / 200 overlap.
    """

    def __init__(self, size: int = 1000, overlap: int = 200) -> None:
        if overlap < 0 or size <= overlap:
            raise ValueError(f"size ({size}) must be greater than overlap ({overlap}) >= 0")
        self.size = size
        self.overlap = overlap

    @classmethod
    def from_config(cls, cfg) -> TextChunker:
        """Build from a ``ChunkingCfg``."""
        return cls(size=cfg.size, overlap=cfg.overlap)

    def chunk(self, note: SanitizedNote) -> list[Chunk]:
        """Chunk the note's clean text; chunk_index follows emission order."""
        segments = chunk_text(note.clean_text, self.size, self.overlap)
        metadata = {
            "note_type": note.note_type,
            "timestamp": note.timestamp,
            "authoring_party": note.authoring_party,
            "organization": note.organization,
            "source_bundle_id": note.source_bundle_id,
            "chunk_count": len(segments),
        }
        return [
            Chunk(
                subject_id=note.subject_id,
                note_id=note.note_id,
                chunk_index=i,
                content=segment,
                metadata=dict(metadata),
            )
            for i, segment in enumerate(segments)
        ]
