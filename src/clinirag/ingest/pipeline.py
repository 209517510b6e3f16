"""Write path: bundle -> notes -> sanitized text -> chunks -> embeddings -> store.

Failures are contained at the smallest unit that can fail: a bad bundle file
skips that file, a rejected or unparseable note skips that note, a chunk that
cannot be embedded is dropped alone, and a failed upsert is recorded against
its note. Configuration errors abort the run.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from clinirag.db.models import Chunk
from clinirag.db.repository import VectorStore
from clinirag.exceptions import (
    BundleSourceError,
    EmbeddingDimensionError,
    EmbeddingError,
    StoreError,
)
from clinirag.ingest.chunker import TextChunker
from clinirag.ingest.extractor import extract
from clinirag.ingest.resources import CandidateNote, DocumentBundle, load_bundle
from clinirag.ingest.sanitizer import TextSanitizer
from clinirag.rag.embeddings import EmbeddingGateway

logger = logging.getLogger(__name__)


@dataclass
class IngestSummary:
    """Counters for one ingest run."""

    files_processed: int = 0
    notes_extracted: int = 0
    notes_accepted: int = 0
    notes_rejected: int = 0
    rejection_reasons: Counter[str] = field(default_factory=Counter)
    chunks_inserted: int = 0
    chunks_dropped: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False


class IngestPipeline:
    """Drive bundles through extraction, sanitizing, chunking, embedding and storage.

    Args:
        gateway: Embedding gateway; its dimensions must match the store's.
        store: Target vector store.
        sanitizer: Defaults to a permissive TextSanitizer.
        chunker: Defaults to 1000/200 character windows.

    Raises:
        EmbeddingDimensionError: If gateway and store dimensions differ.
    """

    def __init__(
        self,
        gateway: EmbeddingGateway,
        store: VectorStore,
        sanitizer: TextSanitizer | None = None,
        chunker: TextChunker | None = None,
    ) -> None:
        if gateway.dimensions != store.dimensions:
            raise EmbeddingDimensionError(
                store.dimensions, gateway.dimensions, getattr(gateway, "model", "")
            )
        self._gateway = gateway
        self._store = store
        self._sanitizer = sanitizer or TextSanitizer()
        self._chunker = chunker or TextChunker()

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def ingest_paths(
        self,
        paths: Iterable[Path | str],
        cancel_event: threading.Event | None = None,
    ) -> IngestSummary:
        """Ingest every bundle file under *paths* (directories expand to ``*.json``)."""
        summary = IngestSummary()
        for path in expand_paths(paths):
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.info("Ingest cancelled before %s", path)
                break
            try:
                bundle = load_bundle(path)
            except BundleSourceError as exc:
                logger.error("%s", exc)
                summary.errors.append(str(exc))
                continue
            logger.info("Processing %s", path.name)
            self.ingest_bundle(bundle, summary, cancel_event=cancel_event)
            summary.files_processed += 1
            if summary.cancelled:
                break
        return summary

    # ------------------------------------------------------------------
    # Bundles and notes
    # ------------------------------------------------------------------

    def ingest_bundle(
        self,
        bundle: DocumentBundle,
        summary: IngestSummary | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IngestSummary:
        summary = summary if summary is not None else IngestSummary()
        notes = extract(bundle)
        summary.notes_extracted += len(notes)

        for note in notes:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.info("Ingest cancelled in bundle %s", bundle.bundle_id)
                break
            self.ingest_note(note, summary)
        return summary

    def ingest_note(self, note: CandidateNote, summary: IngestSummary) -> int:
        """Sanitize, chunk, embed and store one note. Returns chunks stored."""
        sanitized = self._sanitizer.sanitize(note)
        if not sanitized.accepted:
            summary.notes_rejected += 1
            summary.rejection_reasons[sanitized.rejection_reason or "unknown"] += 1
            return 0
        summary.notes_accepted += 1

        chunks = self._chunker.chunk(sanitized)
        embedded = self._embed(chunks, summary)
        if not embedded:
            return 0

        try:
            written = self._store.upsert(embedded)
        except StoreError as exc:
            logger.error("Storing note %s failed: %s", note.note_id, exc)
            summary.errors.append(f"note {note.note_id}: {exc}")
            return 0

        summary.chunks_inserted += written
        logger.info(
            "Stored %d chunks for note %s (%s, subject %s)",
            written,
            note.note_id,
            note.note_type,
            note.subject_id,
        )
        return written

    def _embed(self, chunks: list[Chunk], summary: IngestSummary) -> list[Chunk]:
        """Attach embeddings; chunks that cannot be embedded are dropped."""
        if not chunks:
            return []
        try:
            vectors = self._gateway.embed_batch([c.content for c in chunks])
        except EmbeddingError as exc:
            logger.warning("Batch embedding failed, retrying chunk by chunk: %s", exc)
        else:
            for chunk, vector in zip(chunks, vectors):
                chunk.embedding = vector
            return chunks

        embedded: list[Chunk] = []
        for chunk in chunks:
            try:
                chunk.embedding = self._gateway.embed(chunk.content)
            except EmbeddingError as exc:
                logger.warning(
                    "Dropping chunk %d of note %s: %s", chunk.chunk_index, chunk.note_id, exc
                )
                summary.chunks_dropped += 1
                continue
            embedded.append(chunk)
        return embedded


def expand_paths(paths: Iterable[Path | str]) -> list[Path]:
    """Files pass through; directories expand to their ``*.json`` files, sorted."""
    result: list[Path] = []
    for p in paths:
        path = Path(p)
        if path.is_dir():
            result.extend(sorted(f for f in path.glob("*.json") if f.is_file()))
        else:
            result.append(path)
    return result
