"""Tests for retrieval and context assembly."""

from __future__ import annotations

import pytest

from clinirag.config import RetrievalCfg
from clinirag.db.models import Chunk
from clinirag.db.repository import VectorStore
from clinirag.exceptions import EmbeddingError, SearchUnavailableError
from clinirag.rag.context import (
    NO_CONTEXT_AVAILABLE,
    NO_NOTES_FOUND,
    ContextAssembler,
    format_context,
    format_record,
)
from clinirag.rag.embeddings import EmbeddingGateway


class FixedGateway(EmbeddingGateway):
    """Returns a preset vector for every query."""

    model = "mock"
    dimensions = 3

    def __init__(self, vector=None, fail=False):
        self.vector = vector or [1.0, 0.0, 0.0]
        self.fail = fail
        self.queries = []

    def embed(self, text, *, query=False):
        self.queries.append((text, query))
        if self.fail:
            raise EmbeddingError("provider unavailable")
        return list(self.vector)

    def embed_batch(self, texts):
        return [self.embed(t) for t in texts]


def _chunk(note, embedding, subject="patient-1", index=0, **meta):
    metadata = {
        "note_type": "Progress note",
        "timestamp": "2024-03-01T10:00:00Z",
        "authoring_party": "Dr. Rivera",
        "organization": "Springfield Clinic",
        "chunk_count": 1,
    }
    metadata.update(meta)
    return Chunk(
        subject_id=subject,
        note_id=note,
        chunk_index=index,
        content=f"content of {note}",
        embedding=embedding,
        metadata=metadata,
    )


@pytest.fixture
def store(tmp_db):
    return VectorStore(tmp_db, "mock", 3)


@pytest.fixture
def populated(store):
    store.upsert(
        [
            _chunk("close", [0.9, 0.1, 0.0]),
            _chunk("exact", [1.0, 0.0, 0.0]),
            _chunk("orthogonal", [0.0, 1.0, 0.0]),
            _chunk("other-patient", [1.0, 0.0, 0.0], subject="patient-2"),
        ]
    )
    return store


# ------------------------------------------------------------------
# Formatting
# ------------------------------------------------------------------


def test_format_record():
    chunk = _chunk("doc-7", [], index=1, chunk_count=3)
    assert format_record(2, chunk) == (
        "NOTE 2 (Progress note):\n"
        "Date: 2024-03-01T10:00:00Z\n"
        "Provider: Dr. Rivera\n"
        "Organization: Springfield Clinic\n"
        "Note ID: doc-7\n"
        "Chunk 2 of 3\n"
        "Content: content of doc-7\n"
    )


def test_format_record_fallbacks():
    chunk = Chunk(subject_id="p", note_id="n", chunk_index=0, content="text",
                  metadata={"authoring_party": "Unknown"})
    text = format_record(1, chunk)
    assert "NOTE 1 (Unknown):" in text
    assert "Date: Unknown Date" in text
    assert "Provider: Unknown Provider" in text
    assert "Organization: Unknown Organization" in text
    assert "Chunk 1 of 1" in text


def test_format_record_date_falls_back_to_created_at():
    chunk = Chunk(subject_id="p", note_id="n", chunk_index=0, content="text",
                  created_at="2024-05-05 08:00:00.000")
    assert "Date: 2024-05-05 08:00:00.000" in format_record(1, chunk)


def test_format_context_banners_and_numbering():
    text = format_context([_chunk("a", []), _chunk("b", [])])
    lines = text.splitlines()
    assert lines[0] == "RELEVANT CLINICAL NOTES FROM DATABASE:"
    assert lines[1] == "=" * 40
    assert lines[-2] == "=" * 40
    assert lines[-1] == "END OF CLINICAL NOTES"
    assert "NOTE 1 (Progress note):" in text
    assert "NOTE 2 (Progress note):" in text
    assert text.index("Note ID: a") < text.index("Note ID: b")


def test_format_context_empty():
    assert format_context([]) == NO_NOTES_FOUND


# ------------------------------------------------------------------
# build_context
# ------------------------------------------------------------------


def test_similarity_hits_ranked(populated):
    gateway = FixedGateway()
    block = ContextAssembler(gateway, populated).build_context(
        "glucose control", subject_id="patient-1"
    )

    assert not block.used_fallback
    assert [c.note_id for c in block.chunks] == ["exact", "close"]
    assert block.record_count == 2
    assert block.results[0].similarity == pytest.approx(1.0)
    assert block.text.index("Note ID: exact") < block.text.index("Note ID: close")
    assert gateway.queries == [("glucose control", True)]


def test_subject_filter_and_limit(populated):
    block = ContextAssembler(FixedGateway(), populated).build_context(
        "q", subject_id="patient-1", limit=1
    )
    assert [c.note_id for c in block.chunks] == ["exact"]

    everyone = ContextAssembler(FixedGateway(), populated).build_context("q")
    assert {c.subject_id for c in everyone.chunks} == {"patient-1", "patient-2"}


def test_defaults_come_from_config(populated):
    cfg = RetrievalCfg(limit=1, min_similarity=0.0)
    block = ContextAssembler(FixedGateway(), populated, cfg).build_context("q")
    assert block.record_count == 1


def test_threshold_is_strict(populated):
    # Orthogonal vector has similarity 0.0 against the query.
    block = ContextAssembler(FixedGateway([0.0, 1.0, 0.0]), populated).build_context(
        "q", subject_id="patient-1", min_similarity=0.0
    )
    assert [c.note_id for c in block.chunks] == ["orthogonal", "close"]


def test_no_matches_falls_back_to_recent(populated):
    # Opposite direction: every stored chunk is below the threshold.
    block = ContextAssembler(FixedGateway([0.0, 0.0, 1.0]), populated).build_context(
        "q", subject_id="patient-1"
    )
    assert block.used_fallback
    assert block.results == []
    assert block.record_count == 3
    assert block.text.startswith("RELEVANT CLINICAL NOTES FROM DATABASE:")


def test_search_unavailable_falls_back_to_recent(store):
    # Rows present, vector index never created for this store.
    store._conn.execute(
        "INSERT INTO chunks (subject_id, note_id, chunk_index, content, metadata) "
        "VALUES ('patient-1', 'legacy', 0, 'legacy text', '{}')"
    )
    store._conn.commit()

    block = ContextAssembler(FixedGateway(), store).build_context("q")
    assert block.used_fallback
    assert [c.note_id for c in block.chunks] == ["legacy"]


def test_search_error_logged(populated, monkeypatch, caplog):
    def broken_search(*args, **kwargs):
        raise SearchUnavailableError("index corrupt")

    monkeypatch.setattr(populated, "search", broken_search)
    with caplog.at_level("WARNING", logger="clinirag.rag.context"):
        block = ContextAssembler(FixedGateway(), populated).build_context("q", limit=2)

    assert block.used_fallback
    assert block.record_count == 2
    assert "index corrupt" in caplog.text


def test_empty_store_returns_no_notes_sentinel(store):
    block = ContextAssembler(FixedGateway(), store).build_context("q")
    assert block.text == NO_NOTES_FOUND
    assert block.is_empty
    assert block.used_fallback


def test_unknown_subject_returns_no_notes_sentinel(populated):
    block = ContextAssembler(FixedGateway(), populated).build_context("q", subject_id="nobody")
    assert block.text == NO_NOTES_FOUND


def test_embedding_failure_returns_no_context_sentinel(populated):
    block = ContextAssembler(FixedGateway(fail=True), populated).build_context("q")
    assert block.text == NO_CONTEXT_AVAILABLE
    assert block.is_empty
    assert not block.used_fallback
