"""clinirag ingest pipeline: bundle extraction, sanitizing and chunking."""

from clinirag.ingest.chunker import TextChunker, chunk_text
from clinirag.ingest.extractor import extract
from clinirag.ingest.pipeline import IngestPipeline, IngestSummary
from clinirag.ingest.resources import (
    CandidateNote,
    DocumentBundle,
    SanitizedNote,
    load_bundle,
)
from clinirag.ingest.sanitizer import CLEANING_RULES, TextSanitizer

__all__ = [
    "CLEANING_RULES",
    "CandidateNote",
    "DocumentBundle",
    "IngestPipeline",
    "IngestSummary",
    "SanitizedNote",
    "TextChunker",
    "TextSanitizer",
    "chunk_text",
    "extract",
    "load_bundle",
]
