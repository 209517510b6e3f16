"""Exception hierarchy shared by the ingest, store and retrieval layers.

Skip-and-continue outcomes (unsupported resources, sanitizer rejections) are
not exceptions. Everything here is either recoverable by the caller
(EmbeddingError, StoreError) or fatal at startup (ConfigurationError).
"""

from __future__ import annotations


class CliniragError(Exception):
    """Base class for all clinirag errors."""


class ConfigurationError(CliniragError):
    """Invalid or incompatible configuration. Aborts startup."""


class EmbeddingDimensionError(ConfigurationError):
    """Embedding vector length does not match the store schema."""

    def __init__(self, expected: int, actual: int, model: str = "") -> None:
        self.expected = expected
        self.actual = actual
        self.model = model
        label = f" from '{model}'" if model else ""
        super().__init__(
            f"Embedding{label} has {actual} dimensions, store expects {expected}."
        )


class EmbeddingError(CliniragError):
    """The embedding provider failed for one text (or one batch)."""


class StoreError(CliniragError):
    """A vector store read or write failed."""


class SearchUnavailableError(StoreError):
    """Similarity search cannot run (index missing or query failed)."""


class BundleSourceError(CliniragError):
    """A bundle file is missing, unreadable, or not a JSON object."""
