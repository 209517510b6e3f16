"""Embedding gateways: LiteLLM-backed provider client and a deterministic mock.

Everything that turns text into vectors goes through an ``EmbeddingGateway``
so the ingest pipeline and the context assembler never call a provider
directly. Vector length is checked against ``dimensions`` on every call.
"""

from __future__ import annotations

import logging
import os
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import litellm

from clinirag.exceptions import ConfigurationError, EmbeddingDimensionError, EmbeddingError

litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)

TASK_DOCUMENT = "RETRIEVAL_DOCUMENT"
TASK_QUERY = "RETRIEVAL_QUERY"

# Providers whose embedding endpoint accepts a retrieval task hint.
_TASK_TYPE_PROVIDERS = frozenset(["gemini", "vertex_ai"])

PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "vertex_ai": None,  # application default credentials
    "ollama": None,  # local
    "huggingface": None,
}


class EmbeddingGateway(ABC):
    """Text → fixed-length vector."""

    dimensions: int

    @abstractmethod
    def embed(self, text: str, *, query: bool = False) -> list[float]:
        """Embed one text. ``query=True`` marks a retrieval query, not a document."""

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed documents; one vector per input, in input order."""

    def _check_dimensions(self, vector: list[float], model: str = "") -> list[float]:
        if len(vector) != self.dimensions:
            raise EmbeddingDimensionError(self.dimensions, len(vector), model)
        return vector


# ------------------------------------------------------------------
# LiteLLM
# ------------------------------------------------------------------


class LiteLLMEmbeddingGateway(EmbeddingGateway):
    """Embeddings via ``litellm.embedding()``.

    Rate-limit errors are retried after a fixed backoff, at most
    ``max_retries`` times. Any other provider failure is raised as
    EmbeddingError straight away.

    Args:
        model: LiteLLM model string (provider/model format).
        dimensions: Expected vector length.
        batch_size: Maximum inputs per provider request.
        max_retries: Retries allowed per request after a rate limit.
        retry_backoff: Seconds to wait before each retry.
        sleep: Sleep function (injectable for tests).

    Raises:
        ConfigurationError: If the provider's API key env var is not set.
    """

    def __init__(
        self,
        model: str = "gemini/text-embedding-004",
        dimensions: int = 768,
        batch_size: int = 100,
        max_retries: int = 3,
        retry_backoff: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._provider = model.split("/")[0].lower() if "/" in model else "openai"
        validate_api_key(model)

    def embed(self, text: str, *, query: bool = False) -> list[float]:
        vectors = self._request([text], TASK_QUERY if query else TASK_DOCUMENT)
        return vectors[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            vectors.extend(self._request(batch, TASK_DOCUMENT))
        return vectors

    def _request(self, texts: list[str], task_type: str) -> list[list[float]]:
        kwargs = {}
        if self._provider in _TASK_TYPE_PROVIDERS:
            kwargs["task_type"] = task_type

        attempt = 0
        while True:
            try:
                response = litellm.embedding(model=self.model, input=texts, **kwargs)
                break
            except litellm.RateLimitError as exc:
                if attempt >= self.max_retries:
                    raise EmbeddingError(
                        f"Rate limited by '{self.model}' after {attempt} retries"
                    ) from exc
                attempt += 1
                logger.warning(
                    "Rate limited by %s; retrying in %.1fs (%d/%d)",
                    self.model,
                    self.retry_backoff,
                    attempt,
                    self.max_retries,
                )
                self._sleep(self.retry_backoff)
            except Exception as exc:
                raise EmbeddingError(f"Embedding request to '{self.model}' failed: {exc}") from exc

        vectors = [item["embedding"] for item in response.data]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"'{self.model}' returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        return [self._check_dimensions(v, self.model) for v in vectors]


def validate_api_key(model: str) -> None:
    """Raise ConfigurationError if the API key env var for *model* is missing."""
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = PROVIDER_ENV.get(provider)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise ConfigurationError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Mock
# ------------------------------------------------------------------


class MockEmbeddingGateway(EmbeddingGateway):
    """Deterministic pseudo-random vectors seeded by ``seed`` and the text.

    For plumbing tests and offline runs only; the vectors carry no meaning.
    """

    def __init__(self, dimensions: int = 768, seed: int = 0) -> None:
        self.dimensions = dimensions
        self.seed = seed
        self.model = "mock"
        logger.warning(
            "Using MOCK embeddings (%d dimensions); similarity scores are meaningless",
            dimensions,
        )

    def embed(self, text: str, *, query: bool = False) -> list[float]:
        rng = random.Random(f"{self.seed}:{text}")
        return [rng.uniform(-1.0, 1.0) for _ in range(self.dimensions)]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]


def create_gateway(cfg) -> EmbeddingGateway:
    """Build the gateway described by an ``EmbeddingCfg``."""
    if cfg.mock:
        return MockEmbeddingGateway(dimensions=cfg.dimensions, seed=cfg.mock_seed)
    return LiteLLMEmbeddingGateway(
        model=cfg.model,
        dimensions=cfg.dimensions,
        batch_size=cfg.batch_size,
        max_retries=cfg.max_retries,
        retry_backoff=cfg.retry_backoff,
    )
