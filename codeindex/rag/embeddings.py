from __future__ import annotations

"""Embedding providers for code chunks and search queries."""

import hashlib
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_]+")
_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

OPENAI_EMBEDDING_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class EmbeddingError(RuntimeError):
    """Raised when embeddings fail or are invalid."""
    pass


class EmbeddingConfigError(RuntimeError):
    """Raised when embedding configuration is invalid."""
    pass


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    dimension: int
    model: str

    def embed(self, text: str) -> list[float]:
        """Return an embedding vector for the provided text."""
        raise NotImplementedError

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Return one embedding vector per text, in order."""
        raise NotImplementedError


def validate_vector(vector: list[float], dimension: int) -> list[float]:
    """Check length and finiteness, returning the vector as floats."""
    if len(vector) != dimension:
        raise EmbeddingError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


def identifier_terms(text: str) -> list[str]:
    """Split identifiers into lowercase parts, keeping compound names too.

    ``parseConfig`` and ``parse_config`` both yield ``parse``, ``config``
    and ``parse_config``.
    """
    terms: list[str] = []
    for identifier in _IDENTIFIER_RE.findall(text):
        parts = [part.lower() for part in _CAMEL_BOUNDARY_RE.sub("_", identifier).split("_") if part]
        terms.extend(parts)
        if len(parts) > 1:
            terms.append("_".join(parts))
    return terms


@dataclass
class HashEmbedder:
    """Deterministic feature-hashing embedder for tests and offline indexing.

    Each term lands in one bucket with a hash-derived sign, which keeps
    unrelated terms from piling up in the same direction.
    """
    dimension: int = 256
    model: str = "hash"

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for term in identifier_terms(text):
            digest = hashlib.sha256(term.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimension
            vector[bucket] += 1.0 if digest[4] & 1 else -1.0
        norm = math.sqrt(sum(value * value for value in vector))
        if norm > 0.0:
            vector = [value / norm for value in vector]
        return validate_vector(vector, self.dimension)

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]


def resolve_openai_dimension(model: str) -> int | None:
    """Return the native dimension of a known OpenAI embedding model."""
    return OPENAI_EMBEDDING_DIMENSIONS.get(model)


def _checked_openai_dimension(model: str, configured: int) -> int:
    expected = resolve_openai_dimension(model)
    if configured <= 0:
        if expected is None:
            raise EmbeddingConfigError(
                "EMBEDDING_DIMENSION must be set for OpenAI embeddings when model is unknown"
            )
        return expected
    if expected is not None and configured != expected:
        raise EmbeddingConfigError(
            f"EMBEDDING_DIMENSION should be {expected} for model {model}"
        )
    return configured


@dataclass
class OpenAIEmbedder:
    """Embeddings from the OpenAI API, requested in batches."""
    api_key: str
    model: str
    dimension: int
    batch_size: int = 256
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise EmbeddingConfigError("OPENAI_API_KEY is required for OpenAIEmbedder")
        if not self.model:
            raise EmbeddingConfigError("OPENAI_EMBEDDING_MODEL is required for OpenAIEmbedder")
        self.dimension = _checked_openai_dimension(self.model, self.dimension)
        try:
            from openai import OpenAI
        except ImportError as exc:
            raise EmbeddingError("openai package is required for OpenAIEmbedder") from exc
        self.client = OpenAI(api_key=self.api_key)

    def embed(self, text: str) -> list[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        step = max(self.batch_size, 1)
        for start in range(0, len(texts), step):
            vectors.extend(self._embed_batch(texts[start : start + step]))
        return vectors

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        response = self.client.embeddings.create(model=self.model, input=batch)
        ordered = sorted(response.data, key=lambda item: item.index)
        if len(ordered) != len(batch):
            raise EmbeddingError(
                f"OpenAI returned {len(ordered)} embeddings for {len(batch)} inputs"
            )
        return [validate_vector(list(item.embedding), self.dimension) for item in ordered]


def build_embedder(
    provider: str,
    *,
    dimension: int,
    openai_api_key: str | None = None,
    openai_model: str | None = None,
) -> EmbeddingProvider:
    """Factory for embedding providers based on provider name."""
    normalized = provider.strip().lower()
    if normalized in {"", "hash"}:
        if dimension <= 0:
            raise EmbeddingConfigError("EMBEDDING_DIMENSION must be greater than zero for hash embeddings")
        return HashEmbedder(dimension=dimension)
    if normalized == "openai":
        return OpenAIEmbedder(
            api_key=openai_api_key or "",
            model=openai_model or "",
            dimension=dimension,
        )
    raise EmbeddingConfigError(
        f"Unsupported embedding provider: {provider}. Set EMBEDDING_PROVIDER to hash or openai."
    )
