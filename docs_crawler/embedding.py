"""Embedding adapter wrapping an external embedding backend.

The adapter batches requests, bounds concurrent calls and degrades to zero
vectors when the backend fails so that one outage never aborts indexing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from openai import AsyncOpenAI

LOGGER = logging.getLogger(__name__)

MAX_INPUT_CHARS = 8000

Vector = List[float]


class EmbeddingBackend(Protocol):
    """External embedding function; one vector per input text, in order."""

    async def embed_many(self, texts: Sequence[str]) -> List[Vector]: ...


@dataclass(slots=True)
class EmbeddingBatch:
    """Vectors for a batch of texts plus how many were placeholders."""

    vectors: List[Vector] = field(default_factory=list)
    failed: int = 0

    @property
    def degraded(self) -> bool:
        return self.failed > 0


class OpenAIEmbeddingBackend:
    """Embedding backend using the OpenAI embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        dimensions: Optional[int] = 1536,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.dimensions = dimensions
        if client is None and api_key:
            client = AsyncOpenAI(api_key=api_key)
        self.client = client
        if client is None:
            LOGGER.warning("No API key configured; embedding requests are disabled")
        else:
            LOGGER.info("Embedding backend initialized with model %s", model)

    @property
    def available(self) -> bool:
        return self.client is not None

    async def embed_many(self, texts: Sequence[str]) -> List[Vector]:
        if self.client is None:
            raise RuntimeError("OPENAI_API_KEY is not set")
        kwargs = {"model": self.model, "input": list(texts)}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = await self.client.embeddings.create(**kwargs)
        return [list(item.embedding) for item in response.data]

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()


class Embedder:
    """Adapter exposing ``embed`` and ``embed_batch`` over a backend."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        *,
        dimensions: int = 1536,
        batch_size: int = 64,
        max_concurrency: int = 4,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.backend = backend
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self.failures = 0

    def placeholder(self) -> Vector:
        return [0.0] * self.dimensions

    async def embed(self, text: str) -> Vector:
        """Embed a single text, falling back to a zero vector on failure."""
        batch = await self.embed_batch([text])
        return batch.vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> EmbeddingBatch:
        """Embed many texts in fixed-size batches with bounded parallelism."""
        if not texts:
            return EmbeddingBatch()
        prepared = [_truncate(text) for text in texts]
        batches = [
            prepared[start:start + self.batch_size]
            for start in range(0, len(prepared), self.batch_size)
        ]
        results = await asyncio.gather(*(self._embed_one_batch(b) for b in batches))

        combined = EmbeddingBatch()
        for vectors, failed in results:
            combined.vectors.extend(vectors)
            combined.failed += failed
        return combined

    async def _embed_one_batch(self, texts: List[str]) -> tuple[List[Vector], int]:
        if not getattr(self.backend, "available", True):
            return self._degrade(texts, "embedding backend is not configured")
        async with self._semaphore:
            try:
                vectors = await self.backend.embed_many(texts)
            except Exception as exc:
                return self._degrade(texts, f"embedding request failed: {exc}")

        if len(vectors) != len(texts):
            return self._degrade(
                texts,
                f"backend returned {len(vectors)} vectors for {len(texts)} texts",
            )

        checked: List[Vector] = []
        failed = 0
        for vector in vectors:
            if len(vector) != self.dimensions:
                LOGGER.warning(
                    "Embedding has %d dimensions, expected %d; using placeholder",
                    len(vector),
                    self.dimensions,
                )
                checked.append(self.placeholder())
                failed += 1
            else:
                checked.append([float(v) for v in vector])
        self.failures += failed
        return checked, failed

    def _degrade(self, texts: List[str], reason: str) -> tuple[List[Vector], int]:
        self.failures += len(texts)
        LOGGER.error("Error getting embeddings: %s", reason)
        LOGGER.warning(
            "Returning %d zero vector(s) of dimension %d as fallback",
            len(texts),
            self.dimensions,
        )
        return [self.placeholder() for _ in texts], len(texts)

    async def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()


def _truncate(text: str) -> str:
    if len(text) > MAX_INPUT_CHARS:
        LOGGER.warning(
            "Text too long (%d chars), truncating to %d chars",
            len(text),
            MAX_INPUT_CHARS,
        )
        return text[:MAX_INPUT_CHARS]
    return text
