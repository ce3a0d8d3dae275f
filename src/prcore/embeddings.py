"""Embedding providers and the per-paper vector index builder.

Vectors are L2-normalized before they are stored, so a dot product between
an indexed chunk and a query embedded by the same provider is their cosine
similarity.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np
import openai

from llms import OpenAICompatClient

from .config import EmbeddingConfig, RetryConfig
from .entities import Chunk, VectorIndex
from .errors import EmbeddingProviderError
from .retry import call_with_retry

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """``{text} -> {vector}``, batchable."""

    name: str

    @abstractmethod
    async def embed(self, texts: List[str]) -> List[List[float]]:
        ...


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model; encoding runs in a worker thread."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer

        self.name = f"sentence-transformers/{model_name}"
        logger.info(f"Loading embedding model: {model_name}")
        self.model = SentenceTransformer(model_name)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        try:
            raw = await asyncio.to_thread(
                self.model.encode, texts, convert_to_tensor=False
            )
        except Exception as e:
            raise EmbeddingProviderError(f"{self.name}: {e}") from e
        return np.asarray(raw, dtype=np.float32).tolist()


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings endpoint through ``llms.OpenAICompatClient``."""

    def __init__(self, client, model_name: str = "text-embedding-3-small"):
        self.client = client
        self.model_name = model_name
        self.name = f"openai/{model_name}"

    async def embed(self, texts: List[str]) -> List[List[float]]:
        try:
            return await asyncio.to_thread(self.client.embed, texts, self.model_name)
        except openai.OpenAIError as e:
            raise EmbeddingProviderError(f"{self.name}: {e}") from e


def build_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    if config.provider == "sentence-transformers":
        return SentenceTransformerProvider(config.model_name)
    if config.provider == "openai":
        try:
            client = OpenAICompatClient(preset="openai")
        except ValueError as e:
            raise EmbeddingProviderError(str(e)) from e
        return OpenAIEmbeddingProvider(client, config.model_name)
    raise ValueError(f"Unknown embedding provider: {config.provider}")


def l2_normalize(arr: np.ndarray) -> np.ndarray:
    """L2-normalize row vectors; zero rows stay zero."""
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    norms[norms == 0] = 1e-12
    return arr / norms


async def embed_texts(
    provider: EmbeddingProvider,
    texts: Sequence[str],
    retry: RetryConfig,
    batch_size: int = 32,
) -> np.ndarray:
    """Embed ``texts`` in batches with retry; returns normalized float32 rows."""
    rows: List[List[float]] = []
    for start in range(0, len(texts), max(1, batch_size)):
        batch = list(texts[start:start + batch_size])
        vectors = await call_with_retry(
            lambda b=batch: provider.embed(b),
            retry,
            label=f"{provider.name} embedding batch {start // batch_size + 1}",
        )
        if len(vectors) != len(batch):
            raise EmbeddingProviderError(
                f"{provider.name} returned {len(vectors)} vectors for {len(batch)} texts"
            )
        rows.extend(vectors)

    try:
        matrix = np.asarray(rows, dtype=np.float32)
    except ValueError as e:
        raise EmbeddingProviderError(f"{provider.name} returned ragged vectors") from e
    if matrix.ndim != 2:
        raise EmbeddingProviderError(f"{provider.name} returned malformed vectors")
    return l2_normalize(matrix)


class EmbeddingIndexer:
    """Builds a fresh VectorIndex for a paper's chunk set."""

    def __init__(self, provider: EmbeddingProvider, retry: RetryConfig, batch_size: int = 32):
        self.provider = provider
        self.retry = retry
        self.batch_size = batch_size

    async def build(self, fingerprint: str, chunks: Sequence[Chunk]) -> VectorIndex:
        if not chunks:
            raise EmbeddingProviderError(f"No chunks to index for {fingerprint}")

        started = time.time()
        matrix = await embed_texts(
            self.provider, [c.text for c in chunks], self.retry, self.batch_size
        )
        logger.info(
            f"Embedded {len(chunks)} chunks for {fingerprint} with {self.provider.name} "
            f"in {time.time() - started:.1f}s ({matrix.shape[1]} dims)"
        )
        return VectorIndex(
            fingerprint=fingerprint,
            provider=self.provider.name,
            dim=int(matrix.shape[1]),
            vectors={c.index: tuple(row.tolist()) for c, row in zip(chunks, matrix)},
        )


async def embed_query(
    provider: EmbeddingProvider, query: str, retry: RetryConfig
) -> np.ndarray:
    return (await embed_texts(provider, [query], retry, batch_size=1))[0]


def attach_embeddings(chunks: Sequence[Chunk], index: Optional[VectorIndex]) -> List[Chunk]:
    """Return chunks with their vectors filled in from ``index``."""
    if index is None:
        return list(chunks)
    return [replace(c, embedding=index.vectors.get(c.index)) for c in chunks]
