from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from .config import RetryConfig
from .embeddings import EmbeddingProvider, embed_query
from .entities import Chunk, RetrievedChunk, VectorIndex
from .errors import EmbeddingProviderError, EmptyRetrievalError

logger = logging.getLogger(__name__)


class Retriever:
    """Nearest-neighbour lookup over one paper's VectorIndex.

    Results are ordered by descending cosine similarity with ties broken by
    ascending chunk index, so the same index and query always give the same
    ranking.
    """

    def __init__(self, provider: EmbeddingProvider, retry: RetryConfig, min_similarity: float = 0.25):
        self.provider = provider
        self.retry = retry
        self.min_similarity = min_similarity

    async def retrieve(
        self,
        index: Optional[VectorIndex],
        chunks: Sequence[Chunk],
        query: str,
        top_k: int,
    ) -> List[RetrievedChunk]:
        if top_k < 1:
            raise ValueError("top_k must be >= 1")
        if index is None or len(index) == 0:
            raise EmptyRetrievalError("No vector index available for this paper")
        if index.provider != self.provider.name:
            raise EmbeddingProviderError(
                f"Index built with {index.provider}; refusing to query with {self.provider.name}"
            )

        query_vec = await embed_query(self.provider, query, self.retry)
        if query_vec.shape[0] != index.dim:
            raise EmbeddingProviderError(
                f"Query dimension {query_vec.shape[0]} != index dimension {index.dim}"
            )

        ids = sorted(index.vectors)
        matrix = np.asarray([index.vectors[i] for i in ids], dtype=np.float32)
        sims = matrix @ query_vec
        by_index = {c.index: c for c in chunks}

        ranked = sorted(
            (
                (float(s), i)
                for i, s in zip(ids, sims)
                if s >= self.min_similarity and i in by_index
            ),
            key=lambda pair: (-pair[0], pair[1]),
        )[:top_k]
        if not ranked:
            raise EmptyRetrievalError(
                f"No passage scored above {self.min_similarity} for query {query!r}"
            )

        logger.debug(f"Retrieved {len(ranked)} chunks for {query!r}: {[i for _, i in ranked]}")
        return [
            RetrievedChunk(
                index=i,
                section_name=by_index[i].section_name,
                score=score,
                text=by_index[i].text,
            )
            for score, i in ranked
        ]
