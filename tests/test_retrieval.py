from __future__ import annotations

import asyncio

import pytest

from prcore.embeddings import EmbeddingIndexer, attach_embeddings
from prcore.entities import Chunk
from prcore.errors import EmbeddingProviderError, EmptyRetrievalError
from prcore.retrieval import Retriever

from conftest import FAST_RETRY, KeywordEmbedder

TEXTS = [
    "graph attention",
    "graph graph dataset",
    "latency only",
    "graph attention",
]


def make_chunks():
    return [
        Chunk(
            fingerprint="pp_test",
            index=i,
            section_order=0,
            section_name="Body",
            start=i * 100,
            end=i * 100 + len(t),
            text=t,
        )
        for i, t in enumerate(TEXTS)
    ]


def build_index(provider, chunks):
    return asyncio.run(EmbeddingIndexer(provider, FAST_RETRY).build("pp_test", chunks))


def retrieve(provider, index, chunks, query, top_k, min_similarity=0.25):
    retriever = Retriever(provider, FAST_RETRY, min_similarity=min_similarity)
    return asyncio.run(retriever.retrieve(index, chunks, query, top_k))


def test_ranked_by_similarity_then_index():
    provider = KeywordEmbedder()
    chunks = make_chunks()
    index = build_index(provider, chunks)

    results = retrieve(provider, index, chunks, "graph attention", top_k=3)

    assert [r.index for r in results] == [0, 3, 1]
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert scores[0] == pytest.approx(1.0)
    assert results[0].text == "graph attention"


def test_fewer_matches_than_top_k_is_not_an_error():
    provider = KeywordEmbedder()
    chunks = make_chunks()
    index = build_index(provider, chunks)

    results = retrieve(provider, index, chunks, "graph attention", top_k=3, min_similarity=0.7)

    assert [r.index for r in results] == [0, 3]


def test_nothing_above_threshold_raises():
    provider = KeywordEmbedder()
    chunks = make_chunks()
    index = build_index(provider, chunks)

    with pytest.raises(EmptyRetrievalError):
        retrieve(provider, index, chunks, "benchmark", top_k=3)


def test_missing_or_empty_index_raises():
    provider = KeywordEmbedder()
    with pytest.raises(EmptyRetrievalError):
        retrieve(provider, None, [], "graph", top_k=1)


def test_top_k_must_be_positive():
    provider = KeywordEmbedder()
    chunks = make_chunks()
    index = build_index(provider, chunks)
    with pytest.raises(ValueError):
        retrieve(provider, index, chunks, "graph", top_k=0)


def test_query_provider_must_match_index_provider():
    chunks = make_chunks()
    index = build_index(KeywordEmbedder(name="fake/a"), chunks)
    with pytest.raises(EmbeddingProviderError):
        retrieve(KeywordEmbedder(name="fake/b"), index, chunks, "graph", top_k=2)


def test_rebuilt_index_gives_identical_results():
    provider = KeywordEmbedder()
    chunks = make_chunks()
    first = build_index(provider, chunks)
    second = build_index(provider, chunks)

    assert first == second
    assert retrieve(provider, first, chunks, "graph dataset", 4) == retrieve(
        provider, second, chunks, "graph dataset", 4
    )


def test_indexer_retries_transient_provider_failures():
    provider = KeywordEmbedder(fail_times=2)
    index = build_index(provider, make_chunks())
    assert len(index) == 4
    assert provider.calls == 3


def test_indexer_surfaces_error_after_attempt_limit():
    provider = KeywordEmbedder(fail_times=3)
    with pytest.raises(EmbeddingProviderError):
        build_index(provider, make_chunks())
    assert provider.calls == 3


def test_vectors_are_normalized_and_attachable():
    provider = KeywordEmbedder()
    chunks = make_chunks()
    index = build_index(provider, chunks)

    assert index.dim == 8
    norms = [sum(x * x for x in v) for v in index.vectors.values()]
    assert norms == pytest.approx([1.0] * 4, rel=1e-5)
    attached = attach_embeddings(chunks, index)
    assert all(c.embedding == index.vectors[c.index] for c in attached)
