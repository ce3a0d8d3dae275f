from __future__ import annotations

import random

import pytest

from prcore.chunking import chunk_paper, reconstruct_section, section_spans
from prcore.config import ChunkingConfig
from prcore.entities import Paper, Section


def make_paper(lengths):
    rng = random.Random(7)
    sections = tuple(
        Section(
            name=f"S{i}",
            text="".join(rng.choice("abcdefgh ") for _ in range(n)),
            order=i,
        )
        for i, n in enumerate(lengths)
    )
    return Paper(fingerprint="pp_test", title="T", abstract="", sections=sections)


def test_three_section_scenario():
    paper = make_paper([1200, 800, 50])
    chunks = chunk_paper(paper, ChunkingConfig(chunk_size=500, overlap=50))

    per_section = {}
    for c in chunks:
        per_section.setdefault(c.section_order, []).append((c.start, c.end))

    assert per_section[0] == [(0, 500), (450, 950), (900, 1200)]
    assert per_section[1] == [(0, 500), (450, 800)]
    assert per_section[2] == [(0, 50)]
    assert [c.index for c in chunks] == list(range(6))


@pytest.mark.parametrize("size,overlap", [(500, 50), (100, 0), (64, 63), (1, 0), (2000, 10)])
def test_chunking_is_deterministic_and_round_trips(size, overlap):
    paper = make_paper([1200, 800, 50, 1])
    config = ChunkingConfig(chunk_size=size, overlap=overlap)

    first = chunk_paper(paper, config)
    assert first == chunk_paper(paper, config)

    for section in paper.sections:
        own = [c for c in first if c.section_order == section.order]
        assert all(c.text == section.text[c.start:c.end] for c in own)
        assert reconstruct_section(own, overlap) == section.text


def test_chunks_never_cross_sections():
    paper = make_paper([30, 30])
    chunks = chunk_paper(paper, ChunkingConfig(chunk_size=50, overlap=10))
    assert [(c.section_order, c.start, c.end) for c in chunks] == [(0, 0, 30), (1, 0, 30)]


def test_empty_length_has_no_spans():
    assert section_spans(0, ChunkingConfig(chunk_size=10, overlap=2)) == []


@pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (10, 10), (10, -1), (10, 11)])
def test_invalid_config_rejected(size, overlap):
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_size=size, overlap=overlap)
