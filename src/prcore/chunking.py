"""
Section-bounded fixed-size chunking.

Each section is sliced into windows of ``chunk_size`` characters; consecutive
windows of the same section share ``overlap`` characters. A window never
crosses a section boundary, so every chunk maps back to exactly one section
and a character range inside it.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

from .config import ChunkingConfig
from .entities import Chunk, Paper


def section_spans(length: int, config: ChunkingConfig) -> List[Tuple[int, int]]:
    """Character ranges covering ``length`` characters of one section."""
    if length <= 0:
        return []
    spans = []
    start = 0
    while True:
        end = min(start + config.chunk_size, length)
        spans.append((start, end))
        if end == length:
            return spans
        start = end - config.overlap


def chunk_paper(paper: Paper, config: ChunkingConfig) -> List[Chunk]:
    chunks: List[Chunk] = []
    for section in paper.sections:
        for start, end in section_spans(len(section.text), config):
            chunks.append(
                Chunk(
                    fingerprint=paper.fingerprint,
                    index=len(chunks),
                    section_order=section.order,
                    section_name=section.name,
                    start=start,
                    end=end,
                    text=section.text[start:end],
                )
            )
    return chunks


def reconstruct_section(chunks: Iterable[Chunk], overlap: int) -> str:
    """Rebuild section text by dropping each chunk's trailing overlap except the last."""
    ordered = sorted(chunks, key=lambda c: c.index)
    parts = []
    for i, chunk in enumerate(ordered):
        if i < len(ordered) - 1 and overlap:
            parts.append(chunk.text[:-overlap])
        else:
            parts.append(chunk.text)
    return "".join(parts)
