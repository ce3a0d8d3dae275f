from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import List, Sequence

from .config import RetryConfig
from .entities import QASession, RetrievedChunk
from .models import ModelBackend, ModelRequest, invoke
from .prompts import QA_SYSTEM, build_qa_prompt

logger = logging.getLogger(__name__)

INSUFFICIENT_CONTEXT_ANSWER = (
    "No relevant passage in this paper answers the question; "
    "the available context is insufficient."
)

_CITATION_RE = re.compile(r"\[(\d+(?:\s*,\s*\d+)*)\]")
_INSUFFICIENT_RE = re.compile(r"insufficient\s+context", re.IGNORECASE)


def parse_citations(text: str) -> List[int]:
    """Chunk indices cited as ``[N]`` or ``[N, M]``, in first-seen order."""
    seen: List[int] = []
    for m in _CITATION_RE.finditer(text):
        for part in m.group(1).split(","):
            n = int(part)
            if n not in seen:
                seen.append(n)
    return seen


def insufficient(query: str) -> QASession:
    return QASession(
        query=query,
        references=(),
        answer=INSUFFICIENT_CONTEXT_ANSWER,
        used=(),
        insufficient_context=True,
    )


class AnswerSynthesizer:
    """Grounded answers over retrieved chunks.

    The synthesizer never invents content: with nothing retrieved it answers
    with INSUFFICIENT_CONTEXT_ANSWER without calling a model, and the ``used``
    references are always a subset of what was retrieved.
    """

    def __init__(
        self,
        backend: ModelBackend,
        retry: RetryConfig,
        temperature: float = 0.0,
        max_output: int = 2000,
    ):
        self.backend = backend
        self.retry = retry
        self.temperature = temperature
        self.max_output = max_output

    async def answer(self, query: str, retrieved: Sequence[RetrievedChunk]) -> QASession:
        if not retrieved:
            return insufficient(query)

        request = ModelRequest(
            prompt=build_qa_prompt(query, retrieved),
            system=QA_SYSTEM,
            temperature=self.temperature,
            max_output=self.max_output,
        )
        text = await invoke(self.backend, request, self.retry, label="qa answer")
        model_id = self.backend.model_id.value

        if _INSUFFICIENT_RE.search(text):
            logger.info(f"Model reported insufficient context for {query!r}")
            return replace(insufficient(query), model_id=model_id)

        retrieved_ids = [r.index for r in retrieved]
        cited = [i for i in parse_citations(text) if i in retrieved_ids]
        used = cited or retrieved_ids
        return QASession(
            query=query,
            references=tuple(retrieved),
            answer=text.strip(),
            used=tuple(used),
            model_id=model_id,
        )
