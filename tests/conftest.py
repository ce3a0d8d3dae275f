from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import pytest

from prcore.config import (
    ChunkingConfig,
    ModelsConfig,
    PipelineConfig,
    RetrievalConfig,
    RetryConfig,
)
from prcore.context import RunContext
from prcore.embeddings import EmbeddingProvider
from prcore.entities import InnovationDimension
from prcore.errors import EmbeddingProviderError
from prcore.models import BackendRegistry, ModelBackend, ModelId, ModelRequest, ModelResponse
from prcore.orchestrator import PaperPipeline

VOCAB = [
    "graph",
    "attention",
    "dataset",
    "baseline",
    "theorem",
    "gradient",
    "benchmark",
    "latency",
]

FAST_RETRY = RetryConfig(max_attempts=3, timeout=5.0, base_delay=0.0, max_delay=0.0, jitter=0.0)


class KeywordEmbedder(EmbeddingProvider):
    """Bag-of-words over VOCAB; texts sharing no vocabulary word have similarity 0."""

    def __init__(self, name: str = "fake/keywords", fail_times: int = 0):
        self.name = name
        self.calls = 0
        self.texts: List[str] = []
        self.fail_times = fail_times

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise EmbeddingProviderError("provider unavailable")
        self.texts.extend(texts)
        out = []
        for text in texts:
            words = re.findall(r"[a-z]+", text.lower())
            out.append([float(words.count(v)) for v in VOCAB])
        return out


Reply = Union[str, BaseException, Callable[[ModelRequest], str]]


class ScriptedBackend(ModelBackend):
    """Replies from a script; the last entry repeats once the script runs out."""

    def __init__(self, model_id: ModelId, replies: Sequence[Reply]):
        self.model_id = model_id
        self.replies = list(replies)
        self.requests: List[ModelRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def complete(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        idx = min(len(self.requests) - 1, len(self.replies) - 1)
        reply = self.replies[idx]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(request)
        return ModelResponse(text=reply, model_id=self.model_id.value)


class GatedBackend(ScriptedBackend):
    """Blocks every call until ``gate`` is set."""

    def __init__(self, model_id: ModelId, replies: Sequence[Reply]):
        super().__init__(model_id, replies)
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    async def complete(self, request: ModelRequest) -> ModelResponse:
        self.started.set()
        await self.gate.wait()
        return await super().complete(request)


REVIEW_JSON = json.dumps(
    {
        "significance": "Introduces a graph attention benchmark with strong baselines.",
        "accept_reasons": ["Clear theorem with a complete proof", "Broad benchmark coverage"],
        "reject_reasons": ["Latency is not measured", "Only one dataset per task"],
        "suggestions": ["Report latency on commodity hardware"],
        "formula_highlights": ["E = mc^2: energy equivalence used as a toy example"],
    }
)


def innovation_json(score: int = 6) -> str:
    return json.dumps(
        {
            d.value: {"score": score, "explanation": f"{d.label} is moderate."}
            for d in InnovationDimension
        }
    )


def make_paper_dict(extra_section: Optional[str] = None) -> dict:
    sections = [
        {
            "heading": "Introduction",
            "text": "We study graph attention on a new benchmark. " * 6,
        },
        {
            "heading": "Method",
            "text": "Our theorem bounds the gradient of the attention layer. $$E = mc^2$$ " * 4,
        },
        {
            "heading": "Experiments",
            "text": "Each dataset is compared to a baseline; see Figure 2 and Table 1. " * 5,
        },
    ]
    if extra_section:
        sections.append({"heading": "Appendix", "text": extra_section})
    return {
        "title": "Graph Attention Benchmarks",
        "abstract": "A benchmark for graph attention models.",
        "sections": sections,
    }


@pytest.fixture
def paper_dict() -> dict:
    return make_paper_dict()


@pytest.fixture
def config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(
        cache_dir=str(tmp_path / "cache"),
        feedback_path=str(tmp_path / "feedback" / "feedback.jsonl"),
        chunking=ChunkingConfig(chunk_size=120, overlap=20),
        retrieval=RetrievalConfig(top_k=3, min_similarity=0.25),
        retry=FAST_RETRY,
        models=ModelsConfig(
            review_model="gpt-4o",
            scoring_model="claude",
            assessment_model="qwen-plus",
            qa_model="local",
        ),
    )


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def backends() -> dict:
    return {
        ModelId.GPT4O: ScriptedBackend(ModelId.GPT4O, [REVIEW_JSON]),
        ModelId.CLAUDE: ScriptedBackend(ModelId.CLAUDE, ["score: 7\nSolid but narrow."]),
        ModelId.QWEN_PLUS: ScriptedBackend(ModelId.QWEN_PLUS, [innovation_json(6)]),
        ModelId.LOCAL: ScriptedBackend(ModelId.LOCAL, ["The theorem bounds the gradient [1]."]),
    }


@pytest.fixture
def ctx(config: PipelineConfig, embedder: KeywordEmbedder, backends: dict) -> RunContext:
    registry = BackendRegistry({})
    for backend in backends.values():
        registry.register(backend)
    return RunContext(config, registry=registry, embedder=embedder)


@pytest.fixture
def pipeline(ctx: RunContext) -> PaperPipeline:
    return PaperPipeline(ctx)
