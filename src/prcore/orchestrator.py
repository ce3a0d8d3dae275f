from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from .cache import Stage
from .chunking import chunk_paper
from .context import RunContext
from .embeddings import EmbeddingIndexer, attach_embeddings
from .entities import (
    Chunk,
    FacetOutcome,
    InnovationAssessment,
    Paper,
    PaperReport,
    QASession,
    RetrievedChunk,
    ReviewDraft,
    ScoreResult,
    VectorIndex,
)
from .errors import EmptyRetrievalError, PaperNotFoundError, PipelineError
from .hashing import digest_inputs
from .innovation import AdjustmentResult, InnovationEngine, apply_feedback
from .models import ModelBackend
from .normalizer import ConverterOutput, normalize
from .prompts import assessment_context
from .qa import AnswerSynthesizer, insufficient
from .retrieval import Retriever
from .review import ReviewGenerator
from .scoring import Scorer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PaperPipeline:
    """Per-paper stage machine over the cache.

    Every stage goes through ``_stage``: a committed cache entry with matching
    inputs is returned as is, otherwise the computation runs at most once per
    ``(fingerprint, stage, variant)`` and its result is committed before being
    returned. Hits and fresh results are both decoded from the same JSON form.
    """

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.config = ctx.config

    async def _stage(
        self,
        fingerprint: str,
        stage: Stage,
        variant: str,
        inputs: Dict[str, Any],
        compute: Callable[[], Awaitable[Any]],
        decode: Callable[[Dict[str, Any]], T],
    ) -> T:
        cache = self.ctx.cache
        cached = cache.get(fingerprint, stage, variant, inputs)
        if cached is not None:
            return decode(cached)

        async def run() -> Dict[str, Any]:
            hit = cache.get(fingerprint, stage, variant, inputs)
            if hit is not None:
                return hit
            value = (await compute()).to_dict()
            cache.put(fingerprint, stage, value, variant, inputs)
            return value

        return decode(await self.ctx.run_once((fingerprint, stage, variant), run))

    def _backend(self, model: Optional[str], default: str) -> ModelBackend:
        return self.ctx.registry.get(model or default)

    def _generation(self) -> Dict[str, Any]:
        models = self.config.models
        return {"temperature": models.temperature, "max_output": models.max_output}

    async def ingest(self, converter_output: ConverterOutput) -> Paper:
        """Normalize converter output and commit the paper under its fingerprint."""
        paper = normalize(converter_output)
        fp = paper.fingerprint
        cache = self.ctx.cache
        if cache.get(fp, Stage.NORMALIZED) is None:
            raw = converter_output if isinstance(converter_output, dict) else {"markdown": converter_output}
            cache.put(fp, Stage.UPLOADED, raw)
            cache.put(fp, Stage.NORMALIZED, paper.to_dict())
            logger.info(f"Ingested {fp}: {paper.title!r}")
        else:
            logger.info(f"Paper {fp} already ingested")
        return paper

    def load_paper(self, fingerprint: str) -> Paper:
        data = self.ctx.cache.get(fingerprint, Stage.NORMALIZED)
        if data is None:
            raise PaperNotFoundError(fingerprint)
        return Paper.from_dict(data)

    def chunks(self, fingerprint: str) -> List[Chunk]:
        return chunk_paper(self.load_paper(fingerprint), self.config.chunking)

    def _index_inputs(self) -> Dict[str, Any]:
        return {
            "chunking": asdict(self.config.chunking),
            "provider": self.ctx.embedder.name,
        }

    async def index(self, fingerprint: str) -> VectorIndex:
        chunks = self.chunks(fingerprint)
        provider = self.ctx.embedder
        indexer = EmbeddingIndexer(provider, self.config.retry, self.config.embedding.batch_size)
        return await self._stage(
            fingerprint,
            Stage.INDEXED,
            "default",
            self._index_inputs(),
            lambda: indexer.build(fingerprint, chunks),
            VectorIndex.from_dict,
        )

    async def indexed_chunks(self, fingerprint: str) -> List[Chunk]:
        """Chunks with their vectors from the (cached) index filled in."""
        index = await self.index(fingerprint)
        return attach_embeddings(self.chunks(fingerprint), index)

    async def retrieve(
        self, fingerprint: str, query: str, top_k: Optional[int] = None
    ) -> List[RetrievedChunk]:
        index = await self.index(fingerprint)
        retriever = Retriever(
            self.ctx.embedder, self.config.retry, self.config.retrieval.min_similarity
        )
        return await retriever.retrieve(
            index,
            attach_embeddings(self.chunks(fingerprint), index),
            query,
            top_k if top_k is not None else self.config.retrieval.top_k,
        )

    async def ask(
        self,
        fingerprint: str,
        query: str,
        top_k: Optional[int] = None,
        model: Optional[str] = None,
    ) -> QASession:
        try:
            retrieved = await self.retrieve(fingerprint, query, top_k)
        except EmptyRetrievalError as e:
            logger.info(f"No relevant passage for {query!r} in {fingerprint}: {e}")
            return insufficient(query)

        models = self.config.models
        synthesizer = AnswerSynthesizer(
            self._backend(model, models.qa_model),
            self.config.retry,
            temperature=models.temperature,
            max_output=models.max_output,
        )
        return await synthesizer.answer(query, retrieved)

    async def review(self, fingerprint: str, model: Optional[str] = None) -> ReviewDraft:
        paper = self.load_paper(fingerprint)
        backend = self._backend(model, self.config.models.review_model)
        generator = ReviewGenerator(self.config.retry, **self._generation())
        return await self._stage(
            fingerprint,
            Stage.REVIEWED,
            backend.model_id.value,
            {"model": backend.model_id.value, **self._generation()},
            lambda: generator.generate(paper, backend),
            ReviewDraft.from_dict,
        )

    async def score(
        self,
        fingerprint: str,
        review_model: Optional[str] = None,
        scoring_model: Optional[str] = None,
    ) -> ScoreResult:
        draft = await self.review(fingerprint, review_model)
        backend = self._backend(scoring_model, self.config.models.scoring_model)
        scorer = Scorer(self.config.retry, temperature=self.config.models.temperature)
        variant = f"{draft.model_id}__{backend.model_id.value}"
        return await self._stage(
            fingerprint,
            Stage.SCORED,
            variant,
            {
                "review_model": draft.model_id,
                "review": digest_inputs(draft.to_dict()),
                "scoring_model": backend.model_id.value,
                "temperature": self.config.models.temperature,
            },
            lambda: scorer.score(draft, backend),
            ScoreResult.from_dict,
        )

    async def _ai_assessment(
        self, fingerprint: str, model: Optional[str], review_model: Optional[str]
    ) -> InnovationAssessment:
        paper = self.load_paper(fingerprint)
        draft = await self.review(fingerprint, review_model) if review_model else None
        backend = self._backend(model, self.config.models.assessment_model)
        engine = InnovationEngine(self.config.retry, **self._generation())
        variant = backend.model_id.value + (f"__{draft.model_id}" if draft else "")
        return await self._stage(
            fingerprint,
            Stage.ASSESSED,
            variant,
            {
                "model": backend.model_id.value,
                "review_model": draft.model_id if draft else None,
                "review": digest_inputs(draft.to_dict()) if draft else None,
                **self._generation(),
            },
            lambda: engine.assess(paper, backend, draft),
            InnovationAssessment.from_dict,
        )

    async def assess(
        self,
        fingerprint: str,
        model: Optional[str] = None,
        review_model: Optional[str] = None,
    ) -> InnovationAssessment:
        """AI assessment with the current human adjustments from the feedback log applied."""
        ai = await self._ai_assessment(fingerprint, model, review_model)
        return apply_feedback(ai, self.ctx.feedback.records(fingerprint, ai.model_id))

    async def adjust(
        self,
        fingerprint: str,
        dimension: str,
        human_score: int,
        reason: str,
        model: Optional[str] = None,
    ) -> AdjustmentResult:
        assessment = await self.assess(fingerprint, model)
        engine = InnovationEngine(self.config.retry, **self._generation())
        return engine.update(
            assessment,
            dimension,
            human_score,
            reason,
            self.ctx.feedback,
            context=assessment_context(self.load_paper(fingerprint)),
        )

    async def process(
        self,
        converter_output: ConverterOutput,
        review_model: Optional[str] = None,
        scoring_model: Optional[str] = None,
        assessment_model: Optional[str] = None,
    ) -> PaperReport:
        """Ingest, then index, review, score and assess concurrently.

        Only a ConversionError aborts the run; every other failure is reported
        on its own facet while the remaining facets complete.
        """
        paper = await self.ingest(converter_output)
        fp = paper.fingerprint

        async def facet(name: str, coro: Awaitable[Any]) -> FacetOutcome:
            try:
                value = await coro
            except PipelineError as e:
                logger.error(f"{fp} facet {name} failed: {e}")
                return FacetOutcome(name=name, error=str(e), error_type=type(e).__name__)
            return FacetOutcome(name=name, value=value.to_dict())

        outcomes = await asyncio.gather(
            facet("index", self.index(fp)),
            facet("review", self.review(fp, review_model)),
            facet("score", self.score(fp, review_model, scoring_model)),
            facet("assessment", self.assess(fp, assessment_model)),
        )
        report = PaperReport(fingerprint=fp, facets={o.name: o for o in outcomes})
        logger.info(f"Processed {fp}: failed facets {report.failed or 'none'}")
        return report

    def status(self, fingerprint: str) -> Dict[str, Any]:
        cache = self.ctx.cache
        return {
            "fingerprint": fingerprint,
            "stages": [s.value for s in cache.stages(fingerprint)],
            "variants": {
                s.value: cache.variants(fingerprint, s) for s in cache.stages(fingerprint)
            },
            "inflight": [f"{k[1].value}/{k[2]}" for k in self.ctx.inflight(fingerprint)],
            "feedback_records": len(self.ctx.feedback.records(fingerprint)),
        }

    def invalidate(self, fingerprint: str, stages: Iterable[Stage]) -> List[Stage]:
        return self.ctx.cache.invalidate(fingerprint, stages)

    def cancel(self, fingerprint: str) -> int:
        return self.ctx.cancel(fingerprint)

    def clear(self, fingerprint: str) -> bool:
        """Cancel in-flight work and drop every cached stage; feedback is kept."""
        self.cancel(fingerprint)
        return self.ctx.cache.clear(fingerprint)

    def export_feedback(
        self,
        log_path: Path,
        samples_path: Path,
        fingerprint: Optional[str] = None,
    ) -> Tuple[int, int]:
        feedback = self.ctx.feedback
        return (
            feedback.export_log(log_path, fingerprint),
            feedback.export_samples(samples_path, fingerprint),
        )
