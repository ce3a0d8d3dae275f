from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from .config import RetryConfig
from .entities import (
    DimensionScore,
    FeedbackRecord,
    InnovationAssessment,
    InnovationDimension,
    LearningSample,
    Paper,
    ReviewDraft,
)
from .errors import FeedbackPersistError, ReviewParseError
from .models import ModelBackend, ModelRequest, invoke
from .prompts import INNOVATION_SYSTEM, build_innovation_prompt
from .review import extract_json_object
from .scoring import clamp_score

if TYPE_CHECKING:
    from .feedback import FeedbackStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdjustmentResult:
    """Outcome of a human adjustment; ``persisted`` is False when the log write failed."""

    assessment: InnovationAssessment
    record: FeedbackRecord
    persisted: bool
    error: Optional[str] = None


def parse_assessment(text: str) -> Dict[str, DimensionScore]:
    data = extract_json_object(text)
    if data is None:
        raise ReviewParseError("Innovation output contains no JSON object")

    dimensions: Dict[str, DimensionScore] = {}
    for dim in InnovationDimension:
        entry = data.get(dim.value)
        if not isinstance(entry, dict) or "score" not in entry:
            raise ReviewParseError(f"Innovation output missing dimension {dim.value}")
        try:
            raw = float(entry["score"])
        except (TypeError, ValueError) as e:
            raise ReviewParseError(f"Non-numeric score for {dim.value}: {entry['score']!r}") from e
        score, _ = clamp_score(raw)
        dimensions[dim.value] = DimensionScore(
            ai_score=score, ai_explanation=str(entry.get("explanation", "")).strip()
        )
    return dimensions


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def apply_feedback(
    assessment: InnovationAssessment, records: Iterable[FeedbackRecord]
) -> InnovationAssessment:
    """Current-adjustment view: the last record per dimension sets the human fields."""
    dimensions = dict(assessment.dimensions)
    for record in records:
        if record.fingerprint != assessment.fingerprint or record.model_id != assessment.model_id:
            continue
        current = dimensions.get(record.dimension)
        if current is None:
            continue
        dimensions[record.dimension] = replace(
            current, human_score=record.human_score, human_reason=record.human_reason
        )
    return replace(assessment, dimensions=dimensions)


def export_learning_samples(records: Iterable[FeedbackRecord]) -> List[LearningSample]:
    """One sample per record whose AI and human scores differ; log order is kept."""
    samples = []
    for r in records:
        if r.ai_score == r.human_score:
            continue
        samples.append(
            LearningSample(
                fingerprint=r.fingerprint,
                dimension=r.dimension,
                timestamp=r.timestamp,
                input=r.context,
                ai_output={"score": r.ai_score, "explanation": r.ai_explanation},
                corrected_output={"score": r.human_score, "explanation": r.human_reason},
                reason=r.human_reason,
            )
        )
    return samples


class InnovationEngine:
    """Six-dimension AI assessment with append-only human adjustments."""

    def __init__(self, retry: RetryConfig, temperature: float = 0.0, max_output: int = 2000):
        self.retry = retry
        self.temperature = temperature
        self.max_output = max_output

    async def assess(
        self,
        paper: Paper,
        backend: ModelBackend,
        review: Optional[ReviewDraft] = None,
    ) -> InnovationAssessment:
        model_id = backend.model_id.value
        for strict in (False, True):
            request = ModelRequest(
                prompt=build_innovation_prompt(paper, review, strict=strict),
                system=INNOVATION_SYSTEM,
                temperature=self.temperature,
                max_output=self.max_output,
            )
            text = await invoke(backend, request, self.retry, label=f"{model_id} innovation")
            try:
                dimensions = parse_assessment(text)
            except ReviewParseError as e:
                if strict:
                    raise
                logger.warning(f"Assessment from {model_id} unparseable ({e}); re-asking")
                continue
            logger.info(f"Innovation assessed by {model_id} for {paper.fingerprint}")
            return InnovationAssessment(
                fingerprint=paper.fingerprint, model_id=model_id, dimensions=dimensions
            )

        raise AssertionError("unreachable")

    def update(
        self,
        assessment: InnovationAssessment,
        dimension: Any,
        human_score: int,
        reason: str,
        store: "FeedbackStore",
        context: str = "",
    ) -> AdjustmentResult:
        """Record a human score for one dimension; the AI fields are left untouched."""
        dim = InnovationDimension(dimension)
        if not 1 <= int(human_score) <= 10:
            raise ValueError(f"Human score must be within [1, 10], got {human_score}")

        current = assessment.get(dim)
        record = FeedbackRecord(
            record_id=uuid.uuid4().hex,
            fingerprint=assessment.fingerprint,
            model_id=assessment.model_id,
            dimension=dim.value,
            ai_score=current.ai_score,
            ai_explanation=current.ai_explanation,
            human_score=int(human_score),
            human_reason=reason,
            timestamp=_now(),
            context=context,
        )
        updated = apply_feedback(assessment, [record])

        try:
            store.append(record)
        except FeedbackPersistError as e:
            logger.error(f"Feedback not persisted; export will be incomplete: {e}")
            return AdjustmentResult(updated, record, persisted=False, error=str(e))
        return AdjustmentResult(updated, record, persisted=True)
