"""Domain entities shared across the pipeline.

Every entity round-trips through ``to_dict`` / ``from_dict`` so the cache can
persist it as JSON; a cache hit must be indistinguishable from a fresh
computation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Section:
    name: str
    text: str
    order: int


@dataclass(frozen=True)
class Paper:
    fingerprint: str
    title: str
    abstract: str
    sections: Tuple[Section, ...]
    formulas: Tuple[str, ...] = ()
    figure_refs: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "title": self.title,
            "abstract": self.abstract,
            "sections": [asdict(s) for s in self.sections],
            "formulas": list(self.formulas),
            "figure_refs": list(self.figure_refs),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Paper":
        return cls(
            fingerprint=data["fingerprint"],
            title=data["title"],
            abstract=data["abstract"],
            sections=tuple(Section(**s) for s in data["sections"]),
            formulas=tuple(data.get("formulas", [])),
            figure_refs=tuple(data.get("figure_refs", [])),
        )


@dataclass(frozen=True)
class Chunk:
    fingerprint: str
    index: int
    section_order: int
    section_name: str
    start: int
    end: int
    text: str
    embedding: Optional[Tuple[float, ...]] = None

    def __repr__(self) -> str:
        preview = self.text[:60].replace("\n", " ")
        return (
            f"Chunk(index={self.index}, section={self.section_name!r}, "
            f"span=[{self.start}, {self.end}), text={preview!r}...)"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["embedding"] = list(self.embedding) if self.embedding is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        emb = data.get("embedding")
        return cls(
            fingerprint=data["fingerprint"],
            index=data["index"],
            section_order=data["section_order"],
            section_name=data["section_name"],
            start=data["start"],
            end=data["end"],
            text=data["text"],
            embedding=tuple(emb) if emb is not None else None,
        )


@dataclass(frozen=True)
class VectorIndex:
    fingerprint: str
    provider: str
    dim: int
    vectors: Dict[int, Tuple[float, ...]]
    metric: str = "cosine"

    def __len__(self) -> int:
        return len(self.vectors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "provider": self.provider,
            "dim": self.dim,
            "metric": self.metric,
            # JSON object keys are strings; keep an ordered list instead
            "vectors": [[i, list(v)] for i, v in sorted(self.vectors.items())],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VectorIndex":
        return cls(
            fingerprint=data["fingerprint"],
            provider=data["provider"],
            dim=data["dim"],
            metric=data.get("metric", "cosine"),
            vectors={int(i): tuple(v) for i, v in data["vectors"]},
        )


@dataclass(frozen=True)
class ReviewDraft:
    fingerprint: str
    model_id: str
    significance: str
    accept_reasons: Tuple[str, ...]
    reject_reasons: Tuple[str, ...]
    suggestions: Tuple[str, ...]
    formula_highlights: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "model_id": self.model_id,
            "significance": self.significance,
            "accept_reasons": list(self.accept_reasons),
            "reject_reasons": list(self.reject_reasons),
            "suggestions": list(self.suggestions),
            "formula_highlights": list(self.formula_highlights),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewDraft":
        return cls(
            fingerprint=data["fingerprint"],
            model_id=data["model_id"],
            significance=data["significance"],
            accept_reasons=tuple(data["accept_reasons"]),
            reject_reasons=tuple(data["reject_reasons"]),
            suggestions=tuple(data["suggestions"]),
            formula_highlights=tuple(data.get("formula_highlights", [])),
        )


@dataclass(frozen=True)
class ScoreResult:
    fingerprint: str
    model_id: str
    review_model_id: str
    score: int
    rationale: str
    raw_score: float
    clamped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreResult":
        return cls(**data)


@dataclass(frozen=True)
class RetrievedChunk:
    index: int
    section_name: str
    score: float
    text: str


@dataclass(frozen=True)
class QASession:
    query: str
    references: Tuple[RetrievedChunk, ...]
    answer: str
    used: Tuple[int, ...]
    model_id: Optional[str] = None
    insufficient_context: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "references": [asdict(r) for r in self.references],
            "answer": self.answer,
            "used": list(self.used),
            "model_id": self.model_id,
            "insufficient_context": self.insufficient_context,
        }


class InnovationDimension(str, Enum):
    TECHNICAL_NOVELTY = "technical_novelty"
    CONCEPTUAL_ORIGINALITY = "conceptual_originality"
    POTENTIAL_IMPACT = "potential_impact"
    METHODOLOGICAL_INNOVATION = "methodological_innovation"
    APPLICATION_INNOVATION = "application_innovation"
    SOLUTION_INNOVATION = "solution_innovation"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


@dataclass(frozen=True)
class DimensionScore:
    ai_score: int
    ai_explanation: str
    human_score: Optional[int] = None
    human_reason: Optional[str] = None

    @property
    def current_score(self) -> int:
        return self.human_score if self.human_score is not None else self.ai_score


@dataclass(frozen=True)
class InnovationAssessment:
    fingerprint: str
    model_id: str
    dimensions: Dict[str, DimensionScore]

    def get(self, dimension: InnovationDimension | str) -> DimensionScore:
        return self.dimensions[InnovationDimension(dimension).value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "model_id": self.model_id,
            "dimensions": {
                d.value: asdict(self.dimensions[d.value]) for d in InnovationDimension
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InnovationAssessment":
        return cls(
            fingerprint=data["fingerprint"],
            model_id=data["model_id"],
            dimensions={
                k: DimensionScore(**v) for k, v in data["dimensions"].items()
            },
        )


@dataclass(frozen=True)
class FeedbackRecord:
    record_id: str
    fingerprint: str
    model_id: str
    dimension: str
    ai_score: int
    ai_explanation: str
    human_score: int
    human_reason: str
    timestamp: str
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackRecord":
        return cls(**data)


@dataclass(frozen=True)
class LearningSample:
    fingerprint: str
    dimension: str
    timestamp: str
    input: str
    ai_output: Dict[str, Any]
    corrected_output: Dict[str, Any]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FacetOutcome:
    """Result of one independently failing facet of a paper run."""

    name: str
    value: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PaperReport:
    fingerprint: str
    facets: Dict[str, FacetOutcome] = field(default_factory=dict)

    @property
    def failed(self) -> List[str]:
        return [name for name, f in self.facets.items() if not f.ok]
