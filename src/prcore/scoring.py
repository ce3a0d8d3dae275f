from __future__ import annotations

import logging
import math
import re
from typing import Optional, Tuple

from .config import RetryConfig
from .entities import ReviewDraft, ScoreResult
from .errors import ScoreOutOfRangeError, ScoreParseError
from .models import ModelBackend, ModelRequest, invoke
from .prompts import SCORE_SYSTEM, build_score_prompt

logger = logging.getLogger(__name__)

SCORE_MIN = 1
SCORE_MAX = 10

_SCORE_RE = re.compile(r"score\s*[:=]\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def parse_score(text: str) -> Tuple[Optional[float], str]:
    """Return ``(value, rationale)``; ``score: N`` wins over the first bare number."""
    value = None
    m = _SCORE_RE.search(text)
    if m:
        value = float(m.group(1))
    else:
        m = _NUMBER_RE.search(text)
        if m:
            value = float(m.group(0))
    if value is not None and not math.isfinite(value):
        value = None
    rationale = text.strip().split("\n", 1)[-1].strip() if "\n" in text.strip() else ""
    return value, rationale


def clamp_score(value: float) -> Tuple[int, bool]:
    """Round and clamp into [1, 10]; out-of-range values are logged, not raised.

    A non-finite value is a parse failure, not an out-of-range score.
    """
    if not math.isfinite(value):
        raise ScoreParseError(f"Score {value} is not a finite number")
    rounded = int(round(value))
    clamped = min(max(rounded, SCORE_MIN), SCORE_MAX)
    if clamped != rounded:
        logger.warning(str(ScoreOutOfRangeError(value, clamped)))
        return clamped, True
    return clamped, False


def compose_rationale(model_text: str, draft: ReviewDraft) -> str:
    parts = [model_text] if model_text else []
    if draft.accept_reasons:
        parts.append(f"Accept: {draft.accept_reasons[0]}")
    if draft.reject_reasons:
        parts.append(f"Reject: {draft.reject_reasons[0]}")
    return "\n".join(parts)


class Scorer:
    """Turns a ReviewDraft into a bounded ScoreResult via a scoring backend."""

    def __init__(self, retry: RetryConfig, temperature: float = 0.0, max_output: int = 200):
        self.retry = retry
        self.temperature = temperature
        self.max_output = max_output

    async def score(self, draft: ReviewDraft, backend: ModelBackend) -> ScoreResult:
        model_id = backend.model_id.value
        value: Optional[float] = None
        rationale = ""
        for strict in (False, True):
            request = ModelRequest(
                prompt=build_score_prompt(draft, strict=strict),
                system=SCORE_SYSTEM,
                temperature=self.temperature,
                max_output=self.max_output,
            )
            text = await invoke(backend, request, self.retry, label=f"{model_id} score")
            value, rationale = parse_score(text)
            if value is not None:
                break
            logger.warning(f"No score found in {model_id} output; re-asking with strict format")

        if value is None:
            raise ScoreParseError(f"{model_id} returned no numeric score")

        score, clamped = clamp_score(value)
        logger.info(f"Scoring successful ({model_id}): {score}")
        return ScoreResult(
            fingerprint=draft.fingerprint,
            model_id=model_id,
            review_model_id=draft.model_id,
            score=score,
            rationale=compose_rationale(rationale, draft),
            raw_score=value,
            clamped=clamped,
        )
