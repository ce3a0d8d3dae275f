from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from .config import RetryConfig
from .entities import Paper, ReviewDraft
from .errors import ReviewParseError
from .models import ModelBackend, ModelRequest, invoke
from .prompts import REVIEW_FIELDS, REVIEW_SYSTEM, build_review_prompt

logger = logging.getLogger(__name__)

_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_HEADING_RE = re.compile(r"^\s*(?:#{1,6}\s*|\*\*)?([A-Za-z][A-Za-z _-]*?)(?:\*\*)?\s*:?\s*$")
_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")

_HEADING_ALIASES = {
    "significance": "significance",
    "significance and novelty": "significance",
    "novelty": "significance",
    "accept reasons": "accept_reasons",
    "reasons to accept": "accept_reasons",
    "strengths": "accept_reasons",
    "reject reasons": "reject_reasons",
    "reasons to reject": "reject_reasons",
    "weaknesses": "reject_reasons",
    "suggestions": "suggestions",
    "formula highlights": "formula_highlights",
    "formulas": "formula_highlights",
    "key formulas": "formula_highlights",
}


def _heading_key(line: str) -> Optional[str]:
    m = _HEADING_RE.match(line)
    if not m:
        return None
    name = m.group(1).strip().lower().replace("_", " ").replace("-", " ")
    return _HEADING_ALIASES.get(name)


def _as_list(value: Any, field: str) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        raise ReviewParseError(f"Field {field} must be a list")
    return [str(v).strip() for v in value if str(v).strip()]


def _json_candidates(text: str) -> List[str]:
    candidates = [text.strip()]
    candidates.extend(m.group(1).strip() for m in _FENCED_RE.finditer(text))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])
    return candidates


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """First JSON object found as the whole text, inside a code fence, or embedded in prose."""
    for candidate in _json_candidates(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _parse_markdown(text: str) -> Dict[str, Any]:
    fields: Dict[str, List[str]] = {}
    current = None
    for line in text.splitlines():
        key = _heading_key(line)
        if key:
            current = key
            fields.setdefault(key, [])
            continue
        if current and line.strip():
            fields[current].append(_BULLET_RE.sub("", line).strip())

    out: Dict[str, Any] = {k: v for k, v in fields.items()}
    if "significance" in out:
        out["significance"] = " ".join(out["significance"])
    return out


def parse_review_output(text: str) -> Dict[str, Any]:
    """Extract the review fields from bare, fenced or embedded JSON, or Markdown headings.

    Raises ReviewParseError when a required field is missing.
    """
    data = extract_json_object(text)
    if data is None:
        data = _parse_markdown(text)

    missing = [f for f in REVIEW_FIELDS if f not in data]
    if missing:
        raise ReviewParseError(f"Review output missing fields: {', '.join(missing)}")

    significance = data["significance"]
    if isinstance(significance, list):
        significance = " ".join(str(s) for s in significance)
    if not str(significance).strip():
        raise ReviewParseError("Review output has an empty significance field")

    return {
        "significance": str(significance).strip(),
        "accept_reasons": _as_list(data["accept_reasons"], "accept_reasons"),
        "reject_reasons": _as_list(data["reject_reasons"], "reject_reasons"),
        "suggestions": _as_list(data["suggestions"], "suggestions"),
        "formula_highlights": _as_list(data["formula_highlights"], "formula_highlights"),
    }


class ReviewGenerator:
    """Drives one backend to a ReviewDraft, re-asking once with a stricter format."""

    def __init__(self, retry: RetryConfig, temperature: float = 0.0, max_output: int = 2000):
        self.retry = retry
        self.temperature = temperature
        self.max_output = max_output

    async def generate(self, paper: Paper, backend: ModelBackend) -> ReviewDraft:
        model_id = backend.model_id.value
        for strict in (False, True):
            request = ModelRequest(
                prompt=build_review_prompt(paper, strict=strict),
                system=REVIEW_SYSTEM,
                temperature=self.temperature,
                max_output=self.max_output,
            )
            text = await invoke(backend, request, self.retry, label=f"{model_id} review")
            try:
                fields = parse_review_output(text)
            except ReviewParseError as e:
                if strict:
                    raise
                logger.warning(f"Review from {model_id} unparseable ({e}); re-asking with strict format")
                continue

            logger.info(f"Review generated by {model_id} for {paper.fingerprint}")
            return ReviewDraft(
                fingerprint=paper.fingerprint,
                model_id=model_id,
                significance=fields["significance"],
                accept_reasons=tuple(fields["accept_reasons"]),
                reject_reasons=tuple(fields["reject_reasons"]),
                suggestions=tuple(fields["suggestions"]),
                formula_highlights=tuple(fields["formula_highlights"]),
            )

        raise AssertionError("unreachable")
