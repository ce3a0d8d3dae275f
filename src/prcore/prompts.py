from __future__ import annotations

import json
from typing import Optional, Sequence

from .entities import InnovationDimension, Paper, RetrievedChunk, ReviewDraft

MAX_MAIN_TEXT = 20000

REVIEW_SYSTEM = (
    "Act as an impartial senior reviewer for a scientific venue. Balance strengths "
    "and weaknesses. Evidence-first. Professional tone."
)

REVIEW_FIELDS = (
    "significance",
    "accept_reasons",
    "reject_reasons",
    "suggestions",
    "formula_highlights",
)

STRICT_FORMAT = (
    "Return ONLY a single JSON object, no prose and no code fences. "
    "Every listed key must be present."
)

QA_SYSTEM = (
    "You answer questions about one scientific paper using only the numbered "
    "context passages supplied. Cite passages as [N]. If the passages do not "
    "contain the answer, reply exactly: INSUFFICIENT CONTEXT."
)

SCORE_SYSTEM = "You are an area chair turning a written review into an overall score."

STRICT_SCORE = "Return only 'score: N' on the first line, then one sentence rationale."

INNOVATION_SYSTEM = (
    "You assess the innovation of scientific papers along fixed dimensions. "
    "Scores are integers from 1 (none) to 10 (exceptional)."
)


def main_text(paper: Paper, limit: int = MAX_MAIN_TEXT) -> str:
    """Sections joined as ``heading: body``, abridged to ``limit`` characters."""
    joined = []
    for sec in paper.sections:
        if sec.name:
            joined.append(f"{sec.name}: {sec.text}")
        else:
            joined.append(sec.text)
    return "\n\n".join(joined)[:limit]


def build_review_prompt(paper: Paper, strict: bool = False) -> str:
    formulas = "\n".join(f"- {f}" for f in paper.formulas[:20]) or "(none extracted)"
    prompt = (
        f"Title: {paper.title}\n\n"
        f"Abstract: {paper.abstract}\n\n"
        f"Main text (abridged):\n{main_text(paper)}\n\n"
        f"Extracted formulas:\n{formulas}\n\n"
        "Write a structured review as a JSON object with these keys:\n"
        '  "significance": string, the significance and novelty of the work\n'
        '  "accept_reasons": list of strings\n'
        '  "reject_reasons": list of strings\n'
        '  "suggestions": list of strings\n'
        '  "formula_highlights": list of the most important formulas with a short note\n'
        "Critique the paper's content; avoid personal remarks."
    )
    if strict:
        prompt = f"{STRICT_FORMAT}\n\n{prompt}"
    return prompt


def build_qa_prompt(query: str, retrieved: Sequence[RetrievedChunk]) -> str:
    blocks = [f"[{r.index}] ({r.section_name})\n{r.text}" for r in retrieved]
    context = "\n\n".join(blocks)
    return (
        f"Context passages:\n\n{context}\n\n"
        f"Question: {query}\n\n"
        "Rules:\n"
        "1. Use only the context passages above.\n"
        "2. Cite every passage you rely on as [N].\n"
        "3. If the passages are not sufficient, reply exactly: INSUFFICIENT CONTEXT."
    )


def build_score_prompt(draft: ReviewDraft, strict: bool = False) -> str:
    def bullets(items):
        return "\n".join(f"- {i}" for i in items) or "- (none)"

    prompt = f"""Review to score:

Significance: {draft.significance}

Reasons to accept:
{bullets(draft.accept_reasons)}

Reasons to reject:
{bullets(draft.reject_reasons)}

Suggestions:
{bullets(draft.suggestions)}

Rate the paper on a scale of 1-10, where:
1 = Clear reject
10 = Top paper, strong accept

Respond with EXACTLY this format:
score: N
[One sentence rationale for your score]"""
    if strict:
        prompt = f"{STRICT_SCORE}\n\n{prompt}"
    return prompt


def build_innovation_prompt(
    paper: Paper, review: Optional[ReviewDraft] = None, strict: bool = False
) -> str:
    keys = {d.value: {"score": "integer 1-10", "explanation": "string"} for d in InnovationDimension}
    dims = "\n".join(f"- {d.value}: {d.label}" for d in InnovationDimension)
    review_block = ""
    if review is not None:
        review_block = f"\nExisting review summary:\n{review.significance}\n"
    prompt = (
        f"Title: {paper.title}\n\n"
        f"Abstract: {paper.abstract}\n\n"
        f"Main text (abridged):\n{main_text(paper, limit=12000)}\n"
        f"{review_block}\n"
        f"Assess the paper on each of these dimensions:\n{dims}\n\n"
        "Answer with one JSON object shaped like:\n"
        f"{json.dumps(keys, indent=2)}"
    )
    if strict:
        prompt = f"{STRICT_FORMAT}\n\n{prompt}"
    return prompt


def assessment_context(paper: Paper) -> str:
    """Input context stored with feedback and echoed into learning samples."""
    return f"Title: {paper.title}\n\nAbstract: {paper.abstract}"
