from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Tuple, Union

from .entities import Paper, Section
from .errors import ConversionError
from .hashing import fingerprint_text

logger = logging.getLogger(__name__)

ConverterOutput = Union[str, Dict[str, Any]]

_HEADING_RE = re.compile(r"^(#+)\s+(.+?)\s*#*\s*$")
_FORMULA_PATTERNS = [
    re.compile(r"\$\$(.+?)\$\$", re.DOTALL),
    re.compile(r"\\\[(.+?)\\\]", re.DOTALL),
    re.compile(r"\\begin\{(equation|align)\*?\}(.+?)\\end\{\1\*?\}", re.DOTALL),
]
_FIGURE_REF_RE = re.compile(r"\b(Figure|Fig\.|Table)\s*(\d+)", re.IGNORECASE)


def normalize(converter_output: ConverterOutput) -> Paper:
    """Turn converter output into a Paper.

    Accepts the structured dict produced by the converter service
    (``title``, ``abstract``, ``sections`` with ``heading``/``name`` and
    ``text``, optional ``formulas`` and ``figures``) or its raw Markdown.
    """
    if isinstance(converter_output, str):
        raw = _parse_markdown(converter_output)
    elif isinstance(converter_output, dict):
        raw = converter_output
    else:
        raise ConversionError(
            f"Unsupported converter output type: {type(converter_output).__name__}"
        )

    sections = _normalize_sections(raw.get("sections") or [])
    if not sections:
        raise ConversionError("Converter output contains no section text")

    title = _clean_inline(str(raw.get("title") or "")) or "Unknown Title"
    abstract = _clean_inline(str(raw.get("abstract") or ""))

    formulas = _unique(
        [_clean_inline(str(f)) for f in raw.get("formulas") or []]
        + [f for s in sections for f in extract_formulas(s.text)]
    )
    figure_refs = _unique(
        [_figure_id(f) for f in raw.get("figures") or [] if _figure_id(f)]
        + [r for s in sections for r in extract_figure_refs(s.text)]
    )

    fingerprint = fingerprint_text(_canonical_text(title, abstract, sections))
    logger.info(
        f"Normalized paper {fingerprint}: {len(sections)} sections, "
        f"{len(formulas)} formulas, {len(figure_refs)} figure/table refs"
    )
    return Paper(
        fingerprint=fingerprint,
        title=title,
        abstract=abstract,
        sections=tuple(sections),
        formulas=tuple(formulas),
        figure_refs=tuple(figure_refs),
    )


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    return "\n".join(lines).strip()


def extract_formulas(text: str) -> List[str]:
    found: List[Tuple[int, str]] = []
    for pattern in _FORMULA_PATTERNS:
        for m in pattern.finditer(text):
            body = m.group(m.lastindex or 1)
            found.append((m.start(), _clean_inline(body)))
    return [f for _, f in sorted(found) if f]


def extract_figure_refs(text: str) -> List[str]:
    refs = []
    for m in _FIGURE_REF_RE.finditer(text):
        kind = "Table" if m.group(1).lower() == "table" else "Figure"
        refs.append(f"{kind} {m.group(2)}")
    return refs


def _normalize_sections(raw_sections: Iterable[Any]) -> List[Section]:
    sections: List[Section] = []
    for item in raw_sections:
        if not isinstance(item, dict):
            raise ConversionError(f"Malformed section entry: {item!r}")
        name = _clean_inline(str(item.get("heading") or item.get("name") or ""))
        text = normalize_text(str(item.get("text") or ""))
        if not text:
            continue
        sections.append(Section(name=name or f"Section {len(sections) + 1}", text=text, order=len(sections)))
    return sections


def _canonical_text(title: str, abstract: str, sections: List[Section]) -> str:
    parts = [title, abstract]
    parts.extend(f"{s.name}\n{s.text}" for s in sections)
    return "\n\n".join(parts)


def _parse_markdown(content: str) -> Dict[str, Any]:
    """Parse converter Markdown into title, abstract and sections."""
    content = normalize_text(content)
    if not content:
        raise ConversionError("Converter returned empty markdown")

    title = ""
    abstract = ""
    sections: List[Dict[str, str]] = []
    preamble: List[str] = []
    current_heading = None
    current_text: List[str] = []

    def flush():
        nonlocal abstract
        if current_heading is None:
            return
        body = "\n".join(current_text).strip()
        if current_heading.lower().strip(" :.") == "abstract" and not abstract:
            abstract = body
        elif body:
            sections.append({"heading": current_heading, "text": body})

    for line in content.split("\n"):
        m = _HEADING_RE.match(line.strip())
        if m:
            heading = m.group(2).strip()
            if len(m.group(1)) == 1 and not title and not sections and current_heading is None:
                title = heading
                continue
            flush()
            current_heading = heading
            current_text = []
        elif current_heading is not None:
            current_text.append(line)
        else:
            preamble.append(line)
    flush()

    if not title:
        title = _title_from_preamble(preamble)

    if not abstract:
        m = re.search(r"(?i)\*\*abstract\*\*[:\s]*(.*?)(?=\n\n|\Z)", content, re.DOTALL)
        if m:
            abstract = m.group(1)

    if not sections:
        # headings-free markdown: keep the body as a single section
        body = "\n".join(
            line for line in preamble if line.strip() and line.strip() != title
        ).strip()
        if body:
            sections.append({"heading": "Content", "text": body})

    return {"title": title, "abstract": abstract, "sections": sections}


def _title_from_preamble(lines: List[str]) -> str:
    for line in lines[:20]:
        line = line.strip()
        if len(line) > 10 and not line.startswith(("*", "-", "[", "!")):
            if not line.lower().startswith(("arxiv:", "doi:", "http", "abstract")):
                return re.sub(r"\s+", " ", line)
    return ""


def _figure_id(figure: Any) -> str:
    if isinstance(figure, dict):
        label = str(figure.get("label") or figure.get("figure_id") or "")
        refs = extract_figure_refs(label)
        return refs[0] if refs else ""
    refs = extract_figure_refs(str(figure))
    return refs[0] if refs else ""


def _clean_inline(text: str) -> str:
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    return re.sub(r"\s+", " ", text).strip()


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out
