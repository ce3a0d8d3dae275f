#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Coroutine, List, Optional

import typer

from prcore.cache import Stage
from prcore.context import build_context
from prcore.converter import MinerUConverter, load_converter_output
from prcore.entities import InnovationDimension
from prcore.errors import PipelineError
from prcore.io import read_jsonl
from prcore.orchestrator import PaperPipeline
from prcore.qc import DEFAULT_SCHEMA, validate_learning_sample

app = typer.Typer(help="Paper review pipeline: ingest, index, ask, review, score, assess")


def _pipeline(ctx: typer.Context) -> PaperPipeline:
    return PaperPipeline(build_context(ctx.obj.get("config")))


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a pipeline coroutine; pipeline and input errors become a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except (PipelineError, ValueError) as e:
        typer.secho(f"❌ {type(e).__name__}: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, ensure_ascii=False, indent=2))


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    ctx.obj = {"config": config}


@app.command()
def ingest(
    ctx: typer.Context,
    source: Optional[Path] = typer.Argument(None, help="Converter output (.json or .md)"),
    url: Optional[str] = typer.Option(None, help="Convert a paper URL with MinerU instead"),
):
    """Normalize converter output and cache the paper; prints its fingerprint."""
    if (source is None) == (url is None):
        typer.secho("Pass exactly one of SOURCE or --url", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    pipeline = _pipeline(ctx)

    async def go():
        if url:
            output = await asyncio.to_thread(MinerUConverter().convert_url, url)
        else:
            output = load_converter_output(source)
        return await pipeline.ingest(output)

    paper = _run(go())
    typer.secho(
        f"Ingested {paper.title!r}: {len(paper.sections)} sections → {paper.fingerprint}",
        fg=typer.colors.GREEN,
    )
    typer.echo(paper.fingerprint)


@app.command()
def index(ctx: typer.Context, fingerprint: str):
    """Chunk and embed a paper (cached)."""
    vector_index = _run(_pipeline(ctx).index(fingerprint))
    typer.secho(
        f"Indexed {len(vector_index)} chunks with {vector_index.provider} ({vector_index.dim} dims)",
        fg=typer.colors.GREEN,
    )


@app.command()
def ask(
    ctx: typer.Context,
    fingerprint: str,
    question: str,
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Passages to retrieve"),
    model: Optional[str] = typer.Option(None, help="Answering model id"),
):
    """Answer a question grounded in the paper's passages."""
    session = _run(_pipeline(ctx).ask(fingerprint, question, top_k=top_k, model=model))
    typer.echo(session.answer)
    if session.insufficient_context:
        typer.secho("(no relevant passage found)", fg=typer.colors.YELLOW)
    for ref in session.references:
        marker = "*" if ref.index in session.used else " "
        typer.echo(f" {marker}[{ref.index}] {ref.section_name} ({ref.score:.3f})")


@app.command()
def review(
    ctx: typer.Context,
    fingerprint: str,
    model: Optional[str] = typer.Option(None, help="Review model id"),
):
    """Generate (or load) the structured review."""
    draft = _run(_pipeline(ctx).review(fingerprint, model))
    _echo_json(draft.to_dict())


@app.command()
def score(
    ctx: typer.Context,
    fingerprint: str,
    review_model: Optional[str] = typer.Option(None, help="Model that wrote the review"),
    scoring_model: Optional[str] = typer.Option(None, help="Scoring model id"),
):
    """Score the review on a 1-10 scale."""
    result = _run(_pipeline(ctx).score(fingerprint, review_model, scoring_model))
    color = typer.colors.YELLOW if result.clamped else typer.colors.GREEN
    typer.secho(f"Score: {result.score}/10 ({result.model_id})", fg=color)
    typer.echo(result.rationale)


@app.command()
def assess(
    ctx: typer.Context,
    fingerprint: str,
    model: Optional[str] = typer.Option(None, help="Assessment model id"),
    review_model: Optional[str] = typer.Option(None, help="Include this model's review as context"),
):
    """Six-dimension innovation assessment with current human adjustments."""
    assessment = _run(_pipeline(ctx).assess(fingerprint, model, review_model))
    for dim in InnovationDimension:
        d = assessment.get(dim)
        human = f" → human {d.human_score} ({d.human_reason})" if d.human_score is not None else ""
        typer.echo(f"{dim.label:<28} AI {d.ai_score}{human}")


@app.command()
def adjust(
    ctx: typer.Context,
    fingerprint: str,
    dimension: str,
    human_score: int,
    reason: str = typer.Option(..., help="Why the AI score is off"),
    model: Optional[str] = typer.Option(None, help="Assessment model id"),
):
    """Record a human score for one innovation dimension."""
    result = _run(_pipeline(ctx).adjust(fingerprint, dimension, human_score, reason, model))
    d = result.assessment.get(dimension)
    typer.echo(f"{InnovationDimension(dimension).label}: AI {d.ai_score} → human {d.human_score}")
    if not result.persisted:
        typer.secho(f"⚠️ Feedback not saved: {result.error}", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)


@app.command()
def run(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, help="Converter output (.json or .md)"),
    review_model: Optional[str] = typer.Option(None),
    scoring_model: Optional[str] = typer.Option(None),
    assessment_model: Optional[str] = typer.Option(None),
):
    """End-to-end: ingest, then index, review, score and assess concurrently."""
    pipeline = _pipeline(ctx)

    async def go():
        output = load_converter_output(source)
        return await pipeline.process(output, review_model, scoring_model, assessment_model)

    report = _run(go())
    typer.secho(f"Paper {report.fingerprint}", fg=typer.colors.BLUE)
    for name, facet in report.facets.items():
        if facet.ok:
            typer.secho(f"  ✅ {name}", fg=typer.colors.GREEN)
        else:
            typer.secho(f"  ❌ {name}: {facet.error_type}: {facet.error}", fg=typer.colors.RED)
    if report.failed:
        raise typer.Exit(code=1)


@app.command()
def status(ctx: typer.Context, fingerprint: str):
    """Show cached stages, in-flight work and feedback count."""
    _echo_json(_pipeline(ctx).status(fingerprint))


@app.command()
def invalidate(
    ctx: typer.Context,
    fingerprint: str,
    stage: List[Stage] = typer.Option(..., "--stage", help="Stage to drop with its dependents"),
):
    """Drop cached stages; downstream stages go with them."""
    removed = _pipeline(ctx).invalidate(fingerprint, stage)
    typer.secho(f"Removed: {', '.join(s.value for s in removed) or 'nothing'}", fg=typer.colors.GREEN)


@app.command()
def clear(ctx: typer.Context, fingerprint: str):
    """Delete all cached state for a paper; the feedback log is kept."""
    if _pipeline(ctx).clear(fingerprint):
        typer.secho(f"Cleared {fingerprint}", fg=typer.colors.GREEN)
    else:
        typer.secho(f"Nothing cached for {fingerprint}", fg=typer.colors.YELLOW)


@app.command()
def export(
    ctx: typer.Context,
    out_dir: Path = typer.Option(Path("outputs/feedback"), help="Where to write the exports"),
    fingerprint: Optional[str] = typer.Option(None, help="Limit to one paper"),
):
    """Export the feedback log and the derived learning samples as JSONL."""
    records, samples = _pipeline(ctx).export_feedback(
        out_dir / "feedback_records.jsonl",
        out_dir / "learning_samples.jsonl",
        fingerprint,
    )
    typer.secho(
        f"Exported {records} feedback records and {samples} learning samples → {out_dir}",
        fg=typer.colors.GREEN,
    )


@app.command()
def qc(
    in_jsonl: Path = typer.Option(..., exists=True),
    schema: Path = typer.Option(DEFAULT_SCHEMA, exists=True),
):
    """Validate exported learning samples against the JSON Schema."""
    ok = True
    count = 0
    for count, obj in enumerate(read_jsonl(in_jsonl), start=1):
        for err in validate_learning_sample(obj, schema):
            ok = False
            typer.secho(f"[line {count}] {err}", fg=typer.colors.RED)
    if ok:
        typer.secho(f"QC passed ✅ ({count} samples)", fg=typer.colors.GREEN)
    else:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
