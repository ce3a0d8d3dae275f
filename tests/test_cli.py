from __future__ import annotations

import json
import re
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cli.pr import app
from prcore.models import ModelId

from conftest import ScriptedBackend

runner = CliRunner()

SCHEMA_PATH = Path(__file__).parent.parent / "schema" / "learning-sample.json"
FINGERPRINT = re.compile(r"pp_[0-9a-f]{16}")


@pytest.fixture
def cli_ctx(ctx, monkeypatch):
    monkeypatch.setattr("cli.pr.build_context", lambda config_path=None: ctx)
    return ctx


@pytest.fixture
def paper_file(tmp_path: Path, paper_dict) -> Path:
    path = tmp_path / "paper.json"
    path.write_text(json.dumps(paper_dict), encoding="utf-8")
    return path


def ingest(paper_file: Path) -> str:
    result = runner.invoke(app, ["ingest", str(paper_file)])
    assert result.exit_code == 0, result.output
    return FINGERPRINT.findall(result.output)[-1]


def test_ingest_requires_exactly_one_source(cli_ctx):
    result = runner.invoke(app, ["ingest"])
    assert result.exit_code == 2


def test_ingest_then_status(cli_ctx, paper_file):
    fp = ingest(paper_file)
    assert fp.startswith("pp_")

    result = runner.invoke(app, ["status", fp])
    assert result.exit_code == 0, result.output
    status = json.loads(result.output)
    assert status["stages"] == ["uploaded", "normalized"]
    assert status["feedback_records"] == 0


def test_unknown_paper_exits_with_error(cli_ctx):
    result = runner.invoke(app, ["review", "pp_0000000000000000"])
    assert result.exit_code == 1
    assert "PaperNotFoundError" in result.output


def test_run_then_invalidate(cli_ctx, paper_file):
    result = runner.invoke(app, ["run", str(paper_file)])
    assert result.exit_code == 0, result.output
    assert "✅ score" in result.output
    fp = FINGERPRINT.search(result.output).group(0)

    result = runner.invoke(app, ["invalidate", fp, "--stage", "reviewed"])
    assert result.exit_code == 0, result.output
    assert "reviewed, scored, assessed" in result.output
    assert [s.value for s in cli_ctx.cache.stages(fp)] == ["uploaded", "normalized", "indexed"]


def test_ask_prints_references(cli_ctx, paper_file):
    fp = ingest(paper_file)
    result = runner.invoke(app, ["ask", fp, "Which theorem bounds the gradient?"])
    assert result.exit_code == 0, result.output
    assert "The theorem bounds the gradient [1]." in result.output
    marked = re.findall(r" \*\[(\d+)\] Method", result.output)
    # the cited [1] was not retrieved, so every retrieved passage counts as used
    assert sorted(int(i) for i in marked) == [3, 4, 5]
    assert "[1] Introduction" not in result.output


def test_adjust_export_and_qc(cli_ctx, paper_file, tmp_path: Path):
    fp = ingest(paper_file)
    result = runner.invoke(
        app, ["adjust", fp, "technical_novelty", "9", "--reason", "First exact bound"]
    )
    assert result.exit_code == 0, result.output
    assert "AI 6 → human 9" in result.output

    out_dir = tmp_path / "export"
    result = runner.invoke(app, ["export", "--out-dir", str(out_dir)])
    assert result.exit_code == 0, result.output
    samples = out_dir / "learning_samples.jsonl"
    assert (out_dir / "feedback_records.jsonl").exists()

    result = runner.invoke(app, ["qc", "--in-jsonl", str(samples), "--schema", str(SCHEMA_PATH)])
    assert result.exit_code == 0, result.output
    assert "1 samples" in result.output


def test_adjust_rejects_out_of_range_score(cli_ctx, paper_file):
    fp = ingest(paper_file)
    result = runner.invoke(app, ["adjust", fp, "technical_novelty", "11", "--reason", "x"])
    assert result.exit_code == 1
    assert cli_ctx.feedback.records(fp) == []


def test_ask_marks_only_cited_passages(cli_ctx, paper_file):
    cli_ctx.registry.register(ScriptedBackend(ModelId.LOCAL, ["Bounded in [4]."]))
    fp = ingest(paper_file)
    result = runner.invoke(app, ["ask", fp, "Which theorem bounds the gradient?"])
    assert result.exit_code == 0, result.output
    assert re.findall(r" \*\[(\d+)\] Method", result.output) == ["4"]
    assert len(re.findall(r"\[\d+\] Method", result.output)) == 3
