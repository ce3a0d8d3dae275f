from __future__ import annotations

import json
from pathlib import Path

from jsonschema import Draft202012Validator

from prcore.qc import validate_learning_sample

SCHEMA_PATH = Path(__file__).parent.parent / "schema" / "learning-sample.json"


def load_schema():
    with SCHEMA_PATH.open(encoding="utf-8") as f:
        return json.load(f)


def sample(**overrides):
    obj = {
        "fingerprint": "pp_3f9a2c7b01d4e5f6",
        "dimension": "technical_novelty",
        "timestamp": "2025-08-09T04:00:00+00:00",
        "input": "Title: Gaussian Widgets\n\nAbstract: Widgets, but Gaussian.",
        "ai_output": {"score": 8, "explanation": "New kernel trick."},
        "corrected_output": {"score": 5, "explanation": "Known since 2019."},
        "reason": "Known since 2019.",
    }
    obj.update(overrides)
    return obj


def test_sample_validates():
    v = Draft202012Validator(load_schema())
    errs = list(v.iter_errors(sample()))
    assert not errs, f"schema errors: {[e.message for e in errs]}"


def test_schema_rejects_bad_fingerprint_and_score():
    v = Draft202012Validator(load_schema())
    bad = sample(
        fingerprint="ml_3f9a2c7b",
        corrected_output={"score": 11, "explanation": "too high"},
    )
    errs = list(v.iter_errors(bad))
    assert len(errs) == 2


def test_schema_rejects_unknown_dimension():
    v = Draft202012Validator(load_schema())
    assert list(v.iter_errors(sample(dimension="vibes")))


def test_qc_flags_unchanged_scores():
    obj = sample(corrected_output={"score": 8, "explanation": "Agree."})
    errors = validate_learning_sample(obj, SCHEMA_PATH)
    assert errors == ["ai_output.score equals corrected_output.score (8)"]


def test_qc_passes_valid_sample():
    assert validate_learning_sample(sample(), SCHEMA_PATH) == []
