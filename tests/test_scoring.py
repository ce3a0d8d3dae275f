from __future__ import annotations

import asyncio
import logging

import pytest

from prcore.entities import ReviewDraft
from prcore.errors import ScoreParseError
from prcore.models import ModelId
from prcore.prompts import STRICT_SCORE
from prcore.scoring import Scorer, clamp_score, parse_score

from conftest import FAST_RETRY, ScriptedBackend

DRAFT = ReviewDraft(
    fingerprint="pp_0123456789abcdef",
    model_id="gpt-4o",
    significance="Useful benchmark.",
    accept_reasons=("Strong theorem", "Good coverage"),
    reject_reasons=("No latency numbers",),
    suggestions=("Add ablations",),
)


def score(replies, draft=DRAFT):
    backend = ScriptedBackend(ModelId.CLAUDE, replies)
    return asyncio.run(Scorer(FAST_RETRY).score(draft, backend)), backend


def test_parse_score_prefers_labelled_value():
    assert parse_score("Out of 10 I'd say\nscore: 8") == (8.0, "score: 8")
    assert parse_score("7\nfine") == (7.0, "fine")
    assert parse_score("no digits") == (None, "")


@pytest.mark.parametrize(
    "raw,expected",
    [(0, (1, True)), (-3, (1, True)), (11, (10, True)), (42.7, (10, True)), (6.4, (6, False)), (10, (10, False))],
)
def test_clamp_score(raw, expected):
    assert clamp_score(raw) == expected


def test_out_of_range_is_clamped_and_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="prcore.scoring"):
        result, _ = score(["score: 14\nExceptional."])
    assert result.score == 10
    assert result.clamped
    assert result.raw_score == 14.0
    assert "clamped to 10" in caplog.text


def test_rationale_quotes_accept_and_reject_reasons():
    result, _ = score(["score: 6\nSolid."])
    assert "Strong theorem" in result.rationale
    assert "No latency numbers" in result.rationale
    assert result.review_model_id == "gpt-4o"
    assert result.model_id == "claude"
    assert 1 <= result.score <= 10


def test_missing_number_triggers_one_strict_reask():
    result, backend = score(["I cannot say.", "score: 5\nOk."])
    assert result.score == 5
    assert backend.calls == 2
    assert backend.requests[1].prompt.startswith(STRICT_SCORE)


def test_two_unparseable_replies_raise():
    with pytest.raises(ScoreParseError):
        score(["nothing", "still nothing"])


@pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_score_is_a_parse_error(raw):
    with pytest.raises(ScoreParseError, match="not a finite number"):
        clamp_score(raw)


def test_overflowing_number_triggers_strict_reask():
    result, backend = score(["score: " + "9" * 400, "score: 8\nFine."])
    assert result.score == 8
    assert backend.calls == 2
