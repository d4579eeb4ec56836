from __future__ import annotations

import pytest

from ssb_trainer.responses import (
    ResponseCollector,
    ResponseOutcome,
    is_submittable_text,
    round_half_up,
    score,
)
from ssb_trainer.stimuli import Question, Word


def _questions(n: int, correct: int = 1) -> list[Question]:
    return [Question(id=f"q{i}", options=("a", "b", "c", "d"), correct_option_index=correct, text=f"Q{i}") for i in range(n)]


def test_record_overwrites_previous_response() -> None:
    c = ResponseCollector()
    c.record("q1", 0)
    c.record("q1", 3)
    assert c.get("q1") == 3
    assert len(c) == 1


def test_snapshot_is_a_copy() -> None:
    c = ResponseCollector()
    c.record("q1", 2)
    snap = c.snapshot()
    snap["q1"] = 0
    assert c.get("q1") == 2


def test_score_tri_state_counts() -> None:
    pool = _questions(5)
    summary = score(pool, {"q0": 1, "q1": 0, "q3": 1})

    assert summary.correct_count == 2
    assert summary.incorrect_count == 1
    assert summary.unanswered_count == 2
    assert summary.correct_count + summary.incorrect_count + summary.unanswered_count == summary.total_count
    assert summary.percentage == 40
    assert [o.outcome for o in summary.breakdown] == [
        ResponseOutcome.CORRECT,
        ResponseOutcome.INCORRECT,
        ResponseOutcome.UNANSWERED,
        ResponseOutcome.CORRECT,
        ResponseOutcome.UNANSWERED,
    ]


def test_percentage_rounds_half_up() -> None:
    # 1/8 = 12.5% rounds to 13, 5/8 = 62.5% rounds to 63.
    pool = _questions(8)
    assert score(pool, {"q0": 1}).percentage == 13
    assert score(pool, {f"q{i}": 1 for i in range(5)}).percentage == 63
    assert round_half_up(0.5) == 1
    assert round_half_up(2.4999) == 2


def test_correct_answer_override() -> None:
    pool = _questions(2, correct=0)
    summary = score(pool, {"q0": 3, "q1": 0}, correct_answers={"q0": 3})
    assert summary.correct_count == 2


def test_empty_pool_scores_zero() -> None:
    summary = score([], {})
    assert summary.total_count == 0
    assert summary.percentage == 0


def test_score_rejects_non_questions() -> None:
    with pytest.raises(TypeError):
        score([Word("w", "x")], {})


def test_question_validates_options() -> None:
    with pytest.raises(ValueError):
        Question(id="q", options=("only",), correct_option_index=0)
    with pytest.raises(ValueError):
        Question(id="q", options=("a", "b"), correct_option_index=2)


@pytest.mark.parametrize(("text", "ok"), [(None, False), ("", False), ("   \n", False), ("A story.", True)])
def test_is_submittable_text(text: str | None, ok: bool) -> None:
    assert is_submittable_text(text) is ok
