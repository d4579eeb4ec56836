from __future__ import annotations

import re

from ssb_trainer.kinds import ExamKind
from ssb_trainer.responses import score
from ssb_trainer.results import SessionOutcome, scored_session_record, story_record, utc_now_iso
from ssb_trainer.stimuli import Question


def _summary():
    pool = [
        Question(id="q1", options=("a", "b"), correct_option_index=0, text="First", explanation="Because."),
        Question(id="q2", options=("a", "b"), correct_option_index=1, text="Second"),
        Question(id="q3", options=("a", "b"), correct_option_index=1, text="Third"),
    ]
    return score(pool, {"q1": 0, "q2": 0})


def test_utc_now_iso_format() -> None:
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", utc_now_iso())


def test_scored_session_document_shape() -> None:
    rec = scored_session_record(
        collection="oirAttempts",
        user_id="u1",
        kind=ExamKind.OIR,
        summary=_summary(),
        time_taken_s=312,
        time_limit_s=2400,
        completed_at_utc="2024-05-01T08:00:00Z",
    )
    doc = rec.to_document()
    assert doc["userId"] == "u1"
    assert doc["testType"] == "OIR"
    assert doc["timeTaken"] == 312
    assert doc["createdAt"] == "2024-05-01T08:00:00Z"
    assert doc["score"] == 33
    assert (doc["correctAnswers"], doc["answeredQuestions"], doc["unansweredQuestions"]) == (1, 2, 1)
    assert "testId" not in doc

    rows = doc["answers"]
    assert rows[0] == {
        "questionId": "q1",
        "question": "First",
        "userAnswer": 0,
        "correctAnswer": 0,
        "isCorrect": True,
        "isUnanswered": False,
        "explanation": "Because.",
    }
    assert rows[2]["userAnswer"] is None
    assert rows[2]["isUnanswered"] is True


def test_mock_record_carries_test_identity() -> None:
    doc = scored_session_record(
        collection="users/u1/mockTestAttempts",
        user_id="u1",
        kind=ExamKind.MOCK,
        summary=_summary(),
        time_taken_s=60,
        time_limit_s=600,
        test_id="m1",
        test_title="Mini",
    ).to_document()
    assert (doc["testId"], doc["testTitle"], doc["testType"]) == ("m1", "Mini", "MOCK")


def test_story_record_keeps_empty_story() -> None:
    rec = story_record(
        collection="tatAttempts",
        user_id="u1",
        picture_id="p9",
        story="   ",
        picture_order=2,
        time_taken_s=240,
    )
    doc = rec.to_document()
    assert doc["story"] == ""
    assert doc["pictureId"] == "p9"
    assert doc["pictureOrder"] == 2
    assert doc["testType"] == "TAT"


def test_outcome_summary_lines() -> None:
    plain = SessionOutcome(kind=ExamKind.WAT, title="WAT", stimulus_count=10, elapsed_s=150, unanswered_count=10)
    lines = plain.summary_lines()
    assert lines[0] == "Test Completed"
    assert "Time:      02:30" in lines
    assert not any(line.startswith("Score") for line in lines)

    scored = SessionOutcome(
        kind=ExamKind.OIR, title="OIR", stimulus_count=3, elapsed_s=61, unanswered_count=1, score=_summary()
    )
    assert "Score:     33%" in scored.summary_lines()
    assert "Skipped:   1" in scored.summary_lines()
