from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .kinds import ExamKind
from .responses import ScoreSummary


def utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One append-only attempt, ready to be written to ``collection``.

    Scored sessions aggregate into a single record; TAT stories are one
    record per picture.
    """

    collection: str
    user_id: str
    test_kind: ExamKind
    time_taken_s: int
    completed_at_utc: str
    stimulus_id: str | None = None
    response: object | None = None
    correct_answer: int | None = None
    is_correct: bool | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "userId": self.user_id,
            "testType": self.test_kind.value.upper(),
            "timeTaken": int(self.time_taken_s),
            "createdAt": self.completed_at_utc,
        }
        if self.stimulus_id is not None:
            doc["stimulusId"] = self.stimulus_id
        if self.response is not None:
            doc["response"] = self.response
        if self.correct_answer is not None:
            doc["correctAnswer"] = self.correct_answer
        if self.is_correct is not None:
            doc["isCorrect"] = self.is_correct
        doc.update(self.extra)
        return doc


def _breakdown_rows(summary: ScoreSummary) -> list[dict[str, Any]]:
    return [
        {
            "questionId": o.stimulus_id,
            "question": o.prompt,
            "userAnswer": o.user_answer,
            "correctAnswer": o.correct_answer,
            "isCorrect": o.is_correct,
            "isUnanswered": not o.was_answered,
            "explanation": o.explanation,
        }
        for o in summary.breakdown
    ]


def scored_session_record(
    *,
    collection: str,
    user_id: str,
    kind: ExamKind,
    summary: ScoreSummary,
    time_taken_s: int,
    time_limit_s: int,
    test_id: str | None = None,
    test_title: str | None = None,
    completed_at_utc: str | None = None,
) -> AttemptRecord:
    """Aggregate record for an OIR or mock-test session."""

    extra: dict[str, Any] = {
        "score": summary.percentage,
        "totalQuestions": summary.total_count,
        "correctAnswers": summary.correct_count,
        "answeredQuestions": summary.answered_count,
        "unansweredQuestions": summary.unanswered_count,
        "timeLimit": int(time_limit_s),
        "answers": _breakdown_rows(summary),
    }
    if test_id is not None:
        extra["testId"] = test_id
    if test_title is not None:
        extra["testTitle"] = test_title

    return AttemptRecord(
        collection=collection,
        user_id=user_id,
        test_kind=kind,
        time_taken_s=int(time_taken_s),
        completed_at_utc=completed_at_utc or utc_now_iso(),
        extra=extra,
    )


def story_record(
    *,
    collection: str,
    user_id: str,
    picture_id: str,
    story: str,
    picture_order: int,
    time_taken_s: int,
    completed_at_utc: str | None = None,
) -> AttemptRecord:
    """Per-picture TAT record; an empty story is kept as ``""``."""

    text = story.strip()
    return AttemptRecord(
        collection=collection,
        user_id=user_id,
        test_kind=ExamKind.TAT,
        time_taken_s=int(time_taken_s),
        completed_at_utc=completed_at_utc or utc_now_iso(),
        stimulus_id=picture_id,
        response=text,
        extra={"pictureId": picture_id, "story": text, "pictureOrder": int(picture_order)},
    )


@dataclass(frozen=True, slots=True)
class SessionOutcome:
    """Locally tracked completion metadata (kept for every kind, never persisted)."""

    kind: ExamKind
    title: str
    stimulus_count: int
    elapsed_s: int
    unanswered_count: int
    score: ScoreSummary | None = None

    def summary_lines(self) -> list[str]:
        mm = self.elapsed_s // 60
        ss = self.elapsed_s % 60
        lines = [
            "Test Completed",
            "",
            f"Items:     {self.stimulus_count}",
            f"Time:      {mm:02d}:{ss:02d}",
        ]
        if self.score is not None:
            s = self.score
            lines.extend(
                [
                    f"Score:     {s.percentage}%",
                    f"Correct:   {s.correct_count}/{s.total_count}",
                    f"Incorrect: {s.incorrect_count}",
                    f"Skipped:   {s.unanswered_count}",
                ]
            )
        return lines
