from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from .stimuli import Question, Stimulus

Response = int | str


class ResponseOutcome(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNANSWERED = "unanswered"


@dataclass(frozen=True, slots=True)
class QuestionOutcome:
    stimulus_id: str
    prompt: str
    user_answer: int | None
    correct_answer: int
    outcome: ResponseOutcome
    explanation: str = ""

    @property
    def is_correct(self) -> bool:
        return self.outcome is ResponseOutcome.CORRECT

    @property
    def was_answered(self) -> bool:
        return self.outcome is not ResponseOutcome.UNANSWERED


@dataclass(frozen=True, slots=True)
class ScoreSummary:
    correct_count: int
    incorrect_count: int
    unanswered_count: int
    total_count: int
    percentage: int
    breakdown: tuple[QuestionOutcome, ...] = ()

    @property
    def answered_count(self) -> int:
        return self.correct_count + self.incorrect_count


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def is_submittable_text(text: str | None) -> bool:
    return text is not None and text.strip() != ""


class ResponseCollector:
    """Latest response per stimulus id; recording again overwrites."""

    def __init__(self) -> None:
        self._responses: dict[str, Response] = {}

    def record(self, stimulus_id: str, response: Response) -> None:
        self._responses[stimulus_id] = response

    def get(self, stimulus_id: str) -> Response | None:
        return self._responses.get(stimulus_id)

    def has(self, stimulus_id: str) -> bool:
        return stimulus_id in self._responses

    def snapshot(self) -> dict[str, Response]:
        return dict(self._responses)

    def clear(self) -> None:
        self._responses.clear()

    def __len__(self) -> int:
        return len(self._responses)


def score(
    pool: Iterable[Stimulus],
    responses: Mapping[str, Response],
    correct_answers: Mapping[str, int] | None = None,
) -> ScoreSummary:
    """Score a multiple-choice pool.

    ``correct_answers`` overrides the key carried on each Question. An
    unanswered question counts against the percentage but is reported
    separately from incorrect ones.
    """

    correct = incorrect = unanswered = 0
    breakdown: list[QuestionOutcome] = []

    for stimulus in pool:
        if not isinstance(stimulus, Question):
            raise TypeError(f"scoring requires questions, got {type(stimulus).__name__}")
        key = stimulus.correct_option_index
        if correct_answers is not None and stimulus.id in correct_answers:
            key = int(correct_answers[stimulus.id])

        raw = responses.get(stimulus.id)
        user: int | None = None
        if raw is not None and not isinstance(raw, bool):
            try:
                user = int(raw)
            except ValueError:
                user = None

        if user is None:
            outcome = ResponseOutcome.UNANSWERED
            unanswered += 1
        elif user == key:
            outcome = ResponseOutcome.CORRECT
            correct += 1
        else:
            outcome = ResponseOutcome.INCORRECT
            incorrect += 1

        breakdown.append(
            QuestionOutcome(
                stimulus_id=stimulus.id,
                prompt=stimulus.text or "",
                user_answer=user,
                correct_answer=key,
                outcome=outcome,
                explanation=stimulus.explanation,
            )
        )

    total = len(breakdown)
    percentage = 0 if total == 0 else round_half_up(100.0 * correct / total)
    return ScoreSummary(
        correct_count=correct,
        incorrect_count=incorrect,
        unanswered_count=unanswered,
        total_count=total,
        percentage=percentage,
        breakdown=tuple(breakdown),
    )
