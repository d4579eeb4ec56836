from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ExamKind(str, Enum):
    OIR = "oir"
    PPDT = "ppdt"
    TAT = "tat"
    WAT = "wat"
    SRT = "srt"
    MOCK = "mock"


class TimerScope(str, Enum):
    PER_STIMULUS = "per_stimulus"
    WHOLE_POOL = "whole_pool"


class ResponseKind(str, Enum):
    NONE = "none"  # written offline on paper
    CHOICE = "choice"
    TEXT = "text"


class PersistShape(str, Enum):
    NOTHING = "nothing"
    PER_STIMULUS = "per_stimulus"
    PER_SESSION = "per_session"


class SubmitPolicy(str, Enum):
    NEVER = "never"
    LAST_STIMULUS = "last_stimulus"
    ANYTIME = "anytime"
    RESPONSE_PHASE = "response_phase"


@dataclass(frozen=True, slots=True)
class PhaseSpec:
    name: str
    duration_s: int
    accepts_response: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("phase name must be non-empty")
        if isinstance(self.duration_s, bool) or not isinstance(self.duration_s, int):
            raise ValueError("phase duration must be an int number of seconds")
        if self.duration_s <= 0:
            raise ValueError("phase duration must be > 0")


@dataclass(frozen=True, slots=True)
class ExamConfig:
    kind: ExamKind
    title: str
    phases: tuple[PhaseSpec, ...]
    timer_scope: TimerScope
    response_kind: ResponseKind
    persist_shape: PersistShape
    submit_policy: SubmitPolicy
    collection: str | None = None
    attempts_collection: str | None = None
    pool_size_choices: tuple[int, ...] = ()
    default_pool_size: int | None = None
    shuffle: bool = True
    stimulus_label: str = "Item"
    instructions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.phases:
            raise ValueError("at least one phase is required")
        if self.timer_scope is TimerScope.WHOLE_POOL and len(self.phases) != 1:
            raise ValueError("whole-pool timers use exactly one phase")
        if any(c <= 0 for c in self.pool_size_choices):
            raise ValueError("pool size choices must be > 0")
        if self.default_pool_size is not None and self.default_pool_size not in self.pool_size_choices:
            raise ValueError("default_pool_size must be one of pool_size_choices")
        if self.persist_shape is not PersistShape.NOTHING and not self.attempts_collection:
            raise ValueError("attempts_collection is required when attempts are persisted")

    @property
    def selects_pool_size(self) -> bool:
        return bool(self.pool_size_choices)

    @property
    def seconds_per_stimulus(self) -> int:
        return sum(p.duration_s for p in self.phases)

    def phase_index(self, name: str) -> int:
        for i, p in enumerate(self.phases):
            if p.name == name:
                return i
        raise KeyError(name)

    def attempts_collection_for(self, user_id: str) -> str:
        assert self.attempts_collection is not None
        return self.attempts_collection.format(user_id=user_id)


_TENS_UP_TO_300 = tuple(range(10, 301, 10))

OIR = ExamConfig(
    kind=ExamKind.OIR,
    title="Officer Intelligence Rating (OIR)",
    phases=(PhaseSpec("answer", 40 * 60, accepts_response=True),),
    timer_scope=TimerScope.WHOLE_POOL,
    response_kind=ResponseKind.CHOICE,
    persist_shape=PersistShape.PER_SESSION,
    submit_policy=SubmitPolicy.LAST_STIMULUS,
    collection="ssb_oir_questions",
    attempts_collection="oirAttempts",
    stimulus_label="Question",
    instructions=(
        "Verbal and non-verbal reasoning questions.",
        "Total time: 40 minutes for the whole set.",
        "Move freely between questions; submit on the last question.",
        "Unanswered questions score zero.",
    ),
)

PPDT = ExamConfig(
    kind=ExamKind.PPDT,
    title="Picture Perception & Description Test (PPDT)",
    phases=(PhaseSpec("view", 30), PhaseSpec("write", 4 * 60)),
    timer_scope=TimerScope.PER_STIMULUS,
    response_kind=ResponseKind.NONE,
    persist_shape=PersistShape.NOTHING,
    submit_policy=SubmitPolicy.NEVER,
    collection="ssb_ppdt_pictures",
    pool_size_choices=tuple(range(1, 11)),
    default_pool_size=1,
    stimulus_label="Picture",
    instructions=(
        "Keep your pen and paper ready.",
        "View a hazy picture for 30 seconds.",
        "Then write your story on paper for 4 minutes.",
    ),
)

TAT = ExamConfig(
    kind=ExamKind.TAT,
    title="Thematic Apperception Test (TAT)",
    phases=(PhaseSpec("view", 30), PhaseSpec("write", 4 * 60, accepts_response=True)),
    timer_scope=TimerScope.PER_STIMULUS,
    response_kind=ResponseKind.TEXT,
    persist_shape=PersistShape.PER_STIMULUS,
    submit_policy=SubmitPolicy.RESPONSE_PHASE,
    collection="ssb_tat_pictures",
    attempts_collection="tatAttempts",
    pool_size_choices=tuple(range(1, 13)),
    default_pool_size=1,
    stimulus_label="Picture",
    instructions=(
        "View each picture for 30 seconds.",
        "Then write a story about it for 4 minutes.",
        "What led to it, what is happening, what happens next.",
        "Submit early once your story is written.",
    ),
)

WAT = ExamConfig(
    kind=ExamKind.WAT,
    title="Word Association Test (WAT)",
    phases=(PhaseSpec("respond", 15),),
    timer_scope=TimerScope.PER_STIMULUS,
    response_kind=ResponseKind.NONE,
    persist_shape=PersistShape.NOTHING,
    submit_policy=SubmitPolicy.NEVER,
    collection="ssb_wat_words",
    pool_size_choices=_TENS_UP_TO_300,
    default_pool_size=60,
    stimulus_label="Word",
    instructions=(
        "Keep your pen and paper ready.",
        "Each word is shown for 15 seconds, then auto-advances.",
        "Write the first thought that comes to your mind.",
    ),
)

SRT = ExamConfig(
    kind=ExamKind.SRT,
    title="Situation Reaction Test (SRT)",
    phases=(PhaseSpec("respond", 30),),
    timer_scope=TimerScope.PER_STIMULUS,
    response_kind=ResponseKind.NONE,
    persist_shape=PersistShape.NOTHING,
    submit_policy=SubmitPolicy.NEVER,
    collection="ssb_srt_situations",
    pool_size_choices=_TENS_UP_TO_300,
    default_pool_size=60,
    stimulus_label="Situation",
    instructions=(
        "Keep your pen and paper ready.",
        "Each situation is shown for 30 seconds, then auto-advances.",
        "Write your reaction on paper as it appears.",
    ),
)

CONFIGS: dict[ExamKind, ExamConfig] = {c.kind: c for c in (OIR, PPDT, TAT, WAT, SRT)}


def config_for(kind: ExamKind | str) -> ExamConfig:
    kind = ExamKind(kind)
    if kind is ExamKind.MOCK:
        raise ValueError("mock tests are configured per test; use mock_test_config()")
    return CONFIGS[kind]


def mock_test_config(*, title: str, duration_minutes: int) -> ExamConfig:
    """Configuration for an admin-authored multiple-choice mock test."""

    return ExamConfig(
        kind=ExamKind.MOCK,
        title=title,
        phases=(PhaseSpec("answer", int(duration_minutes) * 60, accepts_response=True),),
        timer_scope=TimerScope.WHOLE_POOL,
        response_kind=ResponseKind.CHOICE,
        persist_shape=PersistShape.PER_SESSION,
        submit_policy=SubmitPolicy.ANYTIME,
        attempts_collection="users/{user_id}/mockTestAttempts",
        shuffle=False,
        stimulus_label="Question",
        instructions=(
            f"{int(duration_minutes)} minutes for the whole test.",
            "Move freely between questions and submit at any time.",
        ),
    )
