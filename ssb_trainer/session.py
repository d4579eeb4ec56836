from __future__ import annotations

import logging
import random
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .clock import Clock, PhaseClock
from .errors import EmptyPoolError, InsufficientPoolWarning
from .kinds import (
    ExamConfig,
    PersistShape,
    PhaseSpec,
    ResponseKind,
    SubmitPolicy,
    TimerScope,
    config_for,
)
from .persistence import AttemptRecorder, BlobStore, DocumentStore
from .responses import Response, ResponseCollector, ScoreSummary, is_submittable_text, score
from .results import SessionOutcome, scored_session_record, story_record
from .stimuli import MockTest, Question, Stimulus, StimulusPool, StimulusSource, select_subset

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    INSTRUCTIONS = "instructions"
    SELECTING = "selecting"
    RUNNING = "running"
    COMPLETED = "completed"


class SessionEventKind(str, Enum):
    STIMULUS_SHOWN = "stimulus_shown"
    PHASE_EXPIRED = "phase_expired"
    SEQUENCE_COMPLETE = "sequence_complete"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: SessionEventKind
    stimulus_index: int
    stimulus_id: str | None
    phase: str | None
    at_s: float


@dataclass(slots=True)
class SessionState:
    stimulus_index: int = 0
    phase_index: int = 0
    seconds_remaining: int = 0
    responses: dict[str, Response] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.INSTRUCTIONS


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    title: str
    status: SessionStatus
    instructions: tuple[str, ...]
    stimulus_label: str
    stimulus: Stimulus | None
    stimulus_index: int
    stimulus_count: int
    phase: str | None
    accepts_response: bool
    seconds_remaining: int | None
    response: Response | None
    answered_count: int
    can_submit: bool
    pool_size_choice: int | None
    pool_size_choices: tuple[int, ...]
    available_count: int
    image_url: str | None = None
    outcome: SessionOutcome | None = None


EventListener = Callable[[SessionEvent], None]


def _is_answered(response: Response | None) -> bool:
    if response is None:
        return False
    if isinstance(response, str):
        return response.strip() != ""
    return True


class SequenceController:
    """Timed stimulus-sequence runner shared by every test kind.

    INSTRUCTIONS -> SELECTING (pool size) -> RUNNING (stimulus, phase) -> COMPLETED

    - Per-stimulus kinds run each stimulus through its phase list and
      auto-advance on expiry.
    - Whole-pool kinds run one clock over the pool with free navigation.
    - All mutation happens on the caller's event loop via ``update()`` and
      the input methods; there is no background work.
    """

    def __init__(
        self,
        *,
        config: ExamConfig,
        clock: Clock,
        source: StimulusSource | None = None,
        pool: StimulusPool | None = None,
        seed: int | None = None,
        recorder: AttemptRecorder | None = None,
        user_id: str = "local",
        test_id: str | None = None,
        listener: EventListener | None = None,
    ) -> None:
        if source is None and pool is None:
            raise ValueError("either a stimulus source or a pool is required")
        if config.response_kind is ResponseKind.CHOICE and config.timer_scope is not TimerScope.WHOLE_POOL:
            raise ValueError("multiple-choice kinds use a whole-pool timer")

        self._config = config
        self._clock = clock
        self._phase_clock = PhaseClock(clock)
        self._source = source
        self._loaded_pool = pool
        self._rng = random.Random(seed)
        self._recorder = recorder
        self._user_id = str(user_id)
        self._test_id = test_id
        self._listener = listener
        self._events: list[SessionEvent] = []
        self._notices: list[str] = []

        self._status = SessionStatus.INSTRUCTIONS
        self._pool_size_choice: int | None = config.default_pool_size
        self._pool_warning: InsufficientPoolWarning | None = None
        self._session_pool: StimulusPool | None = None
        self._stimulus_index = 0
        self._phase_index = 0
        self._seconds_remaining = 0
        self._collector = ResponseCollector()
        self._elapsed_s = 0
        self._started_at_s: float | None = None
        self._image_urls: dict[str, str | None] = {}
        self._score: ScoreSummary | None = None
        self._outcome: SessionOutcome | None = None

    @property
    def config(self) -> ExamConfig:
        return self._config

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def stimulus_index(self) -> int:
        return self._stimulus_index

    @property
    def phase(self) -> PhaseSpec | None:
        if self._status is not SessionStatus.RUNNING:
            return None
        return self._config.phases[self._phase_index]

    @property
    def elapsed_s(self) -> int:
        """Sum of consumed phase seconds."""
        return self._elapsed_s

    @property
    def started_at_s(self) -> float | None:
        return self._started_at_s

    @property
    def pool(self) -> StimulusPool | None:
        return self._session_pool

    @property
    def pool_warning(self) -> InsufficientPoolWarning | None:
        return self._pool_warning

    @property
    def phase_generation(self) -> int:
        return self._phase_clock.generation

    def events(self) -> list[SessionEvent]:
        return list(self._events)

    def take_notices(self) -> list[str]:
        out = self._notices
        self._notices = []
        return out

    def state(self) -> SessionState:
        return SessionState(
            stimulus_index=self._stimulus_index,
            phase_index=self._phase_index,
            seconds_remaining=self._seconds_remaining if self._status is SessionStatus.RUNNING else 0,
            responses=self._collector.snapshot(),
            status=self._status,
        )

    def current_stimulus(self) -> Stimulus | None:
        if self._session_pool is None or self._status is not SessionStatus.RUNNING:
            return None
        return self._session_pool[self._stimulus_index]

    def can_exit(self) -> bool:
        return self._status is not SessionStatus.RUNNING

    # -- lifecycle ---------------------------------------------------------

    def begin(self) -> None:
        """Leave the instructions: load the pool, then select or start."""

        if self._status is not SessionStatus.INSTRUCTIONS:
            return
        if self._loaded_pool is None:
            assert self._source is not None
            self._loaded_pool = self._source.load_pool(self._config)
        if len(self._loaded_pool) == 0:
            raise EmptyPoolError(self._config.kind.value, self._config.collection)

        if self._config.selects_pool_size:
            if self._pool_size_choice is None:
                self._pool_size_choice = self._config.pool_size_choices[0]
            self._status = SessionStatus.SELECTING
            return
        self._start_running()

    def choose_pool_size(self, count: int) -> bool:
        if self._status is not SessionStatus.SELECTING:
            return False
        if count < 1:
            raise ValueError("pool size must be >= 1")
        self._pool_size_choice = int(count)
        return True

    def cycle_pool_size(self, delta: int) -> int | None:
        choices = self._config.pool_size_choices
        if self._status is not SessionStatus.SELECTING or not choices:
            return self._pool_size_choice
        try:
            i = choices.index(self._pool_size_choice)  # type: ignore[arg-type]
        except ValueError:
            i = 0
        self._pool_size_choice = choices[max(0, min(len(choices) - 1, i + delta))]
        return self._pool_size_choice

    def start(self) -> bool:
        """Freeze the pool-size choice and show the first stimulus."""

        if self._status is not SessionStatus.SELECTING:
            return False
        self._start_running()
        return True

    def update(self) -> None:
        if self._status is SessionStatus.RUNNING:
            self._phase_clock.update()

    def abandon(self) -> None:
        """Navigate away: discard all in-memory session state, persist nothing."""

        self._phase_clock.cancel()
        self._collector.clear()
        self._status = SessionStatus.INSTRUCTIONS
        self._session_pool = None
        self._pool_size_choice = self._config.default_pool_size
        self._pool_warning = None
        self._stimulus_index = 0
        self._phase_index = 0
        self._seconds_remaining = 0
        self._elapsed_s = 0
        self._started_at_s = None
        self._score = None
        self._outcome = None
        self._events.clear()
        self._notices.clear()
        self._image_urls.clear()

    # -- input ---------------------------------------------------------------

    def record_response(self, response: Response) -> bool:
        """Store (overwrite) the response for the current stimulus."""

        stimulus = self.current_stimulus()
        if stimulus is None:
            return False
        spec = self._config.phases[self._phase_index]
        if not spec.accepts_response:
            return False

        kind = self._config.response_kind
        if kind is ResponseKind.CHOICE:
            if isinstance(response, bool) or not isinstance(response, int):
                return False
            assert isinstance(stimulus, Question)
            if not (0 <= response < len(stimulus.options)):
                return False
        elif kind is ResponseKind.TEXT:
            if not isinstance(response, str):
                return False
        else:
            return False

        self._collector.record(stimulus.id, response)
        return True

    def jump_to(self, index: int) -> bool:
        if self._status is not SessionStatus.RUNNING or self._session_pool is None:
            return False
        if self._config.timer_scope is not TimerScope.WHOLE_POOL:
            return False
        if not (0 <= index < len(self._session_pool)):
            return False
        if index != self._stimulus_index:
            self._stimulus_index = index
            self._on_stimulus_shown()
        return True

    def next_stimulus(self) -> bool:
        return self.jump_to(self._stimulus_index + 1)

    def previous_stimulus(self) -> bool:
        return self.jump_to(self._stimulus_index - 1)

    def submit(self) -> bool:
        """Explicit early submit. Returns True if accepted."""

        if not self._submit_allowed():
            return False

        consumed = self._phase_clock.seconds_consumed()
        self._phase_clock.cancel()
        self._elapsed_s += consumed

        if self._config.timer_scope is TimerScope.WHOLE_POOL:
            self._complete()
            return True

        if self._phase_index + 1 < len(self._config.phases):
            self._start_phase(self._phase_index + 1, started_at_s=None)
            return True
        self._finish_stimulus(time_taken_s=consumed)
        self._advance(started_at_s=None)
        return True

    # -- results -------------------------------------------------------------

    def score(self) -> ScoreSummary | None:
        if self._score is not None:
            return self._score
        if self._config.response_kind is not ResponseKind.CHOICE or self._session_pool is None:
            return None
        return score(self._session_pool, self._collector.snapshot())

    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    def unanswered_ids(self) -> list[str]:
        if self._session_pool is None:
            return []
        return [s.id for s in self._session_pool if not _is_answered(self._collector.get(s.id))]

    def snapshot(self) -> SessionSnapshot:
        running = self._status is SessionStatus.RUNNING
        stimulus = self.current_stimulus()
        spec = self._config.phases[self._phase_index] if running else None
        pool = self._session_pool
        return SessionSnapshot(
            title=self._config.title,
            status=self._status,
            instructions=self._config.instructions,
            stimulus_label=self._config.stimulus_label,
            stimulus=stimulus,
            stimulus_index=self._stimulus_index,
            stimulus_count=0 if pool is None else len(pool),
            phase=None if spec is None else spec.name,
            accepts_response=bool(spec is not None and spec.accepts_response),
            seconds_remaining=self._seconds_remaining if running else None,
            response=None if stimulus is None else self._collector.get(stimulus.id),
            answered_count=0 if pool is None else len(pool) - len(self.unanswered_ids()),
            can_submit=self._submit_allowed(),
            pool_size_choice=self._pool_size_choice,
            pool_size_choices=self._config.pool_size_choices,
            available_count=0 if self._loaded_pool is None else len(self._loaded_pool),
            image_url=None if stimulus is None else self._image_urls.get(stimulus.id),
            outcome=self._outcome,
        )

    # -- transitions ---------------------------------------------------------

    def _start_running(self) -> None:
        pool = self._loaded_pool
        assert pool is not None
        requested = self._pool_size_choice if self._config.selects_pool_size else len(pool)
        assert requested is not None

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", InsufficientPoolWarning)
            subset = select_subset(pool, requested, self._rng, shuffle=self._config.shuffle)
        for w in caught:
            if isinstance(w.message, InsufficientPoolWarning):
                self._pool_warning = w.message
                self._notices.append(
                    f"Only {w.message.available} {self._config.stimulus_label.lower()}s available."
                )
            else:
                warnings.warn(w.message, w.category, stacklevel=2)

        self._session_pool = subset
        self._status = SessionStatus.RUNNING
        self._started_at_s = self._clock.now()
        self._stimulus_index = 0
        self._on_stimulus_shown()
        self._start_phase(0, started_at_s=self._started_at_s)

    def _on_stimulus_shown(self) -> None:
        stimulus = self.current_stimulus()
        assert stimulus is not None
        if stimulus.id not in self._image_urls:
            url = None
            if self._source is not None:
                url = self._source.image_url(stimulus)
            else:
                url = getattr(stimulus, "image_ref", None)
            self._image_urls[stimulus.id] = url
        self._emit(SessionEventKind.STIMULUS_SHOWN, phase=None)

    def _start_phase(self, phase_index: int, *, started_at_s: float | None) -> None:
        self._phase_index = phase_index
        spec = self._config.phases[phase_index]
        self._seconds_remaining = spec.duration_s
        self._phase_clock.start(
            spec.duration_s,
            self._on_tick,
            self._on_phase_expired,
            started_at_s=started_at_s,
        )

    def _on_tick(self, remaining: int) -> None:
        self._seconds_remaining = remaining

    def _on_phase_expired(self) -> None:
        if self._status is not SessionStatus.RUNNING:
            return
        spec = self._config.phases[self._phase_index]
        deadline = self._phase_clock.deadline_s
        self._elapsed_s += spec.duration_s
        self._emit(SessionEventKind.PHASE_EXPIRED, phase=spec.name)

        if self._config.timer_scope is TimerScope.WHOLE_POOL:
            self._complete()
            return
        if self._phase_index + 1 < len(self._config.phases):
            self._start_phase(self._phase_index + 1, started_at_s=deadline)
            return
        self._finish_stimulus(time_taken_s=spec.duration_s)
        self._advance(started_at_s=deadline)

    def _advance(self, *, started_at_s: float | None) -> None:
        assert self._session_pool is not None
        if self._stimulus_index < len(self._session_pool) - 1:
            self._stimulus_index += 1
            self._on_stimulus_shown()
            self._start_phase(0, started_at_s=started_at_s)
        else:
            self._complete()

    def _finish_stimulus(self, *, time_taken_s: int) -> None:
        if self._config.persist_shape is not PersistShape.PER_STIMULUS:
            return
        stimulus = self.current_stimulus()
        assert stimulus is not None
        story = self._collector.get(stimulus.id)
        record = story_record(
            collection=self._config.attempts_collection_for(self._user_id),
            user_id=self._user_id,
            picture_id=stimulus.id,
            story=story if isinstance(story, str) else "",
            picture_order=self._stimulus_index + 1,
            time_taken_s=time_taken_s,
        )
        if self._recorder is not None:
            self._recorder.submit(record)

    def _complete(self) -> None:
        self._phase_clock.cancel()
        self._status = SessionStatus.COMPLETED
        self._seconds_remaining = 0
        assert self._session_pool is not None

        if self._config.response_kind is ResponseKind.CHOICE:
            self._score = score(self._session_pool, self._collector.snapshot())

        self._outcome = SessionOutcome(
            kind=self._config.kind,
            title=self._config.title,
            stimulus_count=len(self._session_pool),
            elapsed_s=self._elapsed_s,
            unanswered_count=len(self.unanswered_ids()),
            score=self._score,
        )
        self._emit(SessionEventKind.SEQUENCE_COMPLETE, phase=None)
        logger.info(
            "%s completed: %d items in %ds",
            self._config.kind.value,
            len(self._session_pool),
            self._elapsed_s,
        )

        if self._config.persist_shape is PersistShape.PER_SESSION and self._score is not None:
            record = scored_session_record(
                collection=self._config.attempts_collection_for(self._user_id),
                user_id=self._user_id,
                kind=self._config.kind,
                summary=self._score,
                time_taken_s=self._elapsed_s,
                time_limit_s=self._config.phases[0].duration_s,
                test_id=self._test_id,
                test_title=self._config.title if self._test_id is not None else None,
            )
            if self._recorder is not None:
                self._recorder.submit(record)

    def _submit_allowed(self) -> bool:
        if self._status is not SessionStatus.RUNNING or self._session_pool is None:
            return False
        policy = self._config.submit_policy
        if policy is SubmitPolicy.ANYTIME:
            return True
        if policy is SubmitPolicy.LAST_STIMULUS:
            return self._stimulus_index == len(self._session_pool) - 1
        if policy is SubmitPolicy.RESPONSE_PHASE:
            if not self._config.phases[self._phase_index].accepts_response:
                return False
            stimulus = self._session_pool[self._stimulus_index]
            text = self._collector.get(stimulus.id)
            return isinstance(text, str) and is_submittable_text(text)
        return False

    def _emit(self, kind: SessionEventKind, *, phase: str | None) -> None:
        stimulus = self.current_stimulus()
        event = SessionEvent(
            kind=kind,
            stimulus_index=self._stimulus_index,
            stimulus_id=None if stimulus is None else stimulus.id,
            phase=phase,
            at_s=self._clock.now(),
        )
        self._events.append(event)
        if self._listener is not None:
            self._listener(event)


def build_session(
    kind: str,
    *,
    clock: Clock,
    store: DocumentStore,
    blobs: BlobStore | None = None,
    recorder: AttemptRecorder | None = None,
    user_id: str = "local",
    seed: int | None = None,
) -> SequenceController:
    """Factory for an OIR/PPDT/TAT/WAT/SRT session backed by the store."""

    return SequenceController(
        config=config_for(kind),
        clock=clock,
        source=StimulusSource(store, blobs),
        seed=seed,
        recorder=recorder,
        user_id=user_id,
    )


def build_mock_test_session(
    mock_test: MockTest,
    *,
    clock: Clock,
    recorder: AttemptRecorder | None = None,
    user_id: str = "local",
) -> SequenceController:
    return SequenceController(
        config=mock_test.config(),
        clock=clock,
        pool=mock_test.pool,
        recorder=recorder,
        user_id=user_id,
        test_id=mock_test.id,
    )
