from __future__ import annotations

import logging
import random
import warnings
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import EmptyPoolError, InsufficientPoolWarning
from .kinds import ExamConfig, ExamKind, mock_test_config

if TYPE_CHECKING:
    from .persistence import BlobStore, Document, DocumentStore

logger = logging.getLogger(__name__)

MOCK_TESTS_COLLECTION = "mockTests"


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    options: tuple[str, ...]
    correct_option_index: int
    text: str | None = None
    image_ref: str | None = None
    explanation: str = ""

    def __post_init__(self) -> None:
        if len(self.options) < 2:
            raise ValueError("a question needs at least two options")
        if not (0 <= self.correct_option_index < len(self.options)):
            raise ValueError("correct_option_index out of range")


@dataclass(frozen=True, slots=True)
class Picture:
    id: str
    image_ref: str
    title: str = ""


@dataclass(frozen=True, slots=True)
class Word:
    id: str
    text: str


@dataclass(frozen=True, slots=True)
class Situation:
    id: str
    text: str


Stimulus = Question | Picture | Word | Situation


@dataclass(frozen=True, slots=True)
class StimulusPool:
    """Ordered, immutable stimuli with ids unique within the pool."""

    stimuli: tuple[Stimulus, ...]

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for s in self.stimuli:
            if s.id in seen:
                raise ValueError(f"duplicate stimulus id {s.id!r}")
            seen.add(s.id)

    def __len__(self) -> int:
        return len(self.stimuli)

    def __iter__(self) -> Iterator[Stimulus]:
        return iter(self.stimuli)

    def __getitem__(self, index: int) -> Stimulus:
        return self.stimuli[index]

    def ids(self) -> list[str]:
        return [s.id for s in self.stimuli]


@dataclass(frozen=True, slots=True)
class MockTest:
    id: str
    title: str
    duration_minutes: int
    pool: StimulusPool

    def config(self) -> ExamConfig:
        return mock_test_config(title=self.title, duration_minutes=self.duration_minutes)


def select_subset(
    pool: StimulusPool,
    requested_count: int,
    rng: random.Random,
    *,
    shuffle: bool = True,
) -> StimulusPool:
    """Return ``min(requested_count, len(pool))`` stimuli from a full shuffle.

    Emits ``InsufficientPoolWarning`` (non-fatal) when the pool is smaller
    than requested.
    """

    if requested_count < 1:
        raise ValueError("requested_count must be >= 1")

    items = list(pool.stimuli)
    if shuffle:
        # Fisher-Yates: uniform over all permutations.
        for i in range(len(items) - 1, 0, -1):
            j = rng.randint(0, i)
            items[i], items[j] = items[j], items[i]

    if requested_count > len(items):
        logger.warning("pool has %d stimuli, %d requested", len(items), requested_count)
        warnings.warn(InsufficientPoolWarning(requested_count, len(items)), stacklevel=2)
        return StimulusPool(tuple(items))
    return StimulusPool(tuple(items[:requested_count]))


def _text(fields: Mapping[str, object], key: str) -> str | None:
    value = fields.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _question_from_fields(doc_id: str, fields: Mapping[str, object]) -> Question | None:
    raw_options = fields.get("options")
    if not isinstance(raw_options, (list, tuple)):
        return None
    options = tuple(str(o) for o in raw_options)
    answer = fields.get("correctAnswer")
    if isinstance(answer, bool) or not isinstance(answer, int):
        return None
    if len(options) < 2 or not (0 <= answer < len(options)):
        return None
    text = _text(fields, "question")
    image_ref = _text(fields, "storagePath") or _text(fields, "imageUrl") or _text(fields, "url")
    if text is None and image_ref is None:
        return None
    return Question(
        id=doc_id,
        options=options,
        correct_option_index=answer,
        text=text,
        image_ref=image_ref,
        explanation=str(fields.get("explanation") or ""),
    )


def stimulus_from_document(kind: ExamKind, doc: Document) -> Stimulus | None:
    """Map a stored document to a stimulus, or None when it is not eligible."""

    fields = doc.fields
    if kind in (ExamKind.OIR, ExamKind.MOCK):
        return _question_from_fields(doc.id, fields)
    if kind in (ExamKind.TAT, ExamKind.PPDT):
        ref = _text(fields, "storagePath") or _text(fields, "url")
        if ref is None:
            return None
        return Picture(id=doc.id, image_ref=ref, title=_text(fields, "title") or "")
    if kind is ExamKind.WAT:
        word = _text(fields, "word")
        return None if word is None else Word(id=doc.id, text=word)
    if kind is ExamKind.SRT:
        situation = _text(fields, "situation")
        return None if situation is None else Situation(id=doc.id, text=situation)
    raise ValueError(f"unsupported kind: {kind}")


class StimulusSource:
    """Reads stimulus pools from the document store."""

    def __init__(self, store: DocumentStore, blobs: BlobStore | None = None) -> None:
        self._store = store
        self._blobs = blobs

    def load_pool(self, config: ExamConfig) -> StimulusPool:
        if config.collection is None:
            raise ValueError(f"{config.kind.value} has no stimulus collection")

        docs = self._store.query(config.collection, order_by="createdAt", descending=True)
        stimuli = []
        for doc in docs:
            s = stimulus_from_document(config.kind, doc)
            if s is None:
                logger.debug("skipping ineligible %s document %s", config.collection, doc.id)
                continue
            stimuli.append(s)

        if not stimuli:
            raise EmptyPoolError(config.kind.value, config.collection)
        logger.debug("loaded %d stimuli from %s", len(stimuli), config.collection)
        return StimulusPool(tuple(stimuli))

    def image_url(self, stimulus: Stimulus) -> str | None:
        ref = getattr(stimulus, "image_ref", None)
        if ref is None:
            return None
        if self._blobs is None or "://" in ref:
            return ref
        return self._blobs.get_public_url(ref)


def mock_test_from_document(doc: Document) -> MockTest | None:
    fields = doc.fields
    title = _text(fields, "title")
    duration = fields.get("duration")
    raw_questions = fields.get("questions")
    if title is None or not isinstance(raw_questions, list):
        return None
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        return None

    questions: list[Question] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_questions):
        if not isinstance(raw, Mapping):
            continue
        qid = _text(raw, "id") or f"q{i + 1}"
        base, n = qid, i + 1
        while qid in seen:
            qid = f"{base}_{n}"
            n += 1
        q = _question_from_fields(qid, raw)
        if q is None:
            continue
        seen.add(qid)
        questions.append(q)

    if not questions:
        return None
    return MockTest(id=doc.id, title=title, duration_minutes=duration, pool=StimulusPool(tuple(questions)))


def load_mock_tests(store: DocumentStore) -> list[MockTest]:
    docs = store.query(MOCK_TESTS_COLLECTION, order_by="createdAt", descending=True)
    return [t for t in (mock_test_from_document(d) for d in docs) if t is not None]


def subscribe_mock_tests(
    store: DocumentStore,
    on_change: Callable[[list[MockTest]], None],
) -> Callable[[], None]:
    """Live list of mock tests; returns the unsubscribe function."""

    def _forward(docs: list[Document]) -> None:
        on_change([t for t in (mock_test_from_document(d) for d in docs) if t is not None])

    return store.subscribe(MOCK_TESTS_COLLECTION, _forward, order_by="createdAt", descending=True)
