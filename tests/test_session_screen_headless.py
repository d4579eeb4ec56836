from __future__ import annotations

import os
from dataclasses import dataclass

import pytest

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import pygame  # noqa: E402

from ssb_trainer.app import WINDOW_SIZE, App, MenuScreen, SessionScreen  # noqa: E402
from ssb_trainer.kinds import OIR, TAT  # noqa: E402
from ssb_trainer.persistence import AttemptRecorder, PersistStatus, SqliteDocumentStore  # noqa: E402
from ssb_trainer.session import SequenceController, SessionStatus, build_session  # noqa: E402
from ssb_trainer.stimuli import Picture, Question, StimulusPool  # noqa: E402


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def _key(key: int, unicode: str = "", mod: int = 0) -> pygame.event.Event:
    return pygame.event.Event(pygame.KEYDOWN, {"key": key, "unicode": unicode, "mod": mod})


@pytest.fixture
def app():
    pygame.init()
    store = SqliteDocumentStore(":memory:")
    surface = pygame.Surface(WINDOW_SIZE)
    a = App(surface=surface, font=pygame.font.Font(None, 36), recorder=AttemptRecorder(store))
    a.push(MenuScreen(a, "Root", [], is_root=True))
    yield a
    store.close()
    pygame.quit()


def _open(app: App, controller: SequenceController) -> SessionScreen:
    screen = SessionScreen(app, controller_factory=lambda: controller)
    app.push(screen)
    app.render()
    return screen


def test_tat_story_typed_and_submitted_through_the_screen(app: App) -> None:
    clock = FakeClock()
    pool = StimulusPool(tuple(Picture(id=f"p{i}", image_ref=f"missing/{i}.png") for i in range(2)))
    c = SequenceController(config=TAT, clock=clock, pool=pool, seed=1, recorder=app.recorder)
    _open(app, c)

    app.handle_event(_key(pygame.K_RETURN))
    assert c.status is SessionStatus.SELECTING
    app.handle_event(_key(pygame.K_UP))
    app.handle_event(_key(pygame.K_RETURN))
    assert c.status is SessionStatus.RUNNING
    app.render()

    # Typing is ignored while the picture is on view.
    app.handle_event(_key(pygame.K_h, "H"))
    assert c.snapshot().response is None

    clock.advance(30.0)
    app.render()
    assert c.snapshot().phase == "write"

    app.handle_event(_key(pygame.K_RETURN))
    assert app.toasts[-1] == "Write your story before submitting."

    for ch in "Hix":
        app.handle_event(_key(pygame.K_a, ch))
    app.handle_event(_key(pygame.K_BACKSPACE))
    assert c.snapshot().response == "Hi"
    app.render()

    app.handle_event(_key(pygame.K_RETURN))
    assert c.stimulus_index == 1
    assert app.recorder is not None and app.recorder.pending_count == 1
    app.render()


def test_whole_pool_keys_answer_navigate_and_submit(app: App) -> None:
    clock = FakeClock()
    pool = StimulusPool(
        tuple(Question(id=f"q{i}", options=("a", "b", "c", "d"), correct_option_index=0, text=f"Q{i}") for i in range(3))
    )
    c = SequenceController(config=OIR, clock=clock, pool=pool, seed=1, recorder=app.recorder)
    _open(app, c)

    app.handle_event(_key(pygame.K_RETURN))
    assert c.status is SessionStatus.RUNNING

    app.handle_event(_key(pygame.K_2))
    assert c.snapshot().response == 1
    app.handle_event(_key(pygame.K_RETURN))
    assert app.toasts[-1] == "Submit is available on the last question."

    app.handle_event(_key(pygame.K_RIGHT))
    app.handle_event(_key(pygame.K_RIGHT))
    assert c.stimulus_index == 2
    app.render()

    app.handle_event(_key(pygame.K_RETURN))
    assert c.status is SessionStatus.COMPLETED
    app.update()
    app.render()

    app.handle_event(_key(pygame.K_RETURN))
    assert not isinstance(app._screens[-1], SessionScreen)


def test_empty_pool_shows_toast_and_pops(app: App) -> None:
    store = SqliteDocumentStore(":memory:")
    c = build_session("oir", clock=FakeClock(), store=store)
    _open(app, c)

    app.handle_event(_key(pygame.K_RETURN))
    assert "No OIR content available" in app.toasts[-1]
    assert isinstance(app._screens[-1], MenuScreen)
    app.render()
    store.close()


def test_shift_escape_abandons_a_running_session(app: App) -> None:
    clock = FakeClock()
    pool = StimulusPool(tuple(Picture(id=f"p{i}", image_ref=f"{i}.png") for i in range(1)))
    c = SequenceController(config=TAT, clock=clock, pool=pool, seed=1, recorder=app.recorder)
    _open(app, c)
    app.handle_event(_key(pygame.K_RETURN))
    app.handle_event(_key(pygame.K_RETURN))
    assert c.status is SessionStatus.RUNNING

    app.handle_event(_key(pygame.K_ESCAPE))
    assert c.status is SessionStatus.RUNNING

    app.handle_event(_key(pygame.K_ESCAPE, mod=pygame.KMOD_LSHIFT))
    assert c.status is SessionStatus.INSTRUCTIONS
    assert isinstance(app._screens[-1], MenuScreen)


class BrokenStore:
    """Reads work; every write fails."""

    def __init__(self) -> None:
        self.inner = SqliteDocumentStore(":memory:")

    def query(self, collection, **kwargs):
        return self.inner.query(collection, **kwargs)

    def create(self, collection, fields):
        raise OSError("disk full")

    def subscribe(self, collection, on_change, **kwargs):
        return self.inner.subscribe(collection, on_change, **kwargs)


def test_failed_save_still_shows_results_and_r_retries() -> None:
    pygame.init()
    try:
        recorder = AttemptRecorder(BrokenStore())
        a = App(surface=pygame.Surface(WINDOW_SIZE), font=pygame.font.Font(None, 36), recorder=recorder)
        a.push(MenuScreen(a, "Root", [], is_root=True))

        clock = FakeClock()
        pool = StimulusPool(
            tuple(Question(id=f"q{i}", options=("a", "b", "c", "d"), correct_option_index=0, text=f"Q{i}") for i in range(2))
        )
        c = SequenceController(config=OIR, clock=clock, pool=pool, seed=1, recorder=recorder)
        _open(a, c)
        a.handle_event(_key(pygame.K_RETURN))
        a.handle_event(_key(pygame.K_1))
        clock.advance(float(OIR.phases[0].duration_s))
        a.render()
        assert c.status is SessionStatus.COMPLETED

        a.update()
        assert recorder.status is PersistStatus.FAILED
        a.render()
        assert isinstance(a._screens[-1], SessionScreen)
        assert c.score() is not None

        a.handle_event(_key(pygame.K_r))
        assert recorder.pending_count == 1
        assert recorder.failed == []
        assert a.toasts[-1] == "Retrying 1 unsaved attempt(s)."
        assert c.status is SessionStatus.COMPLETED
        a.render()
    finally:
        pygame.quit()
