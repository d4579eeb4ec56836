from __future__ import annotations

import os
from pathlib import Path

import pytest


def _headless() -> None:
    # Headless SDL for CI.
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")


def _key(key: int, unicode: str = "") -> dict:
    return {"key": key, "unicode": unicode, "mod": 0}


def test_ui_smoke_open_oir_with_empty_store_returns_to_menu(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _headless()
    monkeypatch.setenv("SSB_TRAINER_DB_PATH", str(tmp_path / "trainer.sqlite3"))

    import pygame

    from ssb_trainer.app import run

    def inject(frame: int) -> None:
        # Main Menu -> Practice Tests -> OIR -> begin (no content) -> back on the tests menu
        if frame in (1, 2, 3):
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, _key(pygame.K_RETURN)))
        elif frame == 4:
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, _key(pygame.K_ESCAPE)))

    assert run(max_frames=12, event_injector=inject) == 0


def test_ui_smoke_run_wat_with_seeded_words(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _headless()
    db = tmp_path / "trainer.sqlite3"
    monkeypatch.setenv("SSB_TRAINER_DB_PATH", str(db))

    from ssb_trainer.content import add_text_item
    from ssb_trainer.persistence import SqliteDocumentStore

    store = SqliteDocumentStore(db)
    for word in ("duty", "honour", "courage", "team", "lead"):
        add_text_item(store, "wat", word)
    store.close()

    import pygame

    from ssb_trainer.app import run

    def inject(frame: int) -> None:
        # Main Menu -> Practice Tests -> down x3 -> WAT -> instructions -> pool size -> running
        if frame == 1:
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, _key(pygame.K_RETURN)))
        elif frame in (2, 3, 4):
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, _key(pygame.K_DOWN)))
        elif frame in (5, 6, 7):
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, _key(pygame.K_RETURN)))
        elif frame == 12:
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, _key(pygame.K_F12)))

    assert run(max_frames=20, event_injector=inject) == 0


def test_ui_smoke_mock_tests_and_history_screens(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _headless()
    monkeypatch.setenv("SSB_TRAINER_DB_PATH", str(tmp_path / "trainer.sqlite3"))

    import pygame

    from ssb_trainer.app import run

    def inject(frame: int) -> None:
        # Main Menu -> Mock Tests (empty) -> back -> Attempt History -> back
        script = {
            1: pygame.K_DOWN,
            2: pygame.K_RETURN,
            3: pygame.K_RETURN,
            4: pygame.K_ESCAPE,
            5: pygame.K_DOWN,
            6: pygame.K_RETURN,
            8: pygame.K_ESCAPE,
        }
        key = script.get(frame)
        if key is not None:
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, _key(key)))

    assert run(max_frames=12, event_injector=inject) == 0
