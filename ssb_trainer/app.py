"""Pygame UI shell for the SSB Practice Trainer.

Menus for the practice tests (OIR, PPDT, TAT, WAT, SRT), admin-authored
mock tests and the attempt history.

Deterministic timing/selection/scoring lives in ssb_trainer/* (core modules);
this module only renders snapshots and forwards input.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pygame

from .clock import RealClock
from .config import TrainerConfig, configure_logging
from .errors import EmptyPoolError, PersistFailure
from .kinds import ExamKind, PersistShape, ResponseKind, TimerScope
from .persistence import (
    AttemptRecorder,
    DocumentStore,
    HistoryEntry,
    LocalBlobStore,
    PersistStatus,
    SqliteDocumentStore,
    subscribe_history,
)
from .session import (
    SequenceController,
    SessionSnapshot,
    SessionStatus,
    build_mock_test_session,
    build_session,
)
from .stimuli import MockTest, Picture, Question, Situation, Word, subscribe_mock_tests

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60
TOAST_MS = 4000

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
HEADER_BG = (18, 30, 118)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACTIVE_BG = (244, 248, 255)
ACTIVE_TEXT = (14, 26, 74)
CONTENT_BG = (6, 13, 92)
CONTENT_BORDER = (78, 102, 170)
ROW_BG = (9, 20, 106)
ROW_BORDER = (62, 84, 152)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


@dataclass(frozen=True, slots=True)
class _Toast:
    text: str
    expires_at_ms: int


def _fit_label(font: pygame.font.Font, label: str, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if font.size(label)[0] <= max_width:
        return label
    clipped = label
    while clipped and font.size(f"{clipped}...")[0] > max_width:
        clipped = clipped[:-1]
    return f"{clipped}..." if clipped else "..."


def _wrap_lines(font: pygame.font.Font, text: str, max_width: int) -> list[str]:
    lines: list[str] = []
    for paragraph in str(text).split("\n"):
        cur = ""
        for word in paragraph.split():
            trial = word if cur == "" else f"{cur} {word}"
            if font.size(trial)[0] <= max_width:
                cur = trial
                continue
            if cur:
                lines.append(cur)
            cur = word
        lines.append(cur)
    return lines


def _draw_wrapped_text(
    surface: pygame.Surface,
    text: str,
    rect: pygame.Rect,
    *,
    color: tuple[int, int, int],
    font: pygame.font.Font,
    max_lines: int,
    keep_tail: bool = False,
) -> None:
    lines = _wrap_lines(font, text, rect.w)
    lines = lines[-max_lines:] if keep_tail else lines[: max(0, max_lines)]
    y = rect.y
    line_h = font.get_linesize() + 2
    for line in lines:
        surface.blit(font.render(_fit_label(font, line, rect.w), True, color), (rect.x, y))
        y += line_h


def _draw_frame(
    surface: pygame.Surface,
    *,
    tag: str,
    title: str,
    title_font: pygame.font.Font,
    tag_font: pygame.font.Font,
) -> tuple[pygame.Rect, pygame.Rect]:
    """Panel + header used by every screen; returns (frame, header)."""

    w, h = surface.get_size()
    surface.fill(BG)

    margin = max(10, min(26, w // 34))
    frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)

    header_h = max(34, min(52, h // 8))
    header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, header_h)
    pygame.draw.rect(surface, HEADER_BG, header)
    pygame.draw.line(surface, BORDER, (header.x, header.bottom), (header.right, header.bottom), 1)

    tag_s = tag_font.render(tag, True, TEXT_MUTED)
    surface.blit(tag_s, (header.x + 12, header.y + (header.h - tag_s.get_height()) // 2))
    title_s = title_font.render(_fit_label(title_font, title, header.w - 220), True, TEXT_MAIN)
    surface.blit(title_s, title_s.get_rect(center=(frame.centerx, header.centery)))
    return frame, header


def _draw_footer(surface: pygame.Surface, frame: pygame.Rect, font: pygame.font.Font, text: str) -> None:
    foot = font.render(_fit_label(font, text, frame.w - 24), True, TEXT_MUTED)
    surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class App:
    def __init__(
        self,
        surface: pygame.Surface,
        font: pygame.font.Font,
        *,
        recorder: AttemptRecorder | None = None,
    ) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True
        self._recorder = recorder
        self._toasts: list[_Toast] = []
        self._toast_font = pygame.font.Font(None, 24)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def recorder(self) -> AttemptRecorder | None:
        return self._recorder

    @property
    def toasts(self) -> list[str]:
        return [t.text for t in self._toasts]

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def notify(self, text: str) -> None:
        self._toasts.append(_Toast(text=text, expires_at_ms=pygame.time.get_ticks() + TOAST_MS))
        self._toasts = self._toasts[-3:]

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def update(self) -> None:
        if self._recorder is not None:
            self._recorder.update()
        now = pygame.time.get_ticks()
        self._toasts = [t for t in self._toasts if t.expires_at_ms > now]

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)
        self._render_toasts(self._surface)

    def _render_toasts(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        y = h - 54
        for toast in reversed(self._toasts):
            text = self._toast_font.render(_fit_label(self._toast_font, toast.text, w - 120), True, ACTIVE_TEXT)
            box = text.get_rect(midbottom=(w // 2, y)).inflate(24, 14)
            pygame.draw.rect(surface, ACTIVE_BG, box)
            pygame.draw.rect(surface, (200, 120, 40), box, 2)
            surface.blit(text, text.get_rect(center=box.center))
            y = box.top - 6


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            self._handle_key(event.key)

    def _handle_key(self, key: int) -> None:
        if key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        frame, header = _draw_frame(
            surface, tag="MENU", title=self._title, title_font=self._title_font, tag_font=self._hint_font
        )

        content_top = header.bottom + max(16, h // 30)
        content_bottom = frame.bottom - max(44, h // 12)
        list_rect = pygame.Rect(
            frame.x + max(14, w // 44),
            content_top,
            frame.w - max(28, w // 22),
            max(120, content_bottom - content_top),
        )
        pygame.draw.rect(surface, CONTENT_BG, list_rect)
        pygame.draw.rect(surface, CONTENT_BORDER, list_rect, 1)

        item_count = max(1, len(self._items))
        gap = max(4, min(10, list_rect.h // max(10, item_count * 3)))
        row_h = max(30, min(44, (list_rect.h - gap * (item_count + 1)) // item_count))
        total_h = row_h * item_count + gap * (item_count - 1)
        y = list_rect.y + max(8, (list_rect.h - total_h) // 2)

        for idx, item in enumerate(self._items):
            row = pygame.Rect(list_rect.x + 12, y, list_rect.w - 24, row_h)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, ACTIVE_BG, row)
                pygame.draw.rect(surface, (120, 142, 196), row, 2)
            else:
                pygame.draw.rect(surface, ROW_BG, row)
                pygame.draw.rect(surface, ROW_BORDER, row, 1)

            color = ACTIVE_TEXT if selected else TEXT_MAIN
            label = _fit_label(self._item_font, item.label, row.w - 20)
            text = self._item_font.render(label, True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h + gap

        _draw_footer(surface, frame, self._hint_font, "Enter/Space: Select  |  Esc/Backspace: Back")


class SessionScreen:
    """Runs one SequenceController: instructions, pool size, stimuli, results."""

    def __init__(self, app: App, *, controller_factory: Callable[[], SequenceController]) -> None:
        self._app = app
        self._controller = controller_factory()
        self._text = ""
        self._text_for: str | None = None
        self._results_offset = 0
        self._images: dict[str, pygame.Surface | None] = {}

        self._tiny_font = pygame.font.Font(None, 20)
        self._small_font = pygame.font.Font(None, 26)
        self._title_font = pygame.font.Font(None, 34)
        self._stimulus_font = pygame.font.Font(None, 44)
        self._word_font = pygame.font.Font(None, 96)
        self._timer_font = pygame.font.Font(None, 40)

    @property
    def controller(self) -> SequenceController:
        return self._controller

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        c = self._controller
        key = event.key

        # Abandon from any state; a running session is discarded, nothing is saved.
        if key == pygame.K_F12 or (key == pygame.K_ESCAPE and (getattr(event, "mod", 0) & pygame.KMOD_SHIFT)):
            self._leave()
            return

        status = c.status
        if status is SessionStatus.INSTRUCTIONS:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._begin()
            elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
                self._leave()
            return

        if status is SessionStatus.SELECTING:
            if key in (pygame.K_UP, pygame.K_RIGHT):
                c.cycle_pool_size(1)
            elif key in (pygame.K_DOWN, pygame.K_LEFT):
                c.cycle_pool_size(-1)
            elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                c.start()
            elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
                self._leave()
            return

        if status is SessionStatus.COMPLETED:
            recorder = self._app.recorder
            if key == pygame.K_r and recorder is not None and recorder.failed:
                n = recorder.retry()
                self._app.notify(f"Retrying {n} unsaved attempt(s).")
            elif key in (pygame.K_UP, pygame.K_w):
                self._results_offset = max(0, self._results_offset - 1)
            elif key in (pygame.K_DOWN, pygame.K_s):
                self._results_offset += 1
            elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_ESCAPE, pygame.K_BACKSPACE):
                self._app.pop()
            return

        self._handle_running_key(event)

    def _handle_running_key(self, event: pygame.event.Event) -> None:
        c = self._controller
        key = event.key
        kind = c.config.response_kind

        if c.config.timer_scope is TimerScope.WHOLE_POOL:
            if key in (pygame.K_LEFT, pygame.K_PAGEUP):
                c.previous_stimulus()
            elif key in (pygame.K_RIGHT, pygame.K_PAGEDOWN):
                c.next_stimulus()
            elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                if not c.submit():
                    self._app.notify("Submit is available on the last question.")
            elif kind is ResponseKind.CHOICE:
                choice = self._choice_from_key(key)
                if choice is not None:
                    c.record_response(choice - 1)
            return

        if kind is not ResponseKind.TEXT:
            return
        snap = c.snapshot()
        if not snap.accepts_response:
            return
        if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            if not c.submit():
                self._app.notify("Write your story before submitting.")
            return
        if key == pygame.K_BACKSPACE:
            self._text = self._text[:-1]
            c.record_response(self._text)
            return
        ch = getattr(event, "unicode", "")
        if ch and ch.isprintable():
            self._text += ch
            c.record_response(self._text)

    def _begin(self) -> None:
        try:
            self._controller.begin()
        except EmptyPoolError as exc:
            logger.warning("%s", exc)
            self._app.notify(str(exc))
            self._app.pop()

    def _leave(self) -> None:
        self._controller.abandon()
        self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        c = self._controller
        c.update()
        for notice in c.take_notices():
            self._app.notify(notice)
        snap = c.snapshot()
        self._sync_text(snap)

        tag = {
            SessionStatus.INSTRUCTIONS: "Instructions",
            SessionStatus.SELECTING: "Setup",
            SessionStatus.RUNNING: "Test",
            SessionStatus.COMPLETED: "Results",
        }[snap.status]
        frame, header = _draw_frame(
            surface, tag=tag, title=snap.title, title_font=self._title_font, tag_font=self._tiny_font
        )
        w, h = surface.get_size()
        content = pygame.Rect(
            frame.x + max(14, w // 48),
            header.bottom + max(12, h // 36),
            frame.w - max(28, w // 24),
            frame.bottom - header.bottom - max(62, h // 9),
        )
        pygame.draw.rect(surface, CONTENT_BG, content)
        pygame.draw.rect(surface, CONTENT_BORDER, content, 1)

        if snap.status is SessionStatus.INSTRUCTIONS:
            self._render_instructions(surface, content, snap)
            footer = "Enter: Start  |  Esc: Back"
        elif snap.status is SessionStatus.SELECTING:
            self._render_selecting(surface, content, snap)
            footer = "Up/Down: Change count  |  Enter: Begin  |  Esc: Back"
        elif snap.status is SessionStatus.RUNNING:
            self._render_running(surface, header, content, snap)
            footer = self._running_footer(snap)
        else:
            self._render_results(surface, content, snap)
            footer = "Up/Down: Scroll  |  Enter: Return"
            recorder = self._app.recorder
            if recorder is not None and recorder.failed:
                footer = "R: Retry saving  |  " + footer
        _draw_footer(surface, frame, self._tiny_font, footer)

    def _running_footer(self, snap: SessionSnapshot) -> str:
        cfg = self._controller.config
        if cfg.timer_scope is TimerScope.WHOLE_POOL:
            return "1-4: Answer  |  Left/Right: Navigate  |  Enter: Submit  |  Shift+Esc: Abandon"
        if cfg.response_kind is ResponseKind.TEXT and snap.accepts_response:
            return "Type your story  |  Enter: Submit  |  Shift+Esc: Abandon"
        return "Test in progress: auto-advances  |  Shift+Esc: Abandon"

    def _sync_text(self, snap: SessionSnapshot) -> None:
        sid = None if snap.stimulus is None else snap.stimulus.id
        if sid != self._text_for:
            self._text_for = sid
            self._text = snap.response if isinstance(snap.response, str) else ""

    def _render_instructions(self, surface: pygame.Surface, content: pygame.Rect, snap: SessionSnapshot) -> None:
        y = content.y + 16
        for line in snap.instructions:
            txt = self._small_font.render(_fit_label(self._small_font, f"- {line}", content.w - 32), True, TEXT_MAIN)
            surface.blit(txt, (content.x + 16, y))
            y += txt.get_height() + 10

    def _render_selecting(self, surface: pygame.Surface, content: pygame.Rect, snap: SessionSnapshot) -> None:
        label = self._small_font.render(
            f"How many {snap.stimulus_label.lower()}s?  ({snap.available_count} available)", True, TEXT_MUTED
        )
        surface.blit(label, label.get_rect(midtop=(content.centerx, content.y + 30)))
        value = self._word_font.render(str(snap.pool_size_choice), True, TEXT_MAIN)
        surface.blit(value, value.get_rect(center=content.center))
        per_item = self._controller.config.seconds_per_stimulus
        total = per_item * int(snap.pool_size_choice or 0)
        est = self._small_font.render(f"Estimated time: {total // 60:02d}:{total % 60:02d}", True, TEXT_MUTED)
        surface.blit(est, est.get_rect(midbottom=(content.centerx, content.bottom - 24)))

    def _render_running(
        self,
        surface: pygame.Surface,
        header: pygame.Rect,
        content: pygame.Rect,
        snap: SessionSnapshot,
    ) -> None:
        rem = int(snap.seconds_remaining or 0)
        timer = self._timer_font.render(f"{rem // 60:02d}:{rem % 60:02d}", True, TEXT_MAIN)
        surface.blit(timer, timer.get_rect(midright=(header.right - 12, header.centery)))

        progress = f"{snap.stimulus_label} {snap.stimulus_index + 1} of {snap.stimulus_count}"
        if snap.phase is not None and len(self._controller.config.phases) > 1:
            progress += f"  |  {snap.phase.capitalize()}"
        if self._controller.config.timer_scope is TimerScope.WHOLE_POOL:
            progress += f"  |  Answered {snap.answered_count}/{snap.stimulus_count}"
        surface.blit(self._tiny_font.render(progress, True, TEXT_MUTED), (content.x + 12, content.y + 8))

        inner = pygame.Rect(content.x + 12, content.y + 30, content.w - 24, content.h - 40)
        stimulus = snap.stimulus
        if isinstance(stimulus, Word):
            word = self._word_font.render(_fit_label(self._word_font, stimulus.text, inner.w), True, TEXT_MAIN)
            surface.blit(word, word.get_rect(center=inner.center))
        elif isinstance(stimulus, Situation):
            _draw_wrapped_text(
                surface, stimulus.text, inner.inflate(-40, -40), color=TEXT_MAIN, font=self._stimulus_font, max_lines=8
            )
        elif isinstance(stimulus, Question):
            self._render_question(surface, inner, snap, stimulus)
        elif isinstance(stimulus, Picture):
            if snap.accepts_response:
                self._render_story_box(surface, inner)
            elif snap.phase == "view":
                self._draw_image(surface, inner, snap.image_url, stimulus.id)
            else:
                _draw_wrapped_text(
                    surface,
                    "Write your story on paper. Who are the characters? What is happening? "
                    "What led to this situation? What will be the outcome?",
                    inner.inflate(-60, -80),
                    color=TEXT_MAIN,
                    font=self._small_font,
                    max_lines=8,
                )

    def _render_question(
        self,
        surface: pygame.Surface,
        rect: pygame.Rect,
        snap: SessionSnapshot,
        question: Question,
    ) -> None:
        top = rect.y
        if question.image_ref is not None:
            img_rect = pygame.Rect(rect.x, top, rect.w, max(80, rect.h // 3))
            self._draw_image(surface, img_rect, snap.image_url, question.id)
            top = img_rect.bottom + 6
        if question.text:
            stem = pygame.Rect(rect.x, top, rect.w, max(48, rect.h // 5))
            _draw_wrapped_text(surface, question.text, stem, color=TEXT_MAIN, font=self._small_font, max_lines=3)
            top = stem.bottom + 4

        gap = 6
        rows = max(1, len(question.options))
        row_h = max(28, min(48, (rect.bottom - top - gap * (rows + 1)) // rows))
        y = top + gap
        for i, option in enumerate(question.options):
            row = pygame.Rect(rect.x, y, rect.w, row_h)
            selected = snap.response == i
            pygame.draw.rect(surface, ACTIVE_BG if selected else ROW_BG, row)
            pygame.draw.rect(surface, (124, 148, 202) if selected else ROW_BORDER, row, 2 if selected else 1)
            label = self._small_font.render(
                _fit_label(self._small_font, f"{i + 1}. {option}", row.w - 24),
                True,
                ACTIVE_TEXT if selected else TEXT_MAIN,
            )
            surface.blit(label, (row.x + 12, row.y + (row.h - label.get_height()) // 2))
            y += row_h + gap

    def _render_story_box(self, surface: pygame.Surface, rect: pygame.Rect) -> None:
        box = rect.inflate(-20, -20)
        pygame.draw.rect(surface, (30, 30, 40), box)
        pygame.draw.rect(surface, (90, 90, 110), box, 2)
        caret = "|" if (pygame.time.get_ticks() // 500) % 2 == 0 else ""
        line_h = self._small_font.get_linesize() + 2
        _draw_wrapped_text(
            surface,
            self._text + caret,
            box.inflate(-20, -20),
            color=TEXT_MAIN,
            font=self._small_font,
            max_lines=max(1, (box.h - 20) // line_h),
            keep_tail=True,
        )
        words = len(self._text.split())
        count = self._tiny_font.render(f"{words} words", True, TEXT_MUTED)
        surface.blit(count, count.get_rect(bottomright=(box.right - 8, box.bottom - 6)))

    def _draw_image(self, surface: pygame.Surface, rect: pygame.Rect, url: str | None, key: str) -> None:
        image = self._load_image(url, key)
        if image is None:
            msg = self._small_font.render("Image unavailable", True, TEXT_MUTED)
            surface.blit(msg, msg.get_rect(center=rect.center))
            return
        iw, ih = image.get_size()
        scale = min(rect.w / max(1, iw), rect.h / max(1, ih))
        size = (max(1, int(iw * scale)), max(1, int(ih * scale)))
        scaled = pygame.transform.scale(image, size)
        surface.blit(scaled, scaled.get_rect(center=rect.center))

    def _load_image(self, url: str | None, key: str) -> pygame.Surface | None:
        if key in self._images:
            return self._images[key]
        image = None
        path = None if url is None else LocalBlobStore.local_path(url)
        if path is not None:
            try:
                image = pygame.image.load(str(path))
            except (pygame.error, OSError) as exc:
                logger.warning("could not load image %s: %s", path, exc)
        elif url is not None:
            logger.warning("remote image %s is not supported", url)
        self._images[key] = image
        return image

    def _render_results(self, surface: pygame.Surface, content: pygame.Rect, snap: SessionSnapshot) -> None:
        outcome = snap.outcome
        if outcome is None:
            return
        lines = list(outcome.summary_lines())

        recorder = self._app.recorder
        if recorder is not None and self._controller.config.persist_shape is not PersistShape.NOTHING:
            status = recorder.status
            if status is PersistStatus.SAVING:
                lines.append("Saving attempt...")
            elif status is PersistStatus.SAVED:
                lines.append("Attempt saved.")
            elif status is PersistStatus.FAILED:
                lines.append("Saving failed. Your results are shown from this session.")

        if outcome.score is not None:
            lines.append("")
            for i, row in enumerate(outcome.score.breakdown, start=1):
                if row.user_answer is None:
                    mark = "skipped"
                else:
                    mark = "correct" if row.is_correct else f"chose {row.user_answer + 1}"
                lines.append(f"Q{i}: {mark} (answer {row.correct_answer + 1})")

        line_h = self._small_font.get_linesize() + 2
        visible = max(1, (content.h - 24) // line_h)
        self._results_offset = min(self._results_offset, max(0, len(lines) - visible))
        y = content.y + 12
        for line in lines[self._results_offset : self._results_offset + visible]:
            font = self._title_font if line == "Test Completed" else self._small_font
            surface.blit(font.render(_fit_label(font, line, content.w - 32), True, TEXT_MAIN), (content.x + 16, y))
            y += line_h

    @staticmethod
    def _choice_from_key(key: int) -> int | None:
        mapping = {
            pygame.K_1: 1,
            pygame.K_2: 2,
            pygame.K_3: 3,
            pygame.K_4: 4,
            pygame.K_5: 5,
            pygame.K_KP1: 1,
            pygame.K_KP2: 2,
            pygame.K_KP3: 3,
            pygame.K_KP4: 4,
            pygame.K_KP5: 5,
        }
        return mapping.get(key)


class MockTestsScreen:
    """Live list of mock tests from the store."""

    def __init__(self, app: App, *, store: DocumentStore, open_test: Callable[[MockTest], None]) -> None:
        self._app = app
        self._open_test = open_test
        self._tests: list[MockTest] = []
        self._selected = 0
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 30)
        self._hint_font = pygame.font.Font(None, 22)
        self._unsubscribe = subscribe_mock_tests(store, self._on_change)

    @property
    def tests(self) -> list[MockTest]:
        return list(self._tests)

    def _on_change(self, tests: list[MockTest]) -> None:
        self._tests = tests
        self._selected = min(self._selected, max(0, len(tests) - 1))

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w) and self._tests:
            self._selected = (self._selected - 1) % len(self._tests)
        elif event.key in (pygame.K_DOWN, pygame.K_s) and self._tests:
            self._selected = (self._selected + 1) % len(self._tests)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if self._tests:
                self._open_test(self._tests[self._selected])
            else:
                self._app.notify("No mock tests available yet.")
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._unsubscribe()
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        frame, header = _draw_frame(
            surface, tag="MOCK", title="Mock Tests", title_font=self._title_font, tag_font=self._hint_font
        )
        y = header.bottom + 20
        if not self._tests:
            msg = self._item_font.render("No mock tests available yet.", True, TEXT_MUTED)
            surface.blit(msg, msg.get_rect(midtop=(frame.centerx, y + 40)))
        for idx, test in enumerate(self._tests):
            row = pygame.Rect(frame.x + 24, y, frame.w - 48, 40)
            if row.bottom > frame.bottom - 40:
                break
            selected = idx == self._selected
            pygame.draw.rect(surface, ACTIVE_BG if selected else ROW_BG, row)
            pygame.draw.rect(surface, ROW_BORDER, row, 1)
            label = f"{test.title}  ({len(test.pool)} questions, {test.duration_minutes} min)"
            text = self._item_font.render(
                _fit_label(self._item_font, label, row.w - 20), True, ACTIVE_TEXT if selected else TEXT_MAIN
            )
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += 46
        _draw_footer(surface, frame, self._hint_font, "Enter: Start  |  Esc: Back")


class HistoryScreen:
    """Live list of the user's past attempts, newest first."""

    def __init__(self, app: App, *, store: DocumentStore, user_id: str) -> None:
        self._app = app
        self._entries: list[HistoryEntry] = []
        self._offset = 0
        self._title_font = pygame.font.Font(None, 42)
        self._row_font = pygame.font.Font(None, 26)
        self._hint_font = pygame.font.Font(None, 22)
        self._unsubscribe = subscribe_history(store, user_id, self._on_change)

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def _on_change(self, entries: list[HistoryEntry]) -> None:
        self._entries = entries

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        recorder = self._app.recorder
        if event.key in (pygame.K_UP, pygame.K_w):
            self._offset = max(0, self._offset - 1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._offset = min(max(0, len(self._entries) - 1), self._offset + 1)
        elif event.key == pygame.K_r and recorder is not None and recorder.failed:
            self._app.notify(f"Retrying {recorder.retry()} unsaved attempt(s).")
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN):
            self._unsubscribe()
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        frame, header = _draw_frame(
            surface, tag="HISTORY", title="Attempt History", title_font=self._title_font, tag_font=self._hint_font
        )
        y = header.bottom + 16
        if not self._entries:
            msg = self._row_font.render("No attempts yet.", True, TEXT_MUTED)
            surface.blit(msg, msg.get_rect(midtop=(frame.centerx, y + 40)))
        line_h = self._row_font.get_linesize() + 6
        for entry in self._entries[self._offset :]:
            if y + line_h > frame.bottom - 40:
                break
            text = self._row_font.render(_fit_label(self._row_font, entry.summary(), frame.w - 48), True, TEXT_MAIN)
            surface.blit(text, (frame.x + 24, y))
            y += line_h
        _draw_footer(surface, frame, self._hint_font, "Up/Down: Scroll  |  Esc: Back")


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    config: TrainerConfig | None = None,
) -> int:
    cfg = config or TrainerConfig.from_env()
    configure_logging(cfg.log_level)

    pygame.init()
    pygame.display.set_caption("SSB Practice Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    Path(cfg.db_path).parent.mkdir(parents=True, exist_ok=True)
    store = SqliteDocumentStore(cfg.db_path)
    blobs = LocalBlobStore(cfg.media_dir)

    app: App

    def on_persist_failure(exc: PersistFailure) -> None:
        app.notify("Could not save your attempt. Press R on the results screen to retry.")

    recorder = AttemptRecorder(store, on_failure=on_persist_failure)
    app = App(surface=surface, font=font, recorder=recorder)
    real_clock = RealClock()

    def open_practice(kind: ExamKind) -> Callable[[], None]:
        def _open() -> None:
            seed = _new_seed()
            app.push(
                SessionScreen(
                    app,
                    controller_factory=lambda: build_session(
                        kind,
                        clock=real_clock,
                        store=store,
                        blobs=blobs,
                        recorder=recorder,
                        user_id=cfg.user_id,
                        seed=seed,
                    ),
                )
            )

        return _open

    def open_mock_test(test: MockTest) -> None:
        app.push(
            SessionScreen(
                app,
                controller_factory=lambda: build_mock_test_session(
                    test,
                    clock=real_clock,
                    recorder=recorder,
                    user_id=cfg.user_id,
                ),
            )
        )

    tests_menu = MenuScreen(
        app,
        "Practice Tests",
        [
            MenuItem("Officer Intelligence Rating (OIR)", open_practice(ExamKind.OIR)),
            MenuItem("Picture Perception & Description (PPDT)", open_practice(ExamKind.PPDT)),
            MenuItem("Thematic Apperception (TAT)", open_practice(ExamKind.TAT)),
            MenuItem("Word Association (WAT)", open_practice(ExamKind.WAT)),
            MenuItem("Situation Reaction (SRT)", open_practice(ExamKind.SRT)),
            MenuItem("Back", app.pop),
        ],
    )

    main_items = [
        MenuItem("Practice Tests", lambda: app.push(tests_menu)),
        MenuItem(
            "Mock Tests",
            lambda: app.push(MockTestsScreen(app, store=store, open_test=open_mock_test)),
        ),
        MenuItem(
            "Attempt History",
            lambda: app.push(HistoryScreen(app, store=store, user_id=cfg.user_id)),
        ),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Main Menu", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.update()
            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        recorder.flush()
        if recorder.failed:
            logger.error("%d attempt(s) were not saved", len(recorder.failed))
        store.close()
        pygame.quit()

    return 0
