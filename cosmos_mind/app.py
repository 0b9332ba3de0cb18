"""Pygame UI shell for Cosmos Mind.

Screens:
- Main menu (begin a session, mind profile, reset profile, quit)
- Puzzle screen (observe/act rounds; mouse, number keys and hover gaze)
- Session summary (reflection text; persists the session and mind model)
- Mind profile (fingerprint domains, archetype, cognitive stage)

All game logic lives in cosmos_mind/* core modules; this file only draws
and forwards input.
"""

from __future__ import annotations

import logging
import math
import os
import random
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pygame

from .clock import RealClock
from .cognitive_core import CognitiveDomain
from .elements import GameElement, PlayArea, ShapeType
from .persistence import load_latest_mind_snapshot, record_session_result, save_mind_snapshot
from .puzzle import RoundPhase
from .session import CognitiveSession, SelectionOutcome

logger = logging.getLogger("cosmos_mind.app")

APP_VERSION = "0.1.0"
WINDOW_SIZE = (960, 540)
TARGET_FPS = 60
DB_PATH_ENV = "COSMOS_MIND_DB_PATH"
SEED_ENV = "COSMOS_MIND_SEED"

BG = (4, 6, 24)
PANEL_BG = (10, 14, 48)
BORDER = (120, 140, 210)
TEXT_MAIN = (232, 238, 255)
TEXT_MUTED = (150, 162, 200)
RESULT_PAUSE_MS = 700


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def pop_to_root(self) -> None:
        del self._screens[1:]

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class MindStore:
    """Sqlite-backed home for the exported mind model and session results."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(DB_PATH_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".cosmos_mind" / "mind.sqlite3"

    @property
    def path(self) -> Path:
        return self._path

    def load_into(self, session: CognitiveSession) -> bool:
        try:
            payload = load_latest_mind_snapshot(db_path=self._path)
        except sqlite3.Error as exc:
            logger.warning("could not read %s: %s", self._path, exc)
            return False
        if payload is None:
            return False
        return session.import_mind_model(payload)

    def save(self, session: CognitiveSession, *, now_s: float) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if session.result().rounds > 0:
                record_session_result(db_path=self._path, result=session.result(), app_version=APP_VERSION)
            save_mind_snapshot(db_path=self._path, payload=session.export_mind_model(), saved_at_s=now_s)
        except (OSError, sqlite3.Error) as exc:
            logger.warning("could not save to %s: %s", self._path, exc)


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
            return

        if event.type == pygame.JOYHATMOTION:
            _, y = event.value
            if y == 1:
                self._move(-1)
            elif y == -1:
                self._move(1)
            return

        if event.type == pygame.JOYBUTTONDOWN:
            # 0 = select, 1 = back.
            if event.button == 0:
                self._activate()
            elif event.button == 1:
                self._back()

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
        surface.fill(BG)

        margin = max(10, min(26, w // 34))
        frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 1)

        title = self._title_font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(frame.centerx, frame.y + 24)))

        item_count = max(1, len(self._items))
        row_h = 40
        gap = 8
        total_h = row_h * item_count + gap * (item_count - 1)
        y = frame.centery - total_h // 2 + 20
        row_w = min(420, frame.w - 40)

        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.centerx - row_w // 2, y, row_w, row_h)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, TEXT_MAIN, row)
            else:
                pygame.draw.rect(surface, BORDER, row, 1)
            color = PANEL_BG if selected else TEXT_MAIN
            text = self._item_font.render(item.label, True, color)
            surface.blit(text, text.get_rect(center=row.center))
            y += row_h + gap

        footer = "Enter/Space: Select  |  Esc/Backspace: Back  |  D-pad + Button0/1"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


def _hex_rgb(color: str) -> tuple[int, int, int]:
    c = pygame.Color(color)
    return (c.r, c.g, c.b)


def _blend(fg: tuple[int, int, int], bg: tuple[int, int, int], alpha: float) -> tuple[int, int, int]:
    a = max(0.0, min(1.0, alpha))
    return (
        int(round(fg[0] * a + bg[0] * (1.0 - a))),
        int(round(fg[1] * a + bg[1] * (1.0 - a))),
        int(round(fg[2] * a + bg[2] * (1.0 - a))),
    )


def _regular_polygon(cx: float, cy: float, r: float, sides: int, rotation: float) -> list[tuple[float, float]]:
    return [
        (cx + r * math.cos(rotation + 2.0 * math.pi * i / sides), cy + r * math.sin(rotation + 2.0 * math.pi * i / sides))
        for i in range(sides)
    ]


def draw_element(surface: pygame.Surface, e: GameElement, *, center: tuple[float, float], radius: float) -> None:
    color = _blend(_hex_rgb(e.color), BG, e.opacity * (0.55 + 0.45 * e.brightness))
    cx, cy = center
    if e.shape is ShapeType.CIRCLE:
        pygame.draw.circle(surface, color, (int(cx), int(cy)), max(2, int(radius)))
        return
    if e.shape is ShapeType.SQUARE:
        points = _regular_polygon(cx, cy, radius * 1.2, 4, math.pi / 4)
    elif e.shape is ShapeType.TRIANGLE:
        points = _regular_polygon(cx, cy, radius * 1.15, 3, -math.pi / 2)
    elif e.shape is ShapeType.DIAMOND:
        points = _regular_polygon(cx, cy, radius * 1.15, 4, 0.0)
    else:
        points = _regular_polygon(cx, cy, radius, 6, 0.0)
    if not e.is_symmetric:
        # Asymmetric objects are drawn with one vertex pulled outward.
        x0, y0 = points[0]
        points[0] = (cx + (x0 - cx) * 1.25, cy + (y0 - cy) * 1.25)
    pygame.draw.polygon(surface, color, points)


class PuzzleScreen:
    def __init__(
        self,
        app: App,
        *,
        session: CognitiveSession,
        on_end: Callable[[str | None], None],
    ) -> None:
        self._app = app
        self._session = session
        self._on_end = on_end
        self._small_font = pygame.font.Font(None, 24)
        self._big_font = pygame.font.Font(None, 40)
        self._last_ticks: int | None = None
        self._pause_ms = 0.0
        self._message: str | None = None
        self._hover_id: str | None = None
        self._screen_pos: dict[str, tuple[float, float, float]] = {}
        self._ended = False

    def _finish(self, reason: str | None) -> None:
        if self._ended:
            return
        self._ended = True
        self._on_end(reason)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
                self._finish(None)
                return
            idx = _digit_from_key(event.key)
            st = self._session.puzzle_state
            if idx is not None and st is not None and idx < len(st.elements):
                self._select(st.elements[idx].element_id)
            return

        if event.type == pygame.MOUSEMOTION:
            self._hover_id = self._hit_test(event.pos)
            return

        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            hit = self._hit_test(event.pos)
            if hit is not None:
                self._select(hit)

    def _select(self, element_id: str) -> None:
        if not self._session.round_open:
            return
        outcome: SelectionOutcome = self._session.select(element_id)
        if outcome.round is None:
            return
        self._message = outcome.action.insight or outcome.round.feedback
        self._pause_ms = RESULT_PAUSE_MS

    def _hit_test(self, pos: tuple[int, int]) -> str | None:
        px, py = pos
        for element_id, (cx, cy, r) in self._screen_pos.items():
            if (px - cx) ** 2 + (py - cy) ** 2 <= r * r:
                return element_id
        return None

    def _layout(self, surface: pygame.Surface, area: PlayArea) -> tuple[float, float, float]:
        w, h = surface.get_size()
        usable_h = h - 80
        scale = min((w * 0.5) / area.width, usable_h / area.height)
        ox = (w - area.width * scale) / 2.0 - area.x * scale
        oy = 60 + (usable_h - area.height * scale) / 2.0 - area.y * scale
        return scale, ox, oy

    def _update(self, dt_ms: float) -> None:
        s = self._session
        if self._pause_ms > 0:
            self._pause_ms -= dt_ms
            if self._pause_ms > 0:
                return
            self._message = None

        end = s.end_check
        if end.should_end:
            self._finish(end.reason)
            return

        if not s.round_open:
            idle = s.check_idle()
            if idle.should_end:
                self._finish(idle.reason)
                return
            s.start_round()
            return

        if self._hover_id is not None:
            s.record_gaze(self._hover_id, dt_ms)
        tick = s.tick(dt_ms)
        if tick.inversion is not None:
            self._message = tick.inversion.message
        if tick.timed_out:
            self._message = "Time dissolves."
            self._pause_ms = RESULT_PAUSE_MS

    def render(self, surface: pygame.Surface) -> None:
        now = pygame.time.get_ticks()
        dt_ms = 0.0 if self._last_ticks is None else float(now - self._last_ticks)
        self._last_ticks = now
        self._update(dt_ms)

        surface.fill(BG)
        w, h = surface.get_size()
        st = self._session.puzzle_state
        self._screen_pos = {}
        if st is None:
            return

        area = self._session.config.generator.area
        scale, ox, oy = self._layout(surface, area)
        frame = pygame.Rect(int(area.x * scale + ox), int(area.y * scale + oy), int(area.width * scale), int(area.height * scale))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 1)

        visible = self._session.round_open or self._pause_ms > 0
        if visible:
            for idx, e in enumerate(st.elements):
                cx, cy = e.x * scale + ox, e.y * scale + oy
                r = e.size * scale / 2.0
                self._screen_pos[e.element_id] = (cx, cy, r)
                draw_element(surface, e, center=(cx, cy), radius=r)
                if idx < 9:
                    tag = self._small_font.render(str(idx + 1), True, TEXT_MUTED)
                    surface.blit(tag, tag.get_rect(center=(cx, cy + r + 10)))

        phase = "observe" if st.phase is RoundPhase.OBSERVE else "act"
        header = self._small_font.render(
            f"Round {st.round}  |  {phase}  |  {self._session.flow.phase_description()}", True, TEXT_MUTED
        )
        surface.blit(header, (20, 18))
        if st.temporal is not None:
            prompt = self._small_font.render(st.temporal.prompt, True, TEXT_MAIN)
            surface.blit(prompt, prompt.get_rect(topright=(w - 20, 18)))

        remaining = self._session.timer.remaining_ms
        if st.total_ms > 0 and remaining > 0:
            bar_w = int((w - 40) * remaining / st.total_ms)
            pygame.draw.rect(surface, BORDER, pygame.Rect(20, 44, max(0, bar_w), 3))

        if self._message and not st.silence_before_reveal:
            msg = self._big_font.render(self._message, True, TEXT_MAIN)
            surface.blit(msg, msg.get_rect(midbottom=(w // 2, h - 16)))


def _digit_from_key(key: int) -> int | None:
    digits = (pygame.K_1, pygame.K_2, pygame.K_3, pygame.K_4, pygame.K_5, pygame.K_6, pygame.K_7, pygame.K_8, pygame.K_9)
    keypad = (pygame.K_KP1, pygame.K_KP2, pygame.K_KP3, pygame.K_KP4, pygame.K_KP5, pygame.K_KP6, pygame.K_KP7, pygame.K_KP8, pygame.K_KP9)
    if key in digits:
        return digits.index(key)
    if key in keypad:
        return keypad.index(key)
    return None


def _draw_lines(surface: pygame.Surface, font: pygame.font.Font, lines: list[str], *, x: int, y: int, color: tuple[int, int, int]) -> int:
    for line in lines:
        text = font.render(line, True, color)
        surface.blit(text, (x, y))
        y += text.get_height() + 8
    return y


class SummaryScreen:
    def __init__(self, app: App, *, session: CognitiveSession, store: MindStore, reason: str | None) -> None:
        self._app = app
        self._session = session
        summary = session.summary()
        self._lines = [summary.description, *summary.cognitive_changes, *summary.suggestions]
        self._reason = reason
        self._insight = session.session_insight()
        self._title = session.archetypes.current_title
        self._title_font = pygame.font.Font(None, 42)
        self._font = pygame.font.Font(None, 28)
        store.save(session, now_s=RealClock().now())

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key in (
            pygame.K_RETURN,
            pygame.K_KP_ENTER,
            pygame.K_SPACE,
            pygame.K_ESCAPE,
            pygame.K_BACKSPACE,
        ):
            self._session.start_new_session()
            self._app.pop_to_root()
        elif event.type == pygame.JOYBUTTONDOWN:
            self._session.start_new_session()
            self._app.pop_to_root()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        w, _ = surface.get_size()
        title = self._title_font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(w // 2, 30)))
        y = 100
        if self._reason:
            y = _draw_lines(surface, self._font, [self._reason], x=60, y=y, color=TEXT_MAIN) + 12
        y = _draw_lines(surface, self._font, self._lines, x=60, y=y, color=TEXT_MUTED) + 12
        _draw_lines(surface, self._font, [self._insight, "", "Enter: Return"], x=60, y=y, color=TEXT_MAIN)


class ProfileScreen:
    def __init__(self, app: App, *, session: CognitiveSession) -> None:
        self._app = app
        self._session = session
        self._title_font = pygame.font.Font(None, 42)
        self._font = pygame.font.Font(None, 28)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN):
            self._app.pop()
        elif event.type == pygame.JOYBUTTONDOWN and event.button == 1:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        w, _ = surface.get_size()
        s = self._session
        fp = s.adaptive.fingerprint()
        model = s.mind_model()
        arch = s.archetypes

        title = self._title_font.render(arch.current_title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(w // 2, 30)))
        y = _draw_lines(
            surface,
            self._font,
            [
                arch.dominant.essence,
                f"Stage: {s.flow.stage.value}  |  Evolution: {arch.stage.name}",
                f"Rounds played: {s.flow.lifetime_rounds}",
                f"Mood: {model.mood.value}  |  Typical answer: {model.reaction.median:.0f} ms",
            ],
            x=60,
            y=90,
            color=TEXT_MUTED,
        )
        y += 16
        bar_w = max(100, w - 320)
        for domain in CognitiveDomain:
            label = self._font.render(domain.value.title(), True, TEXT_MAIN)
            surface.blit(label, (60, y))
            frame = pygame.Rect(200, y + 4, bar_w, 14)
            pygame.draw.rect(surface, BORDER, frame, 1)
            fill = int(bar_w * fp.domain_score(domain) / 100.0)
            pygame.draw.rect(surface, TEXT_MAIN, pygame.Rect(frame.x, frame.y, fill, frame.h))
            y += 32


def _init_joysticks() -> None:
    try:
        count = pygame.joystick.get_count()
    except pygame.error:
        return

    for i in range(count):
        try:
            pygame.joystick.Joystick(i).init()
        except pygame.error:
            continue


def _new_seed() -> int:
    explicit = os.environ.get(SEED_ENV, "").strip()
    if explicit:
        return int(explicit)
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()
    _init_joysticks()

    pygame.display.set_caption("Cosmos Mind")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    session = CognitiveSession(clock=RealClock(), seed=_new_seed())
    store = MindStore(MindStore.default_path())
    store.load_into(session)

    def end_session(reason: str | None) -> None:
        app.push(SummaryScreen(app, session=session, store=store, reason=reason))

    def begin_session() -> None:
        app.push(PuzzleScreen(app, session=session, on_end=end_session))

    def confirm_reset() -> None:
        session.reset_profile()
        app.pop()

    reset_menu = MenuScreen(
        app,
        "Forget this mind?",
        [
            MenuItem("Reset Profile", confirm_reset),
            MenuItem("Back", app.pop),
        ],
    )

    main_items = [
        MenuItem("Begin Session", begin_session),
        MenuItem("Mind Profile", lambda: app.push(ProfileScreen(app, session=session))),
        MenuItem("Reset Profile", lambda: app.push(reset_menu)),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Cosmos Mind", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
