"""Pygame UI shell for the rhythm captcha.

Two screens:
- Contribution form (location -> benefit type -> verify -> done)
- Verification panel hosting the rhythm / precision challenge

Deterministic timing/scoring/RNG/state lives in the core modules; this file
only translates pygame input into orchestrator calls and draws snapshots.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable
from typing import Protocol

import pygame

from .audio import PygameCuePlayer
from .clock import Clock, RealClock
from .contribution import BENEFIT_LABELS, BenefitType, ContributionForm, ContributionStep
from .orchestrator import CaptchaSnapshot, ChallengeOrchestrator, CuePlayer, Phase, RingView
from .scoring import ChallengeKind, VerificationResult

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
HEADER_BG = (18, 30, 118)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACCENT = (66, 133, 244)
GREEN = (34, 197, 94)
RED = (239, 68, 68)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


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
        # Never pop the root screen; it handles its own quit behavior.
        if len(self._screens) > 1:
            self._screens.pop()

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


def _draw_frame(surface: pygame.Surface, title: str, font: pygame.font.Font) -> pygame.Rect:
    """Draw the shared window chrome; returns the content rect below the header."""

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
    text = font.render(title, True, TEXT_MAIN)
    surface.blit(text, text.get_rect(center=(frame.centerx, header.centery)))

    return pygame.Rect(frame.x + 16, header.bottom + 12, frame.w - 32, frame.bottom - header.bottom - 24)


def _draw_button(surface: pygame.Surface, rect: pygame.Rect, label: str, font: pygame.font.Font) -> None:
    pygame.draw.rect(surface, (9, 20, 106), rect)
    pygame.draw.rect(surface, (120, 142, 196), rect, 2)
    text = font.render(label, True, TEXT_MAIN)
    surface.blit(text, text.get_rect(center=rect.center))


class VerificationScreen:
    def __init__(
        self,
        app: App,
        *,
        clock: Clock,
        seed: int,
        audio: CuePlayer | None,
        on_verdict: Callable[[bool], None],
    ) -> None:
        self._app = app
        self._audio = audio
        self._on_verdict = on_verdict
        self._orchestrator = ChallengeOrchestrator(
            clock=clock,
            seed=seed,
            on_result=self._deliver,
            audio=audio,
        )
        self._small_font = pygame.font.Font(None, 24)
        self._mid_font = pygame.font.Font(None, 40)

        # Mouse hitboxes, refreshed during render.
        self._panel = pygame.Rect(0, 0, 0, 0)
        self._hitboxes: dict[str, pygame.Rect] = {}

    @property
    def orchestrator(self) -> ChallengeOrchestrator:
        return self._orchestrator

    def footer_hint(self) -> str:
        hint = "Esc: close  |  Space: tap  |  L: replay  |  R/P: choose challenge"
        if isinstance(self._audio, PygameCuePlayer) and not self._audio.available:
            # Rhythm patterns are still shown as beat flashes.
            hint += "  |  audio off"
        return hint

    def _deliver(self, is_human: bool) -> None:
        self._on_verdict(is_human)

    def close(self) -> None:
        self._orchestrator.reset()
        if isinstance(self._audio, PygameCuePlayer):
            self._audio.stop()
        self._app.pop()

    def handle_event(self, event: pygame.event.Event) -> None:
        orch = self._orchestrator
        if event.type == pygame.MOUSEMOTION:
            x, y = event.pos
            if self._panel.collidepoint(x, y):
                orch.track_pointer(x - self._panel.x, y - self._panel.y)
            return

        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            self._handle_click(event.pos)
            return

        if event.type != pygame.KEYDOWN:
            return

        key = event.key
        if key == pygame.K_ESCAPE:
            self.close()
        elif orch.phase is Phase.IDLE and key in (pygame.K_RETURN, pygame.K_SPACE):
            orch.begin()
        elif orch.phase is Phase.SELECT and key == pygame.K_r:
            orch.select(ChallengeKind.RHYTHM)
        elif orch.phase is Phase.SELECT and key == pygame.K_p:
            orch.select(ChallengeKind.PRECISION)
        elif orch.phase is Phase.PLAY and key == pygame.K_SPACE:
            orch.tap()
        elif orch.phase is Phase.PLAY and key == pygame.K_l:
            orch.replay()
        elif orch.phase is Phase.RESULT and key in (pygame.K_RETURN, pygame.K_SPACE):
            if not orch.retry():
                self.close()

    def _handle_click(self, pos: tuple[int, int]) -> None:
        orch = self._orchestrator
        hit = next((name for name, rect in self._hitboxes.items() if rect.collidepoint(pos)), None)

        if orch.phase is Phase.TARGET:
            ring = orch.snapshot().ring
            if ring is not None and self._ring_contains(ring, pos):
                orch.click_ring()
            return

        if hit == "checkbox":
            orch.begin()
        elif hit == "rhythm":
            orch.select(ChallengeKind.RHYTHM)
        elif hit == "precision":
            orch.select(ChallengeKind.PRECISION)
        elif hit == "tap":
            orch.tap()
        elif hit == "replay":
            orch.replay()
        elif hit == "retry":
            orch.retry()
        elif hit == "continue":
            self.close()

    def _ring_center(self, ring: RingView) -> tuple[int, int]:
        return (
            int(self._panel.x + self._panel.w * ring.x_pct / 100.0),
            int(self._panel.y + self._panel.h * ring.y_pct / 100.0),
        )

    def _ring_contains(self, ring: RingView, pos: tuple[int, int]) -> bool:
        cx, cy = self._ring_center(ring)
        return math.hypot(pos[0] - cx, pos[1] - cy) <= ring.size / 2.0

    def render(self, surface: pygame.Surface) -> None:
        self._orchestrator.update()
        snap = self._orchestrator.snapshot()

        content = _draw_frame(surface, "Human Verification", self._mid_font)
        self._panel = content.inflate(0, -60).move(0, 30)
        self._hitboxes = {}

        prompt = self._mid_font.render(snap.prompt, True, TEXT_MAIN)
        surface.blit(prompt, prompt.get_rect(midtop=(content.centerx, content.y)))
        pygame.draw.rect(surface, (6, 13, 92), self._panel)
        pygame.draw.rect(surface, (78, 102, 170), self._panel, 1)

        if snap.phase is Phase.IDLE:
            box = pygame.Rect(0, 0, 44, 44)
            box.center = self._panel.center
            pygame.draw.rect(surface, BORDER, box, 2)
            self._hitboxes["checkbox"] = box
        elif snap.phase is Phase.SELECT:
            left = pygame.Rect(0, 0, 220, 60)
            right = left.copy()
            left.center = (self._panel.centerx - 130, self._panel.centery)
            right.center = (self._panel.centerx + 130, self._panel.centery)
            _draw_button(surface, left, "Rhythm", self._small_font)
            _draw_button(surface, right, "Precision", self._small_font)
            self._hitboxes["rhythm"] = left
            self._hitboxes["precision"] = right
        elif snap.phase in (Phase.LISTEN, Phase.PLAY):
            self._render_rhythm(surface, snap)
        elif snap.phase is Phase.TARGET:
            self._render_precision(surface, snap)
        elif snap.phase is Phase.CHECKING:
            self._render_checking(surface)
        elif snap.result is not None:
            self._render_result(surface, snap.result, can_retry=snap.can_retry)

        foot = self._small_font.render(self.footer_hint(), True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(content.centerx, content.bottom)))

    def _render_rhythm(self, surface: pygame.Surface, snap: CaptchaSnapshot) -> None:
        count = max(1, snap.beats_total)
        spacing = min(60, (self._panel.w - 40) // count)
        x0 = self._panel.centerx - spacing * (count - 1) // 2
        y = self._panel.y + 50
        for i in range(count):
            lit = i == snap.beat_index or (snap.phase is Phase.PLAY and i < snap.taps)
            pygame.draw.circle(surface, ACCENT if lit else (62, 84, 152), (x0 + i * spacing, y), 12)

        if snap.pattern_name:
            name = self._small_font.render(snap.pattern_name, True, TEXT_MUTED)
            surface.blit(name, name.get_rect(midtop=(self._panel.centerx, y + 24)))

        if snap.phase is Phase.PLAY:
            pad = pygame.Rect(0, 0, 200, 120)
            pad.center = self._panel.center
            _draw_button(surface, pad, "TAP", self._mid_font)
            replay = pygame.Rect(0, 0, 140, 36)
            replay.midtop = (self._panel.centerx, pad.bottom + 16)
            _draw_button(surface, replay, "Replay", self._small_font)
            self._hitboxes["tap"] = pad
            self._hitboxes["replay"] = replay

    def _render_precision(self, surface: pygame.Surface, snap: CaptchaSnapshot) -> None:
        for i in range(snap.rounds_total):
            done = i < len(snap.outcomes)
            color = (62, 84, 152)
            if done:
                color = GREEN if snap.outcomes[i].hit else RED
            pygame.draw.circle(surface, color, (self._panel.x + 20 + i * 22, self._panel.y + 16), 7)

        ring = snap.ring
        if ring is None:
            return
        center = self._ring_center(ring)
        outer = ring.size // 2
        pygame.draw.circle(surface, BORDER, center, outer, 2)
        # Marker at the 70% point of the shrink.
        pygame.draw.circle(surface, GREEN, center, max(1, int(outer * 0.3)), 1)
        inner = max(1, int(outer * (1.0 - ring.progress)))
        pygame.draw.circle(surface, ACCENT, center, inner, 3)

    def _render_checking(self, surface: pygame.Surface) -> None:
        angle = (pygame.time.get_ticks() / 300.0) % (2.0 * math.pi)
        cx, cy = self._panel.center
        for i in range(8):
            a = angle + i * (math.pi / 4.0)
            shade = 80 + i * 20
            pygame.draw.circle(surface, (shade, shade, 255), (int(cx + 30 * math.cos(a)), int(cy + 30 * math.sin(a))), 5)

    def _render_result(self, surface: pygame.Surface, result: VerificationResult, *, can_retry: bool) -> None:
        color = GREEN if result.is_human else RED
        y = self._panel.y + 20
        for label, value in result.scores.as_dict().items():
            line = self._small_font.render(f"{label.replace('_', ' ')}: {value}", True, TEXT_MAIN)
            surface.blit(line, (self._panel.x + 24, y))
            y += 26
        total = self._mid_font.render(f"Total {result.total}/100", True, color)
        surface.blit(total, (self._panel.x + 24, y + 6))

        d = result.details
        lines = (
            f"samples {d.pointer_samples}  micro {d.micro_movements}  hesitations {d.hesitations}",
            f"jitter {d.path_jitter:.4f}  timing sd {d.timing_variance:.1f}  velocity {d.velocity_naturalness:.3f}",
            f"time {result.total_time_ms / 1000.0:.1f}s  confidence {result.confidence}%",
        )
        y = self._panel.y + 20
        for text in lines:
            line = self._small_font.render(text, True, TEXT_MUTED)
            surface.blit(line, (self._panel.centerx, y))
            y += 26

        button = pygame.Rect(0, 0, 180, 44)
        button.midbottom = (self._panel.centerx, self._panel.bottom - 16)
        if can_retry:
            _draw_button(surface, button, "Try again", self._small_font)
            self._hitboxes["retry"] = button
        else:
            _draw_button(surface, button, "Continue", self._small_font)
            self._hitboxes["continue"] = button


class ContributionScreen:
    def __init__(
        self,
        app: App,
        *,
        clock: Clock,
        audio: CuePlayer | None,
        seed_factory: Callable[[], int],
    ) -> None:
        self._app = app
        self._clock = clock
        self._audio = audio
        self._seed_factory = seed_factory
        self._form = ContributionForm()
        self._failed_attempt = False
        self._small_font = pygame.font.Font(None, 26)
        self._mid_font = pygame.font.Font(None, 40)

    @property
    def form(self) -> ContributionForm:
        return self._form

    def _on_verdict(self, is_human: bool) -> None:
        self._failed_attempt = not is_human
        if self._form.apply_verification(is_human):
            submitted = self._form.submitted
            assert submitted is not None
            logger.info("Contribution accepted: %s (%s)", submitted.location, submitted.benefit)

    def open_verification(self) -> VerificationScreen:
        screen = VerificationScreen(
            self._app,
            clock=self._clock,
            seed=self._seed_factory(),
            audio=self._audio,
            on_verdict=self._on_verdict,
        )
        self._app.push(screen)
        return screen

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        form = self._form
        key = event.key

        if key == pygame.K_ESCAPE:
            self._app.quit()
            return

        if form.step is ContributionStep.LOCATION:
            if key == pygame.K_BACKSPACE:
                form.set_location(form.location[:-1])
            elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                form.next()
            elif event.unicode and event.unicode.isprintable():
                form.set_location(form.location + event.unicode)
        elif form.step is ContributionStep.BENEFIT:
            choices = {pygame.K_1: BenefitType.FOOD, pygame.K_2: BenefitType.HEALTH, pygame.K_3: BenefitType.COMMUNITY}
            if key in choices:
                form.choose_benefit(choices[key])
            elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                form.next()
        elif form.step is ContributionStep.VERIFY:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                self.open_verification()
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            form.reset()
            self._failed_attempt = False

    def render(self, surface: pygame.Surface) -> None:
        content = _draw_frame(surface, "Contribute a Resource", self._mid_font)
        form = self._form
        lines: list[tuple[str, tuple[int, int, int]]] = []

        if form.step is ContributionStep.LOCATION:
            lines.append(("Where is this resource?", TEXT_MAIN))
            lines.append((f"> {form.location}_", ACCENT))
            lines.append(("Type an address or landmark, Enter to continue.", TEXT_MUTED))
        elif form.step is ContributionStep.BENEFIT:
            lines.append(("What kind of benefit?", TEXT_MAIN))
            for i, benefit in enumerate(BenefitType, start=1):
                marker = "*" if form.benefit is benefit else " "
                lines.append((f"[{i}]{marker} {BENEFIT_LABELS[benefit]}", TEXT_MAIN))
            lines.append(("1-3 to choose, Enter to continue.", TEXT_MUTED))
        elif form.step is ContributionStep.VERIFY:
            lines.append(("Before submitting, confirm you are human.", TEXT_MAIN))
            if self._failed_attempt:
                lines.append(("Verification failed. Press Enter to try again.", RED))
            else:
                lines.append(("Press Enter to start verification.", TEXT_MUTED))
        else:
            lines.append(("Thank you! Your contribution was submitted.", GREEN))
            lines.append(("Press Enter to add another.", TEXT_MUTED))

        y = content.y + 20
        for text, color in lines:
            rendered = self._small_font.render(text, True, color)
            surface.blit(rendered, (content.x + 20, y))
            y += 34


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()
    pygame.display.set_caption("Rhythm Captcha")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    frame_clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    audio = PygameCuePlayer()
    app.push(ContributionScreen(app, clock=RealClock(), audio=audio, seed_factory=_new_seed))

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
            frame_clock.tick(TARGET_FPS)
    finally:
        audio.stop()
        pygame.quit()
    return 0
