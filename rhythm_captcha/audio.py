from __future__ import annotations

import logging
import math
from array import array

import pygame

from .orchestrator import Cue

logger = logging.getLogger(__name__)


class PygameCuePlayer:
    """Synthesized tone cues for the rhythm and precision challenges.

    Playback is best-effort: if the mixer cannot be initialised every call to
    ``play`` is a no-op. Scoring only ever sees event timestamps.
    """

    _sample_rate = 22050
    _amp = 32767

    def __init__(self) -> None:
        self._available = False
        self._sounds: dict[Cue, pygame.mixer.Sound] = {}
        self._channel: pygame.mixer.Channel | None = None

        try:
            if pygame.mixer.get_init() is None:
                pygame.mixer.init(frequency=self._sample_rate, size=-16, channels=1, buffer=512)
            self._sounds = {
                Cue.KICK: self._build_sound(self._render_kick_pcm(0.15, gain=0.40)),
                Cue.TAP: self._build_sound(self._render_tone_pcm(600.0, 0.06, gain=0.20)),
                Cue.HIT: self._build_sound(self._render_tone_pcm(880.0, 0.10, gain=0.25)),
                Cue.MISS: self._build_sound(self._render_tone_pcm(300.0, 0.15, gain=0.20)),
            }
            self._channel = pygame.mixer.Channel(0)
            self._available = True
        except pygame.error as exc:
            logger.info("Audio cues disabled: %s", exc)
            self._sounds = {}
            self._channel = None

    @property
    def available(self) -> bool:
        return self._available

    def play(self, cue: Cue) -> None:
        if not self._available:
            return
        assert self._channel is not None
        sound = self._sounds.get(cue)
        if sound is None:
            return
        # Kicks and taps can overlap; a free channel keeps both audible.
        channel = pygame.mixer.find_channel() or self._channel
        channel.play(sound)

    def stop(self) -> None:
        if not self._available:
            return
        try:
            pygame.mixer.stop()
        except pygame.error as exc:
            logger.debug("Mixer stop failed: %s", exc)

    @staticmethod
    def _build_sound(pcm: array[int]) -> pygame.mixer.Sound:
        return pygame.mixer.Sound(buffer=pcm.tobytes())

    def _render_tone_pcm(self, frequency_hz: float, duration_s: float, *, gain: float) -> array[int]:
        # Sine with an exponential decay, close to a short percussive beep.
        sample_count = max(1, int(self._sample_rate * duration_s))
        decay = math.log(0.001) / sample_count
        out = array("h")
        for idx in range(sample_count):
            envelope = gain * math.exp(decay * idx)
            phase = (2.0 * math.pi * frequency_hz * idx) / float(self._sample_rate)
            out.append(int(max(-1.0, min(1.0, math.sin(phase) * envelope)) * self._amp))
        return out

    def _render_kick_pcm(self, duration_s: float, *, gain: float) -> array[int]:
        # Pitch sweeps 150 Hz -> 50 Hz over the first 120 ms.
        sample_count = max(1, int(self._sample_rate * duration_s))
        sweep_n = max(1, int(self._sample_rate * 0.12))
        decay = math.log(0.001) / sample_count
        out = array("h")
        phase = 0.0
        for idx in range(sample_count):
            t = min(1.0, idx / float(sweep_n))
            freq = 150.0 * (50.0 / 150.0) ** t
            phase += (2.0 * math.pi * freq) / float(self._sample_rate)
            envelope = gain * math.exp(decay * idx)
            out.append(int(max(-1.0, min(1.0, math.sin(phase) * envelope)) * self._amp))
        return out
