from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .clock import AudioLock, Clock
from .morse import encode_words


@dataclass
class ToneParams:
    wpm: float = 20.0
    farnsworth_wpm: Optional[float] = None
    tone_hz: float = 600.0
    volume: float = 0.5
    qsb_depth: float = 0.0  # 0..1, zero disables fading
    qsb_rate_hz: float = 0.2
    qsb_phase: float = 0.0

    @property
    def dot_seconds(self) -> float:
        return 1.2 / max(self.wpm, 1.0)

    @property
    def space_dot_seconds(self) -> float:
        if self.farnsworth_wpm and 1.0 <= self.farnsworth_wpm < self.wpm:
            return 1.2 / self.farnsworth_wpm
        return self.dot_seconds

    @property
    def char_gap_seconds(self) -> float:
        return 3.0 * self.space_dot_seconds

    @property
    def word_gap_seconds(self) -> float:
        return 7.0 * self.space_dot_seconds


@dataclass(frozen=True)
class ToneEvent:
    start: float
    duration: float
    tone_hz: float
    amplitude: float

    @property
    def end(self) -> float:
        return self.start + self.duration


class ToneSink(Protocol):
    clock: Clock
    lock: AudioLock

    def schedule(self, events: Sequence[ToneEvent]) -> None:
        ...


class MorsePlayer:
    """
    Renders text into tone events on the shared audio timeline.

    ``play_sentence`` never blocks: it schedules every tone and returns the
    timestamp at which the last one ends, so callers chain the next sound off
    that value.
    """

    def __init__(self, params: ToneParams, sink: ToneSink):
        self.params = params
        self.sink = sink

    def events(self, text: str, start: float) -> List[ToneEvent]:
        p = self.params
        dot = p.dot_seconds
        char_gap = p.char_gap_seconds
        word_gap = p.word_gap_seconds

        out: List[ToneEvent] = []
        t = float(start)
        for word_idx, letters in enumerate(encode_words(text)):
            if word_idx:
                t += word_gap
            for letter_idx, morse in enumerate(letters):
                if letter_idx:
                    t += char_gap
                amplitude = self.amplitude_at(t)
                for element_idx, element in enumerate(morse):
                    if element_idx:
                        t += dot
                    duration = dot if element == "." else 3.0 * dot
                    out.append(ToneEvent(t, duration, p.tone_hz, amplitude))
                    t += duration
        return out

    def duration(self, text: str) -> float:
        events = self.events(text, 0.0)
        if not events:
            return 0.0
        return events[-1].end

    def amplitude_at(self, t: float) -> float:
        p = self.params
        volume = min(max(p.volume, 0.0), 1.0)
        depth = min(max(p.qsb_depth, 0.0), 1.0)
        if depth <= 0.0:
            return volume
        envelope = 0.5 * (1.0 + math.sin(2.0 * math.pi * p.qsb_rate_hz * t + p.qsb_phase))
        return volume * (1.0 - depth * envelope)

    def play_sentence(self, text: str, start: Optional[float] = None) -> float:
        now = self.sink.clock.now()
        requested = now if start is None else float(start)
        begin = max(requested, now, self.sink.lock.value)
        events = self.events(text, begin)
        if not events:
            return requested
        self.sink.schedule(events)
        return events[-1].end
