from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from .clock import AudioLock, Clock, ManualClock
from .player import ToneEvent

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - optional runtime dependency
    sd = None


NOISE_WARMUP_SECONDS = 2.0
HISTORY_LIMIT = 2000
HISTORY_KEEP = 1000

QRN_LEVELS: Dict[str, float] = {
    "off": 0.0,
    "light": 0.015,
    "moderate": 0.04,
    "heavy": 0.09,
}


class BackgroundNoise:
    """Continuous band noise bed, independent of the audio lock."""

    def __init__(self, sample_rate: int = 48000, level: str = "moderate", seed: Optional[int] = None):
        self.sample_rate = sample_rate
        self.level = "moderate"
        self.set_intensity(level)
        self._playing = False
        self._rng = np.random.default_rng(seed)
        self._kernel = np.full(6, 1.0 / 6.0, dtype=np.float32)

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def gain(self) -> float:
        return QRN_LEVELS[self.level]

    def start(self) -> float:
        """Start if absent; returns the delay the first tones must be offset by."""
        if self._playing:
            return 0.0
        self._playing = True
        return NOISE_WARMUP_SECONDS

    def stop(self) -> None:
        self._playing = False

    def set_intensity(self, level: str) -> None:
        key = str(level or "").strip().lower()
        if key not in QRN_LEVELS:
            raise ValueError(f"Unknown QRN level: {level!r}")
        self.level = key

    def render(self, num_samples: int) -> np.ndarray:
        if num_samples <= 0:
            return np.zeros(0, dtype=np.float32)
        if not self._playing or self.gain <= 0.0:
            return np.zeros(num_samples, dtype=np.float32)
        white = self._rng.normal(0.0, 1.0, num_samples).astype(np.float32)
        # short moving average takes the harsh top end off the hiss
        shaped = np.convolve(white, self._kernel, mode="same").astype(np.float32)
        return shaped * np.float32(self.gain * 2.0)


def render_events(
    events: Sequence[ToneEvent],
    t0: float,
    num_samples: int,
    sample_rate: int,
    attack_ms: float = 4.0,
    release_ms: float = 6.0,
) -> np.ndarray:
    """Mix the slice [t0, t0 + num_samples / sample_rate) of the scheduled tones."""
    out = np.zeros(max(num_samples, 0), dtype=np.float32)
    if num_samples <= 0:
        return out

    attack = max(attack_ms / 1000.0, 1e-6)
    release = max(release_ms / 1000.0, 1e-6)
    for ev in events:
        first = int(round((ev.start - t0) * sample_rate))
        last = int(round((ev.end - t0) * sample_rate))
        if last <= 0 or first >= num_samples:
            continue
        lo = max(first, 0)
        hi = min(last, num_samples)
        idx = np.arange(lo, hi, dtype=np.float64)
        abs_t = t0 + idx / sample_rate
        local = abs_t - ev.start
        wave = np.sin(2.0 * np.pi * ev.tone_hz * abs_t)
        env = np.minimum(np.clip(local / attack, 0.0, 1.0), np.clip((ev.duration - local) / release, 0.0, 1.0))
        out[lo:hi] += (wave * env * ev.amplitude).astype(np.float32)
    return out


class AudioBackend:
    """Holds the shared clock, the audio lock, the noise bed and pending tones."""

    def __init__(self, clock: Clock, sample_rate: int = 48000, qrn: str = "moderate"):
        self.clock = clock
        self.sample_rate = sample_rate
        self.lock = AudioLock()
        self.noise = BackgroundNoise(sample_rate, level=qrn)
        self.history: List[ToneEvent] = []
        self._pending: List[ToneEvent] = []
        self._guard = threading.Lock()

    def schedule(self, events: Sequence[ToneEvent]) -> None:
        now = self.clock.now()
        with self._guard:
            self._pending = [ev for ev in self._pending if ev.end > now]
            self._pending.extend(events)
            self.history.extend(events)
            if len(self.history) > HISTORY_LIMIT:
                self.history = self.history[-HISTORY_KEEP:]

    def pending_events(self) -> List[ToneEvent]:
        now = self.clock.now()
        with self._guard:
            return [ev for ev in self._pending if ev.end > now]

    def stop_all(self) -> None:
        with self._guard:
            self._pending.clear()
        self.noise.stop()


class NullAudio(AudioBackend):
    """Silent backend on a manual clock: nothing is played, everything is recorded."""

    def __init__(self, sample_rate: int = 48000, qrn: str = "moderate", clock: Optional[ManualClock] = None):
        super().__init__(clock or ManualClock(), sample_rate=sample_rate, qrn=qrn)


class _FrameClock:
    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self.frames = 0

    def now(self) -> float:
        return self.frames / float(self.sample_rate)


class StreamAudio(AudioBackend):
    """Plays the timeline through a sounddevice output stream; its clock is the rendered frame count."""

    def __init__(
        self,
        sample_rate: int = 48000,
        blocksize: int = 1024,
        device: Optional[int] = None,
        qrn: str = "moderate",
        attack_ms: float = 4.0,
        release_ms: float = 6.0,
    ):
        self._frame_clock = _FrameClock(sample_rate)
        super().__init__(self._frame_clock, sample_rate=sample_rate, qrn=qrn)
        self.blocksize = blocksize
        self.device = device
        self.attack_ms = attack_ms
        self.release_ms = release_ms
        self.last_status = ""
        self.stream = None

    def start(self) -> None:
        if sd is None:
            raise RuntimeError("sounddevice is not installed; cannot play audio.")
        if self.stream is not None:
            return
        self.stream = sd.OutputStream(
            samplerate=self.sample_rate,
            blocksize=self.blocksize,
            channels=1,
            device=self.device,
            dtype="float32",
            callback=self._callback,
        )
        self.stream.start()

    def close(self) -> None:
        if self.stream is not None:
            try:
                self.stream.stop()
                self.stream.close()
            finally:
                self.stream = None

    def _callback(self, outdata, frames, _time_info, status) -> None:
        if status:
            self.last_status = str(status)
        t0 = self.clock.now()
        with self._guard:
            self._pending = [ev for ev in self._pending if ev.end > t0]
            active = list(self._pending)
        block = render_events(active, t0, frames, self.sample_rate, self.attack_ms, self.release_ms)
        block += self.noise.render(frames)
        outdata[:, 0] = np.clip(block, -1.0, 1.0)
        self._frame_clock.frames += frames
