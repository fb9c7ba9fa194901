from __future__ import annotations

from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        ...


class ManualClock:
    """Virtual audio timeline advanced explicitly; used offline and in tests."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0.0:
            raise ValueError("clock cannot be rewound")
        self._now += float(seconds)
        return self._now

    def advance_to(self, timestamp: float) -> float:
        if timestamp > self._now:
            self._now = float(timestamp)
        return self._now


class AudioLock:
    """
    Busy-until watermark shared by every sound source.

    The value only moves forward through ``update``; ``release`` is reserved
    for stop and reset.
    """

    def __init__(self) -> None:
        self.value = 0.0

    def update(self, timestamp: float) -> float:
        self.value = max(self.value, float(timestamp))
        return self.value

    def release(self) -> None:
        self.value = 0.0

    def busy(self, now: float) -> bool:
        return now < self.value
