from __future__ import annotations

import math
import random
import string
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence

from .callsign_pool import PoolEntry
from .player import MorsePlayer, ToneParams

if TYPE_CHECKING:
    from .config import SessionInputs

FARNSWORTH_STEP = 6
FARNSWORTH_FLOOR = 5

US_PREFIXES = ("K", "N", "W", "AA", "AB", "AC", "AD", "AE", "AF", "AG", "AI", "KA", "KB", "KC", "KD", "KE", "KI", "KJ", "KK", "KN", "WA", "WB")
DX_PREFIXES = ("VE", "VA", "G", "M", "DL", "F", "EA", "I", "ON", "PA", "OH", "SM", "OK", "SP", "JA", "VK", "ZL", "LU")

NAMES = ("AL", "ANN", "BOB", "BILL", "CHRIS", "DAN", "DAVE", "ED", "FRED", "HANK", "JIM", "JOE", "KEN", "LIZ", "MIKE", "PAT", "RON", "SAM", "SUE", "TOM")
US_STATES = (
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA", "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME",
    "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA",
    "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
)


@dataclass
class Station:
    callsign: str
    wpm: int
    enable_farnsworth: bool = False
    farnsworth_speed: int = 0
    tone_hz: float = 600.0
    volume: float = 0.5
    name: str = ""
    state: str = ""
    serial_number: Optional[int] = None
    cwops_number: Optional[int] = None
    qsb: bool = False
    qsb_percentage: int = 0
    qsb_rate_hz: float = 0.2
    qsb_phase: float = 0.0
    player: Optional[MorsePlayer] = field(default=None, repr=False, compare=False)

    def tone_params(self) -> ToneParams:
        return ToneParams(
            wpm=float(self.wpm),
            farnsworth_wpm=float(self.farnsworth_speed) if self.enable_farnsworth else None,
            tone_hz=self.tone_hz,
            volume=self.volume,
            qsb_depth=(self.qsb_percentage / 100.0) if self.qsb else 0.0,
            qsb_rate_hz=self.qsb_rate_hz,
            qsb_phase=self.qsb_phase,
        )

    @property
    def wpm_label(self) -> str:
        if self.enable_farnsworth:
            return f"{self.wpm} / {self.farnsworth_speed}"
        return f"{self.wpm}"

    def to_dict(self) -> dict:
        return {
            "callsign": self.callsign,
            "wpm": self.wpm,
            "enable_farnsworth": self.enable_farnsworth,
            "farnsworth_speed": self.farnsworth_speed,
            "tone_hz": round(self.tone_hz, 1),
            "name": self.name,
            "state": self.state,
            "serial_number": self.serial_number,
            "cwops_number": self.cwops_number,
        }


@dataclass
class YourStation:
    callsign: str
    name: str = ""
    state: str = ""
    wpm: int = 25
    sidetone: float = 600.0
    volume: float = 0.5
    player: Optional[MorsePlayer] = field(default=None, repr=False, compare=False)

    def tone_params(self) -> ToneParams:
        return ToneParams(wpm=float(self.wpm), tone_hz=self.sidetone, volume=self.volume)


def slow_down(station: Station, step: int = FARNSWORTH_STEP, floor: int = FARNSWORTH_FLOOR) -> None:
    """Answer a QRS: widen the station's spacing by lowering its Farnsworth speed."""
    if station.enable_farnsworth:
        station.farnsworth_speed = max(floor, station.farnsworth_speed - step)
    else:
        station.enable_farnsworth = True
        station.farnsworth_speed = max(floor, station.wpm - step)


class StationRegistry:
    """Stations currently on frequency, in the order they joined."""

    def __init__(self) -> None:
        self._stations: List[Station] = []

    def __len__(self) -> int:
        return len(self._stations)

    def __iter__(self) -> Iterator[Station]:
        return iter(self._stations)

    def __getitem__(self, index: int) -> Station:
        return self._stations[index]

    def add(self, station: Station) -> None:
        self._stations.append(station)

    def extend(self, stations: Sequence[Station]) -> None:
        self._stations.extend(stations)

    def remove_at(self, index: int) -> Station:
        return self._stations.pop(index)

    def remove(self, station: Station) -> None:
        self._stations = [s for s in self._stations if s is not station]

    def clear(self) -> None:
        self._stations.clear()

    def snapshot(self) -> List[Station]:
        return list(self._stations)

    def callsigns(self) -> List[str]:
        return [s.callsign for s in self._stations]


class StationGenerator:
    """Builds your station and random calling stations from validated inputs."""

    def __init__(self, pool: Optional[Sequence[PoolEntry]] = None):
        self.pool: List[PoolEntry] = list(pool or [])

    def your_station(self, inputs: SessionInputs) -> YourStation:
        you = inputs.your
        return YourStation(
            callsign=you.callsign,
            name=you.name,
            state=you.state,
            wpm=int(you.wpm),
            sidetone=float(you.sidetone),
            volume=float(you.volume),
        )

    def calling_station(self, inputs: SessionInputs, exclude: Sequence[str] = ()) -> Station:
        cfg = inputs.callers
        entry = self._pick_entry(cfg.us_only, exclude)
        wpm = random.randint(int(cfg.wpm_min), int(cfg.wpm_max))
        is_us = _is_us_call(entry.callsign)
        return Station(
            callsign=entry.callsign,
            wpm=wpm,
            enable_farnsworth=bool(cfg.enable_farnsworth),
            farnsworth_speed=min(int(cfg.farnsworth_speed), wpm) if cfg.enable_farnsworth else 0,
            tone_hz=random.uniform(float(cfg.tone_hz_min), float(cfg.tone_hz_max)),
            volume=random.uniform(float(cfg.volume_min), float(cfg.volume_max)),
            name=entry.name or random.choice(NAMES),
            state=entry.state or (random.choice(US_STATES) if is_us else ""),
            serial_number=random.randint(1, 999),
            cwops_number=entry.cwops_number or random.randint(1, 3500),
            qsb=bool(cfg.qsb),
            qsb_percentage=int(cfg.qsb_percentage),
            qsb_rate_hz=random.uniform(0.05, 0.3),
            qsb_phase=random.uniform(0.0, 2.0 * math.pi),
        )

    def _pick_entry(self, us_only: bool, exclude: Sequence[str]) -> PoolEntry:
        taken = {c.upper() for c in exclude}
        candidates = [e for e in self.pool if e.callsign not in taken and (not us_only or _is_us_call(e.callsign))]
        if candidates:
            return random.choice(candidates)
        while True:
            call = random_callsign(us_only)
            if call not in taken:
                return PoolEntry(callsign=call)


def random_callsign(us_only: bool = False) -> str:
    prefixes = US_PREFIXES if us_only or random.random() < 0.7 else DX_PREFIXES
    prefix = random.choice(prefixes)
    suffix_len = random.randint(1, 3)
    suffix = "".join(random.choice(string.ascii_uppercase) for _ in range(suffix_len))
    return f"{prefix}{random.randint(0, 9)}{suffix}"


def _is_us_call(call: str) -> bool:
    return call[:1] in ("K", "N", "W") or (call[:1] == "A" and call[1:2] != "" and call[1:2] in "ABCDEFGHIJKL")
