from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .audio import QRN_LEVELS
from .errors import InvalidConfiguration
from .modes import MODE_NAMES

# Traditional cut-number letters; only the digits listed in cut_digits are substituted.
CUT_NUMBER_LETTERS: Dict[str, str] = {
    "0": "T",
    "1": "A",
    "2": "U",
    "3": "V",
    "5": "E",
    "7": "G",
    "8": "D",
    "9": "N",
}

CALLSIGN_RE = re.compile(r"^(?:[A-Z0-9]{1,4}/)?[A-Z0-9]{1,3}[0-9][A-Z0-9]{0,3}[A-Z](?:/[A-Z0-9]{1,4})?$")

MIN_WPM = 5
MAX_WPM = 60


@dataclass
class AudioRuntimeConfig:
    sample_rate: int = 48000
    output_device: Optional[int] = None
    blocksize: int = 1024
    backend: str = "stream"  # stream | null


@dataclass
class YourStationConfig:
    callsign: str = ""
    name: str = ""
    state: str = ""
    wpm: int = 25
    sidetone: float = 600.0
    volume: float = 0.5


@dataclass
class CallerConfig:
    wpm_min: int = 20
    wpm_max: int = 30
    tone_hz_min: float = 450.0
    tone_hz_max: float = 750.0
    volume_min: float = 0.3
    volume_max: float = 0.7
    enable_farnsworth: bool = False
    farnsworth_speed: int = 15
    qsb: bool = False
    qsb_percentage: int = 40
    us_only: bool = False
    callsigns_file: Optional[str] = None
    max_stations: int = 3


@dataclass
class SessionConfig:
    mode: str = "single"
    enable_continuous: bool = False
    enable_cut_numbers: bool = False
    cut_digits: List[str] = field(default_factory=lambda: ["0", "9"])
    qrn: str = "moderate"
    modes_file: Optional[str] = None


@dataclass
class AppConfig:
    audio: AudioRuntimeConfig = field(default_factory=AudioRuntimeConfig)
    station: YourStationConfig = field(default_factory=YourStationConfig)
    callers: CallerConfig = field(default_factory=CallerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


@dataclass(frozen=True)
class SessionInputs:
    """Trainee settings that passed validation; rebuilt on every call action."""

    your: YourStationConfig
    callers: CallerConfig
    enable_continuous: bool = False
    cut_numbers: Dict[str, str] = field(default_factory=dict)

    @property
    def max_stations(self) -> int:
        return self.callers.max_stations


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        cfg = AppConfig()
        save_config(p, cfg)
        return cfg

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    cfg = AppConfig()

    _apply_dataclass_updates(cfg.audio, raw.get("audio", {}))
    _apply_dataclass_updates(cfg.station, raw.get("station", {}))
    _apply_dataclass_updates(cfg.callers, raw.get("callers", {}))
    _apply_dataclass_updates(cfg.session, raw.get("session", {}))

    callers = cfg.callers
    callers.max_stations = max(1, int(callers.max_stations))
    callers.qsb_percentage = max(0, min(100, int(callers.qsb_percentage)))
    if callers.wpm_min > callers.wpm_max:
        callers.wpm_min, callers.wpm_max = callers.wpm_max, callers.wpm_min
    if callers.tone_hz_min > callers.tone_hz_max:
        callers.tone_hz_min, callers.tone_hz_max = callers.tone_hz_max, callers.tone_hz_min
    if callers.volume_min > callers.volume_max:
        callers.volume_min, callers.volume_max = callers.volume_max, callers.volume_min

    session = cfg.session
    mode = str(session.mode or "single").strip().lower()
    session.mode = mode if mode in MODE_NAMES else "single"
    qrn = str(session.qrn or "moderate").strip().lower()
    session.qrn = qrn if qrn in QRN_LEVELS else "moderate"
    session.cut_digits = [str(d).strip() for d in (session.cut_digits or []) if str(d).strip() in CUT_NUMBER_LETTERS]

    backend = str(cfg.audio.backend or "stream").strip().lower()
    cfg.audio.backend = backend if backend in {"stream", "null"} else "stream"

    return cfg


def save_config(path: str | Path, config: AppConfig) -> None:
    payload = {
        "audio": asdict(config.audio),
        "station": asdict(config.station),
        "callers": asdict(config.callers),
        "session": asdict(config.session),
    }
    p = Path(path)
    p.write_text(yaml.safe_dump(payload, sort_keys=False, allow_unicode=False), encoding="utf-8")


def validate_inputs(config: AppConfig) -> SessionInputs:
    st = config.station
    call = str(st.callsign or "").strip().upper()
    if not call:
        raise InvalidConfiguration("Your callsign is required.")
    if not CALLSIGN_RE.match(call):
        raise InvalidConfiguration(f"Invalid callsign: {call}")
    wpm = _as_int(st.wpm, "Your speed")
    if not MIN_WPM <= wpm <= MAX_WPM:
        raise InvalidConfiguration(f"Your speed must be between {MIN_WPM} and {MAX_WPM} WPM.")
    sidetone = _as_float(st.sidetone, "Sidetone")
    if not 200.0 <= sidetone <= 1200.0:
        raise InvalidConfiguration("Sidetone must be between 200 and 1200 Hz.")
    volume = _as_float(st.volume, "Volume")
    if not 0.0 <= volume <= 1.0:
        raise InvalidConfiguration("Volume must be between 0 and 1.")

    callers = config.callers
    if callers.wpm_min < MIN_WPM or callers.wpm_max > MAX_WPM:
        raise InvalidConfiguration(f"Caller speeds must be between {MIN_WPM} and {MAX_WPM} WPM.")
    if callers.enable_farnsworth and not MIN_WPM <= int(callers.farnsworth_speed) <= MAX_WPM:
        raise InvalidConfiguration("Farnsworth speed is out of range.")

    your = YourStationConfig(
        callsign=call,
        name=str(st.name or "").strip().upper(),
        state=str(st.state or "").strip().upper(),
        wpm=wpm,
        sidetone=sidetone,
        volume=volume,
    )
    cut = {}
    if config.session.enable_cut_numbers:
        cut = {d: CUT_NUMBER_LETTERS[d] for d in config.session.cut_digits if d in CUT_NUMBER_LETTERS}
    return SessionInputs(
        your=your,
        callers=callers,
        enable_continuous=bool(config.session.enable_continuous),
        cut_numbers=cut,
    )


def get_inputs(config: AppConfig) -> Optional[SessionInputs]:
    try:
        return validate_inputs(config)
    except InvalidConfiguration:
        return None


def _as_int(value: Any, label: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidConfiguration(f"{label} must be a number.") from None


def _as_float(value: Any, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidConfiguration(f"{label} must be a number.") from None


def _apply_dataclass_updates(target: Any, updates: Dict[str, Any]) -> None:
    for key, value in updates.items():
        if hasattr(target, key):
            setattr(target, key, value)
