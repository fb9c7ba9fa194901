from __future__ import annotations

import random
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .audio import AudioBackend
from .config import SessionInputs
from .errors import ChannelBusy, InvalidAction, InvalidConfiguration, NoActiveTarget, SimulatorError
from .matcher import MatchResult, compare
from .modes import ProtocolStrategy, default_protocols
from .morse import apply_cut_numbers, normalize_text
from .player import MorsePlayer
from .stations import Station, StationGenerator, StationRegistry, YourStation, slow_down

REPEAT_TOKENS = ("?", "AGN", "AGN?")
QRS_TOKEN = "QRS"
CONFIRM_MARKER = "?"

REPLY_DELAY = 0.25
EXCHANGE_GAP = 0.5
SINGLE_NEXT_DELAY = 1.0
SINGLE_CONFIRM_DELAY = 1.0
TU_DELAY = 0.5
NEW_STATION_PROBABILITY = 0.4

NUMERIC_FIELDS = ("serial_number", "cwops_number")


class ContactState(str, Enum):
    IDLE = "IDLE"
    CALLING = "CALLING"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    MATCHED = "MATCHED"
    PARTIAL_MATCH = "PARTIAL_MATCH"
    NO_MATCH = "NO_MATCH"
    EXCHANGING = "EXCHANGING"
    CONFIRMING = "CONFIRMING"


class FieldVerdict(str, Enum):
    CORRECT = "correct"
    WRONG = "wrong"
    INCOMPLETE = "incomplete"
    NOT_APPLICABLE = "n/a"


@dataclass(frozen=True)
class FieldCheck:
    key: str
    entered: str
    expected: str
    verdict: FieldVerdict

    def describe(self) -> str:
        if self.verdict == FieldVerdict.NOT_APPLICABLE:
            return "N/A"
        if self.verdict == FieldVerdict.CORRECT:
            return self.entered
        return f"!{self.entered} ({self.expected})"


@dataclass(frozen=True)
class ContactRecord:
    sequence: int
    callsign: str
    wpm: str
    attempts: int
    elapsed_seconds: float
    checks: Tuple[FieldCheck, ...] = ()

    @property
    def annotation(self) -> str:
        if not self.checks:
            return ""
        ok = all(c.verdict in (FieldVerdict.CORRECT, FieldVerdict.NOT_APPLICABLE) for c in self.checks)
        return "perfect" if ok else "imperfect"

    @property
    def exchange_info(self) -> str:
        return " / ".join(c.describe() for c in self.checks)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["annotation"] = self.annotation
        data["exchange_info"] = self.exchange_info
        return data


class ContactLog:
    """Append-only table of completed contacts; cleared only on reset."""

    def __init__(self) -> None:
        self._records: List[ContactRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ContactRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> ContactRecord:
        return self._records[index]

    def append(self, record: ContactRecord) -> None:
        self._records.append(record)

    def clear(self) -> None:
        self._records.clear()


@dataclass
class Transmission:
    sender: str
    text: str
    start: float
    end: float
    is_you: bool = False


@dataclass
class ActionResult:
    state: ContactState
    accepted: bool
    outcome: str = ""
    transmissions: List[Transmission] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)
    record: Optional[ContactRecord] = None
    clear_response: bool = False


@dataclass
class Session:
    mode: str = "single"
    state: ContactState = ContactState.IDLE
    registry: StationRegistry = field(default_factory=StationRegistry)
    active_station_index: Optional[int] = None
    attempts: int = 0
    start_time: Optional[float] = None
    total_contacts: int = 0
    last_responding: List[Station] = field(default_factory=list)
    you: Optional[YourStation] = None
    inputs: Optional[SessionInputs] = None

    @property
    def ready_for_tu(self) -> bool:
        return self.state == ContactState.EXCHANGING and self.active_station_index is not None

    @property
    def active_station(self) -> Optional[Station]:
        if self.active_station_index is None or self.active_station_index >= len(self.registry):
            return None
        return self.registry[self.active_station_index]

    def reset(self) -> None:
        self.state = ContactState.IDLE
        self.registry.clear()
        self.active_station_index = None
        self.attempts = 0
        self.start_time = None
        self.total_contacts = 0
        self.last_responding = []


def compare_extra_info(field_key: Optional[str], user_input: str, station: Station) -> Optional[FieldCheck]:
    if not field_key:
        return None
    expected = getattr(station, field_key, None)
    entered = (user_input or "").strip().upper()

    if field_key in NUMERIC_FIELDS:
        try:
            value = int(entered)
        except ValueError:
            return FieldCheck(field_key, entered, str(expected), FieldVerdict.INCOMPLETE)
        correct = expected is not None and value == int(expected)
        return FieldCheck(field_key, str(value), str(expected), FieldVerdict.CORRECT if correct else FieldVerdict.WRONG)

    expected_str = str(expected if expected is not None else "").strip().upper()
    if not expected_str:
        return FieldCheck(field_key, entered, "", FieldVerdict.NOT_APPLICABLE)
    verdict = FieldVerdict.CORRECT if entered == expected_str else FieldVerdict.WRONG
    return FieldCheck(field_key, entered, expected_str, verdict)


Speaker = Union[Station, YourStation]


class ContactStateMachine:
    """
    Drives calling, matching, exchanging and logging for the selected mode.

    Every public action returns an ActionResult; actions the engine declines
    come back with ``accepted=False`` and leave the session untouched.
    """

    def __init__(
        self,
        audio: AudioBackend,
        generator: StationGenerator,
        inputs_provider: Callable[[], Optional[SessionInputs]],
        protocols: Optional[Mapping[str, ProtocolStrategy]] = None,
        mode: str = "single",
        contact_log: Optional[ContactLog] = None,
    ):
        self.audio = audio
        self.generator = generator
        self.inputs_provider = inputs_provider
        self.protocols: Dict[str, ProtocolStrategy] = dict(protocols or default_protocols())
        if mode not in self.protocols:
            raise InvalidConfiguration(f"Unknown mode: {mode}")
        self.session = Session(mode=mode)
        self.contact_log = contact_log if contact_log is not None else ContactLog()
        self.logs: List[Dict[str, str]] = []

    # ----- state exposed to the UI

    @property
    def strategy(self) -> ProtocolStrategy:
        return self.protocols[self.session.mode]

    @property
    def state(self) -> ContactState:
        return self.session.state

    def get_audio_lock(self) -> bool:
        return self.audio.lock.busy(self.audio.clock.now())

    def update_audio_lock(self, timestamp: float) -> None:
        self.audio.lock.update(timestamp)

    @property
    def stations_on_frequency(self) -> int:
        return len(self.session.registry)

    @property
    def call_enabled(self) -> bool:
        if self.get_audio_lock():
            return False
        return self.strategy.show_tu_step or len(self.session.registry) == 0

    # ----- actions

    def call(self) -> ActionResult:
        return self._guarded("call", self._handle_call)

    def send(self, text: str) -> ActionResult:
        return self._guarded("send", self._handle_send, text)

    def tu(self, info1: str = "", info2: str = "") -> ActionResult:
        return self._guarded("tu", self._handle_tu, info1, info2)

    def stop(self) -> ActionResult:
        self.audio.stop_all()
        self.audio.lock.release()
        s = self.session
        if not self.strategy.show_tu_step:
            s.registry.clear()
            s.active_station_index = None
            s.attempts = 0
            s.start_time = None
            s.last_responding = []
            s.state = ContactState.IDLE
        self._log("INFO", "Audio stopped", s.state)
        return ActionResult(state=s.state, accepted=True, outcome="stopped")

    def reset(self) -> ActionResult:
        self.audio.stop_all()
        self.audio.lock.release()
        self.session.reset()
        self.contact_log.clear()
        self._log("INFO", "Session reset", self.session.state)
        return ActionResult(state=self.session.state, accepted=True, outcome="reset", clear_response=True)

    def change_mode(self, mode: str) -> ActionResult:
        key = str(mode or "").strip().lower()
        if key not in self.protocols:
            msg = f"Unknown mode: {mode}"
            self._log("ERR", msg, self.session.state)
            return ActionResult(state=self.session.state, accepted=False, errors=[msg])
        result = self.reset()
        self.session.mode = key
        self._log("INFO", f"Mode set to {key}", self.session.state)
        result.outcome = "mode"
        return result

    def set_qrn(self, level: str) -> None:
        try:
            self.audio.noise.set_intensity(level)
        except ValueError as exc:
            raise InvalidConfiguration(str(exc)) from exc

    def export_session(self) -> Dict[str, object]:
        s = self.session
        return {
            "mode": s.mode,
            "state": s.state.value,
            "attempts": s.attempts,
            "total_contacts": s.total_contacts,
            "active_station_index": s.active_station_index,
            "stations": [st.to_dict() for st in s.registry],
            "contacts": [rec.to_dict() for rec in self.contact_log],
            "logs": self.logs,
        }

    # ----- handlers

    def _guarded(self, action: str, handler: Callable[..., ActionResult], *args: Any) -> ActionResult:
        try:
            return handler(*args)
        except SimulatorError as exc:
            msg = str(exc)
            self._log("ERR", f"{action}: {msg}", self.session.state)
            return ActionResult(state=self.session.state, accepted=False, errors=[msg])

    def _ensure_channel_free(self) -> None:
        if self.get_audio_lock():
            raise ChannelBusy("Channel is busy.")

    def _handle_call(self) -> ActionResult:
        self._ensure_channel_free()
        s = self.session
        strategy = self.strategy
        if not strategy.show_tu_step and len(s.registry):
            raise InvalidAction("A station is already calling.")
        if s.state == ContactState.EXCHANGING:
            raise InvalidAction("Finish the current exchange with TU first.")
        inputs = self.inputs_provider()
        if inputs is None:
            raise InvalidConfiguration("Station settings are missing or invalid.")

        warmup = self.audio.noise.start()
        s.inputs = inputs
        s.you = self.generator.your_station(inputs)
        s.state = ContactState.CALLING
        result = ActionResult(state=s.state, accepted=True, outcome="cq")

        cq_end = self._play(result, s.you, strategy.cq_message(s.you), self._now() + warmup)
        if strategy.show_tu_step:
            self._admit_stations(inputs)
            stations = s.registry.snapshot()
            self._respond_with_all(result, stations, cq_end)
            s.last_responding = stations
            if s.start_time is None:
                s.start_time = self._now()
            result.info.append(f"{len(stations)} station(s) on frequency.")
        else:
            self._next_single_station(result, cq_end)
        return self._finish(result, ContactState.AWAITING_RESPONSE)

    def _handle_send(self, text: str) -> ActionResult:
        self._ensure_channel_free()
        s = self.session
        message = normalize_text(text or "")
        if not message:
            if not len(s.registry):
                return self._handle_call()
            return ActionResult(state=s.state, accepted=False, info=["Nothing to send."])
        if not len(s.registry) or s.you is None:
            raise NoActiveTarget("No station is calling.")

        self._log("RX", message, s.state)
        result = ActionResult(state=s.state, accepted=True)
        your_end = self._play(result, s.you, message, None)

        if message in REPEAT_TOKENS:
            targets = self._targets(s.registry.snapshot())
            self._respond_with_all(result, targets, your_end)
            s.last_responding = targets
            s.attempts += 1
            result.outcome = "repeat"
            return self._finish(result, ContactState.AWAITING_RESPONSE)

        if message == QRS_TOKEN:
            targets = self._targets(s.last_responding)
            for station in targets:
                slow_down(station)
            self._respond_with_all(result, targets, your_end)
            s.attempts += 1
            result.outcome = "qrs"
            return self._finish(result, ContactState.AWAITING_RESPONSE)

        if self.strategy.show_tu_step:
            return self._match_multi(result, message, your_end)
        return self._match_single(result, message, your_end)

    def _match_multi(self, result: ActionResult, message: str, your_end: float) -> ActionResult:
        s = self.session
        stations = s.registry.snapshot()
        verdicts = [compare(st.callsign, message) for st in stations]
        s.attempts += 1
        resting = s.state
        exchanging_with = s.active_station_index if resting == ContactState.EXCHANGING else None

        if MatchResult.PERFECT in verdicts:
            index = verdicts.index(MatchResult.PERFECT)
            station = stations[index]
            s.state = ContactState.MATCHED
            if CONFIRM_MARKER in message:
                self._play(result, station, "RR", your_end + REPLY_DELAY)
                result.outcome = "confirm"
                return self._finish(result, resting)

            self._play_exchange(result, station, your_end)
            s.active_station_index = index
            s.last_responding = [station]
            result.outcome = "exchange"
            return self._finish(result, ContactState.EXCHANGING)

        if MatchResult.PARTIAL in verdicts:
            partial = [st for st, v in zip(stations, verdicts) if v == MatchResult.PARTIAL]
            s.state = ContactState.PARTIAL_MATCH
            self._respond_with_all(result, partial, your_end)
            s.last_responding = partial
            result.outcome = "partial"
            return self._resume(result, exchanging_with)

        s.state = ContactState.NO_MATCH
        result.outcome = "none"
        return self._resume(result, exchanging_with)

    def _match_single(self, result: ActionResult, message: str, your_end: float) -> ActionResult:
        s = self.session
        station = s.active_station
        if station is None:
            raise NoActiveTarget("No station is calling.")
        verdict = compare(station.callsign, message)
        s.attempts += 1

        if verdict == MatchResult.PERFECT:
            s.state = ContactState.MATCHED
            if CONFIRM_MARKER in message:
                self._play(result, station, "RR", your_end + SINGLE_CONFIRM_DELAY)
                result.outcome = "confirm"
                return self._finish(result, ContactState.AWAITING_RESPONSE)

            s.state = ContactState.EXCHANGING
            you = s.you
            t = self._play_exchange(result, station, your_end)
            t = self._play(result, you, self.strategy.your_signoff(you, station), t + EXCHANGE_GAP)
            if self.strategy.has_their_signoff:
                t = self._play(result, station, self.strategy.their_signoff(you, station), t + EXCHANGE_GAP)
            result.record = self._log_contact(station, ())
            s.registry.remove(station)
            s.active_station_index = None
            self._next_single_station(result, t)
            result.outcome = "logged"
            return self._finish(result, ContactState.AWAITING_RESPONSE)

        if verdict == MatchResult.PARTIAL:
            s.state = ContactState.PARTIAL_MATCH
            self._respond_with_all(result, [station], your_end)
            result.outcome = "partial"
            return self._finish(result, ContactState.AWAITING_RESPONSE)

        s.state = ContactState.NO_MATCH
        result.outcome = "none"
        return self._finish(result, ContactState.AWAITING_RESPONSE)

    def _handle_tu(self, info1: str, info2: str) -> ActionResult:
        self._ensure_channel_free()
        s = self.session
        strategy = self.strategy
        if not strategy.show_tu_step:
            raise InvalidAction(f"Mode {s.mode} has no TU step.")
        station = s.active_station
        if not s.ready_for_tu or station is None or s.you is None:
            raise NoActiveTarget("No completed exchange to confirm.")

        checks: List[FieldCheck] = []
        first = compare_extra_info(strategy.extra_info_field_key, info1, station)
        if first is not None:
            checks.append(first)
        if strategy.requires_info_field2 and strategy.extra_info_field_key2:
            second = compare_extra_info(strategy.extra_info_field_key2, info2, station)
            if second is not None:
                checks.append(second)

        s.state = ContactState.CONFIRMING
        result = ActionResult(state=s.state, accepted=True, outcome="logged", clear_response=True)
        arbitrary = (info1 or "").strip().upper() or None
        t = self._play(result, s.you, strategy.your_signoff(s.you, station, arbitrary), self._now() + TU_DELAY)
        if strategy.has_their_signoff:
            t = self._play(result, station, strategy.their_signoff(s.you, station), t + EXCHANGE_GAP)

        result.record = self._log_contact(station, checks)
        s.registry.remove_at(s.active_station_index)
        s.active_station_index = None
        s.attempts = 0

        inputs = s.inputs
        if inputs is not None and (inputs.enable_continuous or random.random() < NEW_STATION_PROBABILITY):
            self._admit_stations(inputs)
        remaining = s.registry.snapshot()
        self._respond_with_all(result, remaining, t)
        s.last_responding = remaining
        s.start_time = self._now()
        return self._finish(result, ContactState.AWAITING_RESPONSE if remaining else ContactState.IDLE)

    # ----- helpers

    def _now(self) -> float:
        return self.audio.clock.now()

    def _finish(self, result: ActionResult, state: ContactState) -> ActionResult:
        self.session.state = state
        if state != ContactState.EXCHANGING and self.strategy.show_tu_step:
            self.session.active_station_index = None
        result.state = state
        return result

    def _resume(self, result: ActionResult, exchanging_with: Optional[int]) -> ActionResult:
        # a miss after the exchange keeps the TU pending
        if exchanging_with is None:
            return self._finish(result, ContactState.AWAITING_RESPONSE)
        self.session.active_station_index = exchanging_with
        return self._finish(result, ContactState.EXCHANGING)

    def _targets(self, stations: Sequence[Station]) -> List[Station]:
        s = self.session
        if not self.strategy.show_tu_step:
            active = s.active_station
            return [active] if active is not None else []
        live = [st for st in stations if any(st is other for other in s.registry)]
        return live or s.registry.snapshot()

    def _player_for(self, speaker: Speaker) -> MorsePlayer:
        params = speaker.tone_params()
        if speaker.player is None or speaker.player.params != params:
            speaker.player = MorsePlayer(params, self.audio)
        return speaker.player

    def _play(self, result: ActionResult, speaker: Speaker, text: str, start: Optional[float]) -> float:
        player = self._player_for(speaker)
        now = self._now()
        if not player.events(text, now):
            return now if start is None else start
        begin = max(now if start is None else start, now, self.audio.lock.value)
        end = player.play_sentence(text, start)
        is_you = isinstance(speaker, YourStation)
        result.transmissions.append(Transmission(speaker.callsign, text, begin, end, is_you))
        self.update_audio_lock(end)
        self._log("TX", f"{speaker.callsign}: {text}", self.session.state)
        return end

    def _play_exchange(self, result: ActionResult, station: Station, your_end: float) -> float:
        s = self.session
        you = s.you
        cut = s.inputs.cut_numbers if s.inputs is not None else {}
        yours = apply_cut_numbers(self.strategy.your_exchange(you, station), cut)
        theirs = apply_cut_numbers(self.strategy.their_exchange(you, station), cut)
        gap = self._player_for(you).params.word_gap_seconds
        t = self._play(result, you, yours, your_end + gap)
        return self._play(result, station, theirs, t + EXCHANGE_GAP)

    def _respond_with_all(self, result: ActionResult, stations: Sequence[Station], start: float) -> float:
        t = start
        for station in stations:
            t = self._play(result, station, station.callsign, t + random.random() + REPLY_DELAY)
        return t

    def _admit_stations(self, inputs: SessionInputs) -> None:
        s = self.session
        room = max(inputs.max_stations - len(s.registry), 0)
        if room <= 0:
            return
        count = min(random.randint(1, inputs.max_stations), room)
        for _ in range(count):
            station = self.generator.calling_station(inputs, exclude=s.registry.callsigns())
            s.registry.add(station)
            self._log("INFO", f"{station.callsign} joins at {station.wpm_label} WPM", s.state)

    def _next_single_station(self, result: ActionResult, start: float) -> None:
        s = self.session
        inputs = s.inputs
        if inputs is None:
            raise InvalidConfiguration("Station settings are missing or invalid.")
        station = self.generator.calling_station(inputs)
        s.registry.clear()
        s.registry.add(station)
        s.active_station_index = 0
        s.attempts = 0
        s.last_responding = [station]
        self._log("INFO", f"{station.callsign} calling at {station.wpm_label} WPM", s.state)
        end = self._play(result, station, station.callsign, start + random.random() + SINGLE_NEXT_DELAY)
        s.start_time = end
        result.clear_response = True

    def _log_contact(self, station: Station, checks: Sequence[FieldCheck]) -> ContactRecord:
        s = self.session
        s.total_contacts += 1
        started = s.start_time if s.start_time is not None else self._now()
        record = ContactRecord(
            sequence=s.total_contacts,
            callsign=station.callsign,
            wpm=station.wpm_label,
            attempts=s.attempts,
            elapsed_seconds=max(0.0, self._now() - started),
            checks=tuple(checks),
        )
        self.contact_log.append(record)
        self._log("INFO", f"Contact #{record.sequence} logged with {record.callsign}", s.state)
        return record

    def _log(self, level: str, message: str, state: ContactState) -> None:
        self.logs.append(
            {
                "timestamp_utc": datetime.now(timezone.utc).isoformat(),
                "level": level,
                "state": state.value,
                "message": message,
            }
        )
        if len(self.logs) > 2000:
            self.logs = self.logs[-1000:]
