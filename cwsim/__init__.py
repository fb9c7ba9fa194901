from .audio import BackgroundNoise, NullAudio, StreamAudio, render_events
from .callsign_pool import PoolEntry, load_callsigns_file, parse_callsign_lines, parse_callsign_text
from .clock import AudioLock, ManualClock
from .config import AppConfig, SessionInputs, get_inputs, load_config, save_config, validate_inputs
from .engine import ActionResult, ContactLog, ContactRecord, ContactState, ContactStateMachine, Session
from .errors import ChannelBusy, InvalidAction, InvalidConfiguration, NoActiveTarget, SimulatorError
from .matcher import MatchResult, compare
from .modes import ProtocolStrategy, default_protocols, load_protocols
from .player import MorsePlayer, ToneEvent, ToneParams
from .stations import Station, StationGenerator, StationRegistry, YourStation, slow_down

__all__ = [
    "BackgroundNoise",
    "NullAudio",
    "StreamAudio",
    "render_events",
    "PoolEntry",
    "load_callsigns_file",
    "parse_callsign_lines",
    "parse_callsign_text",
    "AudioLock",
    "ManualClock",
    "AppConfig",
    "SessionInputs",
    "get_inputs",
    "load_config",
    "save_config",
    "validate_inputs",
    "ActionResult",
    "ContactLog",
    "ContactRecord",
    "ContactState",
    "ContactStateMachine",
    "Session",
    "ChannelBusy",
    "InvalidAction",
    "InvalidConfiguration",
    "NoActiveTarget",
    "SimulatorError",
    "MatchResult",
    "compare",
    "ProtocolStrategy",
    "default_protocols",
    "load_protocols",
    "MorsePlayer",
    "ToneEvent",
    "ToneParams",
    "Station",
    "StationGenerator",
    "StationRegistry",
    "YourStation",
    "slow_down",
]
